from matchbot.middlewares.db_middleware import DatabaseMiddleware
from matchbot.middlewares.services_middleware import ServicesMiddleware

__all__ = ["DatabaseMiddleware", "ServicesMiddleware"]
