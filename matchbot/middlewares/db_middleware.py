"""
Database session middleware.
Injects an AsyncSession into every handler's data dict under key "session".
"""
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from matchbot.models.base import AsyncSessionFactory


class DatabaseMiddleware(BaseMiddleware):
    """Commits when the handler returns, rolls back when it raises."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] = AsyncSessionFactory) -> None:
        self._session_factory = session_factory

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        async with self._session_factory() as session:
            data["session"] = session
            try:
                result = await handler(event, data)
                await session.commit()
                return result
            except Exception:
                await session.rollback()
                raise
