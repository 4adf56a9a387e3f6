"""
Service injection middleware.

The coordinator, geocoder, venue search and request sequencer are
long-lived objects built once in main.py; this middleware exposes them to
handlers as keyword arguments (`coordinator`, `resolver`, `venue_search`,
`sequencer`, `trigger`).
"""
from typing import Any, Awaitable, Callable, Dict

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from matchbot.services.geocode_service import GeocodeResolver
from matchbot.services.latest_request import RequestSequencer
from matchbot.services.match_service import ThresholdTrigger
from matchbot.services.provisional_service import ProvisionalReservationCoordinator
from matchbot.services.venue_search import VenueRankingSearch


class ServicesMiddleware(BaseMiddleware):
    def __init__(
        self,
        coordinator: ProvisionalReservationCoordinator,
        resolver: GeocodeResolver,
        venue_search: VenueRankingSearch,
        sequencer: RequestSequencer,
    ) -> None:
        self._services = {
            "coordinator":  coordinator,
            "resolver":     resolver,
            "venue_search": venue_search,
            "sequencer":    sequencer,
            "trigger":      ThresholdTrigger(coordinator),
        }

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        data.update(self._services)
        return await handler(event, data)
