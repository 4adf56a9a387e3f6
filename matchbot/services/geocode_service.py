"""
Address → coordinates resolution with provider fallback.

Providers are tried in order (Naver Maps, then Kakao Local). A provider
timing out, erroring or finding nothing hands over to the next; if every
provider fails the resolver returns None and the organizer drops a map pin
instead.

Results (negative ones included) are cached per normalised address for the
resolver's lifetime, and concurrent lookups of the same address share one
in-flight request, so a provider sees each address at most once.
"""
from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Protocol, Sequence

import aiohttp

from matchbot.config import settings
from matchbot.services.draft_store import Coordinates

logger = logging.getLogger(__name__)


class GeocodeError(Exception):
    """Provider answered with an error status or an unreadable payload."""


class GeocodeProvider(Protocol):
    name: str

    async def geocode(self, address: str) -> Optional[Coordinates]:
        """Coordinates of the best match, None when nothing matched."""
        ...


def normalize_address(address: str) -> str:
    return " ".join(address.split()).casefold()


async def _read_payload(resp: aiohttp.ClientResponse, provider: str) -> dict:
    if resp.status != 200:
        raise GeocodeError(f"{provider}: HTTP {resp.status}")
    try:
        data = await resp.json()
    except (aiohttp.ContentTypeError, ValueError) as exc:
        raise GeocodeError(f"{provider}: unreadable body ({exc})") from exc
    if not isinstance(data, dict):
        raise GeocodeError(f"{provider}: unexpected payload {type(data).__name__}")
    return data


# ─────────────────────────── Providers ────────────────────────────────────────

class NaverGeocoder:
    name = "naver"
    URL = "https://naveropenapi.apigw.ntruss.com/map-geocode/v2/geocode"

    def __init__(self, client_id: str, client_secret: str) -> None:
        self._headers = {
            "X-NCP-APIGW-API-KEY-ID": client_id,
            "X-NCP-APIGW-API-KEY": client_secret,
        }

    async def geocode(self, address: str) -> Optional[Coordinates]:
        async with aiohttp.ClientSession(headers=self._headers) as client:
            async with client.get(self.URL, params={"query": address}) as resp:
                data = await _read_payload(resp, self.name)

        if data.get("status") != "OK":
            raise GeocodeError(f"naver: status {data.get('status')!r}")
        addresses = data.get("addresses") or []
        if not addresses:
            return None
        try:
            return Coordinates(lat=float(addresses[0]["y"]), lng=float(addresses[0]["x"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodeError(f"naver: bad payload ({exc})") from exc


class KakaoGeocoder:
    name = "kakao"
    URL = "https://dapi.kakao.com/v2/local/search/address.json"

    def __init__(self, rest_api_key: str) -> None:
        self._headers = {"Authorization": f"KakaoAK {rest_api_key}"}

    async def geocode(self, address: str) -> Optional[Coordinates]:
        async with aiohttp.ClientSession(headers=self._headers) as client:
            async with client.get(self.URL, params={"query": address}) as resp:
                data = await _read_payload(resp, self.name)

        documents = data.get("documents") or []
        if not documents:
            return None
        try:
            return Coordinates(lat=float(documents[0]["y"]), lng=float(documents[0]["x"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise GeocodeError(f"kakao: bad payload ({exc})") from exc


def default_providers() -> List[GeocodeProvider]:
    """Providers whose credentials are configured, in fallback order."""
    providers: List[GeocodeProvider] = []
    if settings.naver_enabled:
        providers.append(NaverGeocoder(settings.NAVER_CLIENT_ID, settings.NAVER_CLIENT_SECRET))
    if settings.kakao_enabled:
        providers.append(KakaoGeocoder(settings.KAKAO_REST_API_KEY))
    return providers


# ─────────────────────────── Resolver ─────────────────────────────────────────

class GeocodeResolver:
    def __init__(
        self,
        providers: Sequence[GeocodeProvider],
        timeout: float = settings.COLLABORATOR_TIMEOUT_S,
        cache_size: int = settings.GEOCODE_CACHE_SIZE,
    ) -> None:
        self._providers = list(providers)
        self._timeout = timeout
        self._cache_size = cache_size
        self._cache: "OrderedDict[str, Optional[Coordinates]]" = OrderedDict()
        self._inflight: Dict[str, asyncio.Future] = {}

    async def resolve(self, address: str) -> Optional[Coordinates]:
        key = normalize_address(address)
        if not key:
            return None

        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        lookup = self._inflight.get(key)
        if lookup is None:
            lookup = asyncio.ensure_future(self._lookup(key, address.strip()))
            self._inflight[key] = lookup
        # A cancelled waiter must not cancel the lookup other waiters share
        return await asyncio.shield(lookup)

    async def _lookup(self, key: str, address: str) -> Optional[Coordinates]:
        try:
            result = await self._try_providers(address)
            self._remember(key, result)
            return result
        finally:
            self._inflight.pop(key, None)

    async def _try_providers(self, address: str) -> Optional[Coordinates]:
        for provider in self._providers:
            try:
                coords = await asyncio.wait_for(provider.geocode(address), self._timeout)
            except asyncio.TimeoutError:
                logger.warning("Geocoder %s timed out for %r", provider.name, address)
                continue
            except (GeocodeError, aiohttp.ClientError) as exc:
                logger.warning("Geocoder %s failed for %r: %s", provider.name, address, exc)
                continue
            if coords is not None:
                return coords
            logger.info("Geocoder %s found nothing for %r", provider.name, address)
        return None

    def _remember(self, key: str, result: Optional[Coordinates]) -> None:
        self._cache[key] = result
        self._cache.move_to_end(key)
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
