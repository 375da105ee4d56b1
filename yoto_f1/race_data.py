"""Race weekend data providers.

Two sources yield the same :class:`~yoto_f1.models.race.RaceWeekendSnapshot`:

* :class:`WorkerProvider` reads the ``/playlist`` document served by the
  edge worker, which caches OpenF1 data and adds a ``dataHash``.
* :class:`OpenF1Provider` queries the public OpenF1 API directly, spacing
  requests to respect its rate limit and caching the assembled snapshot
  on disk.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

import httpx
from loguru import logger
from pydantic import ValidationError

from .errors import UpstreamDataError
from .models.race import RaceWeekendSnapshot
from .storage.cache import SnapshotCache
from .storage.config import Settings

OPENF1_URL = "https://api.openf1.org/v1"


class RaceDataProvider(Protocol):
    async def fetch_snapshot(self) -> RaceWeekendSnapshot: ...


def _parse_snapshot(data: Any, source: str) -> RaceWeekendSnapshot:
    if not isinstance(data, dict) or not isinstance(data.get("race"), dict):
        raise UpstreamDataError(f"{source} returned no race data")
    payload = dict(data)
    payload["sessions"] = payload.get("sessions") or []
    try:
        return RaceWeekendSnapshot.model_validate(payload)
    except ValidationError as exc:
        raise UpstreamDataError(f"{source} returned malformed race data: {exc}") from exc


class WorkerProvider:
    """Fetch the cached playlist document from the edge worker."""

    def __init__(
        self,
        worker_url: str,
        http: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.worker_url = worker_url.rstrip("/")
        self.timeout = timeout
        self._http = http or httpx.AsyncClient()

    async def fetch_snapshot(self) -> RaceWeekendSnapshot:
        url = f"{self.worker_url}/playlist"
        logger.debug(f"GET {url}")
        try:
            resp = await self._http.get(url, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamDataError(f"Failed to fetch race data from {url}: {exc}") from exc
        snapshot = _parse_snapshot(data, "Race data worker")
        logger.info(f"Fetched race data for {snapshot.race.name} (updated {snapshot.lastUpdated})")
        return snapshot


class OpenF1Provider:
    """Assemble a snapshot from the OpenF1 ``meetings``, ``sessions`` and
    ``weather`` resources.

    Sessions and weather are optional: failures fetching them degrade to an
    empty schedule and no weather.  Failing to find the next meeting raises
    :class:`UpstreamDataError`.
    """

    def __init__(
        self,
        http: httpx.AsyncClient | None = None,
        cache: SnapshotCache | None = None,
        delay: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        base_url: str = OPENF1_URL,
    ) -> None:
        self._http = http or httpx.AsyncClient(timeout=5.0)
        self.cache = cache
        self.delay = delay
        self.sleep = sleep
        self.now = now
        self.base_url = base_url

    async def _get_list(self, query: str) -> list[dict]:
        # OpenF1 filters use raw comparison operators in the query string.
        resp = await self._http.get(f"{self.base_url}/{query}")
        resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, list) else []

    async def _next_meeting(self, now: datetime) -> dict:
        today = now.date().isoformat()
        try:
            meetings = await self._get_list(f"meetings?year={now.year}&date_start>={today}")
            if not meetings:
                logger.info(f"No upcoming meetings left in {now.year}, trying {now.year + 1}")
                await self.sleep(self.delay)
                meetings = await self._get_list(f"meetings?year={now.year + 1}")
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamDataError(f"Failed to fetch meetings from OpenF1: {exc}") from exc
        if not meetings:
            raise UpstreamDataError("No upcoming races found")
        return sorted(meetings, key=lambda m: m.get("date_start") or "")[0]

    async def _sessions(self, meeting_key: Any, now: datetime) -> list[dict]:
        try:
            sessions = await self._get_list(
                f"sessions?meeting_key={meeting_key}&date_start>={now.date().isoformat()}"
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"Failed to fetch sessions: {exc}")
            return []
        sessions.sort(key=lambda s: s.get("date_start") or "")
        return [
            {
                "sessionName": s.get("session_name") or "Session",
                "sessionType": s.get("session_type"),
                "dateStart": s.get("date_start"),
                "dateEnd": s.get("date_end"),
                "location": s.get("location"),
                "circuitName": s.get("circuit_short_name"),
                "sessionKey": s.get("session_key"),
            }
            for s in sessions
        ]

    async def _weather(self, session_key: Any) -> dict | None:
        try:
            readings = await self._get_list(f"weather?session_key={session_key}")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"Failed to fetch weather: {exc}")
            return None
        if not readings:
            return None
        latest = readings[-1]
        return {
            "airTemperature": latest.get("air_temperature"),
            "trackTemperature": latest.get("track_temperature"),
            "humidity": latest.get("humidity"),
            "rainfall": latest.get("rainfall"),
            "windSpeed": latest.get("wind_speed"),
            "windDirection": latest.get("wind_direction"),
        }

    async def fetch_payload(self) -> dict[str, Any]:
        """Return the snapshot in the same JSON shape the edge worker serves."""
        now = self.now()
        meeting = await self._next_meeting(now)
        race = {
            "name": meeting.get("meeting_name") or "Formula 1 Race",
            "officialName": meeting.get("meeting_official_name") or meeting.get("meeting_name"),
            "location": meeting.get("location") or "Unknown Location",
            "country": meeting.get("country_name") or "Unknown Country",
            "circuit": meeting.get("circuit_short_name") or "Unknown Circuit",
            "circuitType": meeting.get("circuit_type") or "Unknown",
            "countryFlag": meeting.get("country_flag"),
            "dateStart": meeting.get("date_start"),
            "dateEnd": meeting.get("date_end"),
            "year": meeting.get("year"),
            "meetingKey": meeting.get("meeting_key"),
        }
        await self.sleep(self.delay)
        sessions = await self._sessions(race["meetingKey"], now)
        weather = None
        if sessions and sessions[0].get("sessionKey"):
            await self.sleep(self.delay)
            weather = await self._weather(sessions[0]["sessionKey"])
        return {
            "race": race,
            "sessions": sessions,
            "weather": weather,
            "lastUpdated": now.isoformat(),
        }

    async def fetch_snapshot(self) -> RaceWeekendSnapshot:
        if self.cache is not None:
            cached = self.cache.get()
            if cached is not None:
                logger.debug("Using cached OpenF1 snapshot")
                return _parse_snapshot(cached, "Snapshot cache")
        payload = await self.fetch_payload()
        snapshot = _parse_snapshot(payload, "OpenF1")
        if self.cache is not None:
            self.cache.put(payload)
        logger.info(f"Fetched race data for {snapshot.race.name} from OpenF1")
        return snapshot


def provider_from_settings(
    settings: Settings, http: httpx.AsyncClient | None = None
) -> WorkerProvider | OpenF1Provider:
    """Use the edge worker when one is configured, OpenF1 otherwise."""
    if settings.cloudflare_worker_url:
        return WorkerProvider(settings.cloudflare_worker_url, http=http)
    return OpenF1Provider(
        http=http, cache=SnapshotCache(max_age_seconds=settings.openf1_cache_seconds)
    )
