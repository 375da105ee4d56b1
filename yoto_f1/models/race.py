"""Immutable race weekend snapshot models.

Field names follow the JSON served by the edge worker's ``/playlist`` route,
which in turn is a light reshaping of the OpenF1 ``meetings``, ``sessions``
and ``weather`` resources.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Race(BaseModel):
    """The meeting (Grand Prix weekend) the card describes."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = "Formula 1 Race"
    officialName: str | None = None
    location: str = "Unknown Location"
    country: str = "Unknown Country"
    circuit: str = "Unknown Circuit"
    circuitType: str | None = None
    countryFlag: str | None = None
    dateStart: datetime | None = None
    dateEnd: datetime | None = None
    year: int | None = None
    meetingKey: int | None = None


class Session(BaseModel):
    """One session (practice, qualifying, sprint, race) of the weekend."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    sessionName: str
    sessionType: str | None = None
    dateStart: datetime | None = None
    dateEnd: datetime | None = None
    location: str | None = None
    circuitName: str | None = None
    sessionKey: int | None = None


class Weather(BaseModel):
    """Most recent weather reading for the first upcoming session."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    airTemperature: float | None = None
    trackTemperature: float | None = None
    humidity: float | None = None
    rainfall: bool | None = None
    windSpeed: float | None = None
    windDirection: float | None = None


class RaceWeekendSnapshot(BaseModel):
    """Everything narration is built from; never mutated after fetch."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    race: Race
    sessions: tuple[Session, ...] = ()
    weather: Weather | None = None
    lastUpdated: datetime | None = None
    dataHash: str | None = None

    def fingerprint(self) -> str:
        """Return the content fingerprint for this snapshot.

        The worker-supplied ``dataHash`` wins when present; otherwise a
        SHA-256 is computed over the race, session and weather fields that
        feed the narration.  ``lastUpdated`` is left out so that a re-fetch
        of unchanged data hashes identically.
        """
        if self.dataHash:
            return self.dataHash
        blob = {
            "race": self.race.model_dump(mode="json"),
            "sessions": [s.model_dump(mode="json") for s in self.sessions],
            "weather": self.weather.model_dump(mode="json") if self.weather else None,
        }
        raw = json.dumps(blob, sort_keys=True, default=str).encode()
        return hashlib.sha256(raw).hexdigest()

    def summary(self) -> dict[str, str | None]:
        """Short description used in refresh results and log lines."""
        return {
            "name": self.race.name,
            "location": self.race.location,
            "country": self.race.country,
            "dateStart": self.race.dateStart.isoformat() if self.race.dateStart else None,
        }
