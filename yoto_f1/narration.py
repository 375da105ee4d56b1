"""Turn a race weekend snapshot into an ordered narration script.

Everything here is a pure function of its inputs: the same snapshot always
yields the same script, which keeps the fingerprint short-circuit in
:mod:`yoto_f1.refresh` meaningful.  Dates are spoken in UTC with English
month and day names, independent of the host locale.
"""

from __future__ import annotations

from datetime import datetime, timezone

from .models.narration import NarrationScript, ScriptChapter, ScriptTrack
from .models.race import Race, RaceWeekendSnapshot, Session, Weather

_WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")
_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)

RACE_CHAPTER_TITLE = "Next F1 Race"
SCHEDULE_CHAPTER_TITLE = "Race Weekend Schedule"
WEATHER_CHAPTER_TITLE = "Weather Forecast"


def default_title(snapshot: RaceWeekendSnapshot) -> str:
    """Title given to a brand-new card for *snapshot*."""
    return f"F1: {snapshot.race.name}"


def format_date(value: datetime) -> str:
    """``2025-03-16T04:00Z`` -> ``"Sunday, March 16, 2025"``."""
    value = _as_utc(value)
    return f"{_WEEKDAYS[value.weekday()]}, {_MONTHS[value.month - 1]} {value.day}, {value.year}"


def format_time(value: datetime) -> str:
    """``2025-03-16T04:00Z`` -> ``"04:00 AM UTC"``."""
    value = _as_utc(value)
    hour = value.hour % 12 or 12
    meridiem = "AM" if value.hour < 12 else "PM"
    return f"{hour:02d}:{value.minute:02d} {meridiem} UTC"


def build_script(
    snapshot: RaceWeekendSnapshot,
    icon: str | None = None,
    flag_icon: str | None = None,
) -> NarrationScript:
    """Build the narration script for *snapshot*.

    *icon* and *flag_icon* are already-uploaded media references; they are
    only attached to chapters and tracks.  Missing sessions or weather drop
    their chapter, and a missing flag falls back to *icon*.
    """
    chapters = [_race_chapter(snapshot.race, icon, flag_icon)]
    if snapshot.sessions:
        chapters.append(_schedule_chapter(snapshot.sessions, icon))
    weather_text = _weather_text(snapshot.weather) if snapshot.weather else None
    if weather_text:
        chapters.append(
            ScriptChapter(
                title=WEATHER_CHAPTER_TITLE,
                icon=icon,
                tracks=(ScriptTrack(title="Weather Update", text=weather_text, icon=icon),),
            )
        )
    return NarrationScript(chapters=tuple(chapters))


# ------------------------------------------------------------------
# Chapters
# ------------------------------------------------------------------


def _race_chapter(race: Race, icon: str | None, flag_icon: str | None) -> ScriptChapter:
    season = f"the {race.year} season" if race.year else "this season"
    if race.dateStart:
        when = f"The race will be held on {format_date(race.dateStart)}, at {format_time(race.dateStart)}."
    else:
        when = "The race date has not been confirmed yet."
    intro = (
        f"Hello Formula 1 fans! Let me tell you about the next race in {season}.\n\n"
        f"The next race is the {race.name}, taking place in {race.location}.\n\n"
        f"{when}\n\n"
        f"Get ready for an exciting race at {race.circuit}!"
    )

    circuit = [f"The {race.name} is held at {race.circuit}, in {race.location}, {race.country}."]
    if race.circuitType and race.circuitType.lower() != "unknown":
        circuit.append(f"It is a {race.circuitType.lower()} circuit.")
    if race.officialName and race.officialName != race.name:
        circuit.append(f"The official name of the event is the {race.officialName}.")

    return ScriptChapter(
        title=RACE_CHAPTER_TITLE,
        icon=icon,
        tracks=(
            ScriptTrack(title=race.name, text=intro, icon=icon),
            ScriptTrack(title=race.circuit, text=" ".join(circuit), icon=flag_icon or icon),
        ),
    )


def _schedule_chapter(sessions: tuple[Session, ...], icon: str | None) -> ScriptChapter:
    tracks = []
    for session in sessions:
        if session.dateStart:
            text = (
                f"{session.sessionName} is on {format_date(session.dateStart)}, "
                f"at {format_time(session.dateStart)}."
            )
        else:
            text = f"The time for {session.sessionName} has not been confirmed yet."
        tracks.append(ScriptTrack(title=session.sessionName, text=text, icon=icon))
    return ScriptChapter(title=SCHEDULE_CHAPTER_TITLE, icon=icon, tracks=tuple(tracks))


def _weather_text(weather: Weather) -> str | None:
    parts = []
    if weather.airTemperature is not None:
        parts.append(f"The air temperature is {_number(weather.airTemperature)} degrees Celsius.")
    if weather.trackTemperature is not None:
        parts.append(f"The track temperature is {_number(weather.trackTemperature)} degrees Celsius.")
    if weather.humidity is not None:
        parts.append(f"Humidity is at {_number(weather.humidity)} percent.")
    if weather.rainfall is not None:
        parts.append("Rain is falling at the track." if weather.rainfall else "It is dry at the track.")
    if weather.windSpeed is not None:
        parts.append(f"The wind speed is {_number(weather.windSpeed)} metres per second.")
    if not parts:
        return None
    return "Here is the latest weather at the circuit. " + " ".join(parts)


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps from the data provider are already UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.1f}"
