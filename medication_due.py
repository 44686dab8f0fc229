"""
Medication due-time engine

Pure functions that turn a medication's weekly schedule (selected weekdays +
times of day) and its newest intake into due status and next-dose progress.
Nothing in here reads the clock: every function takes `now` explicitly.

Weekdays use 0=Sunday..6=Saturday. Times are "HH:MM" (24h), "h:MM AM/PM", or
the legacy "24:00" meaning midnight at the end of the scheduled day.
"""
import logging
import re
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Iterator, List, NamedTuple, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

PROGRESS_WINDOW_DAYS = 8

_TIME_TOKEN = re.compile(r"(\d{1,2}):([0-5]\d)(?:\s*([AaPp][Mm]))?", re.ASCII)


class ParsedTimeSlot(NamedTuple):
    hour: int
    minute: int
    day_offset: int = 0


class DueInfo(BaseModel):
    """Whether a medication is due right now and for how long it has been."""
    model_config = ConfigDict(frozen=True)

    is_due: bool = Field(False, description="True when today's latest slot is not yet acknowledged")
    due_at: Optional[datetime] = Field(None, description="Latest slot of today at or before now")
    overdue_ms: int = Field(0, ge=0, description="Milliseconds since due_at while unacknowledged")


class NextDoseProgress(BaseModel):
    """Countdown between the previous and the next scheduled slot."""
    model_config = ConfigDict(frozen=True)

    visible: bool = Field(False, description="False when there is no upcoming slot to count down to")
    progress_remaining: float = Field(0.0, ge=0.0, le=1.0, description="1 = full cycle left, 0 = due now")
    previous_slot_at: Optional[datetime] = None
    next_due_at: Optional[datetime] = None
    ms_until_next_due: int = Field(0, ge=0)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def parse_time_token(token: str) -> Optional[ParsedTimeSlot]:
    """Parse one time-of-day token, returning None for anything invalid."""
    text = token.strip()
    if not text:
        return None

    match = _TIME_TOKEN.fullmatch(text)
    if not match:
        return None

    hour = int(match.group(1))
    minute = int(match.group(2))
    meridiem = (match.group(3) or "").lower()

    if meridiem:
        if hour < 1 or hour > 12:
            return None
        if meridiem == "pm" and hour != 12:
            hour += 12
        if meridiem == "am" and hour == 12:
            hour = 0
        return ParsedTimeSlot(hour, minute)

    if hour > 24:
        return None
    if hour == 24:
        if minute != 0:
            return None
        return ParsedTimeSlot(0, 0, day_offset=1)

    return ParsedTimeSlot(hour, minute)


def _coerce_weekday(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        day = value
    elif isinstance(value, float) and value.is_integer():
        day = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        day = int(value.strip())
    else:
        return None
    return day if 0 <= day <= 6 else None


def _as_list(values: Any) -> List[Any]:
    if values is None:
        return []
    if isinstance(values, str):
        return [values]
    if isinstance(values, (list, tuple, set, frozenset)):
        return list(values)
    return []


def parse_schedule_days(schedule_days: Optional[Iterable[Any]]) -> Set[int]:
    days = set()
    for value in _as_list(schedule_days):
        day = _coerce_weekday(value)
        if day is None:
            logger.debug("dropping schedule day %r", value)
            continue
        days.add(day)
    return days


def iter_time_tokens(schedule_times: Optional[Iterable[Any]]) -> Iterator[Tuple[str, ParsedTimeSlot]]:
    """Yield (token, slot) for every parseable token; comma-joined entries are
    split and a bare string is treated as a one-entry list."""
    for entry in _as_list(schedule_times):
        for fragment in str(entry).split(","):
            slot = parse_time_token(fragment)
            if slot is None:
                if fragment.strip():
                    logger.debug("dropping schedule time %r", fragment)
                continue
            yield fragment.strip(), slot


def parse_schedule_times(schedule_times: Optional[Iterable[Any]]) -> List[ParsedTimeSlot]:
    return [slot for _, slot in iter_time_tokens(schedule_times)]


def parse_schedule(
    schedule_days: Optional[Iterable[Any]], schedule_times: Optional[Iterable[Any]]
) -> Tuple[Set[int], List[ParsedTimeSlot]]:
    return parse_schedule_days(schedule_days), parse_schedule_times(schedule_times)


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------

def weekday_of(moment: datetime) -> int:
    """Weekday number with 0=Sunday."""
    return moment.isoweekday() % 7


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def _slot_on(day_start: datetime, slot: ParsedTimeSlot) -> datetime:
    candidate = day_start.replace(hour=slot.hour, minute=slot.minute)
    if slot.day_offset:
        candidate += timedelta(days=slot.day_offset)
    return candidate


def _elapsed_ms(earlier: datetime, later: datetime) -> int:
    # Real elapsed time, DST shifts included.
    delta = later.astimezone(timezone.utc) - earlier.astimezone(timezone.utc)
    return delta // timedelta(milliseconds=1)


def schedule_slots_around(
    selected_days: Set[int],
    parsed_times: Sequence[ParsedTimeSlot],
    now: datetime,
    days_before: int,
    days_after: int,
) -> List[datetime]:
    """All slots on selected weekdays from `days_before` days before now's
    calendar day to `days_after` days after it, in ascending order."""
    if not selected_days or not parsed_times:
        return []

    anchor = start_of_day(now)
    slots = []
    for offset in range(-days_before, days_after + 1):
        day_start = anchor + timedelta(days=offset)
        if weekday_of(day_start) not in selected_days:
            continue
        for slot in parsed_times:
            slots.append(_slot_on(day_start, slot))

    slots.sort()
    return slots


# ---------------------------------------------------------------------------
# Due slot resolution
# ---------------------------------------------------------------------------

def latest_due_slot_as_of(
    schedule_days: Optional[Iterable[Any]],
    schedule_times: Optional[Iterable[Any]],
    now: datetime,
) -> Optional[datetime]:
    """
    Latest slot that falls on now's calendar day and is not after now.

    Yesterday is scanned too so that a legacy "24:00" entry on the previous
    weekday lands on today's midnight. Slots from earlier days never count.
    """
    selected_days, parsed_times = parse_schedule(schedule_days, schedule_times)
    if not selected_days or not parsed_times:
        return None

    today_start = start_of_day(now)
    tomorrow_start = today_start + timedelta(days=1)
    yesterday_start = today_start - timedelta(days=1)

    latest = None
    for day_start in (today_start, yesterday_start):
        if weekday_of(day_start) not in selected_days:
            continue
        for slot in parsed_times:
            candidate = _slot_on(day_start, slot)
            if candidate < today_start or candidate >= tomorrow_start:
                continue
            if candidate > now:
                continue
            if latest is None or candidate > latest:
                latest = candidate

    return latest


# ---------------------------------------------------------------------------
# Medication views
# ---------------------------------------------------------------------------

def field_of(record: Any, name: str, default: Any = None) -> Any:
    if record is None:
        return default
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string (trailing "Z" allowed) or datetime; None if unusable."""
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def utc_iso(moment: datetime) -> str:
    """Millisecond UTC timestamp ending in "Z"; naive input is read as local time."""
    stamp = moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")
    return stamp[:-3] + "Z"


def _in_frame_of(moment: datetime, reference: datetime) -> datetime:
    """Express `moment` the way `reference` is expressed (naive local or aware)."""
    if reference.tzinfo is None:
        if moment.tzinfo is None:
            return moment
        return moment.astimezone().replace(tzinfo=None)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=reference.tzinfo)
    return moment.astimezone(reference.tzinfo)


def last_intake_at(medication: Any) -> Optional[datetime]:
    """Newest intake time: intakes[0] (newest first), else last_intake."""
    intakes = _as_list(field_of(medication, "intakes"))
    latest = (intakes[0] if len(intakes) > 0 else None) or field_of(medication, "last_intake")
    return parse_timestamp(field_of(latest, "taken_at"))


def get_due_info(medication: Any, now: datetime) -> DueInfo:
    latest_slot = latest_due_slot_as_of(
        field_of(medication, "schedule_days") or [],
        field_of(medication, "schedule_times") or [],
        now,
    )
    if latest_slot is None:
        return DueInfo()

    taken_at = last_intake_at(medication)
    if taken_at is not None and _in_frame_of(taken_at, now) >= latest_slot:
        return DueInfo(is_due=False, due_at=latest_slot, overdue_ms=0)

    return DueInfo(
        is_due=True,
        due_at=latest_slot,
        overdue_ms=max(0, _elapsed_ms(latest_slot, now)),
    )


def is_medication_due(medication: Any, now: datetime) -> bool:
    """True when today has a slot at or before now that no intake has covered."""
    return get_due_info(medication, now).is_due


def get_next_dose_progress(medication: Any, now: datetime) -> NextDoseProgress:
    due_info = get_due_info(medication, now)
    if due_info.is_due:
        return NextDoseProgress(
            visible=True,
            progress_remaining=0.0,
            previous_slot_at=due_info.due_at,
            next_due_at=due_info.due_at,
            ms_until_next_due=0,
        )

    selected_days, parsed_times = parse_schedule(
        field_of(medication, "schedule_days") or [],
        field_of(medication, "schedule_times") or [],
    )
    if not selected_days or not parsed_times:
        return NextDoseProgress()

    slots = schedule_slots_around(
        selected_days, parsed_times, now, PROGRESS_WINDOW_DAYS, PROGRESS_WINDOW_DAYS
    )
    previous_slot = None
    next_slot = None
    for slot in slots:
        if slot <= now:
            previous_slot = slot
            continue
        next_slot = slot
        break

    if next_slot is None:
        return NextDoseProgress(previous_slot_at=previous_slot)

    ms_until_next = max(0, _elapsed_ms(now, next_slot))
    if previous_slot is None:
        return NextDoseProgress(
            visible=True,
            progress_remaining=1.0,
            next_due_at=next_slot,
            ms_until_next_due=ms_until_next,
        )

    cycle_ms = _elapsed_ms(previous_slot, next_slot)
    if cycle_ms <= 0:
        remaining = 1.0 if ms_until_next > 0 else 0.0
    else:
        remaining = max(0.0, min(1.0, ms_until_next / cycle_ms))

    return NextDoseProgress(
        visible=True,
        progress_remaining=remaining,
        previous_slot_at=previous_slot,
        next_due_at=next_slot,
        ms_until_next_due=ms_until_next,
    )
