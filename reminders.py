"""
Upcoming reminder expansion

Turns medication schedules into concrete firing instants for whatever
delivers notifications. Slots come from the same window generator the due
engine uses, so reminders and due badges always agree.
"""
import math
from datetime import datetime, timedelta
from typing import Any, Iterable, List

from pydantic import BaseModel, Field

from dosage import format_dosage
from medication_due import field_of, parse_schedule, schedule_slots_around, weekday_of

MAX_LOOKAHEAD_HOURS = 24 * 7
NOTIFICATION_ID_BUCKETS = 2_000_000


class Reminder(BaseModel):
    medication_id: str
    medication_name: str
    fire_at: datetime
    weekday: int = Field(..., description="Weekday of fire_at (0=Sun..6=Sat)")
    notification_id: int
    title: str
    body: str


def _djb2_u32(text: str) -> int:
    h = 5381
    for ch in text:
        h = ((h << 5) + h + ord(ch)) & 0xFFFFFFFF
    return h


def notification_id_for(medication_id: str, index: int) -> int:
    """Stable id per medication and reminder index; stays below 2**31 - 1."""
    base = (_djb2_u32(medication_id) % NOTIFICATION_ID_BUCKETS) + 1
    return base * 1000 + index


def _medication_id(medication: Any) -> str:
    value = field_of(medication, "id") or field_of(medication, "_id") or ""
    return str(value)


def _reminder_body(medication: Any) -> str:
    amount = field_of(medication, "dosage_amount")
    unit = field_of(medication, "dosage_unit") or ""
    if amount is None:
        return "Time for your medication"
    return f"Time for your medication: {format_dosage(amount, unit)}"


def upcoming_reminders(medication: Any, now: datetime, hours: float = 24) -> List[Reminder]:
    """Reminders firing after `now` and no later than `now + hours`."""
    if not 0 < hours <= MAX_LOOKAHEAD_HOURS:
        raise ValueError(f"hours must be in (0, {MAX_LOOKAHEAD_HOURS}], got {hours}")

    if not field_of(medication, "enable_notifications", True):
        return []

    selected_days, parsed_times = parse_schedule(
        field_of(medication, "schedule_days") or [],
        field_of(medication, "schedule_times") or [],
    )
    # One day back catches "24:00" slots that land after midnight today.
    days_after = math.ceil(hours / 24) + 1
    slots = schedule_slots_around(selected_days, parsed_times, now, 1, days_after)

    horizon = now + timedelta(hours=hours)
    firing = sorted({slot for slot in slots if now < slot <= horizon})

    medication_id = _medication_id(medication)
    name = str(field_of(medication, "name") or "")
    body = _reminder_body(medication)
    return [
        Reminder(
            medication_id=medication_id,
            medication_name=name,
            fire_at=slot,
            weekday=weekday_of(slot),
            notification_id=notification_id_for(medication_id, index),
            title=name,
            body=body,
        )
        for index, slot in enumerate(firing)
    ]


def reminders_for(medications: Iterable[Any], now: datetime, hours: float = 24) -> List[Reminder]:
    reminders = []
    for medication in medications:
        reminders.extend(upcoming_reminders(medication, now, hours))
    reminders.sort(key=lambda r: (r.fire_at, r.medication_name))
    return reminders
