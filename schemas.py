"""
Database Schemas for the Pill Tracker

Each Pydantic model represents a MongoDB collection. The collection name is the
lowercase class name (e.g., Medication -> "medication").

These models validate what gets written. Stored rows are read back through the
lenient models in main.py so that legacy data never breaks a listing.
"""
from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional

from dosage import normalize_dosage_unit
from medication_due import parse_timestamp, utc_iso

ALL_DAYS = [1, 2, 3, 4, 5, 6, 0]


def _normalize_timestamp(value: Optional[str]) -> Optional[str]:
    # Stored as UTC "...Z" so that string order is time order.
    if value is None:
        return value
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ValueError("taken_at must be an ISO-8601 timestamp")
    return utc_iso(parsed)


class Group(BaseModel):
    """Named collection of medications, e.g. "Morning".
    Collection: group
    """
    name: str = Field(..., min_length=1, description="Group name")
    description: Optional[str] = Field(None, description="Optional description")


class GroupUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


class Medication(BaseModel):
    """Medications tracked by a person.
    Collection: medication
    """
    name: str = Field(..., min_length=1, description="Medication name")
    dosage_amount: float = Field(..., gt=0, description="Amount per dose, e.g. 1 or 2.5")
    dosage_unit: str = Field(..., description="Unit per dose, e.g. 'mg', 'ml' or 'tablets'")
    notes: Optional[str] = Field(None, description="Additional notes")
    enable_notifications: bool = Field(True, description="Whether reminders are generated")
    interval_type: Literal["DAILY", "WEEKLY"] = Field("DAILY", description="Legacy interval, informational only")
    schedule_days: List[int] = Field(default_factory=lambda: list(ALL_DAYS), description="Days of week (0=Sun..6=Sat)")
    schedule_times: List[str] = Field(..., description="Times of day, 'HH:MM', 'h:MM AM/PM' or legacy '24:00'")
    group_id: Optional[str] = Field(None, description="ID of the group document, if any")
    active: bool = Field(True, description="Whether this medication is active")

    @field_validator("dosage_unit")
    @classmethod
    def normalize_unit(cls, value: str) -> str:
        return normalize_dosage_unit(value)


class MedicationUpdate(BaseModel):
    """Partial update; only fields sent by the client are written."""
    name: Optional[str] = Field(None, min_length=1)
    dosage_amount: Optional[float] = Field(None, gt=0)
    dosage_unit: Optional[str] = None
    notes: Optional[str] = None
    enable_notifications: Optional[bool] = None
    interval_type: Optional[Literal["DAILY", "WEEKLY"]] = None
    schedule_days: Optional[List[int]] = None
    schedule_times: Optional[List[str]] = None
    group_id: Optional[str] = None
    active: Optional[bool] = None

    @field_validator("dosage_unit")
    @classmethod
    def normalize_unit(cls, value: Optional[str]) -> Optional[str]:
        return normalize_dosage_unit(value) if value is not None else value


class Intake(BaseModel):
    """Log of a taken dose.
    Collection: intake
    """
    medication_id: str = Field(..., description="ID of the medication document")
    taken_at: str = Field(..., description="ISO timestamp when the dose was taken, stored as UTC")

    @field_validator("taken_at")
    @classmethod
    def normalize_taken_at(cls, value):
        return _normalize_timestamp(value)


class TrackIntake(BaseModel):
    """Body for tracking a dose of a known medication; taken_at defaults to now."""
    taken_at: Optional[str] = Field(None, description="ISO timestamp, defaults to the current time")

    @field_validator("taken_at")
    @classmethod
    def normalize_taken_at(cls, value):
        return _normalize_timestamp(value)
