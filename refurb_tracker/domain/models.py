"""
Domain models for the refurb tracker.

Defines the record schemas aligned with `db/init.sql`. These models are used
for validation, serialization, and type hints across the lifecycle engine, the
request store, and the metrics aggregator. Stored rows are flat; the request
model lifts the instrument columns into an `InstrumentDescriptor` and carries
joined location/technician data when the query asked for it.
"""
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from refurb_tracker.domain.catalog import category_for

_FROZEN = {
    "frozen": True,
    "populate_by_name": True,
    "arbitrary_types_allowed": False,
}

INSTRUMENT_COLUMNS = ("category", "instrument_type", "brand")


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    URGENT = "Urgent"


class Location(BaseModel):
    """
    Representation of a row in the `locations` table.
    """

    id: str = Field(..., description="Primary key.")
    store_number: str = Field(..., description="Store number used in request codes.")
    city: str
    state: str
    created_at: Optional[datetime] = None

    model_config = _FROZEN


class Technician(BaseModel):
    """
    Representation of a row in the `technicians` table.

    The PIN is a lightweight identity check, compared for equality only.
    """

    id: str
    name: str
    email: Optional[str] = None
    location_id: str
    pin: str = Field(..., pattern=r"^\d{4}$")
    is_active: bool = True
    created_at: Optional[datetime] = None
    location: Optional[Location] = None

    model_config = _FROZEN


class InstrumentDescriptor(BaseModel):
    category: Optional[str] = None
    instrument_type: str
    brand: Optional[str] = None

    model_config = _FROZEN


class RefurbRequest(BaseModel):
    """
    Representation of a row in the `refurb_requests` table.

    This is the superset of both lifecycle variants; fields a variant does not
    use stay None. `status` is validated against the active lifecycle
    definition by the engine, not here.
    """

    id: str
    human_request_code: str
    location_id: str
    tech_id: str
    instrument: InstrumentDescriptor
    quantity_requested: int = Field(..., ge=1)
    quantity_fulfilled: Optional[int] = Field(None, ge=0)
    fulfilled_by: Optional[str] = None
    priority: Optional[Priority] = None
    status: str
    notes: Optional[str] = None
    fulfillment_notes: Optional[str] = None

    created_at: datetime
    updated_at: datetime
    shipped_at: Optional[datetime] = None
    expected_delivery: Optional[date] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    fulfilled_at: Optional[datetime] = None

    # Joined data
    location: Optional[Location] = None
    technician: Optional[Technician] = None

    model_config = _FROZEN

    @model_validator(mode="before")
    @classmethod
    def _lift_instrument_columns(cls, data: Any) -> Any:
        if isinstance(data, dict) and "instrument" not in data:
            data = dict(data)
            data["instrument"] = {col: data.pop(col, None) for col in INSTRUMENT_COLUMNS}
        return data

    @property
    def instrument_type(self) -> str:
        return self.instrument.instrument_type


class DailyCompletion(BaseModel):
    """
    Representation of a row in the `daily_completions` table.
    """

    id: str
    location_id: str
    tech_id: str
    category: str
    instrument_type: str
    brand: Optional[str] = None
    quantity_completed: int = Field(..., ge=0)
    yellow_armband_applied: bool = False
    qc_card_signed: bool = False
    notes: Optional[str] = None
    completion_date: date
    created_at: Optional[datetime] = None

    location: Optional[Location] = None
    technician: Optional[Technician] = None

    model_config = _FROZEN


class ActivityLogEntry(BaseModel):
    """
    Representation of a row in the append-only `activity_log` table.
    """

    id: str
    request_id: str
    action: str
    details: Dict[str, Any] = Field(default_factory=dict)
    performed_by: str
    created_at: datetime

    model_config = _FROZEN


class SessionContext(BaseModel):
    """
    Technician session descriptor supplied by the caller's auth layer.

    Threaded explicitly into every technician-scoped operation.
    """

    location_id: str
    tech_id: str
    tech_name: str
    location_city: str
    store_number: str

    model_config = _FROZEN


class RequestDraft(BaseModel):
    """Input for submitting a new refurbishment request."""

    instrument_type: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1, le=999)
    category: Optional[str] = None
    brand: Optional[str] = None
    priority: Optional[Priority] = None
    notes: Optional[str] = None

    model_config = _FROZEN

    @model_validator(mode="after")
    def _check_category(self) -> "RequestDraft":
        known = category_for(self.instrument_type)
        if known is None:
            raise ValueError(f"Unknown instrument type '{self.instrument_type}'")
        if self.category is not None and self.category != known:
            raise ValueError(f"{self.instrument_type} belongs to {known}, not {self.category}")
        return self

    @field_validator("notes")
    @classmethod
    def _blank_notes_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            return None
        return value

    @property
    def resolved_category(self) -> str:
        return self.category or category_for(self.instrument_type)  # type: ignore[return-value]


class CompletionDraft(BaseModel):
    """Input for logging a day's completed refurbishments."""

    instrument_type: str = Field(..., min_length=1)
    brand: str = Field(..., min_length=1)
    quantity_completed: int = Field(..., ge=1, le=999)
    yellow_armband_applied: bool
    qc_card_signed: bool
    completion_date: Optional[date] = None
    notes: Optional[str] = None

    model_config = _FROZEN

    @model_validator(mode="after")
    def _check_quality_control(self) -> "CompletionDraft":
        if category_for(self.instrument_type) is None:
            raise ValueError(f"Unknown instrument type '{self.instrument_type}'")
        if not (self.yellow_armband_applied and self.qc_card_signed):
            raise ValueError("Both the yellow armband and the signed QC card are required")
        return self

    @property
    def category(self) -> str:
        return category_for(self.instrument_type)  # type: ignore[return-value]


__all__ = [
    "ActivityLogEntry",
    "CompletionDraft",
    "DailyCompletion",
    "INSTRUMENT_COLUMNS",
    "InstrumentDescriptor",
    "Location",
    "Priority",
    "RefurbRequest",
    "RequestDraft",
    "SessionContext",
    "Technician",
]
