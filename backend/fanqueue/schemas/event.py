from datetime import datetime
from typing import ClassVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from fanqueue.core.clock import to_naive_utc


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=256)
    description: str | None = None
    location: str = Field(min_length=1)
    start_time: datetime
    end_time: datetime
    max_duration: int | None = Field(default=None, gt=0)  # minutes
    slot_duration: int = Field(gt=0)  # minutes
    max_capacity: int | None = Field(default=None, ge=0)
    physical_line_threshold: int = Field(default=0, ge=0)
    price: int | None = Field(default=None, ge=0)  # minor units
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    payment_account_id: str | None = None

    @field_validator("start_time", "end_time")
    @classmethod
    def normalise_times(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_window(self):
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    def resolved_max_duration(self) -> int:
        if self.max_duration is not None:
            return self.max_duration
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def resolved_max_capacity(self) -> int:
        if self.max_capacity is not None:
            return self.max_capacity
        return self.resolved_max_duration() // self.slot_duration


class EventUpdate(BaseModel):
    """
    Organizer-editable fields. Anything not listed here is immutable through the API.
    """
    title: str | None = Field(default=None, min_length=1, max_length=256)
    description: str | None = None
    location: str | None = Field(default=None, min_length=1)
    start_time: datetime | None = None
    end_time: datetime | None = None
    max_duration: int | None = Field(default=None, gt=0)
    slot_duration: int | None = Field(default=None, gt=0)
    max_capacity: int | None = Field(default=None, ge=0)
    physical_line_threshold: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    price: int | None = Field(default=None, ge=0)
    payment_account_id: str | None = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("start_time", "end_time")
    @classmethod
    def normalise_times(cls, v: datetime | None) -> datetime | None:
        return to_naive_utc(v) if v is not None else v

    # Fields whose change moves every waiting fan's estimated call time
    SCHEDULE_FIELDS: ClassVar[tuple[str, ...]] = ("start_time", "slot_duration", "physical_line_threshold")

    # May be omitted but never cleared
    REQUIRED_FIELDS: ClassVar[tuple[str, ...]] = (
        "title",
        "location",
        "start_time",
        "end_time",
        "max_duration",
        "slot_duration",
        "max_capacity",
        "physical_line_threshold",
        "is_active",
    )

    @model_validator(mode="after")
    def reject_cleared_required_fields(self):
        cleared = [name for name in self.REQUIRED_FIELDS if name in self.model_fields_set and getattr(self, name) is None]
        if cleared:
            raise ValueError(f"{', '.join(cleared)} cannot be null")
        return self

    def changes(self) -> dict:
        return self.model_dump(exclude_unset=True)


class EventSchema(BaseModel):
    id: UUID
    organizer_id: UUID
    title: str
    description: str | None = None
    location: str
    event_code: str
    start_time: datetime
    end_time: datetime
    max_duration: int
    slot_duration: int
    max_capacity: int
    physical_line_threshold: int
    is_active: bool
    price: int | None = None
    currency: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class EventWithStatsSchema(EventSchema):
    current_queue_count: int
    available_slots: int
