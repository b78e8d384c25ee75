from datetime import date, datetime, time

from pydantic import BaseModel, Field, model_validator


class SlotQuery(BaseModel):
    date: date
    duration_minutes: int = Field(60, gt=0)


class SlotRangeQuery(BaseModel):
    start_date: date
    end_date: date
    duration_minutes: int = Field(60, gt=0)


class SlotResponse(BaseModel):
    start: datetime
    end: datetime


class SlotAvailabilityResponse(BaseModel):
    provider_id: str
    date: date
    duration_minutes: int
    slots: list[SlotResponse]


class SlotRangeResponse(BaseModel):
    provider_id: str
    duration_minutes: int
    days: list[SlotAvailabilityResponse]


class BlockedSlotRequest(BaseModel):
    starts_at: datetime
    ends_at: datetime
    reason: str | None = Field(None, max_length=255)


class BlockedSlotResponse(BaseModel):
    blocked_slot_id: str
    provider_id: str
    starts_at: datetime
    ends_at: datetime
    reason: str


class WorkingHoursEntry(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time | None = None
    end_time: time | None = None
    is_available: bool = True

    @model_validator(mode="after")
    def validate_times(self) -> "WorkingHoursEntry":
        if self.is_available and (self.start_time is None or self.end_time is None):
            raise ValueError("start_time and end_time are required for an available day")
        return self


class WorkingHoursUpdateRequest(BaseModel):
    days: list[WorkingHoursEntry]


class WorkingHoursResponse(BaseModel):
    provider_id: str
    available_24_7: bool
    days: list[WorkingHoursEntry]
