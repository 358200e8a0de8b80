from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from datetime import datetime, date
from uuid import UUID
from typing import Optional, List, Literal, Union, Annotated

# "HH:MM", 24h clock
TIME_OF_DAY_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

TimeOfDay = Annotated[str, Field(pattern=TIME_OF_DAY_PATTERN)]
Priority = Literal["low", "medium", "high"]


class DailySchedule(BaseModel):
    type: Literal["daily"] = "daily"


class DaysOfWeekSchedule(BaseModel):
    """Weekly / custom-days schedule. 0=Sunday, 1=Monday, ..., 6=Saturday."""
    type: Literal["weekly", "custom_days"]
    days_of_week: List[int] = Field(default_factory=list)  # empty matches no date

    @field_validator("days_of_week")
    @classmethod
    def _validate_days(cls, days: List[int]) -> List[int]:
        for day in days:
            if not 0 <= day <= 6:
                raise ValueError("days_of_week entries must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(days))


Schedule = Annotated[Union[DailySchedule, DaysOfWeekSchedule], Field(discriminator="type")]


class RoutineCreate(BaseModel):
    """Schema for creating a routine"""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    color: str = "#3B82F6"
    priority: Priority = "medium"
    times_per_day: int = Field(default=1, ge=1)
    specific_times: List[TimeOfDay] = Field(default_factory=list)
    schedule: Schedule = Field(default_factory=DailySchedule)
    active_from: Optional[date] = None  # defaults to today
    active_to: Optional[date] = None
    paused_until: Optional[date] = None

    @model_validator(mode="after")
    def _check_window(self):
        if self.active_from and self.active_to and self.active_to < self.active_from:
            raise ValueError("active_to must not be before active_from")
        return self


class RoutineUpdate(BaseModel):
    """
    Partial update. Only fields present in the request are applied;
    an explicit null clears a nullable field.
    """
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    color: Optional[str] = None
    priority: Optional[Priority] = None
    times_per_day: Optional[int] = Field(default=None, ge=1)
    specific_times: Optional[List[TimeOfDay]] = None
    schedule: Optional[Schedule] = None
    active_from: Optional[date] = None
    active_to: Optional[date] = None
    paused_until: Optional[date] = None


class RoutineResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    color: str
    priority: str
    times_per_day: int
    specific_times: List[str]
    schedule: Schedule
    active_from: date
    active_to: Optional[date] = None
    paused_until: Optional[date] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    status: Optional[str] = None  # 'active', 'paused', 'expired', 'scheduled', 'deleted'

    model_config = ConfigDict(from_attributes=True)


class ExceptionPatch(BaseModel):
    """
    Fields to merge into the date's exception. Omitted fields keep their
    stored value; explicit null clears an override.
    """
    skip: Optional[bool] = None
    override_times_per_day: Optional[int] = Field(default=None, ge=1)
    override_times: Optional[List[TimeOfDay]] = None


class ExceptionResponse(BaseModel):
    routine_id: UUID
    date: date
    skip: bool
    override_times_per_day: Optional[int] = None
    override_times: Optional[List[str]] = None

    model_config = ConfigDict(from_attributes=True)


class PauseRequest(BaseModel):
    paused_until: Optional[date] = None  # null un-pauses


class ActiveToRequest(BaseModel):
    active_to: Optional[date] = None  # null removes the upper bound


class CompletionRequest(BaseModel):
    date: date
    specific_time: Optional[TimeOfDay] = None


class CompletionResponse(BaseModel):
    id: UUID
    routine_id: UUID
    date: date
    count: int
    goal: int
    specific_time: Optional[str] = None
    completed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ProgressResponse(BaseModel):
    routine_id: UUID
    date: date
    count: int
    goal: int
    skipped: bool
    paused: bool


class OccurrenceResponse(BaseModel):
    routine_id: UUID
    date: date
    remaining: int
    goal: int


class AgendaItemResponse(BaseModel):
    """One routine scheduled on the agenda date, completed or not."""
    routine_id: UUID
    name: str
    color: str
    priority: str
    date: date
    count: int
    goal: int
    remaining: int
    completed: bool
    times: List[str]


class BulkDeleteRequest(BaseModel):
    dates: List[date]


class BulkSkipRequest(BaseModel):
    start_date: date
    end_date: date


class BulkDeleteResponse(BaseModel):
    operation_id: Optional[UUID] = None
    succeeded: List[date]
    failed: List[date]


class BulkOperationResponse(BaseModel):
    id: UUID
    routine_id: UUID
    operation_type: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    affected_dates: List[date]
    failed_dates: List[date] = Field(default_factory=list)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
