from datetime import datetime, timezone

from dateutil.parser import isoparse
from pydantic import BaseModel, Field


class RecurrencePattern(BaseModel):
    """How a recurring series repeats.

    Constraints are checked by ``validate_pattern`` rather than on
    construction, so an invalid pattern can still be described and reported.
    """
    frequency: str = Field(..., description="daily, weekly, biweekly, monthly, quarterly or yearly")
    interval: int | None = Field(default=None, description="Every N frequency units, defaults to 1")
    days_of_week: list[int] | None = Field(default=None, description="0=Sunday, 6=Saturday (weekly only)")
    day_of_month: int | None = Field(default=None, description="Day of month for monthly")
    end_date: str | None = Field(default=None, description="ISO timestamp after which the series stops")
    max_occurrences: int | None = Field(default=None, description="Maximum number of generated occurrences")

    @property
    def step(self) -> int:
        return self.interval or 1

    def end_datetime(self) -> datetime | None:
        """Parsed ``end_date`` as an aware UTC datetime."""
        if not self.end_date:
            return None
        parsed = isoparse(self.end_date)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)


class PatternValidation(BaseModel):
    valid: bool
    error: str | None = None


class OccurrencePreview(BaseModel):
    date: datetime
    occurrence_number: int


class PatternDescription(BaseModel):
    description: str


class NextDateRequest(BaseModel):
    pattern: RecurrencePattern
    from_date: datetime | None = None
    occurrence_number: int = Field(default=1, ge=1)
    base_occurrence_number: int = Field(
        default=1, ge=1, description="Occurrence number of the template the series starts from"
    )


class NextDateResponse(BaseModel):
    date: datetime
    series_ended: bool


class UpcomingRequest(BaseModel):
    pattern: RecurrencePattern
    from_date: datetime | None = None
    look_ahead_days: int = Field(default=30, ge=0)


class UpcomingResponse(BaseModel):
    upcoming: list[datetime]


class ShouldGenerateRequest(BaseModel):
    pattern: RecurrencePattern
    last_generated: datetime | None = None


class ShouldGenerateResponse(BaseModel):
    should_generate: bool


class SeriesInstancePublic(BaseModel):
    id: str
    original_task_id: str
    generated_task_id: str | None = None
    occurrence_number: int
    scheduled_date: datetime | None = None
    created_at: datetime

    class Config:
        from_attributes = True
