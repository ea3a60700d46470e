"""Service plan domain schemas - Pydantic models for validation"""

import datetime as dt
from typing import Optional

from pydantic import BaseModel, field_validator, model_validator

from ...shared.validators import validate_day_of_month, validate_day_of_week, validate_hhmm
from .planner import FREQUENCIES, PlanSchedule, TimeWindow, first_weekday_on_or_after, validate_plan

BILLING_TYPES = ("per_visit", "monthly", "quarterly", "annually")


class WindowSchema(BaseModel):
    """Time-of-day window, both ends HH:MM"""

    start: str
    end: str

    class Config:
        extra = "forbid"

    @field_validator("start", "end")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return validate_hhmm(v)

    @model_validator(mode="after")
    def validate_order(self):
        if self.start >= self.end:
            raise ValueError("window start must be before window end")
        return self


def _validate_percentage(v: Optional[float]) -> Optional[float]:
    if v is not None and not 0 <= v <= 100:
        raise ValueError("percentage must be between 0 and 100")
    return v


def _validate_duration(v: Optional[int]) -> Optional[int]:
    if v is not None and v <= 0:
        raise ValueError("serviceDurationMin must be positive")
    return v


class PlanCreate(BaseModel):
    """Schema for creating a service plan"""

    poolId: str
    frequency: str
    dow: Optional[str] = None  # mon, tue, etc.
    dom: Optional[int] = None  # 1-28 or -1
    secondDow: Optional[str] = None  # twice_week only
    secondDom: Optional[int] = None  # twice_month only
    window: Optional[WindowSchema] = None
    priceCents: int
    currency: Optional[str] = None
    taxPct: Optional[float] = None
    discountPct: Optional[float] = None
    billingType: str = "per_visit"
    visitTemplateId: Optional[str] = None
    visitTemplateVersion: Optional[int] = None
    serviceDurationMin: Optional[int] = None
    startsOn: Optional[dt.date] = None
    endsOn: Optional[dt.date] = None
    notes: Optional[str] = None

    class Config:
        extra = "forbid"

    @field_validator("frequency")
    @classmethod
    def validate_frequency(cls, v: str) -> str:
        if v not in FREQUENCIES:
            raise ValueError(f"frequency must be one of {', '.join(FREQUENCIES)}")
        return v

    @field_validator("dow", "secondDow")
    @classmethod
    def validate_dow(cls, v: Optional[str]) -> Optional[str]:
        return validate_day_of_week(v)

    @field_validator("dom", "secondDom")
    @classmethod
    def validate_dom(cls, v: Optional[int]) -> Optional[int]:
        return validate_day_of_month(v)

    @field_validator("priceCents")
    @classmethod
    def validate_price(cls, v: int) -> int:
        if v < 0:
            raise ValueError("priceCents cannot be negative")
        return v

    @field_validator("taxPct", "discountPct")
    @classmethod
    def validate_pct(cls, v: Optional[float]) -> Optional[float]:
        return _validate_percentage(v)

    @field_validator("billingType")
    @classmethod
    def validate_billing_type(cls, v: str) -> str:
        if v not in BILLING_TYPES:
            raise ValueError(f"billingType must be one of {', '.join(BILLING_TYPES)}")
        return v

    @field_validator("serviceDurationMin")
    @classmethod
    def validate_duration(cls, v: Optional[int]) -> Optional[int]:
        return _validate_duration(v)

    @model_validator(mode="after")
    def validate_schedule(self):
        if self.startsOn and self.endsOn and self.endsOn < self.startsOn:
            raise ValueError("endsOn cannot be before startsOn")
        # Same checks the planner runs at expansion time
        validate_plan(self.to_schedule())
        return self

    def to_schedule(self, today: Optional[dt.date] = None) -> PlanSchedule:
        """
        Planner view of the new plan.

        A biweekly plan gets its parity anchor here: the first `dow` on or
        after startsOn, or after `today` when the plan has no start date.
        """
        anchor_date = None
        if self.frequency == "biweekly" and self.dow:
            base = self.startsOn or today or dt.date.today()
            anchor_date = first_weekday_on_or_after(base, self.dow)

        return PlanSchedule(
            frequency=self.frequency,
            dow=self.dow,
            dom=self.dom,
            second_dow=self.secondDow,
            second_dom=self.secondDom,
            window=TimeWindow(start=self.window.start, end=self.window.end) if self.window else None,
            starts_on=self.startsOn,
            ends_on=self.endsOn,
            anchor_date=anchor_date,
        )


class PlanUpdate(BaseModel):
    """Schema for updating a service plan; the merged plan is re-validated by the service"""

    frequency: Optional[str] = None
    dow: Optional[str] = None
    dom: Optional[int] = None
    secondDow: Optional[str] = None
    secondDom: Optional[int] = None
    window: Optional[WindowSchema] = None
    priceCents: Optional[int] = None
    taxPct: Optional[float] = None
    discountPct: Optional[float] = None
    billingType: Optional[str] = None
    visitTemplateId: Optional[str] = None
    visitTemplateVersion: Optional[int] = None
    serviceDurationMin: Optional[int] = None
    endsOn: Optional[dt.date] = None
    notes: Optional[str] = None

    class Config:
        extra = "forbid"

    @field_validator("frequency")
    @classmethod
    def validate_frequency(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in FREQUENCIES:
            raise ValueError(f"frequency must be one of {', '.join(FREQUENCIES)}")
        return v

    @field_validator("dow", "secondDow")
    @classmethod
    def validate_dow(cls, v: Optional[str]) -> Optional[str]:
        return validate_day_of_week(v)

    @field_validator("dom", "secondDom")
    @classmethod
    def validate_dom(cls, v: Optional[int]) -> Optional[int]:
        return validate_day_of_month(v)

    @field_validator("priceCents")
    @classmethod
    def validate_price(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("priceCents cannot be negative")
        return v

    @field_validator("taxPct", "discountPct")
    @classmethod
    def validate_pct(cls, v: Optional[float]) -> Optional[float]:
        return _validate_percentage(v)

    @field_validator("billingType")
    @classmethod
    def validate_billing_type(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in BILLING_TYPES:
            raise ValueError(f"billingType must be one of {', '.join(BILLING_TYPES)}")
        return v

    @field_validator("serviceDurationMin")
    @classmethod
    def validate_duration(cls, v: Optional[int]) -> Optional[int]:
        return _validate_duration(v)


class PausePlanRequest(BaseModel):
    """Schema for pausing a plan; no `until` means paused until resumed"""

    pausedFrom: Optional[dt.date] = None
    until: Optional[dt.date] = None

    class Config:
        extra = "forbid"

    @model_validator(mode="after")
    def validate_interval(self):
        if self.pausedFrom and self.until and self.until < self.pausedFrom:
            raise ValueError("until cannot be before pausedFrom")
        return self


class OverrideWindowRequest(BaseModel):
    """Schema for overriding the window of a single date"""

    date: dt.date
    window: WindowSchema
    reason: Optional[str] = None

    class Config:
        extra = "forbid"


class CancelPlanRequest(BaseModel):
    reason: Optional[str] = None

    class Config:
        extra = "forbid"


class GenerateJobsRequest(BaseModel):
    horizonDays: Optional[int] = None

    class Config:
        extra = "forbid"

    @field_validator("horizonDays")
    @classmethod
    def validate_horizon(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and not 1 <= v <= 366:
            raise ValueError("horizonDays must be between 1 and 366")
        return v


class PlanResponse(BaseModel):
    """Schema for service plan response"""

    id: int
    publicId: str
    poolId: str
    frequency: str
    dow: Optional[str] = None
    dom: Optional[int] = None
    secondDow: Optional[str] = None
    secondDom: Optional[int] = None
    anchorDate: Optional[dt.date] = None
    window: Optional[WindowSchema] = None
    serviceDurationMin: int
    priceCents: int
    currency: str
    taxPct: float
    discountPct: float
    billingType: str
    visitTemplateId: Optional[str] = None
    visitTemplateVersion: Optional[int] = None
    startsOn: Optional[dt.date] = None
    endsOn: Optional[dt.date] = None
    status: str
    pausedOn: Optional[dt.date] = None
    pausedUntil: Optional[dt.date] = None
    nextVisitAt: Optional[dt.date] = None
    cancelReason: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[dt.datetime] = None


class PlanListResponse(BaseModel):
    items: list[PlanResponse]
    total: int
    page: int
    limit: int


class WindowOverrideResponse(BaseModel):
    id: int
    planId: int
    date: dt.date
    window: WindowSchema
    reason: Optional[str] = None


class JobResponse(BaseModel):
    """Schema for a generated job"""

    id: int
    publicId: str
    planId: int
    poolId: str
    scheduledDate: dt.date
    window: Optional[WindowSchema] = None
    durationMin: Optional[int] = None
    priceCents: int
    currency: str
    totalCents: int
    status: str
    cancelReason: Optional[str] = None


class OccurrenceResponse(BaseModel):
    date: dt.date
    window: Optional[WindowSchema] = None


class CalendarResponse(BaseModel):
    occurrences: list[OccurrenceResponse]
    jobs: list[JobResponse]


class GenerateJobsResponse(BaseModel):
    plansProcessed: int
    jobsGenerated: int


class GeneratePlanJobsResponse(BaseModel):
    count: int
    message: str
