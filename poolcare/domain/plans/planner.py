"""
Service Plan Recurrence Planner
Expands a plan's frequency descriptor into dated visit occurrences.

Pure functions only: no database, no clock. Callers pass dates already in the
plan's local calendar and get the same answer every time for the same inputs.
"""

import datetime as dt
from typing import Iterable, Iterator, Optional

from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta
from dateutil.rrule import MONTHLY, WEEKLY, rrule
from pydantic import BaseModel

from ...shared.validators import DAYS_OF_WEEK

WEEK_FREQUENCIES = ("weekly", "biweekly", "once_week", "twice_week")
MONTH_FREQUENCIES = ("monthly", "once_month", "twice_month")
FREQUENCIES = WEEK_FREQUENCIES + MONTH_FREQUENCIES

LAST_DAY_OF_MONTH = -1
MAX_DAY_OF_MONTH = 28

WEEKDAYS = dict(zip(DAYS_OF_WEEK, (MO, TU, WE, TH, FR, SA, SU)))


class PlanConfigurationError(ValueError):
    """Raised when a plan's recurrence settings cannot be expanded"""

    pass


class InvalidFrequency(PlanConfigurationError):
    """Frequency is not one of the supported values"""

    pass


class MissingAnchor(PlanConfigurationError):
    """A day-of-week / day-of-month anchor required by the frequency is absent"""

    pass


class InvalidAnchor(PlanConfigurationError):
    """An anchor is present but out of range"""

    pass


class TimeWindow(BaseModel):
    start: str  # HH:MM
    end: str  # HH:MM


class PlanSchedule(BaseModel):
    """The recurrence-relevant slice of a service plan"""

    frequency: str
    dow: Optional[str] = None
    dom: Optional[int] = None
    second_dow: Optional[str] = None  # twice_week only
    second_dom: Optional[int] = None  # twice_month only
    window: Optional[TimeWindow] = None
    starts_on: Optional[dt.date] = None
    ends_on: Optional[dt.date] = None
    anchor_date: Optional[dt.date] = None  # biweekly parity, fixed at plan creation


class WindowOverride(BaseModel):
    date: dt.date
    window: TimeWindow
    reason: Optional[str] = None


class PausePeriod(BaseModel):
    start: Optional[dt.date] = None  # None: paused since before any range
    until: Optional[dt.date] = None  # None: paused until resumed

    def covers(self, day: dt.date) -> bool:
        if self.start is not None and day < self.start:
            return False
        if self.until is not None and day > self.until:
            return False
        return True


class Occurrence(BaseModel):
    date: dt.date
    window: Optional[TimeWindow] = None


# ============================================================================
# CALENDAR HELPERS
# ============================================================================


def last_day_of_month(year: int, month: int) -> int:
    # day=31 clamps to the month's real length
    return (dt.date(year, month, 1) + relativedelta(day=31)).day


def first_weekday_on_or_after(day: dt.date, dow: str) -> dt.date:
    """First date on or after `day` that falls on `dow` (mon..sun)"""
    return day + relativedelta(weekday=WEEKDAYS[dow](+1))


def _at_midnight(day: dt.date) -> dt.datetime:
    return dt.datetime.combine(day, dt.time())


# ============================================================================
# VALIDATION
# ============================================================================


def _check_dow(value: Optional[str], field: str, frequency: str) -> None:
    if value is None:
        raise MissingAnchor(f"{field} required for {frequency} frequency")
    if value not in DAYS_OF_WEEK:
        raise InvalidAnchor(f"{field} must be one of {', '.join(DAYS_OF_WEEK)}, got {value!r}")


def _check_dom(value: Optional[int], field: str, frequency: str) -> None:
    if value is None:
        raise MissingAnchor(f"{field} required for {frequency} frequency")
    # bool is an int subclass; True must not pass as day 1
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidAnchor(f"{field} must be an integer, got {value!r}")
    if value != LAST_DAY_OF_MONTH and not 1 <= value <= MAX_DAY_OF_MONTH:
        raise InvalidAnchor(f"{field} must be between 1 and {MAX_DAY_OF_MONTH} or -1, got {value}")


def validate_plan(plan: PlanSchedule) -> None:
    """
    Check the frequency and the anchors it requires.

    Raises:
        InvalidFrequency: frequency outside the supported set
        MissingAnchor: a required dow/dom (or second anchor) is absent, or a
            biweekly plan has neither anchor_date nor starts_on
        InvalidAnchor: an anchor is present but out of range
    """
    frequency = plan.frequency
    if frequency not in FREQUENCIES:
        raise InvalidFrequency(
            f"Unsupported frequency {frequency!r}; expected one of {', '.join(FREQUENCIES)}"
        )

    if frequency in WEEK_FREQUENCIES:
        _check_dow(plan.dow, "dow", frequency)
        if frequency == "twice_week":
            _check_dow(plan.second_dow, "second_dow", frequency)
            if plan.second_dow == plan.dow:
                raise InvalidAnchor("second_dow must differ from dow for twice_week frequency")
        if frequency == "biweekly":
            if plan.anchor_date is None and plan.starts_on is None:
                raise MissingAnchor(
                    "biweekly frequency needs an anchor_date or starts_on to fix its parity"
                )
            anchor = plan.anchor_date
            if anchor is not None and anchor.weekday() != DAYS_OF_WEEK.index(plan.dow):
                raise InvalidAnchor(
                    f"anchor_date {anchor.isoformat()} does not fall on {plan.dow}"
                )
    else:
        _check_dom(plan.dom, "dom", frequency)
        if frequency == "twice_month":
            _check_dom(plan.second_dom, "second_dom", frequency)
            if plan.second_dom == plan.dom:
                raise InvalidAnchor("second_dom must differ from dom for twice_month frequency")
            # Both land on the 28th in a non-leap February
            if {plan.dom, plan.second_dom} == {MAX_DAY_OF_MONTH, LAST_DAY_OF_MONTH}:
                raise InvalidAnchor(
                    f"dom {MAX_DAY_OF_MONTH} and -1 fall on the same day in February; pick another pair"
                )


def biweekly_anchor(plan: PlanSchedule) -> dt.date:
    """
    The date that fixes a biweekly plan's week parity.

    Uses the stored anchor_date when present, otherwise the first dow match on
    or after starts_on.
    """
    if plan.anchor_date is not None:
        return plan.anchor_date
    return first_weekday_on_or_after(plan.starts_on, plan.dow)


# ============================================================================
# EXPANSION
# ============================================================================


def _dates(rule: rrule) -> Iterator[dt.date]:
    for moment in rule:
        yield moment.date()


def _weekly_dates(dows: Iterable[str], lower: dt.date, upper: dt.date) -> Iterator[dt.date]:
    return _dates(
        rrule(
            WEEKLY,
            byweekday=[WEEKDAYS[dow] for dow in dows],
            dtstart=_at_midnight(lower),
            until=_at_midnight(upper),
        )
    )


def _biweekly_dates(anchor: dt.date, lower: dt.date, upper: dt.date) -> Iterator[dt.date]:
    # First date >= lower sharing the anchor's 14-day parity
    first = lower + dt.timedelta(days=(anchor - lower).days % 14)
    return _dates(
        rrule(WEEKLY, interval=2, dtstart=_at_midnight(first), until=_at_midnight(upper))
    )


def _monthly_dates(doms: Iterable[int], lower: dt.date, upper: dt.date) -> Iterator[dt.date]:
    # bymonthday=-1 is the last day of each month
    return _dates(
        rrule(
            MONTHLY,
            bymonthday=list(doms),
            dtstart=_at_midnight(lower),
            until=_at_midnight(upper),
        )
    )


def _candidate_dates(plan: PlanSchedule, lower: dt.date, upper: dt.date) -> list[dt.date]:
    frequency = plan.frequency

    if frequency in ("weekly", "once_week"):
        return list(_weekly_dates([plan.dow], lower, upper))
    if frequency == "biweekly":
        return list(_biweekly_dates(biweekly_anchor(plan), lower, upper))
    if frequency == "twice_week":
        return list(_weekly_dates([plan.dow, plan.second_dow], lower, upper))
    if frequency in ("monthly", "once_month"):
        return list(_monthly_dates([plan.dom], lower, upper))
    # twice_month
    return list(_monthly_dates([plan.dom, plan.second_dom], lower, upper))


def expand(
    plan: PlanSchedule,
    overrides: Iterable[WindowOverride],
    pause: Optional[PausePeriod],
    range_start: dt.date,
    range_end: dt.date,
) -> list[Occurrence]:
    """
    Expand a plan into its occurrences between range_start and range_end (inclusive).

    The range is clipped to the plan's own starts_on/ends_on. Dates inside the
    pause interval are dropped. Each occurrence takes the window of an
    exact-date override when one exists, otherwise the plan's default window,
    otherwise no window.

    An empty effective range gives an empty list; a misconfigured plan raises
    PlanConfigurationError before anything is produced.
    """
    validate_plan(plan)

    lower = range_start if plan.starts_on is None else max(plan.starts_on, range_start)
    upper = range_end if plan.ends_on is None else min(plan.ends_on, range_end)
    if upper < lower:
        return []

    windows_by_date = {override.date: override.window for override in overrides}

    occurrences = []
    for day in _candidate_dates(plan, lower, upper):
        if pause is not None and pause.covers(day):
            continue
        occurrences.append(Occurrence(date=day, window=windows_by_date.get(day, plan.window)))
    return occurrences


def next_occurrence(
    plan: PlanSchedule,
    overrides: Iterable[WindowOverride],
    pause: Optional[PausePeriod],
    on_or_after: dt.date,
    horizon_days: int = 366,
) -> Optional[Occurrence]:
    """First occurrence on or after the given date within the horizon, or None"""
    occurrences = expand(
        plan, overrides, pause, on_or_after, on_or_after + dt.timedelta(days=horizon_days)
    )
    return occurrences[0] if occurrences else None
