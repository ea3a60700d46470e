"""
Service Plan Service
Handles plan lifecycle, job generation and calendar views on top of the recurrence planner
"""

import datetime as dt
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional

from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ... import config
from ...models_plan import Job, ServicePlan, ServicePlanWindowOverride
from .planner import (
    DAYS_OF_WEEK,
    Occurrence,
    PausePeriod,
    PlanConfigurationError,
    PlanSchedule,
    TimeWindow,
    WindowOverride,
    expand,
    first_weekday_on_or_after,
    next_occurrence,
    validate_plan,
)
from .repository import PlanRepository
from .schemas import CancelPlanRequest, OverrideWindowRequest, PausePlanRequest, PlanCreate, PlanUpdate

logger = logging.getLogger(__name__)

# How far ahead next_visit_at / skip-next look for an occurrence
NEXT_VISIT_LOOKAHEAD_DAYS = 366

# Fields that drive recurrence; changing any of them realigns future jobs
RECURRENCE_FIELDS = ("frequency", "dow", "dom", "second_dow", "second_dom", "ends_on", "anchor_date")

# PlanUpdate field -> ServicePlan column
UPDATE_FIELD_MAP = {
    "frequency": "frequency",
    "dow": "dow",
    "dom": "dom",
    "secondDow": "second_dow",
    "secondDom": "second_dom",
    "priceCents": "price_cents",
    "taxPct": "tax_pct",
    "discountPct": "discount_pct",
    "billingType": "billing_type",
    "visitTemplateId": "visit_template_id",
    "visitTemplateVersion": "visit_template_version",
    "serviceDurationMin": "service_duration_min",
    "endsOn": "ends_on",
    "notes": "notes",
}

# Columns that cannot be cleared with an explicit null
NON_NULLABLE_UPDATES = {
    "frequency",
    "price_cents",
    "tax_pct",
    "discount_pct",
    "billing_type",
    "service_duration_min",
}


def compute_total_cents(price_cents: int, tax_pct: float, discount_pct: float) -> int:
    """Per-visit total: discount first, then tax, rounded half-up to whole cents"""
    price = Decimal(price_cents)
    discounted = price * (Decimal(1) - Decimal(str(discount_pct or 0)) / Decimal(100))
    taxed = discounted * (Decimal(1) + Decimal(str(tax_pct or 0)) / Decimal(100))
    return int(taxed.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def schedule_for(plan: ServicePlan) -> PlanSchedule:
    """Planner view of a stored plan"""
    window = None
    if plan.window_start and plan.window_end:
        window = TimeWindow(start=plan.window_start, end=plan.window_end)

    return PlanSchedule(
        frequency=plan.frequency,
        dow=plan.dow,
        dom=plan.dom,
        second_dow=plan.second_dow,
        second_dom=plan.second_dom,
        window=window,
        starts_on=plan.starts_on,
        ends_on=plan.ends_on,
        anchor_date=plan.anchor_date,
    )


def pause_for(plan: ServicePlan) -> Optional[PausePeriod]:
    if plan.status != "paused":
        return None
    return PausePeriod(start=plan.paused_on, until=plan.paused_until)


def overrides_for(overrides: list[ServicePlanWindowOverride]) -> list[WindowOverride]:
    return [
        WindowOverride(
            date=o.date,
            window=TimeWindow(start=o.window_start, end=o.window_end),
            reason=o.reason,
        )
        for o in overrides
    ]


class PlanService:
    """Service layer for service plan business logic"""

    def __init__(self, db: Session, today: Optional[Callable[[], dt.date]] = None):
        self.db = db
        self.repo = PlanRepository()
        self._today = today or dt.date.today

    def today(self) -> dt.date:
        return self._today()

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _expand(self, plan: ServicePlan, start: dt.date, end: dt.date) -> list[Occurrence]:
        overrides = overrides_for(self.repo.get_overrides(self.db, plan.id, start, end))
        try:
            return expand(schedule_for(plan), overrides, pause_for(plan), start, end)
        except PlanConfigurationError as e:
            logger.error(f"❌ Plan {plan.id} has an invalid schedule: {e}")
            raise HTTPException(status_code=400, detail=str(e))

    def _next_visit(self, plan: ServicePlan) -> Optional[dt.date]:
        """First upcoming occurrence that has not been skipped or cancelled"""
        if plan.status == "cancelled":
            return None

        start = self.today()
        end = start + dt.timedelta(days=NEXT_VISIT_LOOKAHEAD_DAYS)
        cancelled = {
            job.scheduled_date
            for job in self.repo.get_jobs(self.db, plan.id, start, end, status="cancelled")
        }
        schedule = schedule_for(plan)
        overrides = overrides_for(self.repo.get_overrides(self.db, plan.id, start, end))
        pause = pause_for(plan)

        day = start
        try:
            while day <= end:
                occurrence = next_occurrence(
                    schedule, overrides, pause, day, horizon_days=(end - day).days
                )
                if occurrence is None:
                    return None
                if occurrence.date not in cancelled:
                    return occurrence.date
                day = occurrence.date + dt.timedelta(days=1)
        except PlanConfigurationError as e:
            logger.error(f"❌ Plan {plan.id} has an invalid schedule: {e}")
            raise HTTPException(status_code=400, detail=str(e))
        return None

    def _refresh_next_visit(self, plan: ServicePlan) -> ServicePlan:
        return self.repo.update_plan(self.db, plan, next_visit_at=self._next_visit(plan))

    def _build_job(self, plan: ServicePlan, occurrence: Occurrence, status: str = "scheduled") -> Job:
        return Job(
            org_id=plan.org_id,
            plan_id=plan.id,
            pool_id=plan.pool_id,
            scheduled_date=occurrence.date,
            window_start=occurrence.window.start if occurrence.window else None,
            window_end=occurrence.window.end if occurrence.window else None,
            duration_min=plan.service_duration_min,
            price_cents=plan.price_cents,
            currency=plan.currency,
            tax_pct=plan.tax_pct,
            discount_pct=plan.discount_pct,
            total_cents=compute_total_cents(plan.price_cents, plan.tax_pct, plan.discount_pct),
            status=status,
        )

    def _resync_future_jobs(self, plan: ServicePlan) -> None:
        """Carry the plan's current window and billing terms onto upcoming scheduled jobs"""
        jobs = self.repo.get_jobs(self.db, plan.id, start=self.today(), status="scheduled")
        if not jobs:
            return

        overridden = {o.date for o in self.repo.get_overrides(self.db, plan.id, start=self.today())}
        total = compute_total_cents(plan.price_cents, plan.tax_pct, plan.discount_pct)
        for job in jobs:
            if job.scheduled_date not in overridden:
                job.window_start = plan.window_start
                job.window_end = plan.window_end
            job.duration_min = plan.service_duration_min
            job.price_cents = plan.price_cents
            job.currency = plan.currency
            job.tax_pct = plan.tax_pct
            job.discount_pct = plan.discount_pct
            job.total_cents = total
        self.db.commit()

    def _drop_future_jobs(self, plan: ServicePlan, keep: Callable[[Job], bool]) -> int:
        """Delete upcoming scheduled jobs that `keep` rejects; they are regenerated on demand"""
        dropped = 0
        for job in self.repo.get_jobs(self.db, plan.id, start=self.today(), status="scheduled"):
            if not keep(job):
                self.db.delete(job)
                dropped += 1
        if dropped:
            self.db.commit()
        return dropped

    # ========================================================================
    # CRUD
    # ========================================================================

    def list_plans(
        self,
        org_id: str,
        pool_id: Optional[str] = None,
        active: Optional[bool] = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict:
        items, total = self.repo.list_plans(self.db, org_id, pool_id, active, page, limit)
        return {"items": items, "total": total, "page": page, "limit": limit}

    def get_plan(self, plan_id: int, org_id: str) -> ServicePlan:
        plan = self.repo.get_plan(self.db, plan_id, org_id)
        if not plan:
            raise HTTPException(status_code=404, detail="Service plan not found")
        return plan

    def create_plan(self, data: PlanCreate, org_id: str) -> ServicePlan:
        """Create a plan, fixing the biweekly parity anchor at creation time"""
        logger.info(f"📥 Creating {data.frequency} service plan for pool {data.poolId} (org {org_id})")

        schedule = data.to_schedule(today=self.today())

        plan = self.repo.create_plan(
            self.db,
            org_id,
            pool_id=data.poolId,
            frequency=data.frequency,
            dow=schedule.dow,
            dom=schedule.dom,
            second_dow=schedule.second_dow,
            second_dom=schedule.second_dom,
            anchor_date=schedule.anchor_date,
            window_start=data.window.start if data.window else None,
            window_end=data.window.end if data.window else None,
            service_duration_min=data.serviceDurationMin or config.DEFAULT_SERVICE_DURATION_MIN,
            visit_template_id=data.visitTemplateId,
            visit_template_version=data.visitTemplateVersion,
            price_cents=data.priceCents,
            currency=data.currency or config.DEFAULT_CURRENCY,
            tax_pct=data.taxPct or 0,
            discount_pct=data.discountPct or 0,
            billing_type=data.billingType,
            starts_on=data.startsOn,
            ends_on=data.endsOn,
            status="active",
            notes=data.notes,
        )

        plan = self._refresh_next_visit(plan)
        logger.info(f"✅ Service plan {plan.id} created, next visit {plan.next_visit_at}")
        return plan

    def update_plan(self, plan_id: int, data: PlanUpdate, org_id: str) -> ServicePlan:
        """Partial update; the merged schedule must still expand"""
        plan = self.get_plan(plan_id, org_id)
        if plan.status == "cancelled":
            raise HTTPException(status_code=400, detail="Cannot update a cancelled plan")

        provided = data.model_dump(exclude_unset=True)
        updates = {}
        for field, column in UPDATE_FIELD_MAP.items():
            if field not in provided:
                continue
            value = provided[field]
            if value is None and column in NON_NULLABLE_UPDATES:
                continue
            updates[column] = value

        if "window" in provided:
            window = data.window
            updates["window_start"] = window.start if window else None
            updates["window_end"] = window.end if window else None

        merged = {
            column: updates.get(column, getattr(plan, column))
            for column in ("frequency", "dow", "dom", "second_dow", "second_dom", "ends_on")
        }
        if merged["ends_on"] and plan.starts_on and merged["ends_on"] < plan.starts_on:
            raise HTTPException(status_code=400, detail="endsOn cannot be before startsOn")

        # Parity is only re-fixed when the weekday itself moves
        if merged["frequency"] == "biweekly" and merged["dow"] in DAYS_OF_WEEK:
            anchor = plan.anchor_date
            if anchor is None or anchor.weekday() != DAYS_OF_WEEK.index(merged["dow"]):
                base = plan.anchor_date or plan.starts_on or self.today()
                updates["anchor_date"] = first_weekday_on_or_after(base, merged["dow"])

        candidate = schedule_for(plan).model_copy(
            update={
                **merged,
                "anchor_date": updates.get("anchor_date", plan.anchor_date)
                if merged["frequency"] == "biweekly"
                else None,
            }
        )
        try:
            validate_plan(candidate)
        except PlanConfigurationError as e:
            logger.warning(f"⚠️ Rejected update for plan {plan.id}: {e}")
            raise HTTPException(status_code=400, detail=str(e))

        recurrence_changed = any(
            column in updates and updates[column] != getattr(plan, column)
            for column in RECURRENCE_FIELDS
        )
        plan = self.repo.update_plan(self.db, plan, **updates)

        if recurrence_changed:
            horizon_end = self.today() + dt.timedelta(days=NEXT_VISIT_LOOKAHEAD_DAYS)
            valid_dates = {o.date for o in self._expand(plan, self.today(), horizon_end)}
            dropped = self._drop_future_jobs(plan, keep=lambda job: job.scheduled_date in valid_dates)
            if dropped:
                logger.info(f"🔄 Dropped {dropped} job(s) no longer on plan {plan.id}'s schedule")

        self._resync_future_jobs(plan)
        return self._refresh_next_visit(plan)

    def delete_plan(self, plan_id: int, org_id: str) -> dict:
        plan = self.get_plan(plan_id, org_id)
        self.repo.delete_plan(self.db, plan)
        logger.info(f"🗑️ Service plan {plan_id} deleted (org {org_id})")
        return {"message": "Service plan deleted"}

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def pause_plan(self, plan_id: int, data: PausePlanRequest, org_id: str) -> ServicePlan:
        """Pause from today (or pausedFrom) until `until`, or indefinitely"""
        plan = self.get_plan(plan_id, org_id)
        if plan.status == "cancelled":
            raise HTTPException(status_code=400, detail="Cannot pause a cancelled plan")

        paused_on = data.pausedFrom or self.today()
        if data.until and data.until < paused_on:
            raise HTTPException(status_code=400, detail="until cannot be before the pause start")

        plan = self.repo.update_plan(
            self.db, plan, status="paused", paused_on=paused_on, paused_until=data.until
        )

        pause = pause_for(plan)
        dropped = self._drop_future_jobs(plan, keep=lambda job: not pause.covers(job.scheduled_date))
        logger.info(
            f"⏸️ Plan {plan.id} paused from {paused_on} until {data.until or 'resumed'} "
            f"({dropped} job(s) removed)"
        )
        return self._refresh_next_visit(plan)

    def resume_plan(self, plan_id: int, org_id: str) -> ServicePlan:
        plan = self.get_plan(plan_id, org_id)
        if plan.status != "paused":
            raise HTTPException(status_code=400, detail="Plan is not paused")

        plan = self.repo.update_plan(
            self.db, plan, status="active", paused_on=None, paused_until=None
        )
        logger.info(f"▶️ Plan {plan.id} resumed")
        return self._refresh_next_visit(plan)

    def skip_next(self, plan_id: int, org_id: str) -> ServicePlan:
        """
        Skip the next upcoming visit.

        Cancels its job when one was generated, otherwise records a cancelled
        placeholder so later generation does not bring the date back.
        """
        plan = self.get_plan(plan_id, org_id)
        if plan.status == "cancelled":
            raise HTTPException(status_code=400, detail="Cannot skip a visit on a cancelled plan")

        next_date = self._next_visit(plan)
        if next_date is None:
            raise HTTPException(status_code=400, detail="No upcoming visit to skip")

        job = self.repo.get_job_on(self.db, plan.id, next_date)
        if job:
            job.status = "cancelled"
            job.cancel_reason = "skipped"
            self.db.commit()
        else:
            occurrence = next(
                o for o in self._expand(plan, next_date, next_date) if o.date == next_date
            )
            placeholder = self._build_job(plan, occurrence, status="cancelled")
            placeholder.cancel_reason = "skipped"
            self.repo.add_jobs(self.db, [placeholder])

        logger.info(f"⏭️ Plan {plan.id}: skipped visit on {next_date}")
        return self._refresh_next_visit(plan)

    def cancel_plan(self, plan_id: int, data: CancelPlanRequest, org_id: str) -> ServicePlan:
        plan = self.get_plan(plan_id, org_id)
        if plan.status == "cancelled":
            raise HTTPException(status_code=400, detail="Plan is already cancelled")

        for job in self.repo.get_jobs(self.db, plan.id, start=self.today(), status="scheduled"):
            job.status = "cancelled"
            job.cancel_reason = "plan_cancelled"

        plan = self.repo.update_plan(
            self.db,
            plan,
            status="cancelled",
            cancelled_at=dt.datetime.now(dt.timezone.utc),
            cancel_reason=data.reason,
            next_visit_at=None,
        )
        logger.info(f"🛑 Plan {plan.id} cancelled: {data.reason or 'no reason given'}")
        return plan

    # ========================================================================
    # WINDOW OVERRIDES
    # ========================================================================

    def override_window(
        self, plan_id: int, data: OverrideWindowRequest, org_id: str
    ) -> ServicePlanWindowOverride:
        plan = self.get_plan(plan_id, org_id)
        override = self.repo.upsert_override(
            self.db, plan, data.date, data.window.start, data.window.end, data.reason
        )

        job = self.repo.get_job_on(self.db, plan.id, data.date)
        if job and job.status == "scheduled":
            job.window_start = data.window.start
            job.window_end = data.window.end
            self.db.commit()

        logger.info(
            f"🕒 Plan {plan.id}: window on {data.date} set to {data.window.start}-{data.window.end}"
        )
        return override

    def remove_override(self, plan_id: int, date: dt.date, org_id: str) -> dict:
        plan = self.get_plan(plan_id, org_id)
        override = self.repo.get_override(self.db, plan.id, date)
        if not override:
            raise HTTPException(status_code=404, detail="Window override not found")

        self.repo.delete_override(self.db, override)

        job = self.repo.get_job_on(self.db, plan.id, date)
        if job and job.status == "scheduled":
            job.window_start = plan.window_start
            job.window_end = plan.window_end
            self.db.commit()

        return {"message": "Window override removed"}

    # ========================================================================
    # CALENDAR & JOB GENERATION
    # ========================================================================

    def get_calendar(
        self,
        plan_id: int,
        org_id: str,
        start: Optional[dt.date] = None,
        end: Optional[dt.date] = None,
    ) -> dict:
        """Planned occurrences alongside the jobs already generated in the range"""
        plan = self.get_plan(plan_id, org_id)
        start = start or self.today()
        end = end or start + dt.timedelta(days=config.PLAN_HORIZON_DAYS)
        if end < start:
            raise HTTPException(status_code=400, detail="'to' cannot be before 'from'")

        occurrences = [] if plan.status == "cancelled" else self._expand(plan, start, end)
        jobs = self.repo.get_jobs(self.db, plan.id, start, end)
        return {"occurrences": occurrences, "jobs": jobs}

    def _generate_for(self, plan: ServicePlan, horizon_days: int) -> int:
        """Create missing jobs for one plan over [today, today + horizon]; returns jobs created"""
        today = self.today()

        if plan.status == "paused" and plan.paused_until and plan.paused_until < today:
            logger.info(f"▶️ Plan {plan.id} pause ended on {plan.paused_until}, resuming")
            plan = self.repo.update_plan(
                self.db, plan, status="active", paused_on=None, paused_until=None
            )

        if plan.status == "cancelled":
            return 0

        end = today + dt.timedelta(days=horizon_days)
        existing = self.repo.get_job_dates(self.db, plan.id, today, end)
        new_jobs = [
            self._build_job(plan, occurrence)
            for occurrence in self._expand(plan, today, end)
            if occurrence.date not in existing
        ]

        if new_jobs:
            try:
                self.repo.add_jobs(self.db, new_jobs)
            except IntegrityError:
                # Another generator run created some of these dates first
                self.db.rollback()
                logger.warning(f"⚠️ Plan {plan.id}: jobs already generated concurrently, skipping")
                return 0

        self._refresh_next_visit(plan)
        return len(new_jobs)

    def generate_jobs_for_plan(
        self, plan_id: int, org_id: str, horizon_days: Optional[int] = None
    ) -> dict:
        plan = self.get_plan(plan_id, org_id)
        if plan.status == "cancelled":
            return {"count": 0, "message": "Plan is not active"}

        count = self._generate_for(plan, horizon_days or config.PLAN_HORIZON_DAYS)
        logger.info(f"✅ Plan {plan.id}: generated {count} job(s)")
        return {"count": count, "message": f"Generated {count} job(s)"}

    def generate_jobs(self, org_id: str, horizon_days: Optional[int] = None) -> dict:
        """Generate jobs for every schedulable plan in an org"""
        horizon = horizon_days or config.PLAN_HORIZON_DAYS
        plans = self.repo.get_schedulable_plans(self.db, org_id)

        total_generated = 0
        for plan in plans:
            try:
                total_generated += self._generate_for(plan, horizon)
            except HTTPException as e:
                # A broken plan must not block the rest of the org
                logger.error(f"❌ Failed to generate jobs for plan {plan.id}: {e.detail}")

        return {"plansProcessed": len(plans), "jobsGenerated": total_generated}
