"""Service plan router - FastAPI endpoints for service plan operations"""

import datetime as dt
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import MANAGER_ROLES, CurrentUser, get_current_user, require_roles
from ...database import get_db
from ...models_plan import Job, ServicePlan, ServicePlanWindowOverride
from .planner import Occurrence
from .schemas import (
    CalendarResponse,
    CancelPlanRequest,
    GenerateJobsRequest,
    GenerateJobsResponse,
    GeneratePlanJobsResponse,
    JobResponse,
    OccurrenceResponse,
    OverrideWindowRequest,
    PausePlanRequest,
    PlanCreate,
    PlanListResponse,
    PlanResponse,
    PlanUpdate,
    WindowOverrideResponse,
    WindowSchema,
)
from .service import PlanService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/service-plans", tags=["Service Plans"])

require_manager = require_roles(*MANAGER_ROLES)


def get_plan_service(db: Session = Depends(get_db)) -> PlanService:
    """Dependency injection for PlanService"""
    return PlanService(db)


def _window(start: Optional[str], end: Optional[str]) -> Optional[WindowSchema]:
    if start and end:
        return WindowSchema(start=start, end=end)
    return None


def plan_to_response(plan: ServicePlan) -> PlanResponse:
    return PlanResponse(
        id=plan.id,
        publicId=plan.public_id,
        poolId=plan.pool_id,
        frequency=plan.frequency,
        dow=plan.dow,
        dom=plan.dom,
        secondDow=plan.second_dow,
        secondDom=plan.second_dom,
        anchorDate=plan.anchor_date,
        window=_window(plan.window_start, plan.window_end),
        serviceDurationMin=plan.service_duration_min,
        priceCents=plan.price_cents,
        currency=plan.currency,
        taxPct=plan.tax_pct,
        discountPct=plan.discount_pct,
        billingType=plan.billing_type,
        visitTemplateId=plan.visit_template_id,
        visitTemplateVersion=plan.visit_template_version,
        startsOn=plan.starts_on,
        endsOn=plan.ends_on,
        status=plan.status,
        pausedOn=plan.paused_on,
        pausedUntil=plan.paused_until,
        nextVisitAt=plan.next_visit_at,
        cancelReason=plan.cancel_reason,
        notes=plan.notes,
        created_at=plan.created_at,
    )


def job_to_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        publicId=job.public_id,
        planId=job.plan_id,
        poolId=job.pool_id,
        scheduledDate=job.scheduled_date,
        window=_window(job.window_start, job.window_end),
        durationMin=job.duration_min,
        priceCents=job.price_cents,
        currency=job.currency,
        totalCents=job.total_cents,
        status=job.status,
        cancelReason=job.cancel_reason,
    )


def override_to_response(override: ServicePlanWindowOverride) -> WindowOverrideResponse:
    return WindowOverrideResponse(
        id=override.id,
        planId=override.plan_id,
        date=override.date,
        window=WindowSchema(start=override.window_start, end=override.window_end),
        reason=override.reason,
    )


def occurrence_to_response(occurrence: Occurrence) -> OccurrenceResponse:
    window = occurrence.window
    return OccurrenceResponse(
        date=occurrence.date,
        window=_window(window.start, window.end) if window else None,
    )


# ============================================================================
# CORE CRUD OPERATIONS
# ============================================================================


@router.get("", response_model=PlanListResponse)
async def list_plans(
    current_user: CurrentUser = Depends(get_current_user),
    service: PlanService = Depends(get_plan_service),
    pool_id: Optional[str] = Query(None, alias="poolId"),
    active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
):
    """List service plans for the current org, newest first"""
    result = service.list_plans(current_user.org_id, pool_id, active, page, limit)
    return PlanListResponse(
        items=[plan_to_response(p) for p in result["items"]],
        total=result["total"],
        page=result["page"],
        limit=result["limit"],
    )


@router.post("", response_model=PlanResponse)
async def create_plan(
    data: PlanCreate,
    current_user: CurrentUser = Depends(require_manager),
    service: PlanService = Depends(get_plan_service),
):
    """Create a new service plan"""
    return plan_to_response(service.create_plan(data, current_user.org_id))


@router.post("/generate", response_model=GenerateJobsResponse)
async def generate_jobs(
    data: Optional[GenerateJobsRequest] = None,
    current_user: CurrentUser = Depends(require_manager),
    service: PlanService = Depends(get_plan_service),
):
    """Generate jobs for every active plan in the org"""
    horizon_days = data.horizonDays if data else None
    return GenerateJobsResponse(**service.generate_jobs(current_user.org_id, horizon_days))


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan(
    plan_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: PlanService = Depends(get_plan_service),
):
    return plan_to_response(service.get_plan(plan_id, current_user.org_id))


@router.patch("/{plan_id}", response_model=PlanResponse)
async def update_plan(
    plan_id: int,
    data: PlanUpdate,
    current_user: CurrentUser = Depends(require_manager),
    service: PlanService = Depends(get_plan_service),
):
    return plan_to_response(service.update_plan(plan_id, data, current_user.org_id))


@router.delete("/{plan_id}")
async def delete_plan(
    plan_id: int,
    current_user: CurrentUser = Depends(require_manager),
    service: PlanService = Depends(get_plan_service),
):
    return service.delete_plan(plan_id, current_user.org_id)


# ============================================================================
# LIFECYCLE
# ============================================================================


@router.post("/{plan_id}/pause", response_model=PlanResponse)
async def pause_plan(
    plan_id: int,
    data: Optional[PausePlanRequest] = None,
    current_user: CurrentUser = Depends(require_manager),
    service: PlanService = Depends(get_plan_service),
):
    """Pause a plan until a date, or until resumed when no date is given"""
    plan = service.pause_plan(plan_id, data or PausePlanRequest(), current_user.org_id)
    return plan_to_response(plan)


@router.post("/{plan_id}/resume", response_model=PlanResponse)
async def resume_plan(
    plan_id: int,
    current_user: CurrentUser = Depends(require_manager),
    service: PlanService = Depends(get_plan_service),
):
    return plan_to_response(service.resume_plan(plan_id, current_user.org_id))


@router.post("/{plan_id}/skip-next", response_model=PlanResponse)
async def skip_next(
    plan_id: int,
    current_user: CurrentUser = Depends(require_manager),
    service: PlanService = Depends(get_plan_service),
):
    """Skip the next upcoming visit"""
    return plan_to_response(service.skip_next(plan_id, current_user.org_id))


@router.post("/{plan_id}/cancel", response_model=PlanResponse)
async def cancel_plan(
    plan_id: int,
    data: Optional[CancelPlanRequest] = None,
    current_user: CurrentUser = Depends(get_current_user),
    service: PlanService = Depends(get_plan_service),
):
    """Cancel a plan; open to any member of the org, including clients"""
    logger.info(f"📥 Cancel requested for plan {plan_id} by {current_user.sub} ({current_user.role})")
    plan = service.cancel_plan(plan_id, data or CancelPlanRequest(), current_user.org_id)
    return plan_to_response(plan)


# ============================================================================
# WINDOW OVERRIDES
# ============================================================================


@router.post("/{plan_id}/override-window", response_model=WindowOverrideResponse)
async def override_window(
    plan_id: int,
    data: OverrideWindowRequest,
    current_user: CurrentUser = Depends(require_manager),
    service: PlanService = Depends(get_plan_service),
):
    """Set the visit window for a single date"""
    return override_to_response(service.override_window(plan_id, data, current_user.org_id))


@router.delete("/{plan_id}/overrides/{date}")
async def remove_override(
    plan_id: int,
    date: dt.date,
    current_user: CurrentUser = Depends(require_manager),
    service: PlanService = Depends(get_plan_service),
):
    return service.remove_override(plan_id, date, current_user.org_id)


# ============================================================================
# CALENDAR & GENERATION
# ============================================================================


@router.get("/{plan_id}/calendar", response_model=CalendarResponse)
async def get_calendar(
    plan_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: PlanService = Depends(get_plan_service),
    from_date: Optional[dt.date] = Query(None, alias="from"),
    to_date: Optional[dt.date] = Query(None, alias="to"),
):
    """Planned occurrences and generated jobs between `from` and `to`"""
    result = service.get_calendar(plan_id, current_user.org_id, from_date, to_date)
    return CalendarResponse(
        occurrences=[occurrence_to_response(o) for o in result["occurrences"]],
        jobs=[job_to_response(j) for j in result["jobs"]],
    )


@router.post("/{plan_id}/generate", response_model=GeneratePlanJobsResponse)
async def generate_jobs_for_plan(
    plan_id: int,
    data: Optional[GenerateJobsRequest] = None,
    current_user: CurrentUser = Depends(require_manager),
    service: PlanService = Depends(get_plan_service),
):
    horizon_days = data.horizonDays if data else None
    result = service.generate_jobs_for_plan(plan_id, current_user.org_id, horizon_days)
    return GeneratePlanJobsResponse(**result)
