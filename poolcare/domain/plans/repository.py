"""Service plan repository - Database operations for plans, overrides and jobs"""

import datetime as dt
from typing import Optional

from sqlalchemy import distinct
from sqlalchemy.orm import Session

from ...models_plan import Job, ServicePlan, ServicePlanWindowOverride


class PlanRepository:
    """Repository for service plan database operations"""

    @staticmethod
    def list_plans(
        db: Session,
        org_id: str,
        pool_id: Optional[str] = None,
        active: Optional[bool] = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[ServicePlan], int]:
        """Get a page of plans for an org, newest first, plus the total count"""
        query = db.query(ServicePlan).filter(ServicePlan.org_id == org_id)

        if pool_id:
            query = query.filter(ServicePlan.pool_id == pool_id)

        if active is True:
            query = query.filter(ServicePlan.status == "active")
        elif active is False:
            query = query.filter(ServicePlan.status != "active")

        total = query.count()
        items = (
            query.order_by(ServicePlan.created_at.desc(), ServicePlan.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return items, total

    @staticmethod
    def get_plan(db: Session, plan_id: int, org_id: str) -> Optional[ServicePlan]:
        """Get a specific plan within an org"""
        return (
            db.query(ServicePlan)
            .filter(ServicePlan.id == plan_id, ServicePlan.org_id == org_id)
            .first()
        )

    @staticmethod
    def get_schedulable_plans(db: Session, org_id: str) -> list[ServicePlan]:
        """Active plans plus paused ones, whose pause may end inside the horizon"""
        return (
            db.query(ServicePlan)
            .filter(ServicePlan.org_id == org_id, ServicePlan.status.in_(["active", "paused"]))
            .order_by(ServicePlan.id)
            .all()
        )

    @staticmethod
    def get_org_ids(db: Session) -> list[str]:
        """Orgs that own at least one plan still generating jobs"""
        rows = (
            db.query(distinct(ServicePlan.org_id))
            .filter(ServicePlan.status.in_(["active", "paused"]))
            .order_by(ServicePlan.org_id)
            .all()
        )
        return [row[0] for row in rows]

    @staticmethod
    def create_plan(db: Session, org_id: str, **plan_data) -> ServicePlan:
        plan = ServicePlan(org_id=org_id, **plan_data)
        db.add(plan)
        db.commit()
        db.refresh(plan)
        return plan

    @staticmethod
    def update_plan(db: Session, plan: ServicePlan, **updates) -> ServicePlan:
        """Update a plan; None values are written as given, callers filter first"""
        for key, value in updates.items():
            if hasattr(plan, key):
                setattr(plan, key, value)

        db.commit()
        db.refresh(plan)
        return plan

    @staticmethod
    def delete_plan(db: Session, plan: ServicePlan) -> None:
        """Delete a plan with its overrides and jobs"""
        db.delete(plan)
        db.commit()

    # Window Override Methods
    @staticmethod
    def get_overrides(
        db: Session,
        plan_id: int,
        start: Optional[dt.date] = None,
        end: Optional[dt.date] = None,
    ) -> list[ServicePlanWindowOverride]:
        query = db.query(ServicePlanWindowOverride).filter(
            ServicePlanWindowOverride.plan_id == plan_id
        )
        if start:
            query = query.filter(ServicePlanWindowOverride.date >= start)
        if end:
            query = query.filter(ServicePlanWindowOverride.date <= end)
        return query.order_by(ServicePlanWindowOverride.date).all()

    @staticmethod
    def get_override(
        db: Session, plan_id: int, date: dt.date
    ) -> Optional[ServicePlanWindowOverride]:
        return (
            db.query(ServicePlanWindowOverride)
            .filter(
                ServicePlanWindowOverride.plan_id == plan_id,
                ServicePlanWindowOverride.date == date,
            )
            .first()
        )

    @staticmethod
    def upsert_override(
        db: Session,
        plan: ServicePlan,
        date: dt.date,
        window_start: str,
        window_end: str,
        reason: Optional[str] = None,
    ) -> ServicePlanWindowOverride:
        """Create or replace the override for (plan, date)"""
        override = PlanRepository.get_override(db, plan.id, date)
        if override is None:
            override = ServicePlanWindowOverride(
                org_id=plan.org_id, plan_id=plan.id, date=date
            )
            db.add(override)

        override.window_start = window_start
        override.window_end = window_end
        override.reason = reason

        db.commit()
        db.refresh(override)
        return override

    @staticmethod
    def delete_override(db: Session, override: ServicePlanWindowOverride) -> None:
        db.delete(override)
        db.commit()

    # Job Methods
    @staticmethod
    def get_jobs(
        db: Session,
        plan_id: int,
        start: Optional[dt.date] = None,
        end: Optional[dt.date] = None,
        status: Optional[str] = None,
    ) -> list[Job]:
        query = db.query(Job).filter(Job.plan_id == plan_id)
        if start:
            query = query.filter(Job.scheduled_date >= start)
        if end:
            query = query.filter(Job.scheduled_date <= end)
        if status:
            query = query.filter(Job.status == status)
        return query.order_by(Job.scheduled_date).all()

    @staticmethod
    def get_job_on(db: Session, plan_id: int, date: dt.date) -> Optional[Job]:
        return db.query(Job).filter(Job.plan_id == plan_id, Job.scheduled_date == date).first()

    @staticmethod
    def get_job_dates(db: Session, plan_id: int, start: dt.date, end: dt.date) -> set[dt.date]:
        """Dates that already carry a job of any status"""
        rows = (
            db.query(Job.scheduled_date)
            .filter(
                Job.plan_id == plan_id,
                Job.scheduled_date >= start,
                Job.scheduled_date <= end,
            )
            .all()
        )
        return {row[0] for row in rows}

    @staticmethod
    def add_jobs(db: Session, jobs: list[Job]) -> None:
        db.add_all(jobs)
        db.commit()
