"""
Service Plan Models for recurring pool servicing
"""

import uuid

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class ServicePlan(Base):
    """Recurring service agreement for one pool"""

    __tablename__ = "service_plans"

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )

    # Tenancy
    org_id = Column(String(64), nullable=False, index=True)
    pool_id = Column(String(64), nullable=False, index=True)

    # Recurrence
    frequency = Column(String(20), nullable=False)  # weekly, biweekly, monthly, once_week, ...
    dow = Column(String(3), nullable=True)  # mon..sun
    dom = Column(Integer, nullable=True)  # 1-28 or -1 (last day)
    second_dow = Column(String(3), nullable=True)  # twice_week
    second_dom = Column(Integer, nullable=True)  # twice_month
    anchor_date = Column(Date, nullable=True)  # biweekly parity, fixed at creation
    window_start = Column(String(5), nullable=True)  # HH:MM
    window_end = Column(String(5), nullable=True)
    starts_on = Column(Date, nullable=True)
    ends_on = Column(Date, nullable=True)
    service_duration_min = Column(Integer, default=45, nullable=False)

    # Visit template
    visit_template_id = Column(String(64), nullable=True)
    visit_template_version = Column(Integer, nullable=True)

    # Billing terms
    price_cents = Column(Integer, nullable=False)
    currency = Column(String(10), default="GHS", nullable=False)
    tax_pct = Column(Float, default=0, nullable=False)
    discount_pct = Column(Float, default=0, nullable=False)
    billing_type = Column(String(20), default="per_visit", nullable=False)

    # Status workflow: active ⇄ paused → cancelled
    status = Column(String(20), default="active", nullable=False, index=True)
    paused_on = Column(Date, nullable=True)
    paused_until = Column(Date, nullable=True)  # null while paused = until resumed
    next_visit_at = Column(Date, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancel_reason = Column(Text, nullable=True)

    notes = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    window_overrides = relationship(
        "ServicePlanWindowOverride",
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="ServicePlanWindowOverride.date",
    )
    jobs = relationship(
        "Job", back_populates="plan", cascade="all, delete-orphan", order_by="Job.scheduled_date"
    )


class ServicePlanWindowOverride(Base):
    """Replacement time window for a single date of a plan"""

    __tablename__ = "service_plan_window_overrides"
    __table_args__ = (UniqueConstraint("plan_id", "date", name="uq_plan_override_date"),)

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(String(64), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("service_plans.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    window_start = Column(String(5), nullable=False)
    window_end = Column(String(5), nullable=False)
    reason = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    plan = relationship("ServicePlan", back_populates="window_overrides")


class Job(Base):
    """A visit generated from a service plan occurrence"""

    __tablename__ = "jobs"
    __table_args__ = (UniqueConstraint("plan_id", "scheduled_date", name="uq_job_plan_date"),)

    id = Column(Integer, primary_key=True, index=True)
    public_id = Column(
        String(36), unique=True, nullable=False, index=True, default=generate_public_id
    )

    org_id = Column(String(64), nullable=False, index=True)
    plan_id = Column(Integer, ForeignKey("service_plans.id"), nullable=False, index=True)
    pool_id = Column(String(64), nullable=False, index=True)

    # Scheduling
    scheduled_date = Column(Date, nullable=False, index=True)
    window_start = Column(String(5), nullable=True)  # HH:MM format
    window_end = Column(String(5), nullable=True)
    duration_min = Column(Integer, nullable=True)

    # Price snapshot taken at generation time
    price_cents = Column(Integer, nullable=False)
    currency = Column(String(10), nullable=False)
    tax_pct = Column(Float, default=0, nullable=False)
    discount_pct = Column(Float, default=0, nullable=False)
    total_cents = Column(Integer, nullable=False)

    # Status workflow: scheduled → cancelled (field lifecycle is handled by the jobs API)
    status = Column(String(20), default="scheduled", nullable=False, index=True)
    cancel_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    plan = relationship("ServicePlan", back_populates="jobs")
