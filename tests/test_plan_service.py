import datetime as dt

import pytest
from fastapi import HTTPException

from poolcare.domain.plans.schemas import (
    CancelPlanRequest,
    OverrideWindowRequest,
    PausePlanRequest,
    PlanUpdate,
)
from poolcare.domain.plans.service import PlanService, compute_total_cents
from poolcare.models_plan import Job

from .conftest import TODAY, make_plan

D = dt.date
ORG = "org-1"


def jobs_of(db, plan, status=None):
    query = db.query(Job).filter(Job.plan_id == plan.id)
    if status:
        query = query.filter(Job.status == status)
    return query.order_by(Job.scheduled_date).all()


class TestCreate:
    def test_weekly_plan_gets_defaults_and_next_visit(self, service):
        plan = service.create_plan(make_plan(), ORG)

        assert plan.id is not None
        assert plan.public_id
        assert plan.status == "active"
        assert plan.currency == "GHS"
        assert plan.service_duration_min == 45
        assert plan.anchor_date is None
        assert plan.next_visit_at == D(2024, 1, 1)

    def test_biweekly_anchor_fixed_from_today(self, service):
        plan = service.create_plan(make_plan(frequency="biweekly", dow="wed"), ORG)
        assert plan.anchor_date == D(2024, 1, 3)
        assert plan.next_visit_at == D(2024, 1, 3)

    def test_biweekly_anchor_fixed_from_start_date(self, service):
        plan = service.create_plan(
            make_plan(frequency="biweekly", dow="wed", startsOn="2024-01-10"), ORG
        )
        assert plan.anchor_date == D(2024, 1, 10)

    def test_get_plan_from_other_org(self, service):
        plan = service.create_plan(make_plan(), ORG)
        with pytest.raises(HTTPException) as exc:
            service.get_plan(plan.id, "org-2")
        assert exc.value.status_code == 404


class TestList:
    def test_filters_and_pagination(self, service):
        first = service.create_plan(make_plan(poolId="pool-1"), ORG)
        service.create_plan(make_plan(poolId="pool-2"), ORG)
        service.create_plan(make_plan(poolId="pool-3"), "org-2")
        service.pause_plan(first.id, PausePlanRequest(), ORG)

        assert service.list_plans(ORG)["total"] == 2
        assert service.list_plans(ORG, pool_id="pool-2")["total"] == 1
        assert [p.id for p in service.list_plans(ORG, active=False)["items"]] == [first.id]

        page = service.list_plans(ORG, page=2, limit=1)
        assert page["total"] == 2
        assert len(page["items"]) == 1


class TestGenerate:
    def test_generates_horizon_once(self, service, db):
        plan = service.create_plan(make_plan(), ORG)

        result = service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)
        assert result == {"count": 5, "message": "Generated 5 job(s)"}
        assert [j.scheduled_date for j in jobs_of(db, plan)] == [
            D(2024, 1, 1),
            D(2024, 1, 8),
            D(2024, 1, 15),
            D(2024, 1, 22),
            D(2024, 1, 29),
        ]

        assert service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)["count"] == 0
        assert len(jobs_of(db, plan)) == 5

    def test_job_snapshot(self, service, db):
        plan = service.create_plan(make_plan(taxPct=12.5, discountPct=10), ORG)
        service.generate_jobs_for_plan(plan.id, ORG, horizon_days=7)

        job = jobs_of(db, plan)[0]
        assert job.pool_id == "pool-1"
        assert job.window_start == "08:00"
        assert job.window_end == "10:00"
        assert job.duration_min == 45
        assert job.total_cents == 10125
        assert job.status == "scheduled"

    def test_org_wide_generation(self, service):
        service.create_plan(make_plan(), ORG)
        service.create_plan(make_plan(frequency="monthly", dow=None, dom=15), ORG)
        service.create_plan(make_plan(), "org-2")

        result = service.generate_jobs(ORG, horizon_days=28)
        assert result == {"plansProcessed": 2, "jobsGenerated": 6}

    def test_expired_pause_resumes_on_generation(self, service, db):
        plan = service.create_plan(make_plan(), ORG)
        service.pause_plan(plan.id, PausePlanRequest(until="2024-01-05"), ORG)

        later = PlanService(db, today=lambda: D(2024, 1, 10))
        result = later.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)

        db.refresh(plan)
        assert plan.status == "active"
        assert plan.paused_until is None
        assert result["count"] == 4


class TestTotals:
    @pytest.mark.parametrize(
        "price, tax, discount, expected",
        [
            (999, 0, 0, 999),
            (1000, 15, 0, 1150),
            (333, 0, 50, 167),
            (10000, 12.5, 10, 10125),
        ],
    )
    def test_compute_total_cents(self, price, tax, discount, expected):
        assert compute_total_cents(price, tax, discount) == expected


class TestSkipNext:
    def test_skip_before_generation_leaves_placeholder(self, service, db):
        plan = service.create_plan(make_plan(), ORG)

        plan = service.skip_next(plan.id, ORG)
        assert plan.next_visit_at == D(2024, 1, 8)

        placeholder = jobs_of(db, plan)[0]
        assert placeholder.scheduled_date == D(2024, 1, 1)
        assert placeholder.status == "cancelled"
        assert placeholder.cancel_reason == "skipped"

        assert service.generate_jobs_for_plan(plan.id, ORG, horizon_days=14)["count"] == 2

    def test_skip_cancels_generated_job(self, service, db):
        plan = service.create_plan(make_plan(), ORG)
        service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)

        plan = service.skip_next(plan.id, ORG)
        assert plan.next_visit_at == D(2024, 1, 8)
        assert [j.scheduled_date for j in jobs_of(db, plan, status="cancelled")] == [D(2024, 1, 1)]
        assert len(jobs_of(db, plan, status="scheduled")) == 4

    def test_consecutive_skips_move_past_each_cancelled_date(self, service, db):
        plan = service.create_plan(make_plan(), ORG)
        service.skip_next(plan.id, ORG)

        plan = service.skip_next(plan.id, ORG)
        assert plan.next_visit_at == D(2024, 1, 15)
        assert [j.scheduled_date for j in jobs_of(db, plan, status="cancelled")] == [
            D(2024, 1, 1),
            D(2024, 1, 8),
        ]

    def test_nothing_to_skip(self, service):
        plan = service.create_plan(make_plan(endsOn="2023-12-31", startsOn="2023-12-01"), ORG)
        with pytest.raises(HTTPException) as exc:
            service.skip_next(plan.id, ORG)
        assert exc.value.status_code == 400


class TestPauseResume:
    def test_pause_drops_covered_jobs_and_resume_refills(self, service, db):
        plan = service.create_plan(make_plan(), ORG)
        service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)

        plan = service.pause_plan(plan.id, PausePlanRequest(pausedFrom="2024-01-10"), ORG)
        assert plan.status == "paused"
        assert plan.paused_on == D(2024, 1, 10)
        assert plan.next_visit_at == D(2024, 1, 1)
        assert [j.scheduled_date for j in jobs_of(db, plan)] == [D(2024, 1, 1), D(2024, 1, 8)]

        plan = service.resume_plan(plan.id, ORG)
        assert plan.status == "active"
        assert plan.paused_on is None
        assert service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)["count"] == 3

    def test_pause_with_end_date(self, service):
        plan = service.create_plan(make_plan(), ORG)

        plan = service.pause_plan(plan.id, PausePlanRequest(until="2024-01-16"), ORG)
        assert plan.paused_on == TODAY
        assert plan.next_visit_at == D(2024, 1, 22)
        assert service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)["count"] == 2

    def test_indefinite_pause_has_no_next_visit(self, service):
        plan = service.create_plan(make_plan(), ORG)
        plan = service.pause_plan(plan.id, PausePlanRequest(), ORG)
        assert plan.next_visit_at is None

    def test_resume_when_not_paused(self, service):
        plan = service.create_plan(make_plan(), ORG)
        with pytest.raises(HTTPException) as exc:
            service.resume_plan(plan.id, ORG)
        assert exc.value.status_code == 400


class TestOverrides:
    def test_override_and_remove(self, service, db):
        plan = service.create_plan(make_plan(), ORG)
        service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)

        request = OverrideWindowRequest(
            date="2024-01-15", window={"start": "13:00", "end": "15:00"}, reason="Gate locked"
        )
        override = service.override_window(plan.id, request, ORG)
        assert override.window_start == "13:00"

        job = next(j for j in jobs_of(db, plan) if j.scheduled_date == D(2024, 1, 15))
        assert (job.window_start, job.window_end) == ("13:00", "15:00")

        calendar = service.get_calendar(plan.id, ORG, D(2024, 1, 1), D(2024, 1, 31))
        windows = {o.date: o.window for o in calendar["occurrences"]}
        assert windows[D(2024, 1, 15)].start == "13:00"
        assert windows[D(2024, 1, 8)].start == "08:00"
        assert len(calendar["jobs"]) == 5

        assert service.remove_override(plan.id, D(2024, 1, 15), ORG) == {
            "message": "Window override removed"
        }
        db.refresh(job)
        assert (job.window_start, job.window_end) == ("08:00", "10:00")

        with pytest.raises(HTTPException) as exc:
            service.remove_override(plan.id, D(2024, 1, 15), ORG)
        assert exc.value.status_code == 404

    def test_override_replaces_previous(self, service, db):
        plan = service.create_plan(make_plan(), ORG)
        for start, end in (("11:00", "12:00"), ("14:00", "16:00")):
            service.override_window(
                plan.id,
                OverrideWindowRequest(date="2024-01-08", window={"start": start, "end": end}),
                ORG,
            )

        calendar = service.get_calendar(plan.id, ORG, D(2024, 1, 8), D(2024, 1, 8))
        assert calendar["occurrences"][0].window.start == "14:00"


class TestUpdate:
    def test_changing_weekday_realigns_jobs(self, service, db):
        plan = service.create_plan(make_plan(), ORG)
        service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)

        plan = service.update_plan(plan.id, PlanUpdate(dow="wed"), ORG)
        assert plan.next_visit_at == D(2024, 1, 3)
        assert jobs_of(db, plan) == []

        assert service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)["count"] == 4

    def test_invalid_merged_schedule(self, service):
        plan = service.create_plan(make_plan(), ORG)
        with pytest.raises(HTTPException) as exc:
            service.update_plan(plan.id, PlanUpdate(frequency="monthly"), ORG)
        assert exc.value.status_code == 400

    def test_switching_to_monthly_with_day(self, service):
        plan = service.create_plan(make_plan(), ORG)
        plan = service.update_plan(plan.id, PlanUpdate(frequency="monthly", dom=-1), ORG)
        assert plan.next_visit_at == D(2024, 1, 31)

    def test_biweekly_anchor_follows_weekday(self, service):
        plan = service.create_plan(make_plan(frequency="biweekly"), ORG)
        assert plan.anchor_date == D(2024, 1, 1)

        plan = service.update_plan(plan.id, PlanUpdate(priceCents=12000), ORG)
        assert plan.anchor_date == D(2024, 1, 1)

        plan = service.update_plan(plan.id, PlanUpdate(dow="tue"), ORG)
        assert plan.anchor_date == D(2024, 1, 2)

    def test_price_change_reaches_scheduled_jobs(self, service, db):
        plan = service.create_plan(make_plan(), ORG)
        service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)

        service.update_plan(plan.id, PlanUpdate(priceCents=20000, serviceDurationMin=60), ORG)
        for job in jobs_of(db, plan):
            assert job.price_cents == 20000
            assert job.total_cents == 20000
            assert job.duration_min == 60

    def test_explicit_null_clears_window(self, service):
        plan = service.create_plan(make_plan(), ORG)
        plan = service.update_plan(plan.id, PlanUpdate(window=None), ORG)
        assert plan.window_start is None
        assert plan.window_end is None

    def test_cancelled_plan_is_read_only(self, service):
        plan = service.create_plan(make_plan(), ORG)
        service.cancel_plan(plan.id, CancelPlanRequest(), ORG)
        with pytest.raises(HTTPException) as exc:
            service.update_plan(plan.id, PlanUpdate(notes="gate code 1234"), ORG)
        assert exc.value.status_code == 400


class TestCancelDelete:
    def test_cancel_closes_out_future_jobs(self, service, db):
        plan = service.create_plan(make_plan(), ORG)
        service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)

        plan = service.cancel_plan(plan.id, CancelPlanRequest(reason="Moved house"), ORG)
        assert plan.status == "cancelled"
        assert plan.cancel_reason == "Moved house"
        assert plan.cancelled_at is not None
        assert plan.cancelled_at.date() >= TODAY
        assert plan.next_visit_at is None
        assert all(
            j.status == "cancelled" and j.cancel_reason == "plan_cancelled" for j in jobs_of(db, plan)
        )

        assert service.generate_jobs_for_plan(plan.id, ORG) == {
            "count": 0,
            "message": "Plan is not active",
        }
        assert service.get_calendar(plan.id, ORG)["occurrences"] == []

        with pytest.raises(HTTPException) as exc:
            service.cancel_plan(plan.id, CancelPlanRequest(), ORG)
        assert exc.value.status_code == 400

    def test_delete_removes_jobs_and_overrides(self, service, db):
        plan = service.create_plan(make_plan(), ORG)
        service.generate_jobs_for_plan(plan.id, ORG, horizon_days=28)
        service.override_window(
            plan.id,
            OverrideWindowRequest(date="2024-01-08", window={"start": "11:00", "end": "12:00"}),
            ORG,
        )

        assert service.delete_plan(plan.id, ORG) == {"message": "Service plan deleted"}
        assert db.query(Job).count() == 0
        with pytest.raises(HTTPException):
            service.get_plan(plan.id, ORG)


class TestCalendar:
    def test_default_range_is_plan_horizon(self, service):
        plan = service.create_plan(make_plan(), ORG)
        calendar = service.get_calendar(plan.id, ORG)
        # 2024-01-01 through 2024-02-26 inclusive
        assert len(calendar["occurrences"]) == 9
        assert calendar["jobs"] == []

    def test_inverted_range(self, service):
        plan = service.create_plan(make_plan(), ORG)
        with pytest.raises(HTTPException) as exc:
            service.get_calendar(plan.id, ORG, D(2024, 2, 1), D(2024, 1, 1))
        assert exc.value.status_code == 400
