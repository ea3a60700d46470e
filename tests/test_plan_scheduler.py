from poolcare.domain.plans.schemas import CancelPlanRequest
from poolcare.models_plan import Job
from poolcare.workers.plan_scheduler import generate_jobs_for_all_orgs

from .conftest import TODAY, make_plan


def test_generates_for_every_org(database, service, db):
    service.create_plan(make_plan(), "org-1")
    service.create_plan(make_plan(frequency="twice_week", secondDow="thu"), "org-1")
    service.create_plan(make_plan(frequency="monthly", dow=None, dom=1), "org-2")
    cancelled = service.create_plan(make_plan(), "org-3")
    service.cancel_plan(cancelled.id, CancelPlanRequest(), "org-3")

    result = generate_jobs_for_all_orgs(database, 14, today=lambda: TODAY)

    # mon: 1, 8, 15; mon+thu: 1, 4, 8, 11, 15; dom 1: 1
    assert result == {
        "orgsProcessed": 2,
        "plansProcessed": 3,
        "jobsGenerated": 9,
        "failedOrgs": [],
    }
    assert db.query(Job).filter(Job.org_id == "org-3").count() == 0


def test_second_run_is_a_no_op(database, service):
    service.create_plan(make_plan(), "org-1")

    first = generate_jobs_for_all_orgs(database, 28, today=lambda: TODAY)
    second = generate_jobs_for_all_orgs(database, 28, today=lambda: TODAY)

    assert first["jobsGenerated"] == 5
    assert second["jobsGenerated"] == 0
    assert second["plansProcessed"] == 1


def test_nothing_to_do(database):
    result = generate_jobs_for_all_orgs(database, 28, today=lambda: TODAY)
    assert result["orgsProcessed"] == 0
    assert result["jobsGenerated"] == 0
