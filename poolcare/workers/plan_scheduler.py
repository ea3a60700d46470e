"""
Service Plan Job Generator
Keeps every organisation's job horizon filled from its active service plans
"""

import asyncio
import datetime as dt
import logging
from typing import Callable, Optional

from ..database import Database
from ..domain.plans.repository import PlanRepository
from ..domain.plans.service import PlanService

logger = logging.getLogger(__name__)


def generate_jobs_for_all_orgs(
    database: Database,
    horizon_days: int,
    today: Optional[Callable[[], dt.date]] = None,
) -> dict:
    """
    Generate jobs for all active plans of every org.

    Each org runs in its own session; one org failing is logged and does not
    stop the others.
    """
    logger.info(f"🔄 Starting job generation for all active plans (horizon: {horizon_days} days)")

    db = database.session()
    try:
        org_ids = PlanRepository.get_org_ids(db)
    finally:
        db.close()

    total_plans = 0
    total_jobs = 0
    failed_orgs = []

    for org_id in org_ids:
        db = database.session()
        try:
            result = PlanService(db, today=today).generate_jobs(org_id, horizon_days)
            total_plans += result["plansProcessed"]
            total_jobs += result["jobsGenerated"]
            logger.info(
                f"Org {org_id}: Processed {result['plansProcessed']} plans, "
                f"generated {result['jobsGenerated']} jobs"
            )
        except Exception as e:
            db.rollback()
            failed_orgs.append(org_id)
            logger.error(f"❌ Failed to generate jobs for org {org_id}: {e}")
        finally:
            db.close()

    logger.info(
        f"✅ Job generation complete: {total_plans} plans processed, {total_jobs} jobs generated"
    )
    return {
        "orgsProcessed": len(org_ids),
        "plansProcessed": total_plans,
        "jobsGenerated": total_jobs,
        "failedOrgs": failed_orgs,
    }


async def run_plan_scheduler(database: Database, horizon_days: int, interval_seconds: int):
    """
    Main worker loop - regenerates the horizon every interval
    """
    logger.info(f"🚀 Starting plan scheduler (every {interval_seconds}s)...")

    while True:
        try:
            # Session work is blocking; keep it off the event loop
            await asyncio.to_thread(generate_jobs_for_all_orgs, database, horizon_days)
        except Exception as e:
            logger.error(f"❌ Error in plan scheduler loop: {e}")

        await asyncio.sleep(interval_seconds)
