"""
Service Plan Job Generator Runner
Run this as a separate process: python run_plan_scheduler.py [--once] [--horizon-days N]
"""

import argparse
import asyncio
import logging
import sys

from poolcare.config import DATABASE_URL, PLAN_HORIZON_DAYS, SCHEDULER_INTERVAL_SECONDS
from poolcare.database import Database
from poolcare.workers.plan_scheduler import generate_jobs_for_all_orgs, run_plan_scheduler

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Generate jobs from active service plans")
    parser.add_argument("--horizon-days", type=int, default=PLAN_HORIZON_DAYS)
    parser.add_argument("--interval", type=int, default=SCHEDULER_INTERVAL_SECONDS)
    parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    logger.info("🚀 Starting Service Plan Job Generator...")

    database = Database(DATABASE_URL)
    database.create_all()
    try:
        if args.once:
            generate_jobs_for_all_orgs(database, args.horizon_days)
        else:
            asyncio.run(run_plan_scheduler(database, args.horizon_days, args.interval))
    except KeyboardInterrupt:
        logger.info("👋 Plan scheduler stopped by user")
    except Exception as e:
        logger.error(f"❌ Plan scheduler crashed: {e}")
        sys.exit(1)
    finally:
        database.dispose()
