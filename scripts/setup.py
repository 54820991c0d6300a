#!/usr/bin/env python3
"""Setup script for the camp booking engine: migrations plus sample pools."""

import asyncio
import logging
import sys
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command
from alembic.config import Config

from booking_engine.core.database import async_session_factory
from booking_engine.core.exceptions import ConflictError
from booking_engine.schemas.pool import CreatePoolRequest, PoolKind
from booking_engine.services.pool_service import PoolService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SAMPLE_CAMP_REF = "summer-robotics-2026"
SAMPLE_SLOT_REFS = ["summer-robotics-2026-week-1", "summer-robotics-2026-week-2"]


def run_migrations() -> None:
    """Bring the schema up to date. Alembic's env runs its own event loop."""
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations...")
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Create a camp pool with two weekly slot pools. Safe to run twice."""
    async with async_session_factory() as db:
        pool_service = PoolService(db)
        try:
            camp = await pool_service.create_pool(CreatePoolRequest(
                kind=PoolKind.CAMP,
                external_ref=SAMPLE_CAMP_REF,
                label="Summer Robotics Camp",
                capacity=24,
            ))
            for week, ref in enumerate(SAMPLE_SLOT_REFS, start=1):
                await pool_service.create_pool(CreatePoolRequest(
                    kind=PoolKind.SLOT,
                    external_ref=ref,
                    label=f"Week {week}",
                    capacity=12,
                    parent_pool_id=camp.id,
                ))
        except ConflictError as e:
            logger.info(f"Sample data already present with different settings, skipping: {e.problem_details.get('detail')}")
            return

    logger.info("Sample data created successfully!")


def main() -> None:
    logger.info("Starting camp booking engine setup...")
    run_migrations()
    asyncio.run(create_sample_data())
    logger.info("Setup completed successfully!")
    logger.info("Start the API server with: cd server && uvicorn booking_engine.main:app --reload")


if __name__ == "__main__":
    main()
