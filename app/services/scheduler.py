"""
Scheduler Service

Runs scheduled background jobs using APScheduler.

Jobs:
- Status Refresh: every STATUS_REFRESH_INTERVAL_MINUTES, polls the provider
  for every project still marked deploying
"""

import logging
from typing import Dict

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import get_settings
from app.models.project import ProjectStatus
from app.services.project_state_machine import ProjectStateMachine
from app.services.project_store import ProjectStore

logger = logging.getLogger(__name__)


class DeploymentScheduler:
    """
    Deployment scheduler.

    Manages background jobs with APScheduler.
    """

    def __init__(self, store: ProjectStore, state_machine: ProjectStateMachine):
        """
        Initialize scheduler.

        Args:
            store: Project persistence port
            state_machine: Lifecycle service used to refresh projects
        """
        self.store = store
        self.state_machine = state_machine
        self.settings = get_settings()
        self.scheduler = AsyncIOScheduler()

    async def refresh_deploying_projects(self) -> Dict[str, int]:
        """
        Refresh a batch of projects in `deploying`.

        Returns:
            Stats dict with checked, settled counts
        """
        projects = await self.store.find_many(
            limit=self.settings.STATUS_REFRESH_BATCH_SIZE,
            status=ProjectStatus.DEPLOYING,
        )

        if not projects:
            return {"checked": 0, "settled": 0}

        refreshed = await self.state_machine.refresh_many(projects)
        settled = sum(1 for project in refreshed if project.status != ProjectStatus.DEPLOYING)

        return {"checked": len(projects), "settled": settled}

    async def _run_status_refresh(self):
        """Status refresh job. Never raises."""
        try:
            logger.info("Status refresh job started")
            stats = await self.refresh_deploying_projects()
            logger.info(f"Status refresh job completed: {stats}")
        except Exception as e:
            logger.error(f"Status refresh job failed: {e}", exc_info=True)

    def start(self):
        """
        Start the scheduler.

        Adds all scheduled jobs and starts the scheduler.
        """
        logger.info("Starting deployment scheduler...")

        self.scheduler.add_job(
            self._run_status_refresh,
            trigger=IntervalTrigger(minutes=self.settings.STATUS_REFRESH_INTERVAL_MINUTES),
            id='status_refresh',
            name='Deployment Status Refresh',
            max_instances=1,  # Only one instance at a time
            replace_existing=True
        )

        self.scheduler.start()
        logger.info("Deployment scheduler started")

    def shutdown(self):
        """
        Shutdown the scheduler.

        Waits for running jobs to complete before shutting down.
        """
        logger.info("Shutting down deployment scheduler...")
        self.scheduler.shutdown(wait=True)
        logger.info("Deployment scheduler shutdown complete")
