"""
Periodic Scheduler - fixed-interval jobs independent of request traffic.

Jobs:
- risk_update:  RiskAggregator.recompute_active_cells() over every active cell
- rescore:      AlertDispatcher.run_periodic_rescore() for every live end user

Overlapping runs are tolerated rather than skipped (high max_instances, no
coalescing). Job bodies log and swallow failures so the scheduler never dies.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from safegrid.core.settings import settings
from safegrid.services.alert_dispatcher import AlertDispatcher
from safegrid.services.risk_aggregator import RiskAggregator

logger = logging.getLogger(__name__)

RISK_UPDATE_JOB_ID = "risk_update"
RESCORE_JOB_ID = "rescore"


class PeriodicScheduler:

    def __init__(
        self,
        aggregator: RiskAggregator,
        dispatcher: AlertDispatcher,
        rescore_minutes: Optional[int] = None,
        risk_update_minutes: Optional[int] = None,
        max_instances: Optional[int] = None,
    ):
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.rescore_minutes = rescore_minutes or settings.RESCORE_INTERVAL_MINUTES
        self.risk_update_minutes = risk_update_minutes or settings.RISK_UPDATE_INTERVAL_MINUTES
        self.max_instances = max_instances or settings.SCHEDULER_MAX_INSTANCES
        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)

    async def run_risk_update(self) -> None:
        try:
            loop = asyncio.get_event_loop()
            await loop.run_in_executor(None, self.aggregator.recompute_active_cells)
        except Exception as e:
            logger.error(f"[Scheduler] Risk update job failed: {e}", exc_info=True)

    async def run_rescore(self) -> None:
        try:
            await self.dispatcher.run_periodic_rescore()
        except Exception as e:
            logger.error(f"[Scheduler] Rescore job failed: {e}", exc_info=True)

    def start(self) -> None:
        now = datetime.now(timezone.utc)
        self.scheduler.add_job(
            self.run_risk_update,
            "interval",
            minutes=self.risk_update_minutes,
            id=RISK_UPDATE_JOB_ID,
            max_instances=self.max_instances,
            coalesce=False,
            next_run_time=now + timedelta(seconds=5),  # first pass shortly after startup
        )
        self.scheduler.add_job(
            self.run_rescore,
            "interval",
            minutes=self.rescore_minutes,
            id=RESCORE_JOB_ID,
            max_instances=self.max_instances,
            coalesce=False,
        )
        self.scheduler.start()
        logger.info(
            f"[Scheduler] Started: risk update every {self.risk_update_minutes} min, "
            f"rescore every {self.rescore_minutes} min"
        )

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("[Scheduler] Stopped")
