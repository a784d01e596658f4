"""
Tests for the periodic scheduler.
"""

from datetime import timedelta

from safegrid.services.scheduler import RESCORE_JOB_ID, RISK_UPDATE_JOB_ID, PeriodicScheduler


class StubAggregator:
    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    def recompute_active_cells(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("firestore down")


class StubDispatcher:
    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    async def run_periodic_rescore(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("registry gone")
        return 0


# =============================================================
# TEST: Job registration
# =============================================================

class TestJobRegistration:

    async def test_start_registers_both_interval_jobs(self):
        scheduler = PeriodicScheduler(
            StubAggregator(), StubDispatcher(), rescore_minutes=30, risk_update_minutes=60, max_instances=10
        )
        scheduler.start()
        try:
            risk_job = scheduler.scheduler.get_job(RISK_UPDATE_JOB_ID)
            rescore_job = scheduler.scheduler.get_job(RESCORE_JOB_ID)

            assert risk_job.trigger.interval == timedelta(minutes=60)
            assert rescore_job.trigger.interval == timedelta(minutes=30)
            # overlapping runs are allowed, not coalesced
            assert risk_job.max_instances == 10
            assert rescore_job.coalesce is False
        finally:
            scheduler.shutdown()

        assert scheduler.scheduler.running is False


# =============================================================
# TEST: Job bodies
# =============================================================

class TestJobBodies:

    async def test_risk_update_runs_aggregator(self):
        aggregator = StubAggregator()
        await PeriodicScheduler(aggregator, StubDispatcher()).run_risk_update()
        assert aggregator.calls == 1

    async def test_rescore_runs_dispatcher(self):
        dispatcher = StubDispatcher()
        await PeriodicScheduler(StubAggregator(), dispatcher).run_rescore()
        assert dispatcher.calls == 1

    async def test_failures_are_swallowed(self):
        scheduler = PeriodicScheduler(StubAggregator(fail=True), StubDispatcher(fail=True))

        await scheduler.run_risk_update()
        await scheduler.run_rescore()
