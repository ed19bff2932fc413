"""Tests for the APScheduler-backed rank tracking scheduler."""

from unittest.mock import MagicMock, patch

import pytest

from rank_engine.scheduler import (
    DEFAULT_WEEKLY_CRON,
    RankScheduler,
    run_scheduled_batch,
    tracking_job_id,
)


@pytest.fixture()
def scheduler():
    sched = RankScheduler(job_store_url=None)
    yield sched
    sched.stop(wait=False)


class TestRankScheduler:

    def test_weekly_default_is_monday_morning(self):
        assert DEFAULT_WEEKLY_CRON == "0 6 * * 1"

    def test_schedule_weekly_tracking(self, scheduler):
        job_id = scheduler.schedule_weekly_tracking(
            "https://www.example.com", ["crm", "erp"], location="Canada", client_id="acme"
        )
        assert job_id == "rank_tracking_acme_example_com"

        job = scheduler.get_job(job_id)
        assert job is not None
        assert "day_of_week='1'" in job["trigger"]
        assert "hour='6'" in job["trigger"]
        assert job["kwargs"]["keywords"] == ["crm", "erp"]
        assert job["kwargs"]["location"] == "Canada"

    def test_rescheduling_replaces_job(self, scheduler):
        scheduler.schedule_weekly_tracking("example.com", ["crm"])
        scheduler.schedule_weekly_tracking("example.com", ["crm", "erp"], cron="30 7 * * 2")
        jobs = scheduler.list_jobs()
        assert len(jobs) == 1
        assert jobs[0]["kwargs"]["keywords"] == ["crm", "erp"]

    def test_invalid_cron(self, scheduler):
        with pytest.raises(ValueError, match="5 cron fields"):
            scheduler.add_job("bad", run_scheduled_batch, "0 6 * *")

    def test_remove_job(self, scheduler):
        job_id = scheduler.schedule_weekly_tracking("example.com", ["crm"])
        assert scheduler.remove_job(job_id) is True
        assert scheduler.remove_job(job_id) is False
        assert scheduler.list_jobs() == []

    def test_start_stop(self, scheduler):
        scheduler.start()
        assert scheduler.is_running is True
        scheduler.stop(wait=False)
        assert scheduler.is_running is False

    def test_paused_start_computes_next_run(self, scheduler):
        job_id = scheduler.schedule_weekly_tracking("example.com", ["crm"])
        assert scheduler.get_job(job_id)["next_run_time"] is None
        scheduler.start(paused=True)
        assert scheduler.get_job(job_id)["next_run_time"] is not None

    def test_job_id_without_client(self):
        assert tracking_job_id("Example.com") == "rank_tracking_example_com"


class TestRunScheduledBatch:

    def test_runs_batch_through_engine(self):
        engine = MagicMock()

        async def fake_run_batch(request):
            assert request["domain"] == "example.com"
            assert request["keywords"] == ["crm"]
            return {"total": 1, "successful": 1, "failed": 0, "results": []}

        engine.run_batch = fake_run_batch
        with patch("rank_engine.app.RankEngine", return_value=engine) as engine_cls:
            result = run_scheduled_batch("example.com", ["crm"], config_path="cfg.yaml")

        engine_cls.assert_called_once_with(config_path="cfg.yaml")
        engine.initialize.assert_called_once()
        assert result["successful"] == 1
