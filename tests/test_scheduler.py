"""
Tests for the background sweep trigger and the worker entrypoint
"""
from datetime import timedelta

import pytest

from demo_followup import worker
from demo_followup.models.enums import MessageType
from demo_followup.services.scheduler import SchedulerService


class TestSchedulerService:
    """APScheduler wiring"""

    def test_registers_both_jobs(self, executor):
        service = SchedulerService(lambda: executor, lambda: None, sweep_interval_seconds=30, no_show_interval_seconds=600)

        sweep = service.scheduler.get_job("followup_sweep")
        no_show = service.scheduler.get_job("no_show_check")

        assert sweep.trigger.interval == timedelta(seconds=30)
        assert no_show.trigger.interval == timedelta(seconds=600)
        assert service.running is False

    def test_sweep_job_runs_executor(self, executor, email_transport, job_store, make_demo, now):
        demo = make_demo()
        job_store.upsert_job(demo.id, MessageType.CONFIRM_INITIAL, now - timedelta(minutes=1))
        service = SchedulerService(lambda: executor, lambda: None)

        service._run_sweep()

        assert len(email_transport.sent) == 1

    def test_job_errors_are_logged_not_raised(self, caplog):
        def broken():
            raise RuntimeError("database gone")

        service = SchedulerService(broken, broken)

        service._run_sweep()
        service._check_no_shows()

        assert "Error in follow-up sweep job" in caplog.text
        assert "Error in no-show check job" in caplog.text


class TestWorker:
    """One-shot job runner"""

    def test_job_name_from_argv(self, monkeypatch):
        monkeypatch.setenv("WORKER_JOB", "no_show")

        assert worker._resolve_job_name(["worker", " Sweep "]) == "sweep"
        assert worker._resolve_job_name(["worker"]) == "no_show"

    def test_unknown_job(self):
        with pytest.raises(ValueError, match="Available jobs: no_show, sweep"):
            worker.run_worker("backfill")

    def test_runs_registered_job(self, monkeypatch):
        monkeypatch.setitem(worker.JOB_REGISTRY, "sweep", lambda: {"processed": 0})

        assert worker.run_worker("SWEEP") == {"processed": 0}
