"""Tests for the scheduler module."""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from bizops_automation.core.config import SchedulerConfig
from bizops_automation.scheduler import SchedulerTimerBackend, TaskScheduler, TimerBackend


def wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


@pytest.fixture
def scheduler():
    scheduler = TaskScheduler(SchedulerConfig(enabled=True, timezone="UTC"))
    yield scheduler
    scheduler.shutdown(wait=False)


def test_scheduler_initialization():
    """Test scheduler initialization."""
    config = SchedulerConfig(enabled=True, timezone="UTC", max_workers=2)

    scheduler = TaskScheduler(config)
    assert scheduler.config == config
    assert scheduler._scheduler is not None
    assert scheduler.is_running is False


def test_invalid_max_workers():
    """Test max_workers must be positive."""
    with pytest.raises(ValueError):
        SchedulerConfig(max_workers=0)


def test_scheduler_start_shutdown(scheduler):
    """Test scheduler start and shutdown."""
    scheduler.start()
    assert scheduler.is_running

    scheduler.shutdown()
    assert not scheduler.is_running


def test_disabled_scheduler_refuses_to_start():
    """Test starting a disabled scheduler raises."""
    scheduler = TaskScheduler(SchedulerConfig(enabled=False))

    with pytest.raises(RuntimeError):
        scheduler.start()


def test_shutdown_when_not_started(scheduler):
    """Test shutdown before start is a no-op."""
    scheduler.shutdown()
    assert scheduler.is_running is False


def test_add_and_remove_job(scheduler):
    """Test jobs can be added and removed before the scheduler starts."""
    job_id = scheduler.add_job(lambda: None, trigger="interval", job_id="sweep", hours=1)

    assert job_id == "sweep"
    assert scheduler.get_job("sweep") is not None
    assert [job.id for job in scheduler.get_jobs()] == ["sweep"]

    assert scheduler.remove_job("sweep") is True
    assert scheduler.get_job("sweep") is None
    assert scheduler.remove_job("sweep") is False


def test_generated_job_id(scheduler):
    """Test a job id is generated from the function name."""

    def nightly_cleanup():
        pass

    job_id = scheduler.add_job(nightly_cleanup, trigger="cron", hour="2", minute="0")

    assert job_id.startswith("nightly_cleanup-")


def test_replace_existing_job(scheduler):
    """Test re-adding a job id replaces the previous job."""
    scheduler.add_job(lambda: None, trigger="interval", job_id="tick", minutes=5)
    scheduler.add_job(lambda: None, trigger="interval", job_id="tick", minutes=10)

    scheduler.start()

    assert len(scheduler.get_jobs()) == 1
    assert scheduler.get_job("tick").trigger.interval == timedelta(minutes=10)


def test_unsupported_trigger(scheduler):
    """Test an unknown trigger type is rejected."""
    with pytest.raises(ValueError, match="Unsupported trigger type"):
        scheduler.add_job(lambda: None, trigger="lunar")


def test_date_job_runs_and_is_counted(scheduler):
    """Test a one-shot date job runs once and is counted."""
    ran = threading.Event()
    scheduler.start()

    scheduler.add_job(
        ran.set,
        trigger="date",
        job_id="once",
        run_date=datetime.now(timezone.utc) + timedelta(milliseconds=200),
    )

    assert ran.wait(timeout=5)
    assert wait_for(lambda: scheduler.get_job_run_count("once") == 1)
    assert scheduler.get_job_error_count("once") == 0
    assert scheduler.get_job("once") is None


def test_failing_job_is_counted(scheduler):
    """Test a raising job increments the error count."""

    def broken():
        raise RuntimeError("boom")

    scheduler.start()
    scheduler.add_job(
        broken,
        trigger="date",
        job_id="broken",
        run_date=datetime.now(timezone.utc) + timedelta(milliseconds=100),
    )

    assert wait_for(lambda: scheduler.get_job_error_count("broken") == 1)
    assert scheduler.get_job_run_count("broken") == 1


def test_scheduler_status(scheduler):
    """Test the status summary lists jobs and their next run times."""
    scheduler.start()
    scheduler.add_job(lambda: None, trigger="interval", job_id="hourly", hours=1)

    status = scheduler.get_scheduler_status()

    assert status["status"] == "running"
    assert status["timezone"] == "UTC"
    assert status["total_jobs"] == 1
    assert status["next_run_times"]["hourly"] is not None


# ==============================================================================
# Timer backend
# ==============================================================================


class TestSchedulerTimerBackend:
    """Tests for SchedulerTimerBackend."""

    def test_implements_protocol(self, scheduler):
        """Test the backend satisfies the TimerBackend protocol."""
        assert isinstance(SchedulerTimerBackend(scheduler), TimerBackend)

    def test_arm_adds_date_job(self, scheduler):
        """Test arming creates a prefixed date job."""
        timers = SchedulerTimerBackend(scheduler)

        timers.arm("r1", datetime.now(timezone.utc) + timedelta(days=1), lambda: None)

        assert timers.armed_keys() == {"r1"}
        job_id = timers.job_id("r1")
        assert job_id.startswith("timer.") and job_id.endswith(".r1")
        assert scheduler.get_job(job_id) is not None

    def test_disarm(self, scheduler):
        """Test disarming removes the job once."""
        timers = SchedulerTimerBackend(scheduler)
        timers.arm("r1", datetime.now(timezone.utc) + timedelta(days=1), lambda: None)
        job_id = timers.job_id("r1")

        assert timers.disarm("r1") is True
        assert timers.disarm("r1") is False
        assert timers.armed_keys() == set()
        assert scheduler.get_job(job_id) is None
        assert timers.job_id("r1") is None

    def test_fired_timer_is_no_longer_armed(self, scheduler):
        """Test a fired timer clears itself before running the callback."""
        timers = SchedulerTimerBackend(scheduler)
        fired = threading.Event()
        scheduler.start()

        timers.arm("r1", datetime.now(timezone.utc) + timedelta(milliseconds=100), fired.set)

        assert fired.wait(timeout=5)
        assert timers.armed_keys() == set()
        assert timers.disarm("r1") is False

    def test_rearm_replaces_job(self, scheduler):
        """Test re-arming a key leaves a single job behind."""
        timers = SchedulerTimerBackend(scheduler)
        later = datetime.now(timezone.utc) + timedelta(days=1)

        timers.arm("r1", later, lambda: None)
        timers.arm("r1", later + timedelta(hours=1), lambda: None)

        assert timers.armed_keys() == {"r1"}
        assert len(scheduler.get_jobs()) == 1
        assert scheduler.get_job(timers.job_id("r1")) is not None

    def test_same_instant_fires_in_arming_order(self, scheduler):
        """Test timers due at the same instant run in the order they were armed."""
        timers = SchedulerTimerBackend(scheduler)
        fired: list[str] = []
        keys = ["f3", "c1", "a9", "e2", "b7"]
        run_at = datetime.now(timezone.utc) + timedelta(milliseconds=300)

        for key in keys:
            timers.arm(key, run_at, lambda key=key: fired.append(key))
        scheduler.start()

        assert wait_for(lambda: len(fired) == len(keys))
        assert fired == keys
