from __future__ import annotations

import json
import threading

import pytest

from device_onboard.common.config_loader import EngineSettings
from device_onboard.common.models import ImportStatus, RunOutcome
from device_onboard.engine.orchestrator import OnboardingOrchestrator
from device_onboard.engine.supervisor import BackgroundSupervisor


class GatedOrchestrator:
    """Blocks inside run() until the test opens the gate."""

    def __init__(self):
        self.entered = threading.Event()
        self.gate = threading.Event()
        self.calls = 0

    def run(self, path=None, *, fallback_serial=None, defaults=None, cancel=None, progress=None):
        self.calls += 1
        self.entered.set()
        self.gate.wait(5)
        return RunOutcome(success=not cancel.is_set(), error="cancelled" if cancel.is_set() else None)

    def retry_failed(self, *, cancel=None, progress=None):
        raise RuntimeError("boom")


@pytest.mark.integration
def test_second_trigger_is_refused_while_running():
    orchestrator = GatedOrchestrator()
    supervisor = BackgroundSupervisor(orchestrator)

    first = supervisor.start_run("devices.json")
    assert orchestrator.entered.wait(5)
    assert supervisor.is_busy
    assert supervisor.start_run("devices.json") is None
    assert supervisor.start_retry() is None

    orchestrator.gate.set()
    assert first.result(timeout=5).success is True
    assert orchestrator.calls == 1
    assert not supervisor.is_busy
    supervisor.shutdown()


@pytest.mark.integration
def test_completion_callback_receives_outcome(tmp_path, fake_registry, credentials_factory):
    fake_registry.status_script = [ImportStatus(status="complete")]
    path = tmp_path / "d.json"
    path.write_text(json.dumps([{"serialNumber": "ABC123", "hardwareIdentifier": "h"}]), encoding="utf-8")
    orchestrator = OnboardingOrchestrator(
        fake_registry,
        credentials_factory(),
        settings=EngineSettings(poll_interval_seconds=0, max_poll_attempts=2),
        sleep=lambda _seconds: None,
    )
    supervisor = BackgroundSupervisor(orchestrator)
    received = []
    ticks = []

    future = supervisor.start_run(path, progress=ticks.append, on_complete=received.append)
    outcome = future.result(timeout=5)
    supervisor.shutdown()

    assert received == [outcome]
    assert outcome.success is True
    assert {tick.phase for tick in ticks} >= {"validate", "submit", "poll"}


@pytest.mark.integration
def test_crashing_job_becomes_error_outcome_and_frees_slot():
    supervisor = BackgroundSupervisor(GatedOrchestrator())

    outcome = supervisor.start_retry().result(timeout=5)

    assert outcome.success is False
    assert "boom" in outcome.error
    assert not supervisor.is_busy
    supervisor.shutdown()


@pytest.mark.integration
def test_shutdown_cancels_running_job_and_refuses_new_work():
    orchestrator = GatedOrchestrator()
    supervisor = BackgroundSupervisor(orchestrator)

    future = supervisor.start_run()
    assert orchestrator.entered.wait(5)
    supervisor.cancel_current()
    orchestrator.gate.set()
    outcome = future.result(timeout=5)
    supervisor.shutdown()

    assert outcome.error == "cancelled"
    assert supervisor.start_run() is None


@pytest.mark.integration
def test_run_cancelled_while_queued_frees_slot_and_reports_shutdown():
    orchestrator = GatedOrchestrator()
    supervisor = BackgroundSupervisor(orchestrator)
    worker_gate = threading.Event()
    worker_started = threading.Event()

    def occupy_worker():
        worker_started.set()
        worker_gate.wait(5)

    blocker = supervisor.executor.submit(occupy_worker)
    assert worker_started.wait(5)
    received = []
    queued = supervisor.start_run("devices.json", on_complete=received.append)

    supervisor.shutdown(wait=False)
    worker_gate.set()
    blocker.result(timeout=5)

    assert queued.cancelled()
    assert orchestrator.calls == 0
    assert not supervisor.is_busy
    assert len(received) == 1
    assert received[0].success is False
    assert received[0].error.startswith("Shutdown")
