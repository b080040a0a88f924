from __future__ import annotations

from device_onboard.common.config_loader import EngineSettings
from device_onboard.common.errors import PollError, SubmissionError
from device_onboard.common.models import IdentityRecord, ImportStatus
from device_onboard.engine.cancellation import CancelToken
from device_onboard.engine.submission import SubmissionEngine, import_error_reason, is_already_assigned
from device_onboard.registry.duplicates import DuplicateChecker


def _engine(registry, sleep, **kwargs) -> SubmissionEngine:
    settings = kwargs.pop("settings", EngineSettings())
    return SubmissionEngine(registry, DuplicateChecker(registry), settings, sleep=sleep, **kwargs)


def test_completed_import_is_success_without_waiting(fake_registry, recording_sleep):
    fake_registry.status_script = [ImportStatus(status="complete")]

    row = _engine(fake_registry, recording_sleep).process_record(IdentityRecord("ABC123", "base64xyz"))

    assert (row.result, row.status) == ("Success", "Complete")
    assert row.import_id == "import-1"
    assert row.attempts == 1
    assert fake_registry.created == ["ABC123"]
    assert recording_sleep.calls == []


def test_import_never_resolving_lands_in_queued_after_max_attempts(fake_registry, recording_sleep):
    fake_registry.default_status = PollError("status endpoint unavailable")

    row = _engine(fake_registry, recording_sleep).process_record(IdentityRecord("ABC123", "base64xyz"))

    assert (row.result, row.status) == ("Accepted", "Queued")
    assert "20 poll attempt" in row.reason
    assert "import-1" in row.reason
    assert len(fake_registry.status_calls) == 20
    assert recording_sleep.calls == [15] * 19


def test_polling_never_exceeds_configured_attempts(fake_registry, recording_sleep):
    settings = EngineSettings(poll_interval_seconds=2, max_poll_attempts=3)

    row = _engine(fake_registry, recording_sleep, settings=settings).process_record(IdentityRecord("S1", "hash"))

    assert row.status == "Queued"
    assert row.attempts == 3
    assert len(fake_registry.status_calls) == 3
    assert recording_sleep.calls == [2, 2]


def test_already_assigned_on_create_is_duplicate_not_failure(fake_registry, recording_sleep, already_assigned_error):
    fake_registry.create_errors["ABC123"] = already_assigned_error

    row = _engine(fake_registry, recording_sleep).process_record(IdentityRecord("ABC123", "base64xyz"))

    assert (row.result, row.status) == ("Skipped", "Duplicate")
    assert fake_registry.status_calls == []


def test_rejected_create_is_upload_error_with_remote_text(fake_registry, recording_sleep):
    fake_registry.create_errors["ABC123"] = SubmissionError("The hardware hash is malformed", status_code=400)

    row = _engine(fake_registry, recording_sleep).process_record(IdentityRecord("ABC123", "base64xyz"))

    assert (row.result, row.status) == ("Failed", "UploadError")
    assert "hardware hash is malformed" in row.reason


def test_transient_poll_errors_do_not_fail_the_record(fake_registry, recording_sleep):
    fake_registry.status_script = [
        PollError("timeout"),
        ImportStatus(status="pending"),
        ImportStatus(status="Completed"),
    ]

    row = _engine(fake_registry, recording_sleep).process_record(IdentityRecord("ABC123", "base64xyz"))

    assert (row.result, row.status) == ("Success", "Complete")
    assert row.attempts == 3
    assert len(recording_sleep.calls) == 2


def test_import_error_state_builds_reason_from_error_fields(fake_registry, recording_sleep):
    fake_registry.status_script = [ImportStatus(status="error", error_name="InvalidHardwareHash", error_code="806")]

    row = _engine(fake_registry, recording_sleep).process_record(IdentityRecord("ABC123", "base64xyz"))

    assert (row.result, row.status) == ("Failed", "ImportError")
    assert row.reason == "InvalidHardwareHash (code 806)"


def test_import_error_for_already_assigned_device_is_duplicate(fake_registry, recording_sleep):
    fake_registry.status_script = [ImportStatus(status="failed", error_name="ZtdDeviceAlreadyAssigned")]

    row = _engine(fake_registry, recording_sleep).process_record(IdentityRecord("ABC123", "base64xyz"))

    assert (row.result, row.status) == ("Skipped", "Duplicate")


def test_registry_presence_short_circuits_pending_import(fake_registry, recording_sleep):
    fake_registry.register_on_create = True

    row = _engine(fake_registry, recording_sleep).process_record(IdentityRecord("ABC123", "base64xyz"))

    assert (row.result, row.status) == ("Success", "Complete")
    assert "Found in registry" in row.reason
    assert row.attempts == 1


def test_invalid_record_never_reaches_the_registry(fake_registry, recording_sleep):
    row = _engine(fake_registry, recording_sleep).process_record(IdentityRecord("XYZ", ""))

    assert (row.result, row.status) == ("Failed", "Validation")
    assert "hardware hash" in row.reason
    assert fake_registry.find_calls == []
    assert fake_registry.created == []


def test_last_second_guard_skips_serial_registered_after_preflight(registry_factory, recording_sleep):
    registry = registry_factory(registered=["abc123"])

    row = _engine(registry, recording_sleep).process_record(IdentityRecord("ABC123", "base64xyz"))

    assert (row.result, row.status) == ("Skipped", "Duplicate")
    assert registry.created == []


def test_cancelled_before_start_marks_every_record_shutdown(fake_registry, recording_sleep):
    token = CancelToken()
    token.cancel()
    records = [IdentityRecord("A1", "h1"), IdentityRecord("A2", "h2")]

    result = _engine(fake_registry, recording_sleep, cancel=token).process_records(records)

    assert [(row.result, row.status) for row in result.rows] == [("Failed", "Shutdown"), ("Failed", "Shutdown")]
    assert fake_registry.created == []


def test_cancel_during_poll_wait_keeps_import_id(fake_registry):
    token = CancelToken()

    row = _engine(fake_registry, lambda _seconds: token.cancel(), cancel=token).process_record(
        IdentityRecord("ABC123", "base64xyz")
    )

    assert (row.result, row.status) == ("Accepted", "Shutdown")
    assert row.import_id == "import-1"
    assert row.attempts == 1


def test_progress_ticks_cover_each_phase(fake_registry, recording_sleep):
    fake_registry.status_script = [ImportStatus(status="complete")]
    ticks = []

    _engine(fake_registry, recording_sleep, progress=ticks.append).process_records([IdentityRecord("A1", "h1")])

    assert [tick.phase for tick in ticks] == ["validate", "duplicate-check", "submit", "poll"]
    assert all(tick.total == 1 and tick.index == 1 for tick in ticks)


def test_helpers_classify_error_text():
    assert is_already_assigned("Device is ALREADY ASSIGNED to a tenant")
    assert is_already_assigned(None, "ZtdDeviceAlreadyAssigned")
    assert not is_already_assigned("bad request", None)
    assert import_error_reason(ImportStatus(status="error")) == "Import ended in state 'error'"
    assert import_error_reason(ImportStatus(status="error", error_code="42")) == "42"
