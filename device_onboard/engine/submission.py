"""Submission & Polling Engine.

Each record moves Pending -> Submitted -> {Success | Failed | Accepted}, one
record at a time. Polling is a bounded loop with an injectable sleep so tests
never wait on a real clock.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

from device_onboard.common.config_loader import EngineSettings
from device_onboard.common.constants import (
    ALREADY_ASSIGNED_MARKERS,
    IMPORT_ERROR_STATES,
    IMPORT_SUCCESS_STATES,
    RESULT_ACCEPTED,
    RESULT_FAILED,
    RESULT_SKIPPED,
    RESULT_SUCCESS,
    STATUS_COMPLETE,
    STATUS_DUPLICATE,
    STATUS_IMPORT_ERROR,
    STATUS_QUEUED,
    STATUS_SHUTDOWN,
    STATUS_UPLOAD_ERROR,
    STATUS_VALIDATION,
)
from device_onboard.common.errors import OnboardError, PollError, ValidationError
from device_onboard.common.logging import default_logger, log_event
from device_onboard.common.models import IdentityRecord, ImportStatus, ProgressTick, ResultRow
from device_onboard.common.time_utils import elapsed_ms
from device_onboard.engine.cancellation import CancelToken
from device_onboard.registry.client import RegistryClient, serial_registered
from device_onboard.registry.duplicates import DuplicateLookup

ProgressCallback = Callable[[ProgressTick], None]


def is_already_assigned(*texts: object) -> bool:
    for text in texts:
        lowered = str(text or "").casefold()
        if any(marker in lowered for marker in ALREADY_ASSIGNED_MARKERS):
            return True
    return False


def import_error_reason(status: ImportStatus) -> str:
    parts = [part for part in (status.error_name, status.error_code) if part]
    if not parts:
        return f"Import ended in state '{status.status}'"
    if len(parts) == 2:
        return f"{parts[0]} (code {parts[1]})"
    return parts[0]


@dataclass
class EngineResult:
    rows: list[ResultRow] = field(default_factory=list)
    records: list[IdentityRecord] = field(default_factory=list)


class SubmissionEngine:
    def __init__(
        self,
        registry: RegistryClient,
        checker: DuplicateLookup,
        settings: EngineSettings | None = None,
        *,
        sleep: Callable[[float], object] | None = None,
        cancel: CancelToken | None = None,
        progress: ProgressCallback | None = None,
        logger: logging.Logger | None = None,
        run_id: str | None = None,
    ) -> None:
        self.registry = registry
        self.checker = checker
        self.settings = settings or EngineSettings()
        self.cancel = cancel or CancelToken()
        self.sleep = sleep or self.cancel.wait
        self.progress = progress
        self.logger = logger or default_logger()
        self.run_id = run_id

    def _tick(self, index: int, total: int, serial: str, phase: str, attempt: int = 0) -> None:
        if self.progress is not None:
            self.progress(ProgressTick(index=index, total=total, serial=serial, phase=phase, attempt=attempt))

    def _log(self, message: str, *, level: int = logging.INFO, **fields) -> None:
        log_event(self.logger, message, level=level, run_id=self.run_id, stage="submit", **fields)

    def _shutdown_row(self, record: IdentityRecord, import_id: str | None = None, attempts: int = 0) -> ResultRow:
        if import_id:
            return ResultRow(
                serial=record.serial_number,
                result=RESULT_ACCEPTED,
                status=STATUS_SHUTDOWN,
                reason=f"Run stopped while polling; import {import_id} may still complete",
                import_id=import_id,
                attempts=attempts,
            )
        return ResultRow(
            serial=record.serial_number,
            result=RESULT_FAILED,
            status=STATUS_SHUTDOWN,
            reason="Run stopped before this device was submitted",
        )

    def process_records(self, records: Iterable[IdentityRecord]) -> EngineResult:
        records = list(records)
        total = len(records)
        result = EngineResult(records=records)
        for index, record in enumerate(records, start=1):
            if self.cancel.is_set():
                result.rows.append(self._shutdown_row(record))
                continue
            result.rows.append(self.process_record(record, index=index, total=total))
        return result

    def process_record(self, record: IdentityRecord, *, index: int = 1, total: int = 1) -> ResultRow:
        started_at = time.monotonic()
        serial = record.serial_number
        self._tick(index, total, serial, "validate")

        try:
            record.validate()
        except ValidationError as exc:
            self._log(
                f"record {index}/{total} failed validation: {exc}",
                level=logging.ERROR,
                serial=serial,
                event="RECORD_INVALID",
                status="error",
                error_code=exc.error_code,
            )
            return ResultRow(serial=serial, result=RESULT_FAILED, status=STATUS_VALIDATION, reason=str(exc))

        self._tick(index, total, serial, "duplicate-check")
        guard = self.checker.check_serial(serial)
        if guard.blocking:
            self._log("serial already registered, skipping", serial=serial, event="RECORD_DUPLICATE", status="skipped")
            return ResultRow(
                serial=serial,
                result=RESULT_SKIPPED,
                status=STATUS_DUPLICATE,
                reason=f"Serial already registered ({guard.source} lookup)",
            )

        if self.cancel.is_set():
            return self._shutdown_row(record)

        self._tick(index, total, serial, "submit")
        try:
            import_id = self.registry.create_record(record)
        except OnboardError as exc:
            remote_code = getattr(exc, "remote_code", None)
            if is_already_assigned(exc, remote_code):
                self._log(
                    "registry reports device already assigned",
                    serial=serial,
                    event="RECORD_DUPLICATE",
                    status="skipped",
                )
                return ResultRow(serial=serial, result=RESULT_SKIPPED, status=STATUS_DUPLICATE, reason=str(exc))
            self._log(
                f"submission rejected: {exc}",
                level=logging.ERROR,
                serial=serial,
                event="RECORD_SUBMIT_FAIL",
                status="error",
                error_code=exc.error_code,
                duration_ms=elapsed_ms(started_at),
            )
            return ResultRow(serial=serial, result=RESULT_FAILED, status=STATUS_UPLOAD_ERROR, reason=str(exc))

        self._log("submitted", serial=serial, event="RECORD_SUBMITTED", status="ok", import_id=import_id)
        row = self._poll(record, import_id, index=index, total=total)
        self._log(
            f"finished with {row.result}/{row.status}",
            level=logging.ERROR if row.result == RESULT_FAILED else logging.INFO,
            serial=serial,
            event="RECORD_DONE",
            status=row.status,
            attempt=row.attempts,
            import_id=import_id,
            duration_ms=elapsed_ms(started_at),
        )
        return row

    def _read_import_status(self, serial: str, import_id: str, attempt: int) -> ImportStatus | None:
        try:
            return self.registry.get_import_status(import_id)
        except OnboardError as exc:
            poll_error = exc if isinstance(exc, PollError) else PollError(str(exc))
            self._log(
                f"import status read failed, will retry: {poll_error}",
                level=logging.WARNING,
                serial=serial,
                event="POLL_ERROR",
                status="warning",
                attempt=attempt,
                import_id=import_id,
                error_code=poll_error.error_code,
            )
            return None

    def _registry_has(self, serial: str, attempt: int) -> bool:
        try:
            return serial_registered(self.registry, serial)
        except OnboardError as exc:
            self._log(
                f"registry presence check failed, will retry: {exc}",
                level=logging.WARNING,
                serial=serial,
                event="POLL_LOOKUP_ERROR",
                status="warning",
                attempt=attempt,
                error_code=exc.error_code,
            )
            return False

    def _poll(self, record: IdentityRecord, import_id: str, *, index: int, total: int) -> ResultRow:
        serial = record.serial_number
        max_attempts = self.settings.max_poll_attempts
        last_state = ""

        for attempt in range(1, max_attempts + 1):
            if self.cancel.is_set():
                return self._shutdown_row(record, import_id, attempts=attempt - 1)
            self._tick(index, total, serial, "poll", attempt)

            if import_id:
                status = self._read_import_status(serial, import_id, attempt)
                if status is not None:
                    state = status.normalised
                    last_state = state or last_state
                    if state in IMPORT_SUCCESS_STATES:
                        return ResultRow(
                            serial=serial,
                            result=RESULT_SUCCESS,
                            status=STATUS_COMPLETE,
                            reason=f"Import completed after {attempt} poll attempt(s)",
                            import_id=import_id,
                            attempts=attempt,
                        )
                    if state in IMPORT_ERROR_STATES:
                        reason = import_error_reason(status)
                        if is_already_assigned(status.error_name, reason):
                            return ResultRow(
                                serial=serial,
                                result=RESULT_SKIPPED,
                                status=STATUS_DUPLICATE,
                                reason=reason,
                                import_id=import_id,
                                attempts=attempt,
                            )
                        return ResultRow(
                            serial=serial,
                            result=RESULT_FAILED,
                            status=STATUS_IMPORT_ERROR,
                            reason=reason,
                            import_id=import_id,
                            attempts=attempt,
                        )

            # The registry listing is ground truth and may lead the import record.
            if self._registry_has(serial, attempt):
                return ResultRow(
                    serial=serial,
                    result=RESULT_SUCCESS,
                    status=STATUS_COMPLETE,
                    reason=f"Found in registry after {attempt} poll attempt(s)",
                    import_id=import_id,
                    attempts=attempt,
                )

            if attempt < max_attempts:
                self.sleep(self.settings.poll_interval_seconds)

        return ResultRow(
            serial=serial,
            result=RESULT_ACCEPTED,
            status=STATUS_QUEUED,
            reason=(
                f"Still pending after {max_attempts} poll attempt(s); "
                f"import id {import_id}, last state '{last_state or 'unknown'}'"
            ),
            import_id=import_id,
            attempts=max_attempts,
        )
