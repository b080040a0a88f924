"""Run orchestration: source -> pre-flight duplicate check -> submit and poll -> aggregate."""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable

from device_onboard.common.config_loader import EngineSettings
from device_onboard.common.constants import RESULT_SKIPPED, STATUS_DUPLICATE
from device_onboard.common.errors import PreconditionError, SourceError
from device_onboard.common.logging import default_logger, log_event
from device_onboard.common.models import DuplicateCheckResult, IdentityRecord, ImportStatus, ResultRow, RunOutcome
from device_onboard.common.time_utils import elapsed_ms
from device_onboard.engine.aggregate import is_run_successful, queued_rows, select_failed_records, summarize
from device_onboard.engine.cancellation import CancelToken
from device_onboard.engine.submission import ProgressCallback, SubmissionEngine
from device_onboard.registry.client import RegistryClient
from device_onboard.registry.credentials import CredentialProvider
from device_onboard.registry.duplicates import DuplicateChecker, DuplicateLookup
from device_onboard.source.adapter import dump_structured, parse_structured, resolve_records
from device_onboard.source.local_identity import LocalIdentitySource


def _merge_in_input_order(total: int, blocked: dict[int, ResultRow], engine_rows: list[ResultRow]) -> list[ResultRow]:
    pending = iter(engine_rows)
    return [blocked[position] if position in blocked else next(pending) for position in range(total)]


class FailedRecordStore:
    """Keeps the last run's failed records on disk in the structured input format."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> list[IdentityRecord]:
        if not self.path.exists():
            return []
        return parse_structured(self.path)

    def save(self, records: list[IdentityRecord]) -> None:
        dump_structured(self.path, records)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class OnboardingOrchestrator:
    def __init__(
        self,
        registry: RegistryClient,
        credentials: CredentialProvider,
        *,
        checker: DuplicateLookup | None = None,
        settings: EngineSettings | None = None,
        defaults: dict[str, str] | None = None,
        identity_source: LocalIdentitySource | None = None,
        generated_dir: Path | None = None,
        failed_store: FailedRecordStore | None = None,
        sleep: Callable[[float], object] | None = None,
        logger: logging.Logger | None = None,
        run_id: str | None = None,
    ) -> None:
        self.registry = registry
        self.credentials = credentials
        self.settings = settings or EngineSettings()
        self.logger = logger or default_logger()
        self.checker = checker or DuplicateChecker(
            registry,
            page_size=self.settings.page_size,
            max_pages=self.settings.max_pages,
            logger=self.logger,
        )
        self.defaults = dict(defaults or {})
        self.identity_source = identity_source
        self.generated_dir = generated_dir
        self.failed_store = failed_store
        self.sleep = sleep
        self.run_id = run_id
        self.last_failed: list[IdentityRecord] = failed_store.load() if failed_store is not None else []

    def _log(self, message: str, *, level: int = logging.INFO, **fields) -> None:
        log_event(self.logger, message, level=level, run_id=self.run_id, stage="run", **fields)

    def _abort(self, exc: Exception) -> RunOutcome:
        self._log(
            f"run aborted: {exc}",
            level=logging.ERROR,
            event="RUN_ABORT",
            status="error",
            error_code=getattr(exc, "error_code", None),
        )
        return RunOutcome(error=str(exc))

    def _remember_failed(self, records: list[IdentityRecord]) -> None:
        self.last_failed = list(records)
        if self.failed_store is not None:
            self.failed_store.save(self.last_failed)

    def clear_failed(self) -> None:
        self.last_failed = []
        if self.failed_store is not None:
            self.failed_store.clear()

    def ensure_connected(self) -> None:
        self.credentials.get_valid_credential()

    def check_serial(self, serial: str) -> DuplicateCheckResult:
        self.ensure_connected()
        return self.checker.check_serial(serial)

    def import_status(self, import_id: str) -> ImportStatus:
        self.ensure_connected()
        return self.registry.get_import_status(import_id)

    def delete_import(self, import_id: str) -> None:
        self.ensure_connected()
        self.registry.delete_import(import_id)
        self._log("import record deleted", event="IMPORT_DELETED", status="ok", import_id=import_id)

    def run(
        self,
        path: str | Path | None = None,
        *,
        fallback_serial: str | None = None,
        defaults: dict[str, str] | None = None,
        cancel: CancelToken | None = None,
        progress: ProgressCallback | None = None,
    ) -> RunOutcome:
        run_defaults = {**self.defaults, **(defaults or {})}
        try:
            self.ensure_connected()
            source = resolve_records(
                path,
                fallback_serial=fallback_serial,
                defaults=run_defaults,
                identity_source=self.identity_source,
                generated_dir=self.generated_dir,
                logger=self.logger,
            )
        except (SourceError, PreconditionError) as exc:
            return self._abort(exc)

        outcome = self._execute(source.records, cancel=cancel, progress=progress)
        if source.generated_path is not None:
            outcome.generated_path = str(source.generated_path)
        return outcome

    def retry_failed(
        self,
        *,
        cancel: CancelToken | None = None,
        progress: ProgressCallback | None = None,
    ) -> RunOutcome:
        if not self.last_failed:
            return RunOutcome(error="No failed records to retry")
        try:
            self.ensure_connected()
        except PreconditionError as exc:
            return self._abort(exc)
        source = resolve_records(retry_records=list(self.last_failed), logger=self.logger)
        return self._execute(source.records, cancel=cancel, progress=progress)

    def _preflight(self, records: list[IdentityRecord]) -> tuple[list[IdentityRecord], dict[int, ResultRow]]:
        """Split candidates into survivors and Skipped/Duplicate rows keyed by input position."""
        survivors: list[IdentityRecord] = []
        blocked: dict[int, ResultRow] = {}
        for position, record in enumerate(records):
            check = self.checker.check_serial(record.serial_number)
            if check.blocking:
                blocked[position] = ResultRow(
                    serial=record.serial_number,
                    result=RESULT_SKIPPED,
                    status=STATUS_DUPLICATE,
                    reason=f"Serial already registered ({check.source} lookup)",
                )
                self._log(
                    f"serial already registered ({check.source} lookup), not submitting",
                    level=logging.WARNING,
                    serial=record.serial_number,
                    event="PREFLIGHT_BLOCKED",
                    status="blocked",
                )
            else:
                survivors.append(record)
        return survivors, blocked

    def _execute(
        self,
        records: list[IdentityRecord],
        *,
        cancel: CancelToken | None,
        progress: ProgressCallback | None,
    ) -> RunOutcome:
        started_at = time.monotonic()
        if not records:
            return self._abort(SourceError("No device records found in input"))

        self._log(f"run start with {len(records)} record(s)", event="RUN_START", status="ok")
        survivors, blocked = self._preflight(records)
        blocked_serials = [row.serial for row in blocked.values()]
        if blocked and not survivors:
            self._remember_failed([])
            self._log("every device is already registered", event="RUN_BLOCKED", status="blocked")
            return RunOutcome(
                blocked=True,
                blocked_serials=blocked_serials,
                error=f"Already registered, nothing to upload: {', '.join(blocked_serials)}",
            )

        engine = SubmissionEngine(
            self.registry,
            self.checker,
            self.settings,
            sleep=self.sleep,
            cancel=cancel,
            progress=progress,
            logger=self.logger,
            run_id=self.run_id,
        )
        result = engine.process_records(survivors)
        rows = _merge_in_input_order(len(records), blocked, result.rows)
        summary = summarize(rows)
        failed = select_failed_records(result.rows, result.records)
        self._remember_failed(failed)

        outcome = RunOutcome(
            success=is_run_successful(summary),
            uploaded_count=summary.success + summary.pending,
            summary=summary,
            results=rows,
            failed_records=failed,
            blocked_serials=blocked_serials,
            queued=queued_rows(result.rows),
        )
        self._log(
            f"run end: {summary.success} ok, {summary.failed} failed, "
            f"{summary.duplicate} duplicate, {summary.pending} pending",
            level=logging.INFO if outcome.success else logging.WARNING,
            event="RUN_END",
            status="ok" if outcome.success else "partial",
            duration_ms=elapsed_ms(started_at),
        )
        return outcome
