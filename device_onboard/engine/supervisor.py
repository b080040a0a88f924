"""Background execution: one pipeline at a time, off the caller's thread."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Callable

from device_onboard.common.constants import STATUS_SHUTDOWN
from device_onboard.common.logging import default_logger, log_event
from device_onboard.common.models import RunOutcome
from device_onboard.engine.cancellation import CancelToken
from device_onboard.engine.orchestrator import OnboardingOrchestrator
from device_onboard.engine.submission import ProgressCallback

CompletionCallback = Callable[[RunOutcome], None]


class BackgroundSupervisor:
    def __init__(
        self,
        orchestrator: OnboardingOrchestrator,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.logger = logger or default_logger()
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="onboard-run")
        self._slot = threading.Lock()
        self._cancel: CancelToken | None = None
        self._closed = False

    @property
    def is_busy(self) -> bool:
        return self._slot.locked()

    def start_run(
        self,
        path: str | Path | None = None,
        *,
        fallback_serial: str | None = None,
        defaults: dict[str, str] | None = None,
        progress: ProgressCallback | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> Future | None:
        def job(cancel: CancelToken) -> RunOutcome:
            return self.orchestrator.run(
                path,
                fallback_serial=fallback_serial,
                defaults=defaults,
                cancel=cancel,
                progress=progress,
            )

        return self._submit(job, on_complete)

    def start_retry(
        self,
        *,
        progress: ProgressCallback | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> Future | None:
        def job(cancel: CancelToken) -> RunOutcome:
            return self.orchestrator.retry_failed(cancel=cancel, progress=progress)

        return self._submit(job, on_complete)

    def _submit(
        self,
        job: Callable[[CancelToken], RunOutcome],
        on_complete: CompletionCallback | None,
    ) -> Future | None:
        if self._closed:
            log_event(
                self.logger,
                "supervisor is shut down, run refused",
                level=logging.WARNING,
                stage="supervisor",
                event="RUN_REFUSED",
                status="closed",
            )
            return None
        if not self._slot.acquire(blocking=False):
            log_event(
                self.logger,
                "a run is already in progress, new trigger ignored",
                level=logging.WARNING,
                stage="supervisor",
                event="RUN_REFUSED",
                status="busy",
            )
            return None

        cancel = CancelToken()
        self._cancel = cancel
        try:
            future = self.executor.submit(self._run_job, job, cancel, on_complete)
        except RuntimeError:
            self._slot.release()
            raise
        future.add_done_callback(lambda done: self._on_cancelled(done, on_complete))
        return future

    def _on_cancelled(self, future: Future, on_complete: CompletionCallback | None) -> None:
        # _run_job never ran, so the slot is still held.
        if not future.cancelled():
            return
        self._slot.release()
        log_event(
            self.logger,
            "queued run cancelled before it started",
            level=logging.WARNING,
            stage="supervisor",
            event="RUN_CANCELLED",
            status=STATUS_SHUTDOWN,
        )
        if on_complete is not None:
            on_complete(RunOutcome(error=f"{STATUS_SHUTDOWN}: run cancelled before it started"))

    def _run_job(
        self,
        job: Callable[[CancelToken], RunOutcome],
        cancel: CancelToken,
        on_complete: CompletionCallback | None,
    ) -> RunOutcome:
        try:
            outcome = job(cancel)
        except Exception as exc:
            self.logger.exception("background run crashed", extra={"stage": "supervisor", "event": "RUN_CRASH"})
            outcome = RunOutcome(error=f"Unexpected failure: {exc}")
        finally:
            self._slot.release()
        if on_complete is not None:
            on_complete(outcome)
        return outcome

    def cancel_current(self) -> None:
        if self._cancel is not None:
            self._cancel.cancel()

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        self.cancel_current()
        self.executor.shutdown(wait=wait, cancel_futures=True)
