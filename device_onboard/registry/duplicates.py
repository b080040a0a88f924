"""Duplicate detection against the remote registry.

The indexed serial query is tried first. When it fails, a bounded paginated
scan compares serials locally. A failed scan degrades to "not found" with a
warning so that lookup trouble never blocks a run.
"""

from __future__ import annotations

import logging
from typing import Protocol

from device_onboard.common.constants import DEFAULT_MAX_PAGES, DEFAULT_PAGE_SIZE
from device_onboard.common.errors import OnboardError
from device_onboard.common.logging import default_logger, log_event
from device_onboard.common.models import DuplicateCheckResult
from device_onboard.registry.client import CANDIDATE_LIMIT, RegistryClient, entry_serial

SOURCE_INDEX = "index"
SOURCE_SCAN = "scan"
SOURCE_SCAN_FAILED = "scan-failed"
SOURCE_SKIPPED = "skipped"

LOOKUP_ERRORS = (OnboardError, OSError, ValueError)


class DuplicateLookup(Protocol):
    def check_serial(self, serial: str) -> DuplicateCheckResult: ...


class DuplicateChecker:
    def __init__(
        self,
        registry: RegistryClient,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        logger: logging.Logger | None = None,
    ) -> None:
        self.registry = registry
        self.page_size = page_size
        self.max_pages = max_pages
        self.logger = logger or default_logger()

    def check_serial(self, serial: str) -> DuplicateCheckResult:
        serial = (serial or "").strip()
        if not serial:
            return DuplicateCheckResult(exists=False, blocking=False, source=SOURCE_SKIPPED, serial=serial)

        try:
            candidates = self.registry.find_by_serial(serial, top=CANDIDATE_LIMIT)
        except LOOKUP_ERRORS as exc:
            log_event(
                self.logger,
                f"indexed serial lookup failed, scanning registry pages: {exc}",
                level=logging.WARNING,
                stage="duplicates",
                serial=serial,
                event="LOOKUP_FALLBACK",
                status="warning",
                error_code=getattr(exc, "error_code", None),
            )
            return self._scan(serial)

        wanted = serial.casefold()
        exists = any(entry_serial(entry) == wanted for entry in candidates)
        return DuplicateCheckResult(exists=exists, blocking=exists, source=SOURCE_INDEX, serial=serial)

    def _scan(self, serial: str) -> DuplicateCheckResult:
        wanted = serial.casefold()
        pages_read = 0
        try:
            for page in self.registry.iter_pages(self.page_size, self.max_pages):
                pages_read += 1
                if any(entry_serial(entry) == wanted for entry in page):
                    return DuplicateCheckResult(exists=True, blocking=True, source=SOURCE_SCAN, serial=serial)
        except LOOKUP_ERRORS as exc:
            log_event(
                self.logger,
                f"registry scan failed after {pages_read} page(s), treating serial as new: {exc}",
                level=logging.WARNING,
                stage="duplicates",
                serial=serial,
                event="LOOKUP_SCAN_FAIL",
                status="warning",
                error_code=getattr(exc, "error_code", None),
            )
            return DuplicateCheckResult(exists=False, blocking=False, source=SOURCE_SCAN_FAILED, serial=serial)

        return DuplicateCheckResult(exists=False, blocking=False, source=SOURCE_SCAN, serial=serial)
