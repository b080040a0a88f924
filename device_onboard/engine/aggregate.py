"""Result aggregation for one run."""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Sequence

from device_onboard.common.constants import RESULT_ACCEPTED, RESULT_FAILED
from device_onboard.common.models import IdentityRecord, ResultRow, RunSummary


def summarize(rows: Iterable[ResultRow]) -> RunSummary:
    rows = list(rows)
    buckets = Counter(row.bucket for row in rows)
    return RunSummary(
        total=len(rows),
        success=buckets["success"],
        failed=buckets["failed"],
        duplicate=buckets["duplicate"],
        pending=buckets["pending"],
    )


def is_retryable(row: ResultRow) -> bool:
    return row.result == RESULT_FAILED and not row.is_duplicate


def failed_serials(rows: Iterable[ResultRow]) -> list[str]:
    return [row.serial for row in rows if is_retryable(row)]


def queued_rows(rows: Iterable[ResultRow]) -> list[ResultRow]:
    return [row for row in rows if row.result == RESULT_ACCEPTED]


def select_failed_records(rows: Sequence[ResultRow], records: Sequence[IdentityRecord]) -> list[IdentityRecord]:
    """Pair rows with the records they were produced for, in order, and keep the failures."""
    if len(rows) != len(records):
        raise ValueError(f"Expected one result row per record, got {len(rows)} rows for {len(records)} records")
    return [record for row, record in zip(rows, records) if is_retryable(row)]


def is_run_successful(summary: RunSummary) -> bool:
    return summary.failed == 0 and (summary.success > 0 or summary.pending > 0 or summary.duplicate > 0)
