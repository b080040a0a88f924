"""Record Source Adapter: turns files, local identity or retry lists into identity records."""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

from device_onboard.common.errors import PreconditionError, SourceError
from device_onboard.common.fs import read_csv_rows, read_json, write_csv, write_json
from device_onboard.common.logging import default_logger, log_event
from device_onboard.common.models import IdentityRecord
from device_onboard.source.fields import TABULAR_HEADERS, canonical_values, recognised_fields, tabular_row
from device_onboard.source.local_identity import LocalIdentitySource

STRUCTURED_EXTENSIONS = {".json"}
TABULAR_EXTENSIONS = {".csv", ".txt"}
STRUCTURED_LIST_KEYS = ("devices", "records", "value")


@dataclass
class SourceResult:
    records: list[IdentityRecord] = field(default_factory=list)
    generated_path: Path | None = None
    file_generated: bool = False


def _usable_path(path: str | Path | None) -> Path | None:
    if path is None or not str(path).strip():
        return None
    candidate = Path(str(path).strip())
    if not candidate.exists() or candidate.is_dir():
        return None
    return candidate


def dedupe_records(records: Iterable[IdentityRecord]) -> list[IdentityRecord]:
    seen: set[str] = set()
    out: list[IdentityRecord] = []
    for record in records:
        if record.serial_key:
            if record.serial_key in seen:
                continue
            seen.add(record.serial_key)
        out.append(record)
    return out


def record_from_mapping(attributes: Mapping[str, Any], defaults: dict[str, str] | None = None) -> IdentityRecord:
    values = canonical_values(attributes)
    return IdentityRecord(**values).with_defaults(defaults)


def _structured_items(payload: Any, path: Path) -> list[dict]:
    items = payload
    if isinstance(payload, dict):
        for key in STRUCTURED_LIST_KEYS:
            if isinstance(payload.get(key), list):
                items = payload[key]
                break
        else:
            # A lone object is accepted as a one-record list.
            items = [payload]
    if not isinstance(items, list):
        raise SourceError(f"Structured input must be a list of objects: {path}")
    if any(not isinstance(item, dict) for item in items):
        raise SourceError(f"Structured input contains non-object entries: {path}")
    return items


def parse_structured(path: Path, defaults: dict[str, str] | None = None) -> list[IdentityRecord]:
    try:
        payload = read_json(path)
    except (ValueError, UnicodeDecodeError) as exc:
        raise SourceError(f"Unparseable structured input {path}: {exc}") from exc
    items = _structured_items(payload, path)
    return [record_from_mapping(item, defaults) for item in items]


def parse_tabular(path: Path, defaults: dict[str, str] | None = None) -> list[IdentityRecord]:
    try:
        header, rows = read_csv_rows(path)
    except (csv.Error, UnicodeDecodeError) as exc:
        raise SourceError(f"Unparseable tabular input {path}: {exc}") from exc
    if not header:
        raise SourceError(f"Tabular input has no header row: {path}")
    known = recognised_fields(header)
    if "serial_number" not in known and "hardware_fingerprint" not in known:
        raise SourceError(f"Tabular input has no serial number or hardware hash column: {path}")
    records = []
    for row in rows:
        if not any(str(value or "").strip() for value in row.values() if not isinstance(value, list)):
            continue
        records.append(record_from_mapping(row, defaults))
    return records


def parse_file(path: Path, defaults: dict[str, str] | None = None) -> list[IdentityRecord]:
    suffix = path.suffix.lower()
    if suffix in STRUCTURED_EXTENSIONS:
        return parse_structured(path, defaults)
    if suffix in TABULAR_EXTENSIONS:
        return parse_tabular(path, defaults)
    raise SourceError(f"Unsupported input file type '{suffix or path.name}': {path}")


def generate_local_file(
    identity_source: LocalIdentitySource,
    generated_dir: Path,
    *,
    fallback_serial: str | None = None,
    defaults: dict[str, str] | None = None,
) -> tuple[IdentityRecord, Path]:
    identity = identity_source.get_local_identity()
    serial = (identity.serial or "").strip() or (fallback_serial or "").strip()
    record = IdentityRecord(
        serial_number=serial,
        hardware_fingerprint=identity.fingerprint,
        product_key=identity.product_key,
    ).with_defaults(defaults)

    name = serial or "local-device"
    out_path = generated_dir / f"{name}.csv"
    write_csv(out_path, TABULAR_HEADERS, [tabular_row(record.to_dict())])
    return record, out_path


def resolve_records(
    path: str | Path | None = None,
    *,
    fallback_serial: str | None = None,
    retry_records: list[IdentityRecord] | None = None,
    defaults: dict[str, str] | None = None,
    identity_source: LocalIdentitySource | None = None,
    generated_dir: Path | None = None,
    logger: logging.Logger | None = None,
) -> SourceResult:
    log = logger or default_logger()

    if retry_records is not None:
        records = dedupe_records(record.with_defaults(defaults) for record in retry_records)
        log_event(log, "using retry record list", stage="source", event="SOURCE_RETRY", status="ok")
        return SourceResult(records=records)

    source_path = _usable_path(path)
    if source_path is None:
        if identity_source is None:
            raise PreconditionError("No input file given and no local identity source is configured")
        record, out_path = generate_local_file(
            identity_source,
            generated_dir or Path("."),
            fallback_serial=fallback_serial,
            defaults=defaults,
        )
        log_event(
            log,
            f"collected local identity into {out_path}",
            stage="source",
            serial=record.serial_number,
            event="SOURCE_GENERATED",
            status="ok",
        )
        return SourceResult(records=[record], generated_path=out_path, file_generated=True)

    parsed = parse_file(source_path, defaults)
    records = dedupe_records(parsed)
    if len(records) != len(parsed):
        log_event(
            log,
            f"dropped {len(parsed) - len(records)} repeated serial(s) from {source_path}",
            level=logging.WARNING,
            stage="source",
            event="SOURCE_DEDUPE",
            status="warning",
        )
    return SourceResult(records=records)


def dump_structured(path: Path, records: Iterable[IdentityRecord]) -> None:
    items = []
    for record in records:
        item = {
            "serialNumber": record.serial_number,
            "productKey": record.product_key,
            "hardwareIdentifier": record.hardware_fingerprint,
        }
        if record.group_tag:
            item["groupTag"] = record.group_tag
        if record.assigned_user_principal_name:
            item["assignedUserPrincipalName"] = record.assigned_user_principal_name
        if record.assigned_computer_name:
            item["assignedComputerName"] = record.assigned_computer_name
        items.append(item)
    write_json(path, items)
