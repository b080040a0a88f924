from __future__ import annotations

import json
from pathlib import Path

import pytest

from device_onboard.common.errors import PreconditionError, SourceError
from device_onboard.common.models import IdentityRecord
from device_onboard.source.adapter import dump_structured, parse_file, resolve_records
from device_onboard.source.local_identity import LocalIdentity, StaticIdentitySource

CSV_TEXT = (
    "Device Serial Number,Windows Product ID,Hardware Hash,Group Tag\n"
    "ABC123,PK-1,hash-a,Lab\n"
    "DEF456,,hash-b,\n"
)

JSON_ITEMS = [
    {"serialNumber": "ABC123", "productKey": "PK-1", "hardwareIdentifier": "hash-a", "groupTag": "Lab"},
    {"serialNumber": "DEF456", "hardwareIdentifier": "hash-b"},
]


def test_tabular_and_structured_inputs_produce_identical_records(tmp_path: Path):
    csv_path = tmp_path / "devices.csv"
    json_path = tmp_path / "devices.json"
    csv_path.write_text(CSV_TEXT, encoding="utf-8")
    json_path.write_text(json.dumps(JSON_ITEMS), encoding="utf-8")

    assert resolve_records(csv_path).records == resolve_records(json_path).records


def test_alias_headers_are_matched_case_and_spacing_insensitively(tmp_path: Path):
    path = tmp_path / "devices.csv"
    path.write_text("serial_number,PRODUCT ID,hardware-hash\nX1,PK,hh\n", encoding="utf-8")

    records = parse_file(path)

    assert records == [IdentityRecord("X1", "hh", product_key="PK")]


def test_utf8_bom_header_is_accepted(tmp_path: Path):
    path = tmp_path / "devices.csv"
    path.write_bytes(b"\xef\xbb\xbfSerial Number,Hardware Hash\nX1,hh\n")

    assert parse_file(path)[0].serial_number == "X1"


def test_records_are_deduplicated_case_insensitively_in_order(tmp_path: Path):
    path = tmp_path / "devices.json"
    path.write_text(
        json.dumps(
            [
                {"serialNumber": "abc", "hardwareIdentifier": "first"},
                {"serialNumber": "ZZZ", "hardwareIdentifier": "z"},
                {"serialNumber": " ABC ", "hardwareIdentifier": "second"},
            ]
        ),
        encoding="utf-8",
    )

    records = resolve_records(path).records

    assert [(r.serial_number, r.hardware_fingerprint) for r in records] == [("abc", "first"), ("ZZZ", "z")]


def test_invalid_rows_do_not_abort_the_batch(tmp_path: Path):
    path = tmp_path / "devices.csv"
    path.write_text("Serial Number,Hardware Hash\nA1,\n,hh\nA2,h2\n", encoding="utf-8")

    records = resolve_records(path).records

    assert [r.serial_number for r in records] == ["A1", "", "A2"]
    assert records[0].validation_error() is not None


def test_run_level_defaults_fill_missing_optional_fields(tmp_path: Path):
    path = tmp_path / "devices.csv"
    path.write_text(CSV_TEXT, encoding="utf-8")

    records = resolve_records(path, defaults={"group_tag": "Default", "assigned_computer_name": "PC-01"}).records

    assert [r.group_tag for r in records] == ["Lab", "Default"]
    assert all(r.assigned_computer_name == "PC-01" for r in records)


def test_structured_object_wrappers_are_unwrapped(tmp_path: Path):
    path = tmp_path / "export.json"
    path.write_text(json.dumps({"value": JSON_ITEMS}), encoding="utf-8")

    assert len(parse_file(path)) == 2


@pytest.mark.parametrize(
    ("name", "content"),
    [
        ("broken.json", "{not json"),
        ("scalars.json", "[1, 2, 3]"),
        ("empty.csv", ""),
        ("unrelated.csv", "name,colour\nx,red\n"),
        ("devices.xlsx", "binary"),
    ],
)
def test_unparseable_inputs_raise_source_error(tmp_path: Path, name: str, content: str):
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")

    with pytest.raises(SourceError):
        resolve_records(path)


def test_retry_records_bypass_every_other_input(tmp_path: Path):
    path = tmp_path / "devices.csv"
    path.write_text(CSV_TEXT, encoding="utf-8")
    retry = [IdentityRecord("R1", "h"), IdentityRecord("r1", "dupe")]

    result = resolve_records(path, retry_records=retry)

    assert result.records == [IdentityRecord("R1", "h")]
    assert result.file_generated is False


@pytest.mark.parametrize("path_kind", ["none", "empty", "missing", "directory"])
def test_missing_path_collects_local_identity(tmp_path: Path, path_kind: str):
    path = {
        "none": None,
        "empty": "  ",
        "missing": str(tmp_path / "nope.csv"),
        "directory": str(tmp_path),
    }[path_kind]
    source = StaticIdentitySource(LocalIdentity(serial="LOCAL1", fingerprint="local-hash", product_key="PK"))

    result = resolve_records(path, identity_source=source, generated_dir=tmp_path / "generated")

    assert result.file_generated is True
    assert result.records == [IdentityRecord("LOCAL1", "local-hash", product_key="PK")]
    assert result.generated_path == tmp_path / "generated" / "LOCAL1.csv"
    assert parse_file(result.generated_path) == result.records


def test_fallback_serial_used_when_local_identity_has_none(tmp_path: Path):
    source = StaticIdentitySource(LocalIdentity(serial="", fingerprint="local-hash"))

    result = resolve_records(None, fallback_serial="FALLBACK9", identity_source=source, generated_dir=tmp_path)

    assert result.records[0].serial_number == "FALLBACK9"


def test_missing_path_without_identity_source_is_precondition_error():
    with pytest.raises(PreconditionError):
        resolve_records(None)


def test_dump_structured_round_trips_through_parser(tmp_path: Path):
    records = [IdentityRecord("S1", "h1", group_tag="G", assigned_user_principal_name="u@example.com")]
    path = tmp_path / "state" / "failed.json"

    dump_structured(path, records)

    assert parse_file(path) == records
