"""Shared fakes for registry-facing tests."""

from __future__ import annotations

import pytest

from device_onboard.common.errors import PreconditionError, SubmissionError
from device_onboard.common.models import IdentityRecord, ImportStatus


class FakeRegistry:
    """In-memory stand-in for RegistryClient that records every call."""

    def __init__(self, registered: list[str] | None = None):
        self.registered = {serial.casefold(): serial for serial in (registered or [])}
        self.find_error: Exception | None = None
        self.pages: list[list[dict]] = []
        self.page_error: Exception | None = None
        self.create_errors: dict[str, Exception] = {}
        self.register_on_create = False
        self.status_script: list[ImportStatus | Exception] = []
        self.default_status = ImportStatus(status="pending")
        self.created: list[str] = []
        self.find_calls: list[str] = []
        self.page_calls: list[tuple[int, int]] = []
        self.status_calls: list[str] = []
        self.deleted: list[str] = []

    def find_by_serial(self, serial: str, top: int = 1) -> list[dict]:
        self.find_calls.append(serial)
        if self.find_error is not None:
            raise self.find_error
        match = self.registered.get(serial.strip().casefold())
        return [{"id": f"dev-{match}", "serialNumber": match}] if match else []

    def iter_pages(self, page_size: int, max_pages: int):
        self.page_calls.append((page_size, max_pages))
        for page in self.pages[:max_pages]:
            if self.page_error is not None:
                raise self.page_error
            yield page

    def create_record(self, record: IdentityRecord) -> str:
        self.created.append(record.serial_number)
        error = self.create_errors.get(record.serial_number)
        if error is not None:
            raise error
        if self.register_on_create:
            self.registered[record.serial_key] = record.serial_number
        return f"import-{len(self.created)}"

    def get_import_status(self, import_id: str) -> ImportStatus:
        self.status_calls.append(import_id)
        if self.status_script:
            item = self.status_script.pop(0)
        else:
            item = self.default_status
        if isinstance(item, Exception):
            raise item
        return item

    def delete_import(self, import_id: str) -> None:
        self.deleted.append(import_id)


class StubCredentials:
    def __init__(self, token: str | None = "token"):
        self.token = token

    def get_valid_credential(self) -> str:
        if not self.token:
            raise PreconditionError("Not connected: no access token available")
        return self.token


class RecordingSleep:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_registry() -> FakeRegistry:
    return FakeRegistry()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def already_assigned_error() -> SubmissionError:
    return SubmissionError(
        "ZtdDeviceAlreadyAssigned: the device is already assigned to another tenant",
        remote_code="BadRequest",
        status_code=400,
    )


@pytest.fixture
def registry_factory():
    return FakeRegistry


@pytest.fixture
def credentials_factory():
    return StubCredentials
