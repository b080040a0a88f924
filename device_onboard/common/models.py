"""Data models used across the onboarding engine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any

from device_onboard.common.constants import RESULT_ACCEPTED, RESULT_SKIPPED, RESULT_SUCCESS, STATUS_DUPLICATE
from device_onboard.common.errors import ValidationError

OPTIONAL_ATTRIBUTES = ("group_tag", "assigned_user_principal_name", "assigned_computer_name")


def _clean(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


@dataclass(frozen=True)
class IdentityRecord:
    serial_number: str
    hardware_fingerprint: str
    product_key: str = ""
    group_tag: str = ""
    assigned_user_principal_name: str = ""
    assigned_computer_name: str = ""

    def __post_init__(self) -> None:
        for name in (
            "serial_number",
            "hardware_fingerprint",
            "product_key",
            *OPTIONAL_ATTRIBUTES,
        ):
            object.__setattr__(self, name, _clean(getattr(self, name)))

    @property
    def serial_key(self) -> str:
        return self.serial_number.casefold()

    def validation_error(self) -> str | None:
        missing = []
        if not self.serial_number:
            missing.append("serial number")
        if not self.hardware_fingerprint:
            missing.append("hardware hash")
        if not missing:
            return None
        return f"Missing required field(s): {', '.join(missing)}"

    def validate(self) -> None:
        problem = self.validation_error()
        if problem is not None:
            raise ValidationError(problem)

    def with_defaults(self, defaults: dict[str, str] | None) -> "IdentityRecord":
        if not defaults:
            return self
        changes = {}
        for name in OPTIONAL_ATTRIBUTES:
            if not getattr(self, name) and _clean(defaults.get(name)):
                changes[name] = defaults[name]
        return replace(self, **changes) if changes else self

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "@odata.type": "#microsoft.graph.importedWindowsAutopilotDeviceIdentity",
            "serialNumber": self.serial_number,
            "productKey": self.product_key,
            "hardwareIdentifier": self.hardware_fingerprint,
            "state": {
                "@odata.type": "microsoft.graph.importedWindowsAutopilotDeviceIdentityState",
                "deviceImportStatus": "pending",
                "deviceRegistrationId": "",
                "deviceErrorCode": 0,
                "deviceErrorName": "",
            },
        }
        if self.group_tag:
            payload["groupTag"] = self.group_tag
        if self.assigned_user_principal_name:
            payload["assignedUserPrincipalName"] = self.assigned_user_principal_name
        return payload

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ResultRow:
    serial: str
    result: str
    status: str
    reason: str = ""
    import_id: str | None = None
    attempts: int = 0

    @property
    def is_duplicate(self) -> bool:
        return self.status == STATUS_DUPLICATE or self.result == RESULT_SKIPPED

    @property
    def bucket(self) -> str:
        if self.is_duplicate:
            return "duplicate"
        if self.result == RESULT_SUCCESS:
            return "success"
        if self.result == RESULT_ACCEPTED:
            return "pending"
        return "failed"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RunSummary:
    total: int = 0
    success: int = 0
    failed: int = 0
    duplicate: int = 0
    pending: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(frozen=True)
class DuplicateCheckResult:
    exists: bool
    blocking: bool
    source: str
    serial: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ImportStatus:
    status: str
    error_name: str | None = None
    error_code: str | None = None

    @property
    def normalised(self) -> str:
        return (self.status or "").strip().lower()


@dataclass(frozen=True)
class ProgressTick:
    index: int
    total: int
    serial: str
    phase: str
    attempt: int = 0


@dataclass
class RunOutcome:
    success: bool = False
    uploaded_count: int = 0
    summary: RunSummary = field(default_factory=RunSummary)
    results: list[ResultRow] = field(default_factory=list)
    failed_records: list[IdentityRecord] = field(default_factory=list)
    error: str | None = None
    blocked: bool = False
    blocked_serials: list[str] = field(default_factory=list)
    queued: list[ResultRow] = field(default_factory=list)
    generated_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "uploadedCount": self.uploaded_count,
            "summary": self.summary.to_dict(),
            "results": [row.to_dict() for row in self.results],
            "failedRecords": [record.to_dict() for record in self.failed_records],
            "error": self.error,
            "blocked": self.blocked,
            "blockedSerials": list(self.blocked_serials),
            "queued": [row.to_dict() for row in self.queued],
            "generatedPath": self.generated_path,
        }
