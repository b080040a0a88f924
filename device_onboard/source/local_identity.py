"""Local hardware identity collaborators used when no input file is supplied."""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass
from typing import Protocol

from device_onboard.common.errors import PreconditionError
from device_onboard.source.fields import FIELD_ALIASES, lookup_first


@dataclass(frozen=True)
class LocalIdentity:
    serial: str
    fingerprint: str
    product_key: str = ""


class LocalIdentitySource(Protocol):
    def get_local_identity(self) -> LocalIdentity: ...


class StaticIdentitySource:
    def __init__(self, identity: LocalIdentity) -> None:
        self.identity = identity

    def get_local_identity(self) -> LocalIdentity:
        return self.identity


class CommandIdentitySource:
    """Runs a collector command whose stdout is a JSON object describing this device."""

    def __init__(self, command: list[str], timeout_seconds: float = 300.0) -> None:
        self.command = command
        self.timeout_seconds = timeout_seconds

    def get_local_identity(self) -> LocalIdentity:
        try:
            completed = subprocess.run(
                self.command,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise PreconditionError(f"Local identity collector failed to run: {exc}") from exc

        if completed.returncode != 0:
            detail = (completed.stderr or "").strip() or f"exit code {completed.returncode}"
            raise PreconditionError(f"Local identity collector failed: {detail}")

        try:
            payload = json.loads(completed.stdout)
        except ValueError as exc:
            raise PreconditionError("Local identity collector did not return JSON") from exc
        if isinstance(payload, list) and payload:
            payload = payload[0]
        if not isinstance(payload, dict):
            raise PreconditionError("Local identity collector returned an unexpected payload")

        serial = lookup_first(payload, FIELD_ALIASES["serial_number"])
        fingerprint = lookup_first(payload, FIELD_ALIASES["hardware_fingerprint"])
        product_key = lookup_first(payload, FIELD_ALIASES["product_key"])
        return LocalIdentity(
            serial=str(serial or "").strip(),
            fingerprint=str(fingerprint or "").strip(),
            product_key=str(product_key or "").strip(),
        )
