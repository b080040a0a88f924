"""Credential providers consulted before any registry call."""

from __future__ import annotations

import os
from typing import Protocol

from device_onboard.common.errors import PreconditionError


class CredentialProvider(Protocol):
    def get_valid_credential(self) -> str: ...


class StaticCredentialProvider:
    """Holds an already-acquired bearer token in memory."""

    def __init__(self, token: str | None) -> None:
        self._token = (token or "").strip()

    def get_valid_credential(self) -> str:
        if not self._token:
            raise PreconditionError("Not connected: no access token available")
        return self._token


class EnvCredentialProvider:
    def __init__(self, variable: str = "GRAPH_ACCESS_TOKEN") -> None:
        self.variable = variable

    def get_valid_credential(self) -> str:
        token = os.environ.get(self.variable, "").strip()
        if not token:
            raise PreconditionError(f"Not connected: environment variable {self.variable} is not set")
        return token
