"""Registry client for device identities and their import records."""

from __future__ import annotations

from typing import Any, Iterator

from device_onboard.common.config_loader import RegistrySettings
from device_onboard.common.errors import PollError, SubmissionError
from device_onboard.common.http import HttpClient, HttpRequestError
from device_onboard.common.models import IdentityRecord, ImportStatus

NEXT_LINK_KEY = "@odata.nextLink"
CANDIDATE_LIMIT = 5


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


def _json_object(payload: Any, url: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise HttpRequestError(f"Expected a JSON object from {url}, got {type(payload).__name__}")
    return payload


def entry_serial(entry: dict) -> str:
    return str(entry.get("serialNumber") or "").strip().casefold()


def _error_code(value: Any) -> str | None:
    if value in (None, "", 0, "0"):
        return None
    return str(value)


class RegistryClient:
    def __init__(self, http: HttpClient, settings: RegistrySettings | None = None) -> None:
        self.http = http
        self.settings = settings or RegistrySettings()

    @property
    def devices_url(self) -> str:
        return f"{self.settings.base_url}/{self.settings.devices_path}"

    @property
    def imports_url(self) -> str:
        return f"{self.settings.base_url}/{self.settings.imports_path}"

    def find_by_serial(self, serial: str, top: int = 1) -> list[dict]:
        query = self.settings.serial_filter.format(serial=_odata_quote(serial.strip()))
        payload = _json_object(
            self.http.get_json(self.devices_url, params={"$filter": query, "$top": top}),
            self.devices_url,
        )
        return list(payload.get("value") or [])

    def iter_pages(self, page_size: int, max_pages: int) -> Iterator[list[dict]]:
        url: str | None = self.devices_url
        params: dict[str, Any] | None = {"$top": page_size}
        pages = 0
        while url and pages < max_pages:
            payload = _json_object(self.http.get_json(url, params=params), url)
            pages += 1
            yield list(payload.get("value") or [])
            # The next link already carries the paging query.
            url = payload.get(NEXT_LINK_KEY)
            params = None

    def create_record(self, record: IdentityRecord) -> str:
        try:
            payload = _json_object(
                self.http.post_json(self.imports_url, json_body=record.to_payload(), idempotent=False),
                self.imports_url,
            )
        except HttpRequestError as exc:
            raise SubmissionError(
                exc.remote_message or str(exc),
                remote_code=exc.remote_code,
                status_code=exc.status_code,
            ) from exc
        import_id = payload.get("id")
        if not import_id:
            raise SubmissionError("Create call returned no import identifier")
        return str(import_id)

    def get_import_status(self, import_id: str) -> ImportStatus:
        url = f"{self.imports_url}/{import_id}"
        try:
            payload = _json_object(self.http.get_json(url), url)
        except HttpRequestError as exc:
            raise PollError(f"Import status read failed for {import_id}: {exc}") from exc
        state = payload.get("state")
        if not isinstance(state, dict):
            state = {}
        return ImportStatus(
            status=str(state.get("deviceImportStatus") or ""),
            error_name=state.get("deviceErrorName") or None,
            error_code=_error_code(state.get("deviceErrorCode")),
        )

    def delete_import(self, import_id: str) -> None:
        self.http.delete(f"{self.imports_url}/{import_id}")


def serial_registered(registry: RegistryClient, serial: str, top: int = CANDIDATE_LIMIT) -> bool:
    """Exact serial presence check; the server-side filter may also return partial matches."""
    wanted = serial.strip().casefold()
    return any(entry_serial(entry) == wanted for entry in registry.find_by_serial(serial, top=top))
