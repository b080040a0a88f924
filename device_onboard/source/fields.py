"""Ordered alias tables mapping input field names onto canonical record attributes."""

from __future__ import annotations

from typing import Mapping

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "serial_number": ("serialNumber", "Device Serial Number", "Serial Number", "serial"),
    "product_key": ("productKey", "Windows Product ID", "Product ID", "productId"),
    "hardware_fingerprint": (
        "hardwareIdentifier",
        "Hardware Hash",
        "hardwareHash",
        "hardwareFingerprint",
        "hash",
    ),
    "group_tag": ("groupTag", "Group Tag", "orderIdentifier"),
    "assigned_user_principal_name": ("assignedUserPrincipalName", "Assigned User", "userPrincipalName"),
    "assigned_computer_name": ("assignedComputerName", "displayName", "Computer Name"),
}

TABULAR_HEADERS = [
    "Serial Number",
    "Product ID",
    "Hardware Hash",
    "Group Tag",
    "Assigned User",
    "Computer Name",
]


def normalise_key(key: object) -> str:
    return "".join(ch for ch in str(key).lower() if ch not in " _-")


def _normalised_mapping(attributes: Mapping[str, object]) -> dict[str, object]:
    out: dict[str, object] = {}
    for key, value in attributes.items():
        if key is None:
            continue
        out.setdefault(normalise_key(key), value)
    return out


def lookup_first(attributes: Mapping[str, object], candidates: tuple[str, ...]) -> object | None:
    normalised = _normalised_mapping(attributes)
    for key in candidates:
        value = normalised.get(normalise_key(key))
        if value not in (None, ""):
            return value
    return None


def recognised_fields(keys: list[str]) -> set[str]:
    present = {normalise_key(key) for key in keys if key is not None}
    return {
        canonical
        for canonical, aliases in FIELD_ALIASES.items()
        if any(normalise_key(alias) in present for alias in aliases)
    }


def canonical_values(attributes: Mapping[str, object]) -> dict[str, str]:
    values = {}
    for canonical, aliases in FIELD_ALIASES.items():
        value = lookup_first(attributes, aliases)
        values[canonical] = "" if value is None else str(value)
    return values


def tabular_row(values: Mapping[str, str]) -> dict[str, str]:
    return {
        "Serial Number": values.get("serial_number", ""),
        "Product ID": values.get("product_key", ""),
        "Hardware Hash": values.get("hardware_fingerprint", ""),
        "Group Tag": values.get("group_tag", ""),
        "Assigned User": values.get("assigned_user_principal_name", ""),
        "Computer Name": values.get("assigned_computer_name", ""),
    }
