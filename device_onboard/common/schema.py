"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from device_onboard.common.errors import ConfigError

TOP_LEVEL_KEYS = {"registry", "polling", "duplicates", "http", "defaults"}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_positive(obj: dict, keys: set[str], ctx: str) -> None:
    for key in sorted(keys):
        value = obj[key]
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
            raise ConfigError(f"{ctx}.{key} must be a positive number, got {value!r}")


def validate_onboarding_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    _assert_required_keys(cfg, TOP_LEVEL_KEYS, "onboarding config")
    _assert_no_unknown_keys(cfg, TOP_LEVEL_KEYS, "onboarding config", allow_unknown)

    registry_keys = {"base_url", "devices_path", "imports_path", "serial_filter"}
    _assert_required_keys(cfg["registry"], registry_keys, "registry")
    _assert_no_unknown_keys(cfg["registry"], registry_keys, "registry", allow_unknown)
    if "{serial}" not in str(cfg["registry"]["serial_filter"]):
        raise ConfigError("registry.serial_filter must contain a {serial} placeholder")

    polling_keys = {"interval_seconds", "max_attempts"}
    _assert_required_keys(cfg["polling"], polling_keys, "polling")
    _assert_no_unknown_keys(cfg["polling"], polling_keys, "polling", allow_unknown)
    _assert_positive(cfg["polling"], polling_keys, "polling")

    duplicate_keys = {"page_size", "max_pages"}
    _assert_required_keys(cfg["duplicates"], duplicate_keys, "duplicates")
    _assert_no_unknown_keys(cfg["duplicates"], duplicate_keys, "duplicates", allow_unknown)
    _assert_positive(cfg["duplicates"], duplicate_keys, "duplicates")

    http_keys = {"connect_timeout", "read_timeout", "max_attempts", "rate_per_sec"}
    _assert_required_keys(cfg["http"], http_keys, "http")
    _assert_no_unknown_keys(cfg["http"], http_keys, "http", allow_unknown)
    _assert_positive(cfg["http"], http_keys, "http")

    default_keys = {"group_tag", "assigned_user_principal_name", "assigned_computer_name"}
    defaults = cfg["defaults"] or {}
    _assert_no_unknown_keys(defaults, default_keys, "defaults", allow_unknown)
    cfg["defaults"] = defaults

    return cfg
