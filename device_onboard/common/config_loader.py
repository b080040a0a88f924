"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from device_onboard.common.constants import (
    DEFAULT_MAX_PAGES,
    DEFAULT_MAX_POLL_ATTEMPTS,
    DEFAULT_PAGE_SIZE,
    DEFAULT_POLL_INTERVAL_SECONDS,
)
from device_onboard.common.errors import ConfigError
from device_onboard.common.fs import read_yaml
from device_onboard.common.schema import validate_onboarding_config

CONFIG_FILENAME = "onboarding.yml"


@dataclass(frozen=True)
class RegistrySettings:
    base_url: str = "https://graph.microsoft.com/beta"
    devices_path: str = "deviceManagement/windowsAutopilotDeviceIdentities"
    imports_path: str = "deviceManagement/importedWindowsAutopilotDeviceIdentities"
    serial_filter: str = "contains(serialNumber,'{serial}')"


@dataclass(frozen=True)
class EngineSettings:
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_poll_attempts: int = DEFAULT_MAX_POLL_ATTEMPTS
    page_size: int = DEFAULT_PAGE_SIZE
    max_pages: int = DEFAULT_MAX_PAGES


@dataclass(frozen=True)
class HttpSettings:
    connect_timeout: float = 20.0
    read_timeout: float = 60.0
    max_attempts: int = 4
    rate_per_sec: float = 5.0


@dataclass(frozen=True)
class ConfigBundle:
    registry: RegistrySettings = field(default_factory=RegistrySettings)
    engine: EngineSettings = field(default_factory=EngineSettings)
    http: HttpSettings = field(default_factory=HttpSettings)
    defaults: dict[str, str] = field(default_factory=dict)


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    if not path.exists():
        raise ConfigError(f"Missing config file: {path}")
    base = read_yaml(path) or {}
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path) or {}
    return _deep_merge(base, overlay)


def bundle_from_dict(cfg: dict) -> ConfigBundle:
    registry = cfg["registry"]
    polling = cfg["polling"]
    duplicates = cfg["duplicates"]
    http = cfg["http"]
    return ConfigBundle(
        registry=RegistrySettings(
            base_url=str(registry["base_url"]).rstrip("/"),
            devices_path=str(registry["devices_path"]).strip("/"),
            imports_path=str(registry["imports_path"]).strip("/"),
            serial_filter=str(registry["serial_filter"]),
        ),
        engine=EngineSettings(
            poll_interval_seconds=float(polling["interval_seconds"]),
            max_poll_attempts=int(polling["max_attempts"]),
            page_size=int(duplicates["page_size"]),
            max_pages=int(duplicates["max_pages"]),
        ),
        http=HttpSettings(
            connect_timeout=float(http["connect_timeout"]),
            read_timeout=float(http["read_timeout"]),
            max_attempts=int(http["max_attempts"]),
            rate_per_sec=float(http["rate_per_sec"]),
        ),
        defaults={key: str(value) for key, value in cfg["defaults"].items() if value not in (None, "")},
    )


def load_config(
    config_dir: Path,
    *,
    allow_unknown: bool = False,
    overlay_config_dir: Path | None = None,
) -> ConfigBundle:
    overlay_path = (overlay_config_dir / CONFIG_FILENAME) if overlay_config_dir is not None else None
    cfg = _load_yaml_with_overlay(config_dir / CONFIG_FILENAME, overlay_path)
    return bundle_from_dict(validate_onboarding_config(cfg, allow_unknown=allow_unknown))
