"""Configuration management for the user service."""
from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .database import DEFAULT_LOG_LIMIT, resolve_database_path

_LOG_LEVELS = {"critical", "error", "warning", "info", "debug"}


def _parse_flag(value: object, field: str) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {field}: {value!r}")


def _parse_int(value: object, field: str, *, minimum: int) -> int:
    try:
        number = int(str(value).strip())
    except ValueError as exc:
        raise ValueError(f"Invalid integer value for {field}: {value!r}") from exc
    if number < minimum:
        raise ValueError(f"{field} must be at least {minimum}")
    return number


def _parse_log_level(value: object) -> str:
    level = str(value).strip().lower()
    if level not in _LOG_LEVELS:
        raise ValueError(f"Unknown log level: {value!r}")
    return level


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the HTTP service and the CLI."""

    database_path: Path
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "info"
    seed_on_startup: bool = True
    log_page_size: int = DEFAULT_LOG_LIMIT

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "Settings":
        """Create :class:`Settings` from a raw mapping such as a YAML document."""

        unknown = set(data.keys()) - {
            "database_path",
            "host",
            "port",
            "log_level",
            "seed_on_startup",
            "log_page_size",
        }
        if unknown:
            raise ValueError(f"Unknown configuration fields: {', '.join(sorted(unknown))}")

        raw_path = data.get("database_path")
        if raw_path:
            candidate = Path(str(raw_path)).expanduser()
            if not candidate.is_absolute() and base_path is not None:
                candidate = base_path / candidate
            database_path = candidate.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        return Settings(
            database_path=database_path,
            host=str(data.get("host", "127.0.0.1")),
            port=_parse_int(data.get("port", 3000), "port", minimum=1),
            log_level=_parse_log_level(data.get("log_level", "info")),
            seed_on_startup=_parse_flag(data.get("seed_on_startup", True), "seed_on_startup"),
            log_page_size=_parse_int(data.get("log_page_size", DEFAULT_LOG_LIMIT), "log_page_size", minimum=1),
        )

    def with_env(self, environ: Mapping[str, str]) -> "Settings":
        """Return a copy with ``USERDESK_*`` environment overrides applied."""

        overrides: Dict[str, object] = {}
        if environ.get("USERDESK_DB_PATH"):
            overrides["database_path"] = resolve_database_path(environ["USERDESK_DB_PATH"])
        if environ.get("USERDESK_HOST"):
            overrides["host"] = environ["USERDESK_HOST"].strip()
        if environ.get("USERDESK_PORT"):
            overrides["port"] = _parse_int(environ["USERDESK_PORT"], "USERDESK_PORT", minimum=1)
        if environ.get("USERDESK_LOG_LEVEL"):
            overrides["log_level"] = _parse_log_level(environ["USERDESK_LOG_LEVEL"])
        if environ.get("USERDESK_SEED"):
            overrides["seed_on_startup"] = _parse_flag(environ["USERDESK_SEED"], "USERDESK_SEED")
        if environ.get("USERDESK_LOG_PAGE_SIZE"):
            overrides["log_page_size"] = _parse_int(
                environ["USERDESK_LOG_PAGE_SIZE"], "USERDESK_LOG_PAGE_SIZE", minimum=1
            )
        return replace(self, **overrides)


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the path to the optional YAML configuration file."""
    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    candidate = (Path(__file__).resolve().parent.parent / "config" / "userdesk.yaml").resolve(strict=False)
    if candidate.exists():
        return candidate
    return None


def load_settings(
    config_path: Optional[Path] = None,
    *,
    environ: Optional[Mapping[str, str]] = None,
) -> Settings:
    """Load settings from YAML (when present) and the environment."""
    if environ is None:
        environ = os.environ
    if config_path is None:
        config_path = resolve_config_path(environ.get("USERDESK_CONFIG"))

    raw: Mapping[str, object] = {}
    base_path: Optional[Path] = None
    if config_path is not None:
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")
        raw = loaded
        base_path = config_path.parent

    return Settings.from_dict(raw, base_path=base_path).with_env(environ)


__all__ = ["Settings", "load_settings", "resolve_config_path"]
