from __future__ import annotations

import json
import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .paths import resolve_setting_path
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "BackupConfig",
    "ConfigError",
    "ConfigMissingError",
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "load_config",
    "load_settings",
    "merge_defaults",
    "parse_key_value",
    "split_patterns",
]

LOGGER = logging.getLogger("tierbackup.settings")

SETTINGS_VERSION = 1


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "destination": "./backupfiles",
    "log_file": "./backup.log",
    "email_file": "./email.txt",
    "exclude_patterns": "",
    "retention": {
        "daily_keep": 7,
        "weekly_keep": 4,
        "monthly_keep": 3,
    },
    "lock": {
        "path": None,
        "stale_after_s": 0,
        "reclaim_dead_owner": False,
    },
}

# Shell-style keys understood in backup.config and where they land.
_FLAT_KEYS: Dict[str, Tuple[str, ...]] = {
    "BACKUP_DESTINATION": ("destination",),
    "LOG_FILE": ("log_file",),
    "EMAIL_FILE": ("email_file",),
    "EXCLUDE_PATTERNS": ("exclude_patterns",),
    "DAILY_KEEP": ("retention", "daily_keep"),
    "WEEKLY_KEEP": ("retention", "weekly_keep"),
    "MONTHLY_KEEP": ("retention", "monthly_keep"),
    "LOCK_FILE": ("lock", "path"),
    "LOCK_STALE_AFTER_S": ("lock", "stale_after_s"),
    "LOCK_RECLAIM_DEAD_OWNER": ("lock", "reclaim_dead_owner"),
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"", "0", "false", "no", "off"}


class ConfigError(RuntimeError):
    """Raised when the configuration cannot be turned into a usable value."""


class ConfigMissingError(ConfigError):
    """Raised when the configuration file does not exist."""


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                if isinstance(current, dict):
                    result[key] = _merge(value, current)
                else:
                    result[key] = _merge(value, {})
            elif isinstance(value, list):
                current = payload.get(key)
                result[key] = list(current) if isinstance(current, list) else list(value)
            else:
                result[key] = payload.get(key, value)
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def split_patterns(value: str | Iterable[str] | None) -> Tuple[str, ...]:
    """Split a comma separated exclusion list, trimming items and dropping empties."""

    if not value:
        return ()
    items = value.split(",") if isinstance(value, str) else list(value)
    return tuple(item.strip() for item in items if item and item.strip())


def parse_key_value(text: str, *, source: str = "<config>") -> Dict[str, str]:
    """Parse ``KEY=VALUE`` assignments written in shell syntax.

    Blank lines, ``#`` comments and a leading ``export`` are accepted. Lines
    that are not assignments are ignored with a warning.
    """

    values: Dict[str, str] = {}
    for lineno, raw in enumerate(text.splitlines(), start=1):
        try:
            tokens = shlex.split(raw, comments=True, posix=True)
        except ValueError as exc:
            raise ConfigError(f"{source}:{lineno}: {exc}") from exc
        if not tokens:
            continue
        if tokens[0] == "export":
            tokens = tokens[1:]
        if len(tokens) != 1 or "=" not in tokens[0]:
            LOGGER.warning("Ignoring non-assignment line %s:%d: %s", source, lineno, raw.strip())
            continue
        key, _, value = tokens[0].partition("=")
        if not key.isidentifier():
            LOGGER.warning("Ignoring invalid key %r at %s:%d", key, source, lineno)
            continue
        values[key] = value
    return values


def _flat_to_nested(values: Dict[str, str]) -> Dict[str, Any]:
    nested: Dict[str, Any] = {}
    for key, value in values.items():
        target = _FLAT_KEYS.get(key)
        if target is None:
            nested[key] = value
            continue
        cursor = nested
        for part in target[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[target[-1]] = value
    return nested


def _read_settings_file(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigMissingError(f"Configuration file not found: {path}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc
    if path.suffix.lower() == ".json":
        try:
            loaded = json.loads(text) if text.strip() else {}
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"Configuration in {path} must be a JSON object")
        return loaded
    return _flat_to_nested(parse_key_value(text, source=str(path)))


def _log_unknown_keys(settings: Dict[str, Any], source: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if unknown:
        LOGGER.warning("Unknown configuration keys in %s: %s", source, ", ".join(unknown))


def load_settings(path: Path) -> Dict[str, Any]:
    """Load and merge the configuration file at *path* with the defaults."""

    path = Path(path)
    if not path.is_file():
        raise ConfigMissingError(f"Configuration file not found: {path}")
    merged = merge_defaults(_read_settings_file(path))
    merged["version"] = SETTINGS_VERSION
    _log_unknown_keys(merged, path)
    return merged


def _coerce_count(value: Any, key: str) -> int:
    try:
        count = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a non-negative integer, got {value!r}") from exc
    if count < 0:
        raise ConfigError(f"{key} must be a non-negative integer, got {value!r}")
    return count


def _coerce_seconds(value: Any, key: str) -> float:
    try:
        seconds = float(str(value).strip() or 0)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be a number of seconds, got {value!r}") from exc
    if seconds < 0:
        raise ConfigError(f"{key} must be >= 0, got {value!r}")
    return seconds


def _coerce_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigError(f"{key} must be a boolean, got {value!r}")


@dataclass(frozen=True, slots=True)
class BackupConfig:
    """Immutable run configuration, built once per process."""

    destination: Path
    log_file: Path
    email_file: Path
    lock_file: Path
    exclude_patterns: Tuple[str, ...] = ()
    daily_keep: int = 7
    weekly_keep: int = 4
    monthly_keep: int = 3
    lock_stale_after_s: float = 0.0
    lock_reclaim_dead_owner: bool = False
    config_path: Optional[Path] = None

    @classmethod
    def from_settings(
        cls,
        settings: Dict[str, Any],
        *,
        base_dir: Path,
        config_path: Optional[Path] = None,
    ) -> "BackupConfig":
        merged = merge_defaults(settings)
        retention = merged["retention"]
        lock = merged["lock"]
        destination = resolve_setting_path(str(merged["destination"] or "."), base_dir)
        lock_raw = lock.get("path")
        lock_file = (
            resolve_setting_path(str(lock_raw), base_dir) if lock_raw else destination / "backup.lock"
        )
        return cls(
            destination=destination,
            log_file=resolve_setting_path(str(merged["log_file"]), base_dir),
            email_file=resolve_setting_path(str(merged["email_file"]), base_dir),
            lock_file=lock_file,
            exclude_patterns=split_patterns(merged.get("exclude_patterns")),
            daily_keep=_coerce_count(retention.get("daily_keep"), "DAILY_KEEP"),
            weekly_keep=_coerce_count(retention.get("weekly_keep"), "WEEKLY_KEEP"),
            monthly_keep=_coerce_count(retention.get("monthly_keep"), "MONTHLY_KEEP"),
            lock_stale_after_s=_coerce_seconds(lock.get("stale_after_s"), "LOCK_STALE_AFTER_S"),
            lock_reclaim_dead_owner=_coerce_bool(lock.get("reclaim_dead_owner"), "LOCK_RECLAIM_DEAD_OWNER"),
            config_path=config_path,
        )

    def describe(self) -> List[str]:
        return [
            f"destination={self.destination}",
            f"retention=daily:{self.daily_keep} weekly:{self.weekly_keep} monthly:{self.monthly_keep}",
            f"exclude={','.join(self.exclude_patterns) or '-'}",
            f"lock={self.lock_file}",
        ]


def load_config(path: Path) -> BackupConfig:
    """Load *path* and build the immutable :class:`BackupConfig`."""

    path = Path(path).resolve()
    settings = load_settings(path)
    return BackupConfig.from_settings(settings, base_dir=path.parent, config_path=path)
