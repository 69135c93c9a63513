from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

__all__ = [
    "CONFIG_ENV",
    "DEFAULT_CONFIG_NAME",
    "expand_path",
    "resolve_config_path",
    "resolve_setting_path",
]

CONFIG_ENV = "TIERBACKUP_CONFIG"
DEFAULT_CONFIG_NAME = "backup.config"


def expand_path(value: str | os.PathLike[str]) -> Path:
    """Expand ``~`` and environment variables in *value* without resolving it."""

    expanded = os.path.expandvars(os.path.expanduser(str(value)))
    return Path(expanded)


def resolve_config_path(explicit: Optional[str | os.PathLike[str]] = None) -> Path:
    """Return the configuration file to load.

    An explicit path wins, then ``$TIERBACKUP_CONFIG``, then ``./backup.config``.
    """

    if explicit:
        return expand_path(explicit).resolve()
    env_value = os.environ.get(CONFIG_ENV)
    if env_value:
        return expand_path(env_value).resolve()
    return (Path.cwd() / DEFAULT_CONFIG_NAME).resolve()


def resolve_setting_path(value: str | os.PathLike[str], base_dir: Path) -> Path:
    """Resolve a path from the configuration relative to the config file's directory."""

    path = expand_path(value)
    if not path.is_absolute():
        path = base_dir / path
    return path.resolve()
