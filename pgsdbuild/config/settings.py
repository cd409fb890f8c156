"""Settings for the build tool and installer constants."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional


SETTINGS_PATH = Path.home() / ".config" / "pgsdbuild" / "settings.json"

# Installer constants - use these instead of hardcoding values elsewhere
INSTALLED_IMAGES_DIR = "/usr/local/share/pgsd/images"
FALLBACK_IMAGES_DIR = "artifacts"
DEFAULT_POOL_NAME = "pgsd"
ALTROOT = "/mnt"
EFI_PARTITION_SIZE = "200M"
EFI_LABEL = "efiboot0"
DATA_LABEL = "zfsroot0"
BOOT_BLOB_PATH = "/boot/boot1.efifat"
ROOT_DATASET_SUFFIX = "ROOT/default"

_TRUE_VALUES = ("1", "true", "yes", "on")

# Environment variable -> BuildSettings field
ENV_OVERRIDES = {
    "PGSD_ARTIFACTS_DIR": "artifacts_dir",
    "PGSD_WORK_DIR": "work_dir",
    "PGSD_ISO_DIR": "iso_dir",
    "PGSD_VERBOSE": "verbose",
    "PGSD_KEEP_WORK": "keep_work",
}


@dataclass
class BuildSettings:
    artifacts_dir: str = "artifacts"
    work_dir: str = "work"
    iso_dir: str = "iso"
    verbose: bool = False
    keep_work: bool = False
    root_dir: str = "."

    def resolve_dir(self, name: str) -> Path:
        """Return ``name`` as an absolute path, relative to ``root_dir``."""
        path = Path(name)
        if path.is_absolute():
            return path
        return (Path(self.root_dir) / path).resolve()

    def get_artifacts_dir(self) -> Path:
        return self.resolve_dir(self.artifacts_dir)

    def get_work_dir(self) -> Path:
        return self.resolve_dir(self.work_dir)

    def get_iso_dir(self) -> Path:
        return self.resolve_dir(self.iso_dir)


def _coerce(current: Any, value: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_VALUES
        return bool(value)
    if not isinstance(value, (str, int, float)):
        raise TypeError(f"expected a string, got {type(value).__name__}")
    return str(value)


def _read_settings_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(data, dict):
        return data
    return {}


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    settings_path: Optional[Path] = None,
) -> BuildSettings:
    """Build settings from defaults, the JSON settings file and environment.

    Later sources win. Unknown keys and values that cannot be converted to
    the field's type are ignored, as are unreadable settings files.
    """
    environ = os.environ if environ is None else environ
    if settings_path is None:
        settings_path = Path(environ.get("PGSD_SETTINGS_PATH", SETTINGS_PATH))

    settings = BuildSettings()
    known = {item.name for item in fields(BuildSettings)}

    updates: dict[str, Any] = {}
    for key, value in _read_settings_file(Path(settings_path)).items():
        if key in known:
            updates[key] = value
    for variable, key in ENV_OVERRIDES.items():
        if variable in environ:
            updates[key] = environ[variable]

    coerced: dict[str, Any] = {}
    for key, value in updates.items():
        try:
            coerced[key] = _coerce(getattr(settings, key), value)
        except TypeError:
            continue
    return replace(settings, **coerced)
