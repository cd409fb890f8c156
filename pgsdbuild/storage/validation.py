"""Pre-flight checks for the installation pipeline.

Everything here runs before the first destructive command:
- Validates the installation configuration (fields, image artifacts, pool name)
- Checks that every required external tool is on PATH
- Checks that the process runs with root privileges

All validation functions raise specific exceptions from the exceptions module
rather than returning boolean values, making error handling more explicit.

Example:
    from pgsdbuild.storage.validation import validate_install_config

    try:
        validate_install_config(config)
        # Safe to start touching the disk
    except ValidationError as error:
        print(error.reason)
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Callable, Optional

from pgsdbuild.domain import REQUIRED_ARTIFACTS, InstallConfig

from .exceptions import MissingArtifactError, RequirementsError, ValidationError


REQUIRED_TOOLS = ("gpart", "newfs_msdos", "zpool", "zfs", "xzcat", "dd")

MAX_POOL_NAME_LENGTH = 63
POOL_NAME_ILLEGAL_CHARS = ("/", "\\")


def validate_pool_name(pool_name: str) -> None:
    """Validate a pool name.

    Raises:
        ValidationError: If the name is empty, longer than 63 characters,
            or contains whitespace, ``/`` or ``\\``
    """
    if not pool_name:
        raise ValidationError("pool_name", "pool name is required")
    if len(pool_name) > MAX_POOL_NAME_LENGTH:
        raise ValidationError(
            "pool_name",
            f"pool name too long ({len(pool_name)} > {MAX_POOL_NAME_LENGTH} characters)",
        )
    for char in pool_name:
        if char.isspace() or char in POOL_NAME_ILLEGAL_CHARS:
            raise ValidationError(
                "pool_name", f"pool name contains invalid character: {char!r}"
            )


def validate_image_dir(image_path: str) -> None:
    """Validate that ``image_path`` is a directory with every required artifact.

    Raises:
        ValidationError: If the directory does not exist
        MissingArtifactError: Naming the first required file that is absent
    """
    directory = Path(image_path)
    if not directory.is_dir():
        raise ValidationError(
            "image_path", f"image directory does not exist: {image_path}"
        )
    for filename in REQUIRED_ARTIFACTS:
        if not (directory / filename).is_file():
            raise MissingArtifactError(str(directory), filename, REQUIRED_ARTIFACTS)


def validate_install_config(config: InstallConfig) -> None:
    """Validate an installation configuration.

    Checks run in a fixed order: required fields, image directory and
    artifacts, then pool name rules. Nothing here runs external programs.

    Raises:
        ValidationError: On the first problem found
    """
    if not config.image_path:
        raise ValidationError("image_path", "image path is required")
    if not config.target_disk:
        raise ValidationError("target_disk", "target disk is required")
    if not config.pool_name:
        raise ValidationError("pool_name", "pool name is required")

    validate_image_dir(config.image_path)
    validate_pool_name(config.pool_name)


def _is_root() -> bool:
    return os.geteuid() == 0


def check_requirements(
    which: Callable[[str], Optional[str]] = shutil.which,
    is_root: Callable[[], bool] = _is_root,
    tools=REQUIRED_TOOLS,
) -> None:
    """Check external tools and privileges.

    Every missing tool is reported at once, together with a missing root
    privilege, so the operator can fix the host in a single pass.

    Raises:
        RequirementsError: If anything is missing
    """
    missing = [tool for tool in tools if which(tool) is None]
    not_root = not is_root()
    if missing or not_root:
        raise RequirementsError(missing_tools=missing, not_root=not_root)
