"""Filesystem and pool creation on freshly partitioned disks."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from pgsdbuild.config.settings import ALTROOT
from pgsdbuild.logging import LoggerFactory

from .commands import CommandRunner


if TYPE_CHECKING:
    from loguru import Logger


DEFAULT_ALTROOT = ALTROOT
DEFAULT_COMPRESSION = "lz4"


class FilesystemProvisioner:
    """Formats the EFI partition and creates the storage pool."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        log: Optional[Logger] = None,
        altroot: str = DEFAULT_ALTROOT,
        compression: str = DEFAULT_COMPRESSION,
    ):
        self.log = log or LoggerFactory.for_install()
        self.runner = runner or CommandRunner(log=self.log)
        self.altroot = altroot
        self.compression = compression

    def format_efi(self, partition: str) -> None:
        """Create a FAT32 filesystem with one sector per cluster."""
        self.log.debug(f"Formatting {partition} as FAT32")
        self.runner.run("newfs_msdos", ["-F", "32", "-c", "1", partition])

    def create_pool(self, pool_name: str, partition: str) -> None:
        """Create ``pool_name`` on ``partition`` under the temporary altroot.

        ``-f`` is required: the partition was just created and can still
        carry labels from an earlier attempt.
        """
        self.log.debug(
            f"Creating pool {pool_name} on {partition} (altroot={self.altroot})"
        )
        self.runner.run(
            "zpool",
            [
                "create",
                "-f",
                "-o",
                f"altroot={self.altroot}",
                "-O",
                f"compression={self.compression}",
                "-O",
                "atime=off",
                pool_name,
                partition,
            ],
        )
