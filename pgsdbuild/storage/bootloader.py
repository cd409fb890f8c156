"""Boot code installation onto the target disk."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from pgsdbuild.config.settings import BOOT_BLOB_PATH
from pgsdbuild.logging import LoggerFactory

from .commands import CommandRunner


if TYPE_CHECKING:
    from loguru import Logger


DEFAULT_BOOT_BLOB = BOOT_BLOB_PATH


class BootloaderInstaller:
    """Thin wrapper around ``gpart bootcode``. No retry."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        log: Optional[Logger] = None,
    ):
        self.log = log or LoggerFactory.for_install()
        self.runner = runner or CommandRunner(log=self.log)

    def install(
        self,
        disk: str,
        boot_blob: str = DEFAULT_BOOT_BLOB,
        partition_index: int = 1,
    ) -> None:
        self.log.debug(
            f"Writing boot code {boot_blob} to partition {partition_index} of {disk}"
        )
        self.runner.run(
            "gpart",
            ["bootcode", "-p", boot_blob, "-i", str(partition_index), disk],
        )
