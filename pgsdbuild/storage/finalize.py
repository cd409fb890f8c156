"""Pool finalization after the root stream has been received."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from pgsdbuild.logging import LoggerFactory

from .commands import CommandRunner
from .transfer import root_dataset


if TYPE_CHECKING:
    from loguru import Logger


class PoolFinalizer:
    """Marks the boot dataset and detaches the pool from the installer host.

    The pool must be exported before reboot, otherwise the installed system
    finds it still imported under the installer's hostid.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        log: Optional[Logger] = None,
    ):
        self.log = log or LoggerFactory.for_install()
        self.runner = runner or CommandRunner(log=self.log)

    def set_bootfs(self, pool_name: str) -> None:
        dataset = root_dataset(pool_name)
        self.log.debug(f"Setting bootfs of {pool_name} to {dataset}")
        self.runner.run("zpool", ["set", f"bootfs={dataset}", pool_name])

    def export(self, pool_name: str) -> None:
        self.log.debug(f"Exporting pool {pool_name}")
        self.runner.run("zpool", ["export", pool_name])

    def finalize(self, pool_name: str) -> None:
        """Set bootfs, then export. Both steps are fatal."""
        self.set_bootfs(pool_name)
        self.export(pool_name)
