"""GPT partitioning of an installation target.

Sequence, each step depending on the previous one succeeding:

    1. gpart destroy -F <disk>        best effort, failure ignored
    2. gpart create -s gpt <disk>
    3. gpart add -t efi -s 200M -l efiboot0 <disk>
    4. gpart add -t freebsd-zfs -l zfsroot0 <disk>

Step 1 only resets disks that already carry a partition table; on a blank
disk it fails and that is the common case. Steps 2-4 are fatal. Nothing is
undone after a failure, so the disk may be left half partitioned.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from pgsdbuild.domain import DEFAULT_LAYOUT, PartitionLayout
from pgsdbuild.logging import LoggerFactory

from .commands import CommandResult, CommandRunner


if TYPE_CHECKING:
    from loguru import Logger


GPART = "gpart"


class DiskPartitioner:
    """Writes the two-partition EFI + data GPT layout onto a disk."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        log: Optional[Logger] = None,
        layout: PartitionLayout = DEFAULT_LAYOUT,
    ):
        self.log = log or LoggerFactory.for_install()
        self.runner = runner or CommandRunner(log=self.log)
        self.layout = layout

    def reset_partition_table(self, disk: str) -> CommandResult:
        """Destroy any existing partition table, ignoring the outcome."""
        result = self.runner.run_best_effort(GPART, ["destroy", "-F", disk])
        if result.ok:
            self.log.debug(f"Existing partition table on {disk} destroyed")
        else:
            self.log.debug(f"No partition table destroyed on {disk}")
        return result

    def partition(self, disk: str) -> None:
        """Partition ``disk``.

        Raises:
            CommandError: If creating the table or either partition fails
        """
        layout = self.layout
        self.reset_partition_table(disk)

        self.log.debug(f"Creating GPT partition table on {disk}")
        self.runner.run(GPART, ["create", "-s", "gpt", disk])

        self.log.debug(f"Adding {layout.efi_size} EFI system partition to {disk}")
        self.runner.run(
            GPART,
            [
                "add",
                "-t",
                layout.efi_type,
                "-s",
                layout.efi_size,
                "-l",
                layout.efi_label,
                disk,
            ],
        )

        self.log.debug(f"Adding data partition spanning the rest of {disk}")
        self.runner.run(
            GPART,
            ["add", "-t", layout.data_type, "-l", layout.data_label, disk],
        )
