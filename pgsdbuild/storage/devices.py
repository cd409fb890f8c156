"""Disk naming and discovery on FreeBSD.

Partition device names are derived in one place, ``partition_device()``,
so the ``<disk>p<N>`` GEOM convention can be swapped for another platform
without touching the installer.

Disk discovery tries ``geom disk list`` first and falls back to
``sysctl -n kern.disks`` with ``diskinfo`` for sizes. CD
drives, memory disks and pass-through devices are never offered as
installation targets.
"""

from __future__ import annotations

from typing import Callable, Optional

from pgsdbuild.domain import DiskInfo
from pgsdbuild.logging import LoggerFactory

from .commands import CommandRunner
from .exceptions import CommandError


EXCLUDED_DISK_PREFIXES = ("cd", "md", "pass")

log = LoggerFactory.for_system()

PartitionNamer = Callable[[str, int], str]


def partition_device(disk: str, index: int) -> str:
    """Return the device name of partition ``index`` on ``disk``.

    >>> partition_device("ada0", 2)
    'ada0p2'
    """
    if not disk:
        raise ValueError("disk identifier is required")
    if index < 1:
        raise ValueError(f"partition index must be >= 1, got {index}")
    return f"{disk}p{index}"


def format_bytes(value) -> str:
    """Convert a byte count to a human readable size (B/KB/MB/GB/TB).

    Values that are not integers are returned unchanged.
    """
    try:
        size = int(value)
    except (TypeError, ValueError):
        return str(value)
    for unit, factor in (("TB", 1024**4), ("GB", 1024**3), ("MB", 1024**2), ("KB", 1024)):
        if size >= factor:
            return f"{size / factor:.1f}{unit}"
    return f"{size}B"


def _is_target_candidate(name: str) -> bool:
    return bool(name) and not name.startswith(EXCLUDED_DISK_PREFIXES)


def parse_geom_disk_list(output: str) -> list[DiskInfo]:
    """Parse ``geom disk list`` output into disks.

    Each disk section starts with ``Geom name:``; ``Mediasize:`` and
    ``descr:`` lines inside the section provide size and model.
    """
    disks: list[DiskInfo] = []
    current: Optional[dict[str, str]] = None

    def flush() -> None:
        if current and current.get("device"):
            disks.append(
                DiskInfo(
                    device=current["device"],
                    size=current.get("size", "Unknown"),
                    model=current.get("model", "Disk"),
                )
            )

    for raw_line in output.splitlines():
        line = raw_line.strip()
        if line.startswith("Geom name:"):
            flush()
            fields = line.split()
            current = {"device": fields[2] if len(fields) >= 3 else ""}
        elif current is None:
            continue
        elif line.startswith("Mediasize:"):
            # Mediasize: 21474836480 (20G)
            fields = line.split()
            if len(fields) >= 3 and fields[2].startswith("("):
                current["size"] = fields[2].strip("()")
            elif len(fields) >= 2:
                current["size"] = format_bytes(fields[1])
        elif line.startswith("descr:"):
            current["model"] = line[len("descr:"):].strip() or "Disk"
    flush()

    return [disk for disk in disks if _is_target_candidate(disk.device)]


def _disks_from_geom(runner: CommandRunner) -> list[DiskInfo]:
    try:
        output = runner.run("geom", ["disk", "list"])
    except CommandError as error:
        log.debug(f"geom disk list unavailable: {error}")
        return []
    return parse_geom_disk_list(output)


def _disks_from_sysctl(runner: CommandRunner) -> list[DiskInfo]:
    try:
        output = runner.run("sysctl", ["-n", "kern.disks"])
    except CommandError as error:
        log.debug(f"sysctl kern.disks unavailable: {error}")
        return []

    disks = []
    for name in output.split():
        if not _is_target_candidate(name):
            continue
        size = "Unknown"
        try:
            # diskinfo: <device> <sectorsize> <mediasize> <sectors> ...
            fields = runner.run("diskinfo", [name]).split()
        except CommandError as error:
            log.debug(f"diskinfo {name} failed: {error}")
            fields = []
        if len(fields) >= 3:
            size = format_bytes(fields[2])
        disks.append(DiskInfo(device=name, size=size))
    return disks


def list_disks(runner: Optional[CommandRunner] = None) -> list[DiskInfo]:
    """List disks that can be offered as installation targets."""
    runner = runner or CommandRunner()
    disks = _disks_from_geom(runner)
    if disks:
        return disks
    disks = _disks_from_sysctl(runner)
    if not disks:
        log.warning("No installation target disks found")
    return disks
