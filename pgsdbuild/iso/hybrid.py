"""MBR boot structures for hybrid ISO images.

An ISO-9660 image leaves its first 32 KiB unused, so a Master Boot Record
can be written into sector 0 without disturbing the filesystem. With it the
same file boots from optical media (El Torito) and when written raw to a
USB stick (BIOS reading the MBR).

MBR layout (sector 0):

    0   - 432   boot code copied from the boot blob
    446 - 510   partition table, 4 entries of 16 bytes
    510 - 512   signature 0x55 0xAA

Partition entry layout:

    0       status (0x80 = bootable)
    1 - 4   CHS of first sector
    4       partition type
    5 - 8   CHS of last sector
    8 - 12  LBA of first sector, little endian
    12 - 16 number of sectors, little endian

Only those three ranges are written. Bytes 432-446 (disk signature) and
everything past sector 0 keep their previous contents.

Example:
    from pgsdbuild.iso.hybrid import make_hybrid_bootable

    make_hybrid_bootable("pgsd.iso", boot_root="work/iso-root")
"""

from __future__ import annotations

import os
import struct
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence, Union

from pgsdbuild.logging import LoggerFactory
from pgsdbuild.storage.exceptions import BootCodeNotFoundError, HybridBootError


if TYPE_CHECKING:
    from loguru import Logger


PathLike = Union[str, Path]

SECTOR_SIZE = 512
BOOT_CODE_SIZE = 432
PARTITION_TABLE_OFFSET = 446
PARTITION_ENTRY_SIZE = 16
PARTITION_ENTRY_COUNT = 4
PARTITION_TABLE_SIZE = PARTITION_ENTRY_SIZE * PARTITION_ENTRY_COUNT
SIGNATURE_OFFSET = 510
MBR_SIGNATURE = b"\x55\xaa"

BOOTABLE_FLAG = 0x80
ISO9660_PARTITION_TYPE = 0x96
# (head 0, sector 1, cylinder 0); sector numbers start at 1
CHS_START = b"\x00\x01\x00"
# Largest CHS address; firmware uses the LBA fields instead
CHS_END = b"\xfe\xff\xff"
MAX_SECTOR_COUNT = 0xFFFFFFFF

# Searched in order; isoboot carries x86 MBR code, cdboot is El Torito only
BOOT_CODE_CANDIDATES = ("boot/isoboot", "boot/cdboot")

# <status> <chs start> <type> <chs end> <lba start> <sector count>
_ENTRY_FORMAT = "<B3sB3sII"


def sector_count(size_bytes: int) -> int:
    """Number of 512-byte sectors covering ``size_bytes``, clamped to 32 bits."""
    if size_bytes < 0:
        raise ValueError(f"size must not be negative, got {size_bytes}")
    count = -(-size_bytes // SECTOR_SIZE)
    return min(count, MAX_SECTOR_COUNT)


def build_mbr_partition_entry(sectors: int) -> bytes:
    """Build the 16-byte bootable ISO-9660 partition entry starting at LBA 0."""
    if sectors < 0:
        raise ValueError(f"sector count must not be negative, got {sectors}")
    return struct.pack(
        _ENTRY_FORMAT,
        BOOTABLE_FLAG,
        CHS_START,
        ISO9660_PARTITION_TYPE,
        CHS_END,
        0,
        min(sectors, MAX_SECTOR_COUNT),
    )


def build_partition_table(sectors: int) -> bytes:
    """Build the 64-byte table: the ISO entry followed by three empty ones."""
    entry = build_mbr_partition_entry(sectors)
    return entry + bytes(PARTITION_TABLE_SIZE - len(entry))


def find_boot_code(
    boot_root: PathLike = "/",
    candidates: Sequence[PathLike] = BOOT_CODE_CANDIDATES,
) -> Path:
    """Return the first existing boot code candidate under ``boot_root``.

    Raises:
        BootCodeNotFoundError: Listing every path checked
    """
    root = Path(boot_root)
    checked = []
    for candidate in candidates:
        path = root / candidate
        checked.append(path)
        if path.is_file():
            return path
    raise BootCodeNotFoundError(checked)


def read_boot_code(path: PathLike) -> bytes:
    """Read at most the first 432 bytes of a boot blob."""
    with open(path, "rb") as blob:
        return blob.read(BOOT_CODE_SIZE)


def make_hybrid_bootable(
    iso_path: PathLike,
    boot_code_path: Optional[PathLike] = None,
    boot_root: PathLike = "/",
    candidates: Sequence[PathLike] = BOOT_CODE_CANDIDATES,
    log: Optional[Logger] = None,
) -> None:
    """Write MBR boot code, partition table and signature into ``iso_path``.

    The boot code is taken from ``boot_code_path`` when given, otherwise
    from the first of ``candidates`` found under ``boot_root``. A blob
    shorter than 432 bytes is written as is; the rest of that region is
    not padded.

    The ISO is modified in place and never truncated. If a write fails
    partway the file is left as it is.

    Raises:
        BootCodeNotFoundError: If no boot code exists; the ISO is untouched
        HybridBootError: If the ISO cannot be opened or written
    """
    log = log or LoggerFactory.for_iso()
    iso_path = Path(iso_path)

    if boot_code_path is None:
        boot_code_path = find_boot_code(boot_root, candidates)
    elif not Path(boot_code_path).is_file():
        raise BootCodeNotFoundError([boot_code_path])

    try:
        boot_code = read_boot_code(boot_code_path)
    except OSError as error:
        raise HybridBootError(
            str(iso_path), f"cannot read boot code {boot_code_path}: {error}"
        ) from error
    log.debug(f"Using {len(boot_code)} bytes of boot code from {boot_code_path}")

    try:
        with open(iso_path, "r+b") as iso:
            size = os.fstat(iso.fileno()).st_size
            sectors = sector_count(size)

            iso.seek(0)
            iso.write(boot_code)
            iso.seek(PARTITION_TABLE_OFFSET)
            iso.write(build_partition_table(sectors))
            iso.seek(SIGNATURE_OFFSET)
            iso.write(MBR_SIGNATURE)
            iso.flush()
            os.fsync(iso.fileno())
    except OSError as error:
        raise HybridBootError(str(iso_path), str(error)) from error

    log.info(f"Made {iso_path.name} hybrid bootable ({sectors} sectors)")
