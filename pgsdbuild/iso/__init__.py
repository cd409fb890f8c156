"""Boot environment ISO support."""

from .hybrid import (
    build_mbr_partition_entry,
    build_partition_table,
    find_boot_code,
    make_hybrid_bootable,
)


__all__ = [
    "build_mbr_partition_entry",
    "build_partition_table",
    "find_boot_code",
    "make_hybrid_bootable",
]
