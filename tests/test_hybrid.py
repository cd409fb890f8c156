"""Tests for hybrid ISO MBR writing."""

import struct
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from pgsdbuild.iso import hybrid
from pgsdbuild.iso.hybrid import (
    BOOT_CODE_CANDIDATES,
    ISO9660_PARTITION_TYPE,
    MAX_SECTOR_COUNT,
    build_mbr_partition_entry,
    build_partition_table,
    find_boot_code,
    make_hybrid_bootable,
    sector_count,
)
from pgsdbuild.storage.exceptions import BootCodeNotFoundError, HybridBootError


def pattern(size, seed=0):
    return bytes((seed + i * 7) % 251 for i in range(size))


@pytest.fixture
def iso_file(tmp_path):
    path = tmp_path / "out.iso"
    path.write_bytes(pattern(40000, seed=3))
    return path


@pytest.fixture
def boot_root(tmp_path):
    root = tmp_path / "root"
    (root / "boot").mkdir(parents=True)
    return root


class TestSectorCount:
    @pytest.mark.parametrize(
        "size,expected", [(0, 0), (1, 1), (511, 1), (512, 1), (513, 2), (40000, 79)]
    )
    def test_rounds_up(self, size, expected):
        assert sector_count(size) == expected

    def test_clamps_to_32_bits(self):
        assert sector_count(MAX_SECTOR_COUNT * 512 + 1) == MAX_SECTOR_COUNT
        assert sector_count(2**50) == MAX_SECTOR_COUNT

    def test_negative(self):
        with pytest.raises(ValueError):
            sector_count(-1)


class TestBuildMbrPartitionEntry:
    """The 16-byte entry is built without any file I/O."""

    def test_layout(self):
        entry = build_mbr_partition_entry(79)

        assert len(entry) == 16
        assert entry[0] == 0x80
        assert entry[1:4] == b"\x00\x01\x00"
        assert entry[4] == ISO9660_PARTITION_TYPE == 0x96
        assert entry[5:8] == b"\xfe\xff\xff"
        assert struct.unpack("<I", entry[8:12])[0] == 0
        assert struct.unpack("<I", entry[12:16])[0] == 79

    def test_clamps_sector_count(self):
        entry = build_mbr_partition_entry(2**40)
        assert entry[12:16] == b"\xff\xff\xff\xff"

    def test_rejects_negative(self):
        with pytest.raises(ValueError):
            build_mbr_partition_entry(-5)

    def test_partition_table_has_three_empty_entries(self):
        table = build_partition_table(100)
        assert len(table) == 64
        assert table[:16] == build_mbr_partition_entry(100)
        assert table[16:] == bytes(48)


class TestFindBootCode:
    def test_prefers_isoboot(self, boot_root):
        (boot_root / "boot" / "isoboot").write_bytes(b"iso")
        (boot_root / "boot" / "cdboot").write_bytes(b"cd")
        assert find_boot_code(boot_root) == boot_root / "boot" / "isoboot"

    def test_falls_back_to_cdboot(self, boot_root):
        (boot_root / "boot" / "cdboot").write_bytes(b"cd")
        assert find_boot_code(boot_root) == boot_root / "boot" / "cdboot"

    def test_none_found_lists_checked_paths(self, boot_root):
        with pytest.raises(BootCodeNotFoundError) as exc_info:
            find_boot_code(boot_root)

        checked = [str(boot_root / candidate) for candidate in BOOT_CODE_CANDIDATES]
        assert exc_info.value.candidates == checked
        for path in checked:
            assert path in str(exc_info.value)


class TestMakeHybridBootable:
    """Byte-level checks on a real file."""

    def test_writes_only_the_mbr_regions(self, iso_file, boot_root):
        blob = pattern(600, seed=101)
        (boot_root / "boot" / "isoboot").write_bytes(blob)
        before = iso_file.read_bytes()

        make_hybrid_bootable(iso_file, boot_root=boot_root)

        after = iso_file.read_bytes()
        assert len(after) == len(before)
        assert after[0:432] == blob[:432]
        assert after[432:446] == before[432:446]
        assert after[446] == 0x80
        assert after[447:450] == b"\x00\x01\x00"
        assert after[450] == 0x96
        assert after[451:454] == b"\xfe\xff\xff"
        assert struct.unpack("<I", after[454:458])[0] == 0
        assert struct.unpack("<I", after[458:462])[0] == (40000 + 511) // 512
        assert after[462:510] == bytes(48)
        assert after[510:512] == b"\x55\xaa"
        assert after[512:] == before[512:]

    def test_short_boot_code_is_not_padded(self, iso_file, tmp_path):
        blob_path = tmp_path / "tiny"
        blob_path.write_bytes(b"\xfa" * 100)
        before = iso_file.read_bytes()

        make_hybrid_bootable(iso_file, boot_code_path=blob_path)

        after = iso_file.read_bytes()
        assert after[:100] == b"\xfa" * 100
        assert after[100:432] == before[100:432]

    def test_sector_count_clamped_for_huge_files(self, iso_file, tmp_path):
        blob_path = tmp_path / "blob"
        blob_path.write_bytes(b"\x33" * 432)
        huge = SimpleNamespace(st_size=3 * 2**40)

        with patch.object(hybrid.os, "fstat", return_value=huge):
            make_hybrid_bootable(iso_file, boot_code_path=blob_path)

        assert iso_file.read_bytes()[458:462] == b"\xff\xff\xff\xff"

    def test_no_boot_code_leaves_file_untouched(self, iso_file, boot_root):
        before = iso_file.read_bytes()

        with pytest.raises(BootCodeNotFoundError) as exc_info:
            make_hybrid_bootable(iso_file, boot_root=boot_root)

        assert str(boot_root / "boot" / "isoboot") in str(exc_info.value)
        assert str(boot_root / "boot" / "cdboot") in str(exc_info.value)
        assert iso_file.read_bytes() == before

    def test_missing_explicit_boot_code(self, iso_file, tmp_path):
        before = iso_file.read_bytes()
        with pytest.raises(BootCodeNotFoundError):
            make_hybrid_bootable(iso_file, boot_code_path=tmp_path / "missing")
        assert iso_file.read_bytes() == before

    def test_missing_iso(self, tmp_path):
        blob_path = tmp_path / "blob"
        blob_path.write_bytes(b"\x00" * 432)

        with pytest.raises(HybridBootError):
            make_hybrid_bootable(tmp_path / "missing.iso", boot_code_path=blob_path)

        assert not (tmp_path / "missing.iso").exists()

    def test_idempotent(self, iso_file, tmp_path):
        blob_path = tmp_path / "blob"
        blob_path.write_bytes(pattern(432, seed=9))

        make_hybrid_bootable(iso_file, boot_code_path=blob_path)
        first = iso_file.read_bytes()
        make_hybrid_bootable(iso_file, boot_code_path=blob_path)

        assert iso_file.read_bytes() == first
