"""Tests for domain models."""

from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

from pgsdbuild.domain import (
    DEFAULT_LAYOUT,
    REQUIRED_ARTIFACTS,
    CanMount,
    DatasetOverlay,
    InstallConfig,
    InstallStage,
)


class TestInstallConfig:
    """Test InstallConfig."""

    def test_artifact_paths(self):
        config = InstallConfig("/img/a", "ada0", "pgsd")
        assert config.root_stream == Path("/img/a/root.zfs.xz")
        assert config.efi_image == Path("/img/a/efi.img")
        assert config.manifest == Path("/img/a/manifest.toml")

    def test_is_immutable(self):
        config = InstallConfig("/img/a", "ada0", "pgsd")
        with pytest.raises(FrozenInstanceError):
            config.pool_name = "other"

    def test_emit_without_sink_is_silent(self):
        InstallConfig("/img/a", "ada0", "pgsd").emit("nothing happens")

    def test_emit_with_sink(self):
        lines = []
        InstallConfig("/img/a", "ada0", "pgsd", log_sink=lines.append).emit("hello")
        assert lines == ["hello"]


def test_required_artifacts():
    assert REQUIRED_ARTIFACTS == ("root.zfs.xz", "efi.img", "manifest.toml")


def test_default_layout():
    assert DEFAULT_LAYOUT.efi_index == 1
    assert DEFAULT_LAYOUT.data_index == 2
    assert DEFAULT_LAYOUT.efi_size == "200M"


def test_stage_values_are_readable():
    assert InstallStage.TRANSFERRING_STREAM.value == "transferring stream"
    assert InstallStage.FAILED.value == "failed"


class TestDatasetOverlay:
    """Test receive options built from an overlay."""

    def test_no_options(self):
        assert DatasetOverlay(name="home", source="zroot/home@base").receive_options() == []

    def test_all_options_in_order(self):
        overlay = DatasetOverlay(
            name="var/db/pkg",
            source="build/pkg@snap",
            mountpoint="/var/db/pkg",
            can_mount=CanMount.NOAUTO,
            properties={"compression": "zstd", "org.pgsd:role": "pkgdb"},
        )

        assert overlay.receive_options() == [
            "-o", "mountpoint=/var/db/pkg",
            "-o", "canmount=noauto",
            "-o", "compression=zstd",
            "-o", "org.pgsd:role=pkgdb",
        ]

    def test_can_mount_off(self):
        overlay = DatasetOverlay(name="x", source="y@z", can_mount=CanMount.OFF)
        assert overlay.receive_options() == ["-o", "canmount=off"]
