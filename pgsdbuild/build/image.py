"""Export of a built system pool into installable image artifacts.

An exported image is a directory with three files, consumed by the
installer:

    root.zfs.xz     ``zfs send -R`` of the root dataset, xz compressed
    efi.img         FAT32 image of the EFI system partition
    manifest.toml   build metadata

Dataset overlays are received into the pool before export, one per entry
and in declaration order.

The stream and the EFI image are written under ``.partial`` names and
renamed into place only once complete, and any previous manifest is removed
before the export starts. A directory therefore only carries a manifest
after a fully successful export.
"""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional, Union

from pgsdbuild.domain import (
    EFI_IMAGE_NAME,
    MANIFEST_NAME,
    ROOT_STREAM_NAME,
    DatasetOverlay,
)
from pgsdbuild.logging import LoggerFactory
from pgsdbuild.storage.commands import CommandRunner
from pgsdbuild.storage.exceptions import PgsdError


if TYPE_CHECKING:
    from loguru import Logger


PathLike = Union[str, Path]

EXPORT_SNAPSHOT = "export"
EFI_IMAGE_SIZE = "200m"
EFI_LOADER = Path("boot") / "loader.efi"
EFI_BOOT_FILE = Path("efi") / "boot" / "bootx64.efi"
PARTIAL_SUFFIX = ".partial"


def _partial_path(path: Path) -> Path:
    return path.with_name(path.name + PARTIAL_SUFFIX)


def _toml_value(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    # JSON string escapes are valid TOML basic string escapes
    return json.dumps(str(value))


def render_manifest(values: dict) -> str:
    """Render a flat mapping as TOML key/value lines."""
    return "".join(f"{key} = {_toml_value(value)}\n" for key, value in values.items())


class ImageBuilder:
    """Turns a populated pool into the installer's artifact directory."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        log: Optional[Logger] = None,
        work_dir: Optional[PathLike] = None,
        keep_work: bool = False,
    ):
        self.log = log or LoggerFactory.for_build()
        self.runner = runner or CommandRunner(log=self.log)
        self.work_dir = Path(work_dir) if work_dir is not None else None
        self.keep_work = keep_work

    def apply_overlays(self, pool: str, overlays: Iterable[DatasetOverlay]) -> list[str]:
        """Receive each overlay's source snapshot as ``<pool>/<name>``.

        Returns the datasets created, in order.
        """
        created = []
        for overlay in overlays:
            target = f"{pool}/{overlay.name}"
            self.log.info(f"Applying overlay {overlay.source} -> {target}")
            self.runner.run_piped(
                "zfs",
                ["send", overlay.source],
                "zfs",
                ["receive", "-F", *overlay.receive_options(), target],
                producer_stage="send",
                consumer_stage="receive",
            )
            created.append(target)
        return created

    def snapshot(self, root_dataset: str) -> str:
        snapshot = f"{root_dataset}@{EXPORT_SNAPSHOT}"
        self.log.debug(f"Creating recursive snapshot {snapshot}")
        self.runner.run("zfs", ["snapshot", "-r", snapshot])
        return snapshot

    def destroy_snapshot(self, snapshot: str) -> None:
        """Remove the export snapshot so the next export can recreate it."""
        result = self.runner.run_best_effort("zfs", ["destroy", "-r", snapshot])
        if not result.ok:
            self.log.warning(f"Could not destroy snapshot {snapshot}: {result.output.strip()}")

    def write_stream(self, snapshot: str, out_dir: Path) -> Path:
        stream_path = out_dir / ROOT_STREAM_NAME
        partial = _partial_path(stream_path)
        self.log.info(f"Writing {stream_path}")
        try:
            self.runner.run_piped(
                "zfs",
                ["send", "-R", snapshot],
                "xz",
                ["-T0", "-c"],
                producer_stage="send",
                consumer_stage="compress",
                stdout_path=partial,
            )
            os.replace(partial, stream_path)
        finally:
            partial.unlink(missing_ok=True)
        return stream_path

    def stage_efi_tree(self, system_root: PathLike, staging_dir: Path) -> Path:
        """Copy the system's EFI loader into a minimal ESP tree."""
        loader = Path(system_root) / EFI_LOADER
        if not loader.is_file():
            raise PgsdError(f"EFI loader not found: {loader}")
        target = staging_dir / EFI_BOOT_FILE
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(loader, target)
        return staging_dir

    def write_efi_image(self, efi_tree: PathLike, out_dir: Path) -> Path:
        image_path = out_dir / EFI_IMAGE_NAME
        partial = _partial_path(image_path)
        self.log.info(f"Writing {image_path}")
        try:
            self.runner.run(
                "makefs",
                [
                    "-t",
                    "msdos",
                    "-o",
                    "fat_type=32",
                    "-o",
                    "sectors_per_cluster=1",
                    "-s",
                    EFI_IMAGE_SIZE,
                    str(partial),
                    str(efi_tree),
                ],
            )
            os.replace(partial, image_path)
        finally:
            partial.unlink(missing_ok=True)
        return image_path

    def write_manifest(
        self,
        out_dir: Path,
        image_id: str,
        version: str,
        pool: str,
        root_dataset: str,
    ) -> Path:
        manifest_path = out_dir / MANIFEST_NAME
        values = {
            "id": image_id,
            "version": version,
            "zpool_name": pool,
            "root_dataset": root_dataset,
            "created": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
        }
        manifest_path.write_text(render_manifest(values), encoding="utf-8")
        return manifest_path

    def export(
        self,
        pool: str,
        root_dataset: str,
        out_dir: PathLike,
        image_id: str,
        version: str,
        system_root: Optional[PathLike] = None,
        efi_tree: Optional[PathLike] = None,
    ) -> Path:
        """Export ``root_dataset`` into ``out_dir`` and return ``out_dir``.

        The EFI image is built from ``efi_tree`` when given; otherwise an
        ESP tree is staged from ``<system_root>/boot/loader.efi``, where
        ``system_root`` defaults to the pool's mountpoint ``/<pool>``.

        The export snapshot is destroyed once the stream is written, whether
        or not writing succeeded.

        Raises:
            CommandError: If snapshot, send or makefs fails
            PgsdError: If no EFI loader can be found
        """
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        self.log.info(f"Exporting {root_dataset} as image {image_id} ({version})")
        (out_dir / MANIFEST_NAME).unlink(missing_ok=True)

        snapshot = self.snapshot(root_dataset)
        try:
            self.write_stream(snapshot, out_dir)
        finally:
            self.destroy_snapshot(snapshot)

        if efi_tree is not None:
            self.write_efi_image(efi_tree, out_dir)
        else:
            staging = Path(tempfile.mkdtemp(prefix="efi-", dir=self._work_dir()))
            try:
                tree = self.stage_efi_tree(system_root or f"/{pool}", staging)
                self.write_efi_image(tree, out_dir)
            finally:
                if self.keep_work:
                    self.log.info(f"Keeping EFI staging directory {staging}")
                else:
                    shutil.rmtree(staging, ignore_errors=True)

        self.write_manifest(out_dir, image_id, version, pool, root_dataset)
        self.log.success(f"Image {image_id} exported to {out_dir}")
        return out_dir

    def _work_dir(self) -> Optional[str]:
        if self.work_dir is None:
            return None
        self.work_dir.mkdir(parents=True, exist_ok=True)
        return str(self.work_dir)
