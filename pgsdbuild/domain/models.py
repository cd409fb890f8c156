"""Domain model for image installation and building.

Type-safe records passed between the CLI, the installer and the build
pipelines, in place of loose dicts and positional strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional

from pgsdbuild.config.settings import DATA_LABEL, EFI_LABEL, EFI_PARTITION_SIZE


# Artifacts every installable image directory must carry
ROOT_STREAM_NAME = "root.zfs.xz"
EFI_IMAGE_NAME = "efi.img"
MANIFEST_NAME = "manifest.toml"
REQUIRED_ARTIFACTS = (ROOT_STREAM_NAME, EFI_IMAGE_NAME, MANIFEST_NAME)

LogSink = Callable[[str], None]


# ==============================================================================
# Installation Domain
# ==============================================================================


class InstallStage(Enum):
    """Linear states of the installation pipeline."""

    VALIDATING = "validating"
    CHECKING_REQUIREMENTS = "checking requirements"
    PARTITIONING = "partitioning"
    FORMATTING_EFI = "formatting EFI"
    CREATING_POOL = "creating pool"
    TRANSFERRING_STREAM = "transferring stream"
    INSTALLING_EFI_IMAGE = "installing EFI image"
    INSTALLING_BOOTLOADER = "installing bootloader"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class InstallConfig:
    """One installation attempt.

    ``log_sink`` receives human-readable progress lines. It is optional and
    never needed for correctness.
    """

    image_path: str
    target_disk: str
    pool_name: str
    log_sink: Optional[LogSink] = None

    @property
    def root_stream(self) -> Path:
        return Path(self.image_path) / ROOT_STREAM_NAME

    @property
    def efi_image(self) -> Path:
        return Path(self.image_path) / EFI_IMAGE_NAME

    @property
    def manifest(self) -> Path:
        return Path(self.image_path) / MANIFEST_NAME

    def emit(self, message: str) -> None:
        """Send a progress line to the sink, if there is one."""
        if self.log_sink is not None:
            self.log_sink(message)


@dataclass(frozen=True)
class PartitionLayout:
    """Fixed two-partition GPT layout written by the partitioner.

    Partition 1 is always the EFI system partition and partition 2 the
    data partition. Device name derivation downstream depends on it.
    """

    efi_index: int = 1
    data_index: int = 2
    efi_type: str = "efi"
    efi_size: str = EFI_PARTITION_SIZE
    efi_label: str = EFI_LABEL
    data_type: str = "freebsd-zfs"
    data_label: str = DATA_LABEL


DEFAULT_LAYOUT = PartitionLayout()


# ==============================================================================
# Discovery Domain
# ==============================================================================


@dataclass(frozen=True)
class ImageInfo:
    """An installable system image found on the boot environment."""

    id: str
    path: Path
    manifest_path: Path


@dataclass(frozen=True)
class DiskInfo:
    """A disk that can be chosen as an installation target."""

    device: str  # e.g., "ada0"
    size: str  # Human readable, e.g., "20G"
    model: str = "Disk"

    def format_label(self) -> str:
        """Format a label such as ``ada0 (20G) - VBOX HARDDISK``."""
        return f"{self.device} ({self.size}) - {self.model}"


# ==============================================================================
# Image Build Domain
# ==============================================================================


class CanMount(Enum):
    """ZFS ``canmount`` tri-state."""

    ON = "on"
    OFF = "off"
    NOAUTO = "noauto"


@dataclass(frozen=True)
class DatasetOverlay:
    """A dataset copied from an existing snapshot into the image pool.

    Read once per image build and never mutated. ``properties`` are passed
    to the receiving side verbatim.
    """

    name: str
    source: str  # e.g., "zroot/usr/home@base"
    mountpoint: Optional[str] = None
    can_mount: Optional[CanMount] = None
    properties: Mapping[str, str] = field(default_factory=dict)

    def receive_options(self) -> list[str]:
        """``-o key=value`` arguments for ``zfs receive``."""
        options: list[str] = []
        if self.mountpoint:
            options.extend(["-o", f"mountpoint={self.mountpoint}"])
        if self.can_mount is not None:
            options.extend(["-o", f"canmount={self.can_mount.value}"])
        for key, value in self.properties.items():
            options.extend(["-o", f"{key}={value}"])
        return options
