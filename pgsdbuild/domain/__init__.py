"""Domain models for image installation and building.

This package contains type-safe records shared by the installer, the
build pipelines and the command line front ends.
"""

from __future__ import annotations

from .models import (
    DEFAULT_LAYOUT,
    EFI_IMAGE_NAME,
    MANIFEST_NAME,
    REQUIRED_ARTIFACTS,
    ROOT_STREAM_NAME,
    CanMount,
    DatasetOverlay,
    DiskInfo,
    ImageInfo,
    InstallConfig,
    InstallStage,
    LogSink,
    PartitionLayout,
)


__all__ = [
    "DEFAULT_LAYOUT",
    "EFI_IMAGE_NAME",
    "MANIFEST_NAME",
    "REQUIRED_ARTIFACTS",
    "ROOT_STREAM_NAME",
    "CanMount",
    "DatasetOverlay",
    "DiskInfo",
    "ImageInfo",
    "InstallConfig",
    "InstallStage",
    "LogSink",
    "PartitionLayout",
]
