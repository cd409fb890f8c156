"""Installation of a built image onto a target disk.

The installer walks a fixed, linear sequence of stages:

    validating -> checking requirements -> partitioning -> formatting EFI
    -> creating pool -> transferring stream -> installing EFI image
    -> installing bootloader -> finalizing -> complete

Validation and the requirements check run before any command touches the
disk. Every later stage is destructive. There is no retry and no rollback:
when a stage fails the installer stops in the ``failed`` state and raises
``StageError`` carrying the failed stage and the stages that completed
before it, so the operator knows what state the disk was left in.

Example:
    from pgsdbuild.domain import InstallConfig
    from pgsdbuild.installer import Installer

    config = InstallConfig("/usr/local/share/pgsd/images/desktop", "ada0", "pgsd",
                           log_sink=print)
    Installer().install(config)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Optional

from pgsdbuild.config.settings import BOOT_BLOB_PATH
from pgsdbuild.domain import DEFAULT_LAYOUT, InstallConfig, InstallStage, PartitionLayout
from pgsdbuild.logging import LoggerFactory
from pgsdbuild.storage.bootloader import BootloaderInstaller
from pgsdbuild.storage.commands import CommandRunner
from pgsdbuild.storage.devices import PartitionNamer, partition_device
from pgsdbuild.storage.exceptions import (
    InstallError,
    PgsdError,
    PipelineError,
    RequirementsError,
    StageError,
)
from pgsdbuild.storage.finalize import PoolFinalizer
from pgsdbuild.storage.partition import DiskPartitioner
from pgsdbuild.storage.provision import FilesystemProvisioner
from pgsdbuild.storage.transfer import DECOMPRESS_STAGE, StreamTransfer, root_dataset
from pgsdbuild.storage.validation import check_requirements, validate_install_config


if TYPE_CHECKING:
    from loguru import Logger


class Installer:
    """Runs one installation at a time against one target disk.

    The installer is not re-entrant; callers must not run two installations
    against the same disk concurrently.
    """

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        log: Optional[Logger] = None,
        partition_namer: PartitionNamer = partition_device,
        layout: PartitionLayout = DEFAULT_LAYOUT,
        boot_blob: str = BOOT_BLOB_PATH,
        requirements_check: Callable[[], None] = check_requirements,
    ):
        self.log = log or LoggerFactory.for_install()
        self.runner = runner or CommandRunner(log=self.log)
        self.partition_namer = partition_namer
        self.layout = layout
        self.boot_blob = boot_blob
        self.requirements_check = requirements_check

        self.partitioner = DiskPartitioner(self.runner, self.log, layout=layout)
        self.provisioner = FilesystemProvisioner(self.runner, self.log)
        self.transfer = StreamTransfer(self.runner, self.log)
        self.bootloader = BootloaderInstaller(self.runner, self.log)
        self.finalizer = PoolFinalizer(self.runner, self.log)

        self.stage: Optional[InstallStage] = None
        self.completed_stages: list[InstallStage] = []

    def install(self, config: InstallConfig) -> None:
        """Install the image described by ``config``.

        Raises:
            ValidationError: Before anything runs, if the configuration is bad
            RequirementsError: Before anything runs, if tools or root are missing
            StageError: If a destructive stage fails
        """
        self.stage = None
        self.completed_stages = []
        try:
            self._preflight(config)
            self._run_stages(config)
        except InstallError:
            self.stage = InstallStage.FAILED
            raise

        self.stage = InstallStage.COMPLETE
        config.emit("Installation complete")
        self.log.success(
            f"Installed {config.image_path} to {config.target_disk} (pool {config.pool_name})"
        )

    def _enter(self, stage: InstallStage, config: InstallConfig, message: str) -> None:
        self.stage = stage
        self.log.info(message)
        config.emit(message)

    def _complete(self, stage: InstallStage) -> None:
        self.completed_stages.append(stage)
        self.log.debug(f"Stage {stage.value} completed")

    def _preflight(self, config: InstallConfig) -> None:
        self._enter(InstallStage.VALIDATING, config, "Validating configuration")
        validate_install_config(config)
        self._complete(InstallStage.VALIDATING)

        self._enter(
            InstallStage.CHECKING_REQUIREMENTS, config, "Checking system requirements"
        )
        try:
            self.requirements_check()
        except RequirementsError as error:
            error.completed_stages = list(self.completed_stages)
            raise
        self._complete(InstallStage.CHECKING_REQUIREMENTS)

    def _run_stages(self, config: InstallConfig) -> None:
        disk = config.target_disk
        pool = config.pool_name
        efi_part = self.partition_namer(disk, self.layout.efi_index)
        data_part = self.partition_namer(disk, self.layout.data_index)

        stages: list[tuple[InstallStage, str, Callable[[], None]]] = [
            (
                InstallStage.PARTITIONING,
                f"Partitioning {disk}",
                lambda: self.partitioner.partition(disk),
            ),
            (
                InstallStage.FORMATTING_EFI,
                f"Formatting EFI partition {efi_part}",
                lambda: self.provisioner.format_efi(efi_part),
            ),
            (
                InstallStage.CREATING_POOL,
                f"Creating ZFS pool {pool} on {data_part}",
                lambda: self.provisioner.create_pool(pool, data_part),
            ),
            (
                InstallStage.TRANSFERRING_STREAM,
                "Installing system image (this may take several minutes)",
                lambda: self.transfer.transfer(config.root_stream, pool),
            ),
            (
                InstallStage.INSTALLING_EFI_IMAGE,
                f"Copying EFI image to {efi_part}",
                lambda: self.transfer.copy_raw(config.efi_image, efi_part),
            ),
            (
                InstallStage.INSTALLING_BOOTLOADER,
                f"Installing bootloader on {disk}",
                lambda: self.bootloader.install(
                    disk, self.boot_blob, self.layout.efi_index
                ),
            ),
            (
                InstallStage.FINALIZING,
                f"Finalizing pool {pool}",
                lambda: self.finalizer.finalize(pool),
            ),
        ]

        for stage, message, action in stages:
            self._enter(stage, config, message)
            try:
                action()
            except (PgsdError, OSError, ValueError) as error:
                hint = failure_hint(stage, config, error)
                failure = StageError(stage, error, self.completed_stages, hint=hint)
                self.log.error(str(failure))
                config.emit(f"Error: {failure}")
                raise failure from error
            self._complete(stage)


def failure_hint(stage: InstallStage, config: InstallConfig, error: Exception) -> str:
    """Describe what state a failed stage leaves the disk in."""
    disk = config.target_disk
    pool = config.pool_name
    if stage == InstallStage.PARTITIONING:
        return f"{disk} may be partially partitioned; inspect it with 'gpart show {disk}'"
    if stage == InstallStage.FORMATTING_EFI:
        return f"{disk} is partitioned but its EFI partition is not formatted"
    if stage == InstallStage.CREATING_POOL:
        return f"check for an existing pool named {pool} with 'zpool import'"
    if stage == InstallStage.TRANSFERRING_STREAM:
        if isinstance(error, PipelineError) and error.stage == DECOMPRESS_STAGE:
            return f"the image stream {config.root_stream} may be corrupt or truncated"
        return (
            f"pool {pool} is imported without a complete {root_dataset(pool)}; "
            f"run 'zpool destroy {pool}' before retrying"
        )
    if stage == InstallStage.INSTALLING_EFI_IMAGE:
        return f"pool {pool} is populated but the EFI partition is incomplete"
    if stage == InstallStage.INSTALLING_BOOTLOADER:
        return f"pool {pool} is populated but {disk} has no boot code"
    if stage == InstallStage.FINALIZING:
        return f"run 'zpool export {pool}' before rebooting"
    return ""


def install(config: InstallConfig, log: Optional[Logger] = None) -> None:
    """Install ``config`` with a default installer."""
    Installer(log=log).install(config)
