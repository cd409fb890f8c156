"""Assembly of bootable ISO images from a staged boot environment tree."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from pgsdbuild.iso.hybrid import make_hybrid_bootable
from pgsdbuild.logging import LoggerFactory
from pgsdbuild.storage.commands import CommandRunner
from pgsdbuild.storage.exceptions import PgsdError


if TYPE_CHECKING:
    from loguru import Logger


PathLike = Union[str, Path]

# El Torito boot image, relative to the ISO root
CD_BOOT_IMAGE = "boot/cdboot"
DEFAULT_LABEL = "PGSD"


class IsoBuilder:
    """Builds an ISO-9660 image and makes it USB bootable."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        log: Optional[Logger] = None,
    ):
        self.log = log or LoggerFactory.for_iso()
        self.runner = runner or CommandRunner(log=self.log)

    def makefs_args(self, root_dir: Path, output_iso: Path, label: str) -> list[str]:
        return [
            "-t",
            "cd9660",
            "-o",
            "rockridge",
            "-o",
            f"label={label}",
            "-o",
            f"bootimage=i386;{root_dir / CD_BOOT_IMAGE}",
            "-o",
            "no-emul-boot",
            str(output_iso),
            str(root_dir),
        ]

    def xorriso_args(self, root_dir: Path, output_iso: Path, label: str) -> list[str]:
        return [
            "-as",
            "mkisofs",
            "-R",
            "-V",
            label,
            "-b",
            CD_BOOT_IMAGE,
            "-no-emul-boot",
            "-o",
            str(output_iso),
            str(root_dir),
        ]

    def assemble(
        self,
        root_dir: PathLike,
        output_iso: PathLike,
        label: str = DEFAULT_LABEL,
    ) -> Path:
        """Build ``output_iso`` from ``root_dir`` and write its hybrid MBR.

        ``makefs`` is preferred; ``xorriso`` is used when it is not
        installed. The MBR boot code is searched for under ``root_dir``.

        Raises:
            PgsdError: If the tree has no El Torito boot image or neither
                tool is available
            CommandError: If the ISO tool fails
            BootCodeNotFoundError: If the tree carries no MBR boot code
        """
        root_dir = Path(root_dir)
        output_iso = Path(output_iso)
        label = label.upper()

        if not (root_dir / CD_BOOT_IMAGE).is_file():
            raise PgsdError(f"boot image not found: {root_dir / CD_BOOT_IMAGE}")
        output_iso.parent.mkdir(parents=True, exist_ok=True)

        if self.runner.which("makefs"):
            self.log.info(f"Creating {output_iso} with makefs")
            self.runner.run("makefs", self.makefs_args(root_dir, output_iso, label))
        elif self.runner.which("xorriso"):
            self.log.info(f"makefs not found, creating {output_iso} with xorriso")
            self.runner.run("xorriso", self.xorriso_args(root_dir, output_iso, label))
        else:
            raise PgsdError("cannot create ISO: neither makefs nor xorriso is installed")

        make_hybrid_bootable(output_iso, boot_root=root_dir, log=self.log)
        self.log.success(f"ISO available at {output_iso}")
        return output_iso
