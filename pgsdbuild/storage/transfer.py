"""Streaming of image artifacts onto the target.

``StreamTransfer.transfer()`` runs ``xzcat <stream> | zfs receive -F
<pool>/ROOT/default``. The decompressed stream is never staged: it is
often several gigabytes and the installer commonly runs from a live
environment with 1-2GB of RAM.

``StreamTransfer.copy_raw()`` is the whole-file ``dd`` used for the EFI
partition image.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union

from pgsdbuild.config.settings import ROOT_DATASET_SUFFIX
from pgsdbuild.logging import LoggerFactory

from .commands import CommandRunner


if TYPE_CHECKING:
    from loguru import Logger


DECOMPRESS_STAGE = "decompress"
RECEIVE_STAGE = "receive"


def root_dataset(pool_name: str) -> str:
    """Dataset the installed system lives in, e.g. ``pgsd/ROOT/default``."""
    return f"{pool_name}/{ROOT_DATASET_SUFFIX}"


def _require_nonempty_file(path: Path, description: str) -> int:
    try:
        size = path.stat().st_size
    except FileNotFoundError as error:
        raise FileNotFoundError(f"{description} not found: {path}") from error
    if not path.is_file():
        raise FileNotFoundError(f"{description} is not a regular file: {path}")
    if size == 0:
        raise ValueError(f"{description} is empty: {path}")
    return size


class StreamTransfer:
    """Moves image artifacts onto the freshly created pool and partitions."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        log: Optional[Logger] = None,
        decompressor: str = "xzcat",
    ):
        self.log = log or LoggerFactory.for_install()
        self.runner = runner or CommandRunner(log=self.log)
        self.decompressor = decompressor

    def transfer(self, stream_path: Union[str, Path], pool_name: str) -> None:
        """Decompress ``stream_path`` straight into ``zfs receive``.

        The stream file is checked before any process starts.

        Raises:
            FileNotFoundError: If the stream file is missing
            ValueError: If the stream file is empty
            PipelineError: With ``stage`` "decompress" or "receive"
        """
        stream_path = Path(stream_path)
        size = _require_nonempty_file(stream_path, "ZFS stream file")
        target = root_dataset(pool_name)
        self.log.info(
            f"Receiving {stream_path.name} ({size} bytes compressed) into {target}"
        )
        self.runner.run_piped(
            self.decompressor,
            [os.fspath(stream_path)],
            "zfs",
            ["receive", "-F", target],
            producer_stage=DECOMPRESS_STAGE,
            consumer_stage=RECEIVE_STAGE,
        )

    def copy_raw(
        self, image_path: Union[str, Path], device: str, block_size: str = "1M"
    ) -> None:
        """Block copy a whole image file onto ``device`` with dd."""
        image_path = Path(image_path)
        _require_nonempty_file(image_path, "Image file")
        self.log.debug(f"Copying {image_path} to {device} (bs={block_size})")
        self.runner.run(
            "dd", [f"if={image_path}", f"of={device}", f"bs={block_size}"]
        )
