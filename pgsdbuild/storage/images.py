"""Discovery of installable images.

An image is any subdirectory of the images directory that carries a
``manifest.toml``. Installed systems ship images under
``/usr/local/share/pgsd/images``; a development checkout uses the
``artifacts`` directory the build tool writes to.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union

from pgsdbuild.config.settings import FALLBACK_IMAGES_DIR, INSTALLED_IMAGES_DIR
from pgsdbuild.domain import MANIFEST_NAME, ImageInfo
from pgsdbuild.logging import LoggerFactory

from .exceptions import PgsdError


log = LoggerFactory.for_system()


def default_images_dir() -> Path:
    installed = Path(INSTALLED_IMAGES_DIR)
    if installed.is_dir():
        return installed
    return Path(FALLBACK_IMAGES_DIR)


def list_images(images_dir: Optional[Union[str, Path]] = None) -> list[ImageInfo]:
    """List installable images, sorted by id.

    A missing images directory yields an empty list.

    Raises:
        PgsdError: If the directory exists but cannot be read
    """
    directory = Path(images_dir) if images_dir is not None else default_images_dir()
    if not directory.is_dir():
        log.debug(f"Images directory {directory} does not exist")
        return []

    try:
        entries = list(directory.iterdir())
    except OSError as error:
        raise PgsdError(f"failed to read images directory {directory}: {error}") from error

    images = []
    for entry in entries:
        if not entry.is_dir():
            continue
        manifest = entry / MANIFEST_NAME
        if not manifest.is_file():
            log.debug(f"Skipping {entry}: no {MANIFEST_NAME}")
            continue
        images.append(ImageInfo(id=entry.name, path=entry, manifest_path=manifest))

    images.sort(key=lambda image: image.id)
    return images


def resolve_image(reference: str, images_dir: Optional[Union[str, Path]] = None) -> Path:
    """Resolve an image id or a directory path to an image directory.

    A reference naming an existing directory is used as is; otherwise it
    is looked up by id among ``list_images()``. Unknown ids are returned
    as a path so validation reports them as missing.
    """
    candidate = Path(reference)
    if candidate.is_dir():
        return candidate
    for image in list_images(images_dir):
        if image.id == reference:
            return image.path
    return candidate
