import argparse
import sys
from dataclasses import replace
from pathlib import Path

from pgsdbuild.__version__ import __version__
from pgsdbuild.build.fetch import DEFAULT_ARCH, DEFAULT_MIRROR, Fetcher
from pgsdbuild.build.image import ImageBuilder
from pgsdbuild.build.iso import IsoBuilder
from pgsdbuild.config.settings import DEFAULT_POOL_NAME, load_settings
from pgsdbuild.domain import DatasetOverlay, InstallConfig
from pgsdbuild.installer import Installer
from pgsdbuild.iso.hybrid import make_hybrid_bootable
from pgsdbuild.logging import LoggerFactory, operation_context, setup_logging
from pgsdbuild.storage.devices import list_disks
from pgsdbuild.storage.exceptions import InstallError, PgsdError, StageError
from pgsdbuild.storage.images import list_images, resolve_image
from pgsdbuild.storage.transfer import root_dataset


def version_info():
    return f"pgsdbuild {__version__}"


def print_images(images, images_dir):
    if not images:
        print(f"No images found in {images_dir}")
        return
    print(f"Available images ({len(images)}):\n")
    for image in images:
        print(f"  {image.id}")
        print(f"    Path: {image.path}")
        print(f"    Manifest: {image.manifest_path}")


# ==============================================================================
# pgsd-inst
# ==============================================================================


def build_installer_parser():
    parser = argparse.ArgumentParser(
        prog="pgsd-inst", description="Install a PGSD image onto a disk"
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only report errors")
    parser.add_argument("--images-dir", help="Directory containing installable images")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("list-images", help="List installable images")
    subparsers.add_parser("list-disks", help="List target disks")

    install = subparsers.add_parser("install", help="Install an image (destroys the disk)")
    install.add_argument("--image", required=True, help="Image id or image directory")
    install.add_argument("--disk", required=True, help="Target disk, e.g. ada0")
    install.add_argument("--pool", default=DEFAULT_POOL_NAME, help="ZFS pool name")
    install.add_argument("--yes", action="store_true", help="Do not ask for confirmation")
    return parser


def confirm_destroy(disk):
    print(f"WARNING: all data on {disk} will be destroyed.")
    try:
        answer = input(f"Type '{disk}' to continue: ")
    except EOFError:
        return False
    return answer.strip() == disk


def run_install(args):
    image_path = resolve_image(args.image, args.images_dir)
    if not args.yes and not confirm_destroy(args.disk):
        print("Installation cancelled.")
        return 1

    config = InstallConfig(
        image_path=str(image_path),
        target_disk=args.disk,
        pool_name=args.pool,
        log_sink=print,
    )
    try:
        with operation_context(
            "install", image=config.image_path, disk=config.target_disk, pool=config.pool_name
        ) as log:
            Installer(log=log).install(config)
    except InstallError as error:
        stage = error.stage.value if error.stage else "unknown"
        print(f"Installation failed during {stage}: {error}", file=sys.stderr)
        if isinstance(error, StageError) and error.completed_stages:
            completed = ", ".join(item.value for item in error.completed_stages)
            print(f"Completed stages: {completed}", file=sys.stderr)
        return 1
    print("Installation complete. You can now reboot into the installed system.")
    return 0


def installer_main(argv=None):
    parser = build_installer_parser()
    args = parser.parse_args(argv)
    setup_logging(debug=args.debug, quiet=args.quiet)

    if args.command is None:
        parser.print_help()
        return 1

    try:
        if args.command == "list-images":
            print_images(list_images(args.images_dir), args.images_dir or "default locations")
            return 0
        if args.command == "list-disks":
            disks = list_disks()
            if not disks:
                print("No disks found")
                return 1
            for disk in disks:
                print(disk.format_label())
            return 0
        return run_install(args)
    except (PgsdError, OSError) as error:
        LoggerFactory.for_system().error(str(error))
        return 1


# ==============================================================================
# pgsdbuild
# ==============================================================================


def parse_overlay(value):
    """Parse ``name=source`` into a DatasetOverlay."""
    name, sep, source = value.partition("=")
    if not sep or not name or not source:
        raise argparse.ArgumentTypeError(f"expected NAME=SNAPSHOT, got {value!r}")
    return DatasetOverlay(name=name, source=source)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="pgsdbuild", description="PGSD Distribution Build Tool"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose output")
    parser.add_argument(
        "-q", "--quiet", action="store_true", help="Suppress all output except errors"
    )
    parser.add_argument(
        "--keep-work", action="store_true", help="Keep work directory after build"
    )
    parser.add_argument("--version", action="store_true", help="Show version information")
    parser.add_argument("--artifacts-dir", help="Directory for build artifacts")
    parser.add_argument("--work-dir", help="Working directory for builds")
    parser.add_argument("--iso-dir", help="Directory for ISO outputs")
    subparsers = parser.add_subparsers(dest="command")

    export = subparsers.add_parser("export-image", help="Export a pool as image artifacts")
    export.add_argument("image_id")
    export.add_argument("--pool", default=DEFAULT_POOL_NAME, help="Pool holding the system")
    export.add_argument("--root-dataset", help="Dataset to export (default <pool>/ROOT/default)")
    export.add_argument("--image-version", default="0.1.0", help="Version recorded in the manifest")
    export.add_argument("--system-root", help="Mounted system root providing boot/loader.efi")
    export.add_argument("--efi-tree", help="Prepared EFI partition tree")
    export.add_argument(
        "--overlay",
        action="append",
        default=[],
        type=parse_overlay,
        metavar="NAME=SNAPSHOT",
        help="Receive SNAPSHOT as <pool>/NAME before export (repeatable)",
    )

    iso = subparsers.add_parser("iso", help="Build a bootable ISO from a staged tree")
    iso.add_argument("root_dir")
    iso.add_argument("--output", help="Output ISO path (default <iso-dir>/<root name>.iso)")
    iso.add_argument("--label", default="PGSD", help="Volume label")

    hybrid = subparsers.add_parser("hybrid", help="Make an existing ISO USB bootable")
    hybrid.add_argument("iso_path")
    hybrid.add_argument("--boot-code", help="Boot code blob (default: search boot root)")
    hybrid.add_argument("--boot-root", default="/", help="Root searched for boot code")

    fetch = subparsers.add_parser("fetch", help="Download FreeBSD distribution archives")
    fetch.add_argument("freebsd_version", help="Release, e.g. 14.2-RELEASE")
    fetch.add_argument("--arch", default=DEFAULT_ARCH, help="Architecture (default amd64)")
    fetch.add_argument("--mirror", help=f"Mirror URL (default {DEFAULT_MIRROR})")
    fetch.add_argument(
        "--dest", help="Cache directory (default <work-dir>/freebsd/<version>-<arch>)"
    )

    subparsers.add_parser("list-images", help="List exported images")
    subparsers.add_parser("version", help="Show version information")
    return parser


def apply_flags(settings, args):
    overrides = {
        "artifacts_dir": args.artifacts_dir,
        "work_dir": args.work_dir,
        "iso_dir": args.iso_dir,
    }
    updates = {key: value for key, value in overrides.items() if value is not None}
    if args.verbose:
        updates["verbose"] = True
    if args.keep_work:
        updates["keep_work"] = True
    return replace(settings, **updates)


def cmd_export_image(args, settings):
    out_dir = settings.get_artifacts_dir() / args.image_id
    dataset = args.root_dataset or root_dataset(args.pool)
    with operation_context("export", image=args.image_id, pool=args.pool) as log:
        builder = ImageBuilder(
            log=log, work_dir=settings.get_work_dir(), keep_work=settings.keep_work
        )
        if args.overlay:
            builder.apply_overlays(args.pool, args.overlay)
        builder.export(
            args.pool,
            dataset,
            out_dir,
            args.image_id,
            args.image_version,
            system_root=args.system_root,
            efi_tree=args.efi_tree,
        )
    print(f"Artifacts available in: {out_dir}")
    return 0


def cmd_iso(args, settings):
    root_dir = Path(args.root_dir)
    output = Path(args.output) if args.output else settings.get_iso_dir() / f"{root_dir.name}.iso"
    with operation_context("iso", root=str(root_dir), output=str(output)) as log:
        IsoBuilder(log=log).assemble(root_dir, output, label=args.label)
    print(f"ISO available at: {output}")
    return 0


def cmd_hybrid(args, settings):
    make_hybrid_bootable(
        args.iso_path,
        boot_code_path=args.boot_code,
        boot_root=args.boot_root,
        log=LoggerFactory.for_iso(),
    )
    print(f"{args.iso_path} is now hybrid bootable")
    return 0


def cmd_fetch(args, settings):
    dest = (
        Path(args.dest)
        if args.dest
        else settings.get_work_dir() / "freebsd" / f"{args.freebsd_version}-{args.arch}"
    )
    with operation_context("fetch", version=args.freebsd_version, arch=args.arch) as log:
        paths = Fetcher(
            args.freebsd_version, dest, arch=args.arch, mirror=args.mirror, log=log
        ).fetch_archives()
    for path in paths.values():
        print(path)
    return 0


def cmd_list_images(args, settings):
    artifacts_dir = settings.get_artifacts_dir()
    print_images(list_images(artifacts_dir), artifacts_dir)
    return 0


COMMANDS = {
    "export-image": cmd_export_image,
    "iso": cmd_iso,
    "hybrid": cmd_hybrid,
    "fetch": cmd_fetch,
    "list-images": cmd_list_images,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version or args.command == "version":
        print(version_info())
        return 0

    settings = apply_flags(load_settings(), args)
    setup_logging(debug=settings.verbose, quiet=args.quiet)

    if args.command is None:
        parser.print_help()
        return 1

    try:
        return COMMANDS[args.command](args, settings)
    except (PgsdError, OSError) as error:
        LoggerFactory.for_system().error(f"{args.command} failed: {error}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
