"""Tests for the pgsd-inst and pgsdbuild command line entry points."""

from pathlib import Path

import pytest

from pgsdbuild import main as main_module
from pgsdbuild.__version__ import __version__
from pgsdbuild.config.settings import BuildSettings
from pgsdbuild.domain import DiskInfo, InstallStage
from pgsdbuild.storage.exceptions import CommandError, FetchError, StageError


@pytest.fixture(autouse=True)
def mock_setup_logging(mocker):
    return mocker.patch.object(main_module, "setup_logging")


@pytest.fixture
def mock_installer(mocker):
    return mocker.patch.object(main_module, "Installer")


class TestInstallerMain:
    """Tests for installer_main()."""

    def test_no_command_prints_help(self, capsys):
        assert main_module.installer_main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_list_disks(self, mocker, capsys):
        mocker.patch.object(
            main_module,
            "list_disks",
            return_value=[DiskInfo("ada0", "20G", "VBOX HARDDISK")],
        )

        assert main_module.installer_main(["list-disks"]) == 0
        assert "ada0 (20G) - VBOX HARDDISK" in capsys.readouterr().out

    def test_list_disks_none(self, mocker):
        mocker.patch.object(main_module, "list_disks", return_value=[])
        assert main_module.installer_main(["list-disks"]) == 1

    def test_list_images(self, make_image_dir, capsys):
        image_dir = make_image_dir("pgsd-desktop")

        code = main_module.installer_main(["--images-dir", str(image_dir.parent), "list-images"])

        assert code == 0
        assert "pgsd-desktop" in capsys.readouterr().out

    def test_install_with_yes(self, image_dir, mock_installer, capsys):
        code = main_module.installer_main(
            ["install", "--image", str(image_dir), "--disk", "ada0", "--yes"]
        )

        assert code == 0
        config = mock_installer.return_value.install.call_args[0][0]
        assert config.image_path == str(image_dir)
        assert config.target_disk == "ada0"
        assert config.pool_name == "pgsd"
        assert config.log_sink is print
        assert "Installation complete" in capsys.readouterr().out

    def test_install_by_image_id(self, make_image_dir, mock_installer):
        image_dir = make_image_dir("pgsd-desktop")

        main_module.installer_main(
            [
                "--images-dir", str(image_dir.parent),
                "install", "--image", "pgsd-desktop", "--disk", "ada0", "--pool", "tank", "--yes",
            ]
        )

        config = mock_installer.return_value.install.call_args[0][0]
        assert config.image_path == str(image_dir)
        assert config.pool_name == "tank"

    def test_confirmation_required(self, image_dir, mock_installer, mocker):
        mocker.patch("builtins.input", return_value="ada1")

        code = main_module.installer_main(["install", "--image", str(image_dir), "--disk", "ada0"])

        assert code == 1
        mock_installer.assert_not_called()

    def test_confirmation_accepted(self, image_dir, mock_installer, mocker):
        mocker.patch("builtins.input", return_value="ada0\n")

        code = main_module.installer_main(["install", "--image", str(image_dir), "--disk", "ada0"])

        assert code == 0
        mock_installer.return_value.install.assert_called_once()

    def test_confirmation_eof(self, image_dir, mock_installer, mocker):
        mocker.patch("builtins.input", side_effect=EOFError)
        assert main_module.installer_main(
            ["install", "--image", str(image_dir), "--disk", "ada0"]
        ) == 1

    def test_install_failure_reports_stage(self, image_dir, mock_installer, capsys):
        mock_installer.return_value.install.side_effect = StageError(
            InstallStage.CREATING_POOL,
            CommandError(["zpool", "create"], 1, "pool exists"),
            [InstallStage.VALIDATING, InstallStage.PARTITIONING],
        )

        code = main_module.installer_main(
            ["install", "--image", str(image_dir), "--disk", "ada0", "--yes"]
        )

        assert code == 1
        err = capsys.readouterr().err
        assert "Installation failed during creating pool" in err
        assert "pool exists" in err
        assert "Completed stages: validating, partitioning" in err

    def test_debug_flag(self, mocker, mock_setup_logging):
        mocker.patch.object(main_module, "list_disks", return_value=[])
        main_module.installer_main(["-d", "list-disks"])
        mock_setup_logging.assert_called_once_with(debug=True, quiet=False)


class TestBuildMain:
    """Tests for main()."""

    @pytest.fixture(autouse=True)
    def settings(self, mocker, tmp_path):
        settings = BuildSettings(root_dir=str(tmp_path))
        mocker.patch.object(main_module, "load_settings", return_value=settings)
        return settings

    def test_version_flag(self, capsys):
        assert main_module.main(["--version"]) == 0
        assert capsys.readouterr().out.strip() == f"pgsdbuild {__version__}"

    def test_version_command(self, capsys):
        assert main_module.main(["version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_no_command(self):
        assert main_module.main([]) == 1

    def test_export_image(self, mocker, tmp_path):
        builder_cls = mocker.patch.object(main_module, "ImageBuilder")

        code = main_module.main(
            [
                "--artifacts-dir", str(tmp_path / "out"),
                "export-image", "base", "--pool", "build",
                "--image-version", "2.0", "--efi-tree", "/tmp/efi",
                "--overlay", "usr/home=zroot/usr/home@base",
            ]
        )

        assert code == 0
        builder = builder_cls.return_value
        overlays = builder.apply_overlays.call_args[0][1]
        assert overlays[0].name == "usr/home"
        assert overlays[0].source == "zroot/usr/home@base"
        builder.export.assert_called_once_with(
            "build",
            "build/ROOT/default",
            tmp_path / "out" / "base",
            "base",
            "2.0",
            system_root=None,
            efi_tree="/tmp/efi",
        )

    def test_export_image_keep_work(self, mocker, tmp_path):
        builder_cls = mocker.patch.object(main_module, "ImageBuilder")

        main_module.main(["--keep-work", "export-image", "base", "--efi-tree", "/tmp/efi"])

        assert builder_cls.call_args.kwargs["keep_work"] is True
        builder_cls.return_value.apply_overlays.assert_not_called()

    def test_bad_overlay(self):
        with pytest.raises(SystemExit):
            main_module.main(["export-image", "base", "--overlay", "nosource"])

    def test_export_failure(self, mocker):
        builder_cls = mocker.patch.object(main_module, "ImageBuilder")
        builder_cls.return_value.export.side_effect = CommandError(["zfs"], 1)

        assert main_module.main(["export-image", "base"]) == 1

    def test_iso(self, mocker, tmp_path):
        iso_cls = mocker.patch.object(main_module, "IsoBuilder")

        code = main_module.main(["iso", str(tmp_path / "bootenv"), "--label", "live"])

        assert code == 0
        args, kwargs = iso_cls.return_value.assemble.call_args
        assert args[0] == tmp_path / "bootenv"
        assert args[1] == tmp_path.resolve() / "iso" / "bootenv.iso"
        assert kwargs == {"label": "live"}

    def test_hybrid(self, mocker):
        hybrid = mocker.patch.object(main_module, "make_hybrid_bootable")

        code = main_module.main(["hybrid", "out.iso", "--boot-root", "/mnt/root"])

        assert code == 0
        assert hybrid.call_args[0] == ("out.iso",)
        assert hybrid.call_args.kwargs["boot_code_path"] is None
        assert hybrid.call_args.kwargs["boot_root"] == "/mnt/root"

    def test_list_images(self, settings, capsys):
        image = Path(settings.root_dir) / "artifacts" / "base"
        image.mkdir(parents=True)
        (image / "manifest.toml").write_text('id = "base"\n')

        assert main_module.main(["list-images"]) == 0
        assert "base" in capsys.readouterr().out

    def test_verbose_enables_debug(self, mock_setup_logging):
        main_module.main(["-v", "list-images"])
        mock_setup_logging.assert_called_once_with(debug=True, quiet=False)

    def test_unwritable_artifacts_dir_reports_error(self, tmp_path, capsys):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")

        code = main_module.main(["--artifacts-dir", str(blocker), "export-image", "base"])

        assert code == 1
        assert "Traceback" not in capsys.readouterr().err

    def test_os_error_from_command_returns_1(self, mocker):
        iso_cls = mocker.patch.object(main_module, "IsoBuilder")
        iso_cls.return_value.assemble.side_effect = PermissionError("read-only file system")

        assert main_module.main(["iso", "bootenv"]) == 1

    def test_image_config_dirs_not_accepted(self):
        with pytest.raises(SystemExit):
            main_module.main(["--images-dir", "images", "list-images"])


class TestFetchCommand:
    """Tests for the fetch subcommand."""

    @pytest.fixture(autouse=True)
    def settings(self, mocker, tmp_path):
        settings = BuildSettings(root_dir=str(tmp_path))
        mocker.patch.object(main_module, "load_settings", return_value=settings)
        return settings

    @pytest.fixture
    def mock_fetcher(self, mocker, tmp_path):
        fetcher_cls = mocker.patch.object(main_module, "Fetcher")
        fetcher_cls.return_value.fetch_archives.return_value = {
            "base.txz": tmp_path / "base.txz",
            "kernel.txz": tmp_path / "kernel.txz",
        }
        return fetcher_cls

    def test_default_destination(self, mock_fetcher, tmp_path, capsys):
        code = main_module.main(["fetch", "14.2-RELEASE"])

        assert code == 0
        args, kwargs = mock_fetcher.call_args
        assert args == (
            "14.2-RELEASE",
            tmp_path.resolve() / "work" / "freebsd" / "14.2-RELEASE-amd64",
        )
        assert kwargs["arch"] == "amd64"
        assert kwargs["mirror"] is None
        out = capsys.readouterr().out
        assert "base.txz" in out
        assert "kernel.txz" in out

    def test_options(self, mock_fetcher):
        main_module.main(
            [
                "fetch", "14.1-RELEASE", "--arch", "arm64",
                "--mirror", "https://mirror.example", "--dest", "/var/cache/dist",
            ]
        )

        args, kwargs = mock_fetcher.call_args
        assert args == ("14.1-RELEASE", Path("/var/cache/dist"))
        assert kwargs["arch"] == "arm64"
        assert kwargs["mirror"] == "https://mirror.example"

    def test_download_failure(self, mock_fetcher):
        mock_fetcher.return_value.fetch_archives.side_effect = FetchError(
            "https://download.freebsd.org/base.txz", "HTTP 404"
        )

        assert main_module.main(["fetch", "14.2-RELEASE"]) == 1
