"""Tests for idp_installer.core.layout module."""

import stat
from pathlib import Path
from unittest.mock import patch

import pytest

from idp_installer.core.errors import BuildError
from idp_installer.core.layout import (
    USER_DIRECTORIES,
    InstallLayout,
    copy_distribution_tree,
    copy_if_not_present,
    delete_tree,
    make_writable,
    set_mode,
)


class TestInstallLayout:
    """Tests for InstallLayout paths."""

    def test_paths(self, temp_dir: Path):
        """Well-known paths hang off the root."""
        layout = InstallLayout(temp_dir)

        assert layout.idp_properties == temp_dir / "conf" / "idp.properties"
        assert layout.version_file == temp_dir / "dist" / "idp.installed.version"
        assert layout.war_file == temp_dir / "war" / "idp.war"
        assert layout.plugin_record("p") == temp_dir / "dist" / "plugin-contents" / "p.yaml"

    def test_create_user_directories(self, temp_dir: Path):
        """Creates every operator directory, idempotently."""
        layout = InstallLayout(temp_dir)
        layout.create_user_directories()
        layout.create_user_directories()

        for name in USER_DIRECTORIES:
            assert (temp_dir / name).is_dir()


class TestTreeOperations:
    """Tests for tree copy and delete helpers."""

    def test_copy_distribution_tree_replaces(self, temp_dir: Path):
        """The destination ends up an exact copy of the source."""
        src = temp_dir / "src"
        (src / "sub").mkdir(parents=True)
        (src / "sub" / "a.xml").write_text("new")
        dest = temp_dir / "dest"
        dest.mkdir()
        (dest / "stale.xml").write_text("old")

        copy_distribution_tree(src, dest)

        assert (dest / "sub" / "a.xml").read_text() == "new"
        assert not (dest / "stale.xml").exists()

    def test_copy_distribution_tree_missing_source(self, temp_dir: Path):
        """A missing source leaves the destination alone."""
        dest = temp_dir / "dest"
        dest.mkdir()
        (dest / "keep.xml").write_text("x")

        copy_distribution_tree(temp_dir / "missing", dest)

        assert (dest / "keep.xml").exists()

    def test_copy_if_not_present(self, temp_dir: Path):
        """Only files absent from the destination are copied."""
        src = temp_dir / "src"
        src.mkdir()
        (src / "a.xml").write_text("dist")
        (src / "b.xml").write_text("dist")
        dest = temp_dir / "dest"
        dest.mkdir()
        (dest / "a.xml").write_text("local")

        copy_if_not_present(src, dest)

        assert (dest / "a.xml").read_text() == "local"
        assert (dest / "b.xml").read_text() == "dist"

    def test_delete_tree_missing(self, temp_dir: Path):
        """Deleting a missing tree is not an error."""
        delete_tree(temp_dir / "missing")

    def test_delete_tree_failure(self, temp_dir: Path):
        """OS errors become BuildError."""
        with patch("idp_installer.core.layout.remove_directory", side_effect=OSError("busy")):
            with pytest.raises(BuildError, match="Could not delete"):
                delete_tree(temp_dir)


class TestModes:
    """Tests for set_mode and make_writable."""

    def test_set_mode(self, temp_dir: Path):
        """Applies the octal mode to matching files only."""
        (temp_dir / "a.key").write_text("")
        (temp_dir / "a.crt").write_text("")

        with patch("idp_installer.core.layout.is_windows", return_value=False):
            set_mode(temp_dir, "600", ["**/*.key"])

        assert stat.S_IMODE((temp_dir / "a.key").stat().st_mode) == 0o600
        assert stat.S_IMODE((temp_dir / "a.crt").stat().st_mode) != 0o600

    def test_set_mode_invalid(self, temp_dir: Path):
        """Non-octal modes are rejected."""
        with patch("idp_installer.core.layout.is_windows", return_value=False):
            with pytest.raises(BuildError, match="Invalid file mode"):
                set_mode(temp_dir, "rw-")

    def test_make_writable(self, temp_dir: Path):
        """Restores the owner write bit."""
        path = temp_dir / "ro.txt"
        path.write_text("")
        path.chmod(0o444)

        with patch("idp_installer.core.layout.is_windows", return_value=False):
            make_writable(path)

        assert path.stat().st_mode & stat.S_IWUSR
