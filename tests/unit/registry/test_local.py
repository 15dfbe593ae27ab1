"""Tests for idp_installer.registry.local module."""

from pathlib import Path

import pytest

from idp_installer.registry.base import FetchError
from idp_installer.registry.local import LocalClient, url_to_path


class TestUrlToPath:
    """Tests for url_to_path."""

    def test_file_uri(self, temp_dir: Path):
        """Absolute file URIs map to their path."""
        path = temp_dir / "a b.txt"

        assert url_to_path(path.as_uri()) == path

    def test_plain_path(self, temp_dir: Path):
        """Plain paths are resolved."""
        assert url_to_path(str(temp_dir)) == temp_dir.resolve()


class TestLocalClient:
    """Tests for LocalClient."""

    def test_fetch(self, temp_dir: Path):
        """Reads file bytes."""
        path = temp_dir / "doc.properties"
        path.write_bytes(b"a=1\n")

        assert LocalClient().fetch(path.as_uri()) == b"a=1\n"

    def test_fetch_missing(self, temp_dir: Path):
        """Missing files raise FetchError."""
        with pytest.raises(FetchError, match="Could not read"):
            LocalClient().fetch(str(temp_dir / "missing"))

    def test_download(self, temp_dir: Path):
        """Copies to the destination, creating parents."""
        src = temp_dir / "p.tar.gz"
        src.write_bytes(b"archive")

        dest = LocalClient().download(str(src), temp_dir / "out" / "p.tar.gz")

        assert dest.read_bytes() == b"archive"
