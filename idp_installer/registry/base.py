"""Abstract base class for resource clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path


class FetchError(Exception):
    """Error fetching a resource."""

    def __init__(self, message: str, url: str | None = None, status_code: int | None = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class ResourceClient(ABC):
    """Fetches documents and archives addressed by URL.

    Each client handles one family of URL schemes (local files, HTTP).
    """

    @property
    @abstractmethod
    def protocol(self) -> str:
        """Get the protocol this client handles (e.g., "file", "https")."""
        ...

    @abstractmethod
    def fetch(self, url: str) -> bytes:
        """Read a resource into memory.

        Raises:
            FetchError: If the resource cannot be read
        """
        ...

    def download(self, url: str, dest: Path) -> Path:
        """Copy a resource to a local file.

        Args:
            url: Resource to download
            dest: Destination file path (parent directories are created)

        Returns:
            The destination path

        Raises:
            FetchError: If the resource cannot be read or written
        """
        data = self.fetch(url)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            dest.write_bytes(data)
        except OSError as e:
            raise FetchError(f"Could not write {dest}: {e}", url=url) from e
        return dest
