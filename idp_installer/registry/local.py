"""Local file system client."""

from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import unquote, urlparse

from idp_installer.registry.base import FetchError, ResourceClient

logger = logging.getLogger(__name__)


def url_to_path(url: str) -> Path:
    """Turn a ``file:`` URL or a plain path into a Path.

    Formats:
    - file:///path/to/file (absolute)
    - file:../relative/path (relative to the working directory)
    - /path/or/relative/path
    """
    if url.startswith("file://"):
        return Path(unquote(urlparse(url).path))
    if url.startswith("file:"):
        return Path(url[5:]).resolve()
    return Path(url).resolve()


class LocalClient(ResourceClient):
    """Client for ``file:`` URLs and plain paths."""

    @property
    def protocol(self) -> str:
        return "file"

    def fetch(self, url: str) -> bytes:
        path = url_to_path(url)
        logger.debug("Reading %s", path)
        try:
            return path.read_bytes()
        except OSError as e:
            logger.debug("Could not read %s: %s", path, e)
            raise FetchError(f"Could not read {path}: {e}", url=url) from e
