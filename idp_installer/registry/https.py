"""HTTP(S) client for remote plugin information and archives."""

from __future__ import annotations

import logging
import shutil
import ssl
from pathlib import Path
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request, urlopen

from idp_installer import __version__
from idp_installer.registry.base import FetchError, ResourceClient

logger = logging.getLogger(__name__)

USER_AGENT = f"idp-installer/{__version__}"


class HttpsClient(ResourceClient):
    """Client for ``http`` and ``https`` URLs.

    Supports optional extra headers (for authentication, etc.).
    """

    DEFAULT_TIMEOUT = 30  # seconds

    def __init__(self, headers: dict[str, str] | None = None, timeout: int | None = None):
        """Initialize the client.

        Args:
            headers: Optional HTTP headers
            timeout: Request timeout in seconds (default: 30)
        """
        self._headers = {"User-Agent": USER_AGENT, **(headers or {})}
        self._timeout = timeout or self.DEFAULT_TIMEOUT
        self._ssl_context = ssl.create_default_context()

    @property
    def protocol(self) -> str:
        return "https"

    def _check_url(self, url: str) -> None:
        scheme = urlparse(url).scheme.lower()
        if scheme not in ("http", "https"):
            raise FetchError(f"Invalid URL scheme: {scheme} (expected http or https)", url=url)

    def _open(self, url: str, method: str = "GET"):
        """Open a URL, translating failures into FetchError."""
        self._check_url(url)
        logger.debug("Making %s request to %s", method, url)
        request = Request(url, method=method)
        for key, value in self._headers.items():
            request.add_header(key, value)
        try:
            return urlopen(request, timeout=self._timeout, context=self._ssl_context)
        except HTTPError as e:
            logger.error("HTTP error %d: %s for %s", e.code, e.reason, url)
            raise FetchError(f"HTTP {e.code}: {e.reason} for {url}", url=url, status_code=e.code) from e
        except URLError as e:
            logger.error("Failed to connect to %s: %s", url, e.reason)
            raise FetchError(f"Failed to connect to {url}: {e.reason}", url=url) from e
        except TimeoutError as e:
            logger.error("Request timed out for %s", url)
            raise FetchError(f"Request timed out for {url}", url=url) from e

    def fetch(self, url: str) -> bytes:
        with self._open(url) as response:
            try:
                result: bytes = response.read()
            except (OSError, TimeoutError) as e:
                raise FetchError(f"Failed reading {url}: {e}", url=url) from e
        logger.debug("Request successful, received %d bytes", len(result))
        return result

    def download(self, url: str, dest: Path) -> Path:
        logger.info("Downloading %s", url)
        with self._open(url) as response:
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                with open(dest, "wb") as f:
                    shutil.copyfileobj(response, f)
            except OSError as e:
                raise FetchError(f"Failed downloading {url} to {dest}: {e}", url=url) from e
        logger.debug("Downloaded %s to %s", url, dest)
        return dest
