"""Resource client factory."""

import logging
from urllib.parse import urlparse

from idp_installer.registry.base import ResourceClient
from idp_installer.registry.local import LocalClient

logger = logging.getLogger(__name__)


class UnsupportedProtocolError(Exception):
    """Error when a URL uses an unsupported protocol."""

    def __init__(self, protocol: str, url: str):
        self.protocol = protocol
        self.url = url
        super().__init__(f"Unsupported protocol: {protocol} (in {url})")


def create_client(url: str) -> ResourceClient:
    """Create a client able to read the given URL.

    Args:
        url: file:, http:, https: URL or a local path

    Returns:
        Appropriate ResourceClient instance

    Raises:
        UnsupportedProtocolError: If the protocol is not supported
    """
    if url.startswith("file:"):
        return LocalClient()

    protocol = urlparse(url).scheme.lower()
    # Single letters are Windows drive letters
    if protocol == "" or len(protocol) == 1:
        return LocalClient()
    if protocol in ("http", "https"):
        from idp_installer.registry.https import HttpsClient

        logger.debug("Creating HTTP client for %s", url)
        return HttpsClient()
    raise UnsupportedProtocolError(protocol, url)


def is_remote(url: str) -> bool:
    """Check whether a location is fetched over the network."""
    return urlparse(url).scheme.lower() in ("http", "https")


def join_url(base: str, name: str) -> str:
    """Append a file name to a base URL or directory."""
    return base.rstrip("/") + "/" + name
