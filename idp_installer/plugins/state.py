"""Compatibility state of an installed or candidate plugin."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from idp_installer.config.properties import parse_properties
from idp_installer.config.schemas import PluginDescriptor
from idp_installer.plugins.info import DEFAULT_UPDATE_URLS, PluginInfo
from idp_installer.registry.base import FetchError
from idp_installer.registry.factory import UnsupportedProtocolError, create_client

logger = logging.getLogger(__name__)


class PluginStateError(Exception):
    """Plugin information could not be obtained."""

    def __init__(self, message: str, plugin_id: str | None = None):
        self.plugin_id = plugin_id
        super().__init__(message)


def load_info_document(urls: Iterable[str]) -> tuple[str, dict[str, str]] | None:
    """Read the first available plugin information document.

    Args:
        urls: Locations to try, in order

    Returns:
        (url, properties) or None if no location could be read
    """
    for url in urls:
        logger.debug("Looking for plugin information at %s", url)
        try:
            data = create_client(url).fetch(url)
        except (FetchError, UnsupportedProtocolError) as e:
            logger.info("%s could not be located: %s", url, e)
            continue
        return url, parse_properties(data.decode("utf-8", errors="replace"))
    return None


class PluginState:
    """Fetches and holds the published information for one plugin.

    Override URLs, when given, replace the plugin's own update URLs; the
    default locations are used when neither is available.
    """

    def __init__(self, descriptor: PluginDescriptor, update_urls: Iterable[str] = ()):
        self._descriptor = descriptor
        self._override_urls = list(update_urls)
        self._info: PluginInfo | None = None

    @property
    def descriptor(self) -> PluginDescriptor:
        return self._descriptor

    @property
    def update_urls(self) -> list[str]:
        if self._override_urls:
            return list(self._override_urls)
        if self._descriptor.update_urls:
            return list(self._descriptor.update_urls)
        return list(DEFAULT_UPDATE_URLS)

    def initialize(self) -> None:
        """Fetch the plugin information.

        Raises:
            PluginStateError: If no location can be read, or the plugin is not
                described there
        """
        plugin_id = self._descriptor.plugin_id
        found = load_info_document(self.update_urls)
        if found is None:
            raise PluginStateError(f"Could not locate information for plugin {plugin_id}", plugin_id)
        url, properties = found
        info = PluginInfo(plugin_id, properties)
        if not info.available_versions:
            raise PluginStateError(f"Plugin {plugin_id} is not described at {url}", plugin_id)
        logger.debug("Plugin %s: information loaded from %s", plugin_id, url)
        self._info = info

    @property
    def plugin_info(self) -> PluginInfo:
        """The fetched information.

        Raises:
            PluginStateError: If initialize() has not succeeded
        """
        if self._info is None:
            raise PluginStateError("Plugin state not initialized", self._descriptor.plugin_id)
        return self._info
