"""Published information about plugin versions.

Plugin information is a properties document. For a plugin ``<id>``:

    <id>.versions = 1.0.0 1.1.0
    <id>.idpVersionMin.1.1.0 = 5.0.0
    <id>.idpVersionMax.1.1.0 = 6.0.0
    <id>.supportLevel.1.1.0 = Current
    <id>.downloadURL.%{version} = https://example.org/plugins/<id>/%{version}/
    <id>.baseName.%{version} = <id>-dist-%{version}

Per-version download keys win over the ``%{version}`` template keys, which
win over the plain ``<id>.downloadURL`` / ``<id>.baseName`` keys.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from idp_installer.utils.version import ComponentVersion, VersionRange

logger = logging.getLogger(__name__)

DEFAULT_UPDATE_URLS = (
    "https://shibboleth.net/downloads/identity-provider/plugins/plugins.properties",
    "http://plugins.shibboleth.net/plugins.properties",
)

VERSIONS_SUFFIX = ".versions"
MAX_IDP_VERSION_INTERFIX = ".idpVersionMax."
MIN_IDP_VERSION_INTERFIX = ".idpVersionMin."
SUPPORT_LEVEL_INTERFIX = ".supportLevel."
DOWNLOAD_URL_INTERFIX = ".downloadURL."
BASE_NAME_INTERFIX = ".baseName."
LICENSE_SUFFIX = ".license"
VERSION_PATTERN = "%{version}"


class SupportLevel(Enum):
    """How a published version is supported."""

    CURRENT = "Current"
    OUT_OF_DATE = "OutOfDate"
    UNSUPPORTED = "Unsupported"
    SECADV = "Secadv"
    WITHDRAWN = "Withdrawn"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: str | None) -> SupportLevel:
        if value is None:
            return cls.UNKNOWN
        try:
            return cls(value.strip())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class VersionInfo:
    """Compatibility of one published version."""

    min_supported: ComponentVersion
    max_supported: ComponentVersion
    support_level: SupportLevel

    @property
    def idp_range(self) -> VersionRange:
        return VersionRange(self.min_supported, self.max_supported)


@dataclass(frozen=True)
class DownloadInfo:
    """Where a published version can be downloaded from."""

    url: str
    base_name: str


def _as_version(version: ComponentVersion | str) -> ComponentVersion:
    if isinstance(version, ComponentVersion):
        return version
    return ComponentVersion.parse(version)


def available_plugins(properties: dict[str, str]) -> list[str]:
    """Ids of every plugin described in an information document."""
    return sorted(key[: -len(VERSIONS_SUFFIX)] for key in properties if key.endswith(VERSIONS_SUFFIX))


class PluginInfo:
    """Versions of one plugin and the IdP versions they support."""

    def __init__(self, plugin_id: str, properties: dict[str, str]):
        """Parse the information for ``plugin_id``.

        Args:
            plugin_id: The plugin to look for
            properties: The whole information document
        """
        plugin_id = plugin_id.strip()
        if not plugin_id:
            raise ValueError("Plugin id must not be empty")
        self._plugin_id = plugin_id
        self._versions: dict[ComponentVersion, VersionInfo] = {}
        self._downloads: dict[ComponentVersion, DownloadInfo] = {}
        self._complete = True
        self._license = properties.get(plugin_id + LICENSE_SUFFIX)
        self._parse(properties)

    @property
    def plugin_id(self) -> str:
        return self._plugin_id

    @property
    def is_info_complete(self) -> bool:
        """Whether every listed version had its compatibility information."""
        return self._complete

    @property
    def license(self) -> str | None:
        return self._license

    @property
    def available_versions(self) -> dict[ComponentVersion, VersionInfo]:
        return dict(self._versions)

    def download_info(self, version: ComponentVersion | str) -> DownloadInfo | None:
        return self._downloads.get(_as_version(version))

    def _parse(self, properties: dict[str, str]) -> None:
        name = self._plugin_id + VERSIONS_SUFFIX
        listed = (properties.get(name) or "").split()
        if not listed:
            logger.warning("Plugin %s: Could not find %s property.", self._plugin_id, name)
            self._complete = False
            return
        logger.debug("Plugin %s: Available versions: %s", self._plugin_id, " ".join(listed))
        for version in listed:
            try:
                self._parse_version(properties, version)
            except ValueError as e:
                logger.warning("Plugin %s: Invalid version information for %s: %s", self._plugin_id, version, e)
                self._complete = False

    def _parse_version(self, properties: dict[str, str], version: str) -> None:
        the_version = ComponentVersion.parse(version)
        if the_version == ComponentVersion(0, 0, 0):
            logger.warning("Plugin %s: Improbable version %s", self._plugin_id, version)
        if the_version in self._versions:
            logger.warning("Plugin %s: Duplicate version %s", self._plugin_id, version)

        max_version = (properties.get(self._plugin_id + MAX_IDP_VERSION_INTERFIX + version) or "").strip()
        if not max_version:
            logger.warning("Plugin %s, Version %s: Could not find max idp version.", self._plugin_id, version)
            self._complete = False
            return
        min_version = (properties.get(self._plugin_id + MIN_IDP_VERSION_INTERFIX + version) or "").strip()
        if not min_version:
            logger.warning("Plugin %s, Version %s: Could not find min idp version.", self._plugin_id, version)
            self._complete = False
            return

        level_value = properties.get(self._plugin_id + SUPPORT_LEVEL_INTERFIX + version)
        support_level = SupportLevel.parse(level_value)
        if level_value is not None and support_level is SupportLevel.UNKNOWN:
            logger.warning("Plugin %s, Version %s: Invalid support level %s.", self._plugin_id, version, level_value)

        logger.debug(
            "Plugin %s: MaxIdP %s, MinIdP %s, Support Level %s",
            self._plugin_id,
            max_version,
            min_version,
            support_level.value,
        )
        self._versions[the_version] = VersionInfo(
            ComponentVersion.parse(min_version), ComponentVersion.parse(max_version), support_level
        )

        url = self._defaulted_value(properties, DOWNLOAD_URL_INTERFIX, version)
        base_name = self._defaulted_value(properties, BASE_NAME_INTERFIX, version)
        if url and base_name:
            if not url.endswith("/"):
                url += "/"
            self._downloads[the_version] = DownloadInfo(url, base_name)
        else:
            logger.info("Plugin %s, version %s: no download information present", self._plugin_id, version)

    def _defaulted_value(self, properties: dict[str, str], interfix: str, version: str) -> str | None:
        value = properties.get(self._plugin_id + interfix + version)
        if value is None:
            value = properties.get(self._plugin_id + interfix + VERSION_PATTERN)
        if value is None:
            value = properties.get(self._plugin_id + interfix.rstrip("."))
        if value is None:
            return None
        return value.replace(VERSION_PATTERN, version).strip() or None

    def is_supported_with_idp_version(
        self, plugin_version: ComponentVersion | str, idp_version: ComponentVersion | str
    ) -> bool:
        """Check whether a plugin version supports an IdP version.

        The minimum IdP version is inclusive, the maximum exclusive. Unknown
        plugin versions are never supported.
        """
        info = self._versions.get(_as_version(plugin_version))
        if info is None:
            logger.error("Plugin %s: Unknown version %s supplied.", self._plugin_id, plugin_version)
            return False
        return info.idp_range.contains(idp_version)

    def best_version(
        self, plugin_version: ComponentVersion | str, idp_version: ComponentVersion | str
    ) -> ComponentVersion | None:
        """Highest version newer than ``plugin_version`` that can be installed.

        A candidate must be Current, support ``idp_version`` and have
        download information.
        """
        current = _as_version(plugin_version)
        for version in sorted(self._versions, reverse=True):
            if version <= current:
                logger.debug("Version %s is less than or the same as %s. All done", version, current)
                return None
            info = self._versions[version]
            if info.support_level is not SupportLevel.CURRENT:
                logger.debug("Version %s has support level %s, ignoring", version, info.support_level.value)
                continue
            if not info.idp_range.contains(idp_version):
                logger.debug("Version %s is not supported with idpVersion %s", version, idp_version)
                continue
            if version not in self._downloads:
                logger.debug("Version %s does not have update information", version)
                continue
            return version
        return None
