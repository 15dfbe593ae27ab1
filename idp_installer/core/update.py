"""Check for, and download, newer IdP releases.

Release information is published in the same properties format as plugin
information, under the component id ``net.shibboleth.idp``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from idp_installer import __version__
from idp_installer.plugins.info import PluginInfo, SupportLevel
from idp_installer.plugins.state import load_info_document
from idp_installer.plugins.truststore import KeyAcceptor, TrustStore, TrustStoreError
from idp_installer.registry.base import FetchError
from idp_installer.registry.factory import UnsupportedProtocolError, create_client, join_url
from idp_installer.utils.filesystem import remove_file
from idp_installer.utils.platform import archive_suffix
from idp_installer.utils.version import ComponentVersion

logger = logging.getLogger(__name__)

IDP_COMPONENT_ID = "net.shibboleth.idp"

DEFAULT_IDP_UPDATE_URLS = (
    "https://shibboleth.net/downloads/identity-provider/plugins/idp-versions.properties",
    "http://plugins.shibboleth.net/idp-versions.properties",
)

SIGNING_KEYS_URL = "https://shibboleth.net/downloads/PGP_KEYS"
SIGNATURE_SUFFIX = ".sig"


class UpdateError(Exception):
    """Release information could not be obtained, or a download failed."""

    def __init__(self, message: str, url: str | None = None):
        self.url = url
        super().__init__(message)


@dataclass(frozen=True)
class VersionStatus:
    """One published release as seen from the running version."""

    version: ComponentVersion
    support_level: SupportLevel
    is_current: bool
    upgrade_candidate: bool


@dataclass(frozen=True)
class UpdateCheck:
    """Outcome of checking the running version."""

    current: ComponentVersion
    support_level: SupportLevel | None  # None when the running version is not published
    target: ComponentVersion | None

    @property
    def has_security_advisory(self) -> bool:
        return self.support_level is SupportLevel.SECADV


class IdPUpdateChecker:
    """Compares the running IdP against the published releases."""

    def __init__(
        self,
        idp_home: Path,
        update_urls: Iterable[str] = (),
        current_version: ComponentVersion | str | None = None,
        truststore: Path | None = None,
        accept_key: KeyAcceptor | None = None,
        keys_url: str = SIGNING_KEYS_URL,
    ):
        self._idp_home = Path(idp_home)
        self._update_urls = list(update_urls) or list(DEFAULT_IDP_UPDATE_URLS)
        current = current_version or __version__
        self._current = current if isinstance(current, ComponentVersion) else ComponentVersion.parse(current)
        self._truststore = truststore
        self._accept_key = accept_key
        self._keys_url = keys_url
        self._info: PluginInfo | None = None

    @property
    def current_version(self) -> ComponentVersion:
        return self._current

    @property
    def update_urls(self) -> list[str]:
        return list(self._update_urls)

    @property
    def info(self) -> PluginInfo:
        """Published release information, fetched on first use.

        Raises:
            UpdateError: If no update location can be read
        """
        if self._info is None:
            found = load_info_document(self._update_urls)
            if found is None:
                logger.error("Could not locate any active update servers")
                raise UpdateError("Could not load IdP version information")
            url, properties = found
            logger.debug("IdP version information loaded from %s", url)
            self._info = PluginInfo(IDP_COMPONENT_ID, properties)
        return self._info

    def list_versions(self) -> list[VersionStatus]:
        """Every published release, oldest first."""
        info = self.info
        result = []
        for version, version_info in sorted(info.available_versions.items()):
            result.append(
                VersionStatus(
                    version=version,
                    support_level=version_info.support_level,
                    is_current=version == self._current,
                    upgrade_candidate=info.is_supported_with_idp_version(version, self._current),
                )
            )
        return result

    def check(self, target: ComponentVersion | None = None) -> UpdateCheck:
        """Report the running version's support level and the release to move to.

        Args:
            target: Explicit release to move to (default: the best newer one)
        """
        info = self.info
        version_info = info.available_versions.get(self._current)
        if version_info is None:
            logger.warning("Could not locate version info for version %s", self._current)
            level = None
        else:
            level = version_info.support_level
            if level is SupportLevel.CURRENT:
                logger.info("Version %s is current", self._current)
            elif level is SupportLevel.SECADV:
                logger.error("Version %s has known security vulnerabilities", self._current)
            else:
                logger.warning("Support level for %s is %s", self._current, level.value)

        if target is None:
            target = info.best_version(self._current, self._current)
            if target is None:
                logger.info("No Upgrade available from %s", self._current)
            else:
                logger.info("Version %s can be upgraded to %s", self._current, target)
        elif target not in info.available_versions:
            raise UpdateError(f"Version {target} is not published")
        return UpdateCheck(current=self._current, support_level=level, target=target)

    def download(self, version: ComponentVersion, download_dir: Path) -> Path:
        """Download a release and its signature, then verify the signature.

        Both files are deleted if the signature cannot be verified.

        Returns:
            Path to the downloaded archive

        Raises:
            UpdateError: If the download fails or the signature is not trusted
        """
        download = self.info.download_info(version)
        if download is None:
            logger.error("Could not get download information for idp update version %s", version)
            raise UpdateError(f"No download information for version {version}")

        file_name = download.base_name + archive_suffix()
        archive = download_dir / file_name
        signature = download_dir / (file_name + SIGNATURE_SUFFIX)
        download_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Downloading version %s to %s from %s%s", version, download_dir, download.url, file_name)
        for name, dest in ((file_name + SIGNATURE_SUFFIX, signature), (file_name, archive)):
            url = join_url(download.url, name)
            try:
                create_client(url).download(url, dest)
            except (FetchError, UnsupportedProtocolError) as e:
                logger.error("Could not download idp version %s from %s: %s", version, url, e)
                raise UpdateError(f"Could not download {url}: {e}", url) from e

        logger.debug("Checking signature")
        try:
            self._check_signature(archive, signature)
        except UpdateError:
            logger.info("Deleting downloaded files")
            remove_file(archive)
            remove_file(signature)
            raise
        logger.info("Signature checked OK")
        return archive

    def _check_signature(self, archive: Path, signature: Path) -> None:
        data = archive.read_bytes()
        sig = signature.read_bytes()
        store = TrustStore(IDP_COMPONENT_ID, self._idp_home, self._truststore)
        try:
            store.load()
            if not store.contains(data, sig):
                logger.info("TrustStore does not contain the signing key, downloading %s", self._keys_url)
                try:
                    keys = create_client(self._keys_url).fetch(self._keys_url)
                except (FetchError, UnsupportedProtocolError) as e:
                    raise UpdateError(f"Could not download signing keys: {e}", self._keys_url) from e
                if not store.import_keys(keys.decode("ascii", errors="replace"), data, sig, self._accept_key):
                    logger.info("Key not added to Trust Store")
                    raise UpdateError("Signing key not trusted")
        except TrustStoreError as e:
            logger.error("Could not manage truststore for [%s, %s]: %s", self._idp_home, IDP_COMPONENT_ID, e)
            raise UpdateError(f"Could not manage truststore: {e}") from e

        if not store.check_signature(data, sig):
            logger.info("Signature check for %s failed", archive.name)
            raise UpdateError(f"Signature check for {archive.name} failed")
