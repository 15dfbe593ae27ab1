"""Plugin installation, update and removal.

A plugin distribution is a ``.tar.gz``, ``.tgz`` or ``.zip`` archive holding
one top-level directory:

    <plugin>/
        plugin.yaml          descriptor
        bootstrap/keys.txt   candidate signing keys (optional)
        webapp/              overlaid onto the WAR via dist/plugin-webapp
        modules/             sources of the modules the plugin contributes
        ...                  files listed in the descriptor

and is signed by ``<archive>.sig``.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import TextIO

from idp_installer import __version__
from idp_installer.config.parser import (
    ConfigError,
    load_installed_plugin,
    load_plugin_descriptor,
    save_installed_plugin,
)
from idp_installer.config.schemas import InstalledPlugin, PluginDescriptor
from idp_installer.core.errors import BuildError
from idp_installer.core.layout import InstallLayout, delete_tree
from idp_installer.core.war import WarBuilder
from idp_installer.modules import (
    ModuleContext,
    ModuleError,
    available_modules,
    plugin_contents_dir,
)
from idp_installer.plugins.info import DEFAULT_UPDATE_URLS, PluginInfo, available_plugins
from idp_installer.plugins.state import PluginState, PluginStateError, load_info_document
from idp_installer.plugins.truststore import KeyAcceptor, TrustStore, TrustStoreError
from idp_installer.registry.base import FetchError
from idp_installer.registry.factory import UnsupportedProtocolError, create_client, join_url
from idp_installer.utils.filesystem import copy_tree, extract_archive
from idp_installer.utils.version import ComponentVersion

logger = logging.getLogger(__name__)

SIGNATURE_SUFFIX = ".sig"
PLUGIN_ARCHIVE_SUFFIX = ".tar.gz"

# Top-level IdP home directories a plugin may not write into
DISALLOWED_PATHS = ("dist", "system", "webapp")


class PluginError(Exception):
    """Error installing, updating or removing a plugin."""

    def __init__(self, message: str, plugin_id: str | None = None):
        self.plugin_id = plugin_id
        super().__init__(message)


class PluginInstaller:
    """Installs plugins into an IdP home."""

    def __init__(
        self,
        idp_home: Path,
        no_prompt: bool = False,
        truststore: Path | None = None,
        no_check: bool = False,
        no_rebuild: bool = False,
        update_urls: list[str] | tuple[str, ...] = (),
        accept_key: KeyAcceptor | None = None,
        idp_version: str | None = None,
        message_stream: TextIO | None = None,
    ):
        """Initialize the installer.

        Args:
            idp_home: IdP installation directory
            no_prompt: Never ask; new signing keys are rejected
            truststore: Explicit trust store instead of the per-plugin one
            no_check: Skip signature checking
            no_rebuild: Do not rebuild the WAR after changes
            update_urls: Override locations of plugin information
            accept_key: Asked whether to trust a new signing key
            idp_version: IdP version to check compatibility against
            message_stream: Where module messages are written
        """
        self._layout = InstallLayout(idp_home)
        self._no_prompt = no_prompt
        self._truststore = truststore
        self._no_check = no_check
        self._no_rebuild = no_rebuild
        self._update_urls = list(update_urls)
        self._accept_key = accept_key
        self._idp_version = idp_version or __version__
        self._message_stream = message_stream

    @property
    def layout(self) -> InstallLayout:
        return self._layout

    @property
    def idp_version(self) -> str:
        return self._idp_version

    # -------------------------------------------------------------------------
    # Installed plugins
    # -------------------------------------------------------------------------

    def installed_plugins(self) -> list[InstalledPlugin]:
        """Records of every installed plugin, sorted by id."""
        records = []
        contents = self._layout.plugin_contents
        if not contents.is_dir():
            return records
        for path in sorted(contents.glob("*.yaml")):
            try:
                records.append(load_installed_plugin(path))
            except ConfigError as e:
                logger.error("Could not load installed plugin record %s: %s", path, e)
        return records

    def installed_plugin(self, plugin_id: str) -> InstalledPlugin | None:
        path = self._layout.plugin_record(plugin_id)
        if not path.is_file():
            return None
        try:
            return load_installed_plugin(path)
        except ConfigError as e:
            raise PluginError(f"Could not read record of plugin {plugin_id}: {e}", plugin_id) from e

    def _require_installed(self, plugin_id: str) -> InstalledPlugin:
        record = self.installed_plugin(plugin_id)
        if record is None:
            logger.error("Plugin %s not installed", plugin_id)
            raise PluginError(f"Plugin {plugin_id} is not installed", plugin_id)
        return record

    def installed_contents(self, plugin_id: str) -> list[Path]:
        """Files the installation of a plugin wrote, relative to the IdP home."""
        return [Path(p) for p in self._require_installed(plugin_id).contents]

    def license_text(self, plugin_id: str) -> str | None:
        """License of an installed plugin, if it shipped one."""
        return self._require_installed(plugin_id).license_text

    # -------------------------------------------------------------------------
    # Plugin information
    # -------------------------------------------------------------------------

    def plugin_state(self, descriptor: PluginDescriptor) -> PluginState:
        """Fetch the published information for a plugin.

        Raises:
            PluginError: If the information cannot be found
        """
        state = PluginState(descriptor, self._update_urls)
        try:
            state.initialize()
        except PluginStateError as e:
            raise PluginError(f"Could not interrogate plugin {descriptor.plugin_id}: {e}", e.plugin_id) from e
        return state

    def load_available(self) -> dict[str, PluginInfo]:
        """Information for every plugin published at the update locations.

        Raises:
            PluginError: If no update location can be read
        """
        found = load_info_document(self._update_urls or DEFAULT_UPDATE_URLS)
        if found is None:
            logger.error("Could not locate any active update servers")
            raise PluginError("Could not locate any active update servers")
        _url, properties = found
        result = {}
        for plugin_id in available_plugins(properties):
            info = PluginInfo(plugin_id, properties)
            if info.is_info_complete:
                result[plugin_id] = info
        return result

    def _check_compatibility(self, descriptor: PluginDescriptor) -> None:
        try:
            state = PluginState(descriptor, self._update_urls)
            state.initialize()
        except PluginStateError as e:
            logger.warning("Could not check compatibility of plugin %s: %s", descriptor.plugin_id, e)
            return
        if not state.plugin_info.is_supported_with_idp_version(descriptor.version, self._idp_version):
            logger.warning(
                "Plugin %s version %s is not supported with IdP Version %s",
                descriptor.plugin_id,
                descriptor.version,
                self._idp_version,
            )

    # -------------------------------------------------------------------------
    # Install
    # -------------------------------------------------------------------------

    def install_from_dir(self, base: Path, file_name: str, force: bool = False) -> InstalledPlugin:
        """Install a plugin from a local archive.

        Args:
            base: Directory holding the archive (and its signature)
            file_name: Archive file name
            force: Allow reinstalling the same version or downgrading

        Returns:
            The installed plugin's record

        Raises:
            PluginError: If the archive is missing, invalid, untrusted, or
                would downgrade the plugin
        """
        archive = base / file_name
        if not archive.is_file():
            logger.error("Could not find distribution %s", archive)
            raise PluginError("Could not find distribution")
        signature = base / (file_name + SIGNATURE_SUFFIX)
        if not self._no_check and not signature.is_file():
            logger.error("Could not find signature %s", signature)
            raise PluginError("Could not find signature for distribution")

        with tempfile.TemporaryDirectory(prefix="idp-plugin-") as tmp:
            try:
                distribution = extract_archive(archive, Path(tmp))
            except (OSError, ValueError) as e:
                raise PluginError(f"Could not unpack {file_name}: {e}") from e
            try:
                descriptor = load_plugin_descriptor(distribution)
            except ConfigError as e:
                raise PluginError(f"Could not load plugin descriptor: {e}") from e

            plugin_id = descriptor.plugin_id
            if not self._no_check:
                self._check_signature(plugin_id, distribution, archive.read_bytes(), signature.read_bytes())
            self._check_compatibility(descriptor)

            existing = self.installed_plugin(plugin_id)
            if existing is not None:
                self._check_replaceable(existing, descriptor, force)

            logger.info("Installing Plugin %s version %s", plugin_id, descriptor.version)
            if existing is not None:
                self._remove_contents(existing)
            record = self._install_distribution(descriptor, distribution)

        self._enable_modules(record)
        self._rebuild()
        return record

    def install_from_url(self, base_url: str, file_name: str, force: bool = False) -> InstalledPlugin:
        """Download a plugin archive (and its signature) and install it."""
        with tempfile.TemporaryDirectory(prefix="idp-download-") as tmp:
            download_dir = Path(tmp)
            self._download(base_url, file_name, download_dir)
            if not self._no_check:
                self._download(base_url, file_name + SIGNATURE_SUFFIX, download_dir)
            return self.install_from_dir(download_dir, file_name, force=force)

    def install_by_id(self, plugin_id: str) -> InstalledPlugin:
        """Install the best available version of a plugin by id."""
        if self.installed_plugin(plugin_id) is not None:
            logger.error("Plugin %s is already installed", plugin_id)
            raise PluginError(f"Plugin {plugin_id} is already installed", plugin_id)
        found = load_info_document(self._update_urls or DEFAULT_UPDATE_URLS)
        if found is None:
            raise PluginError("AutoInstall not possible: no update location could be read", plugin_id)
        info = PluginInfo(plugin_id, found[1])
        if not info.available_versions:
            raise PluginError(f"Plugin {plugin_id}: Information not found", plugin_id)
        version = info.best_version(ComponentVersion(0, 0, 0), self._idp_version)
        if version is None:
            raise PluginError(f"Plugin {plugin_id}: No version available to install", plugin_id)
        download = info.download_info(version)
        return self.install_from_url(download.url, download.base_name + PLUGIN_ARCHIVE_SUFFIX)

    def update(self, plugin_id: str, version: ComponentVersion | None = None) -> InstalledPlugin | None:
        """Update an installed plugin.

        Args:
            plugin_id: The plugin to update
            version: Version to install regardless of ordering (default: the
                best newer version)

        Returns:
            The new record, or None when no suitable update exists
        """
        existing = self._require_installed(plugin_id)
        info = self.plugin_state(existing.descriptor).plugin_info
        if version is None:
            target = info.best_version(existing.version, self._idp_version)
            if target is None:
                logger.info("No suitable update version available")
                return None
        else:
            target = version
            if target not in info.available_versions:
                available = ", ".join(str(v) for v in sorted(info.available_versions))
                raise PluginError(
                    f"Specified version {target} could not be found. Available versions: {available}", plugin_id
                )
        download = info.download_info(target)
        if download is None:
            raise PluginError(f"Version {target} of {plugin_id} has no download information", plugin_id)
        return self.install_from_url(
            download.url, download.base_name + PLUGIN_ARCHIVE_SUFFIX, force=version is not None
        )

    def uninstall(self, plugin_id: str) -> None:
        """Remove a plugin: disable its modules, then delete what it installed."""
        record = self._require_installed(plugin_id)
        logger.info("Uninstalling Plugin %s version %s", plugin_id, record.version)

        context = ModuleContext(self._layout.root, self._message_stream)
        modules = available_modules([record])
        for definition in record.descriptor.modules:
            module = modules[definition.id]
            if module.owner_id != plugin_id:
                continue
            try:
                if module.is_enabled(context):
                    module.disable(context, clean=False)
            except ModuleError as e:
                raise PluginError(f"Could not disable module {definition.id}: {e}", plugin_id) from e

        self._remove_contents(record)
        self._layout.plugin_record(plugin_id).unlink()
        self._rebuild()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _download(self, base_url: str, file_name: str, dest_dir: Path) -> Path:
        url = join_url(base_url, file_name)
        try:
            return create_client(url).download(url, dest_dir / file_name)
        except (FetchError, UnsupportedProtocolError) as e:
            logger.error("Could not download %s: %s", url, e)
            raise PluginError(f"Could not download {url}: {e}") from e

    def _check_signature(self, plugin_id: str, distribution: Path, data: bytes, signature: bytes) -> None:
        store = TrustStore(plugin_id, self._layout.root, self._truststore)
        try:
            store.load()
            if not store.contains(data, signature):
                logger.info("TrustStore does not contain the key for %s", plugin_id)
                keys = distribution / "bootstrap" / "keys.txt"
                if not keys.is_file():
                    logger.info("No embedded keys file, signature check fails")
                    raise PluginError("No key found to check signature of distribution", plugin_id)
                accept = None if self._no_prompt else self._accept_key
                if not store.import_keys(keys.read_text(encoding="ascii"), data, signature, accept):
                    logger.info("Key not added to Trust Store")
                    raise PluginError("Could not check signature of distribution", plugin_id)
        except (TrustStoreError, OSError, UnicodeDecodeError) as e:
            logger.error("Could not manage truststore for [%s, %s]: %s", self._layout.root, plugin_id, e)
            raise PluginError(f"Could not manage truststore: {e}", plugin_id) from e

        if not store.check_signature(data, signature):
            logger.info("Signature check for %s failed", plugin_id)
            raise PluginError("Signature check failed", plugin_id)

    def _check_replaceable(self, existing: InstalledPlugin, descriptor: PluginDescriptor, force: bool) -> None:
        if force:
            return
        old, new = existing.descriptor.parsed_version, descriptor.parsed_version
        if new == old:
            raise PluginError(
                f"Plugin {descriptor.plugin_id} version {new} is already installed", descriptor.plugin_id
            )
        if new < old:
            raise PluginError(
                f"Plugin {descriptor.plugin_id}: refusing to downgrade from {old} to {new}", descriptor.plugin_id
            )

    def _install_distribution(self, descriptor: PluginDescriptor, distribution: Path) -> InstalledPlugin:
        plugin_id = descriptor.plugin_id
        home = self._layout.root
        contents: list[str] = []
        try:
            self._install_files(descriptor, distribution)

            webapp = distribution / "webapp"
            if webapp.is_dir():
                for path in copy_tree(webapp, self._layout.plugin_webapp):
                    contents.append(path.relative_to(home).as_posix())

            modules_dir = distribution / "modules"
            if modules_dir.is_dir():
                target = self._layout.dist / plugin_contents_dir(plugin_id)
                for path in copy_tree(modules_dir, target):
                    contents.append(path.relative_to(home).as_posix())

            license_text = None
            if descriptor.license:
                license_path = distribution / descriptor.license
                if license_path.is_file():
                    license_text = license_path.read_text(encoding="utf-8")
                else:
                    logger.warning("Plugin %s license %s could not be found", plugin_id, descriptor.license)

            record = InstalledPlugin(
                descriptor=descriptor,
                installed_at=datetime.now(timezone.utc).isoformat(),
                contents=sorted(contents),
                license_text=license_text,
            )
            save_installed_plugin(self._layout.plugin_record(plugin_id), record)
        except (OSError, ConfigError) as e:
            logger.error("Could not install plugin %s: %s", plugin_id, e)
            raise PluginError(f"Could not install plugin {plugin_id}: {e}", plugin_id) from e
        return record

    def _install_files(self, descriptor: PluginDescriptor, distribution: Path) -> None:
        for relative in descriptor.files:
            top = PurePosixPath(relative).parts[0]
            if top in DISALLOWED_PATHS:
                logger.error("Path %s contained disallowed location", relative)
                raise PluginError("Copy to banned location", descriptor.plugin_id)

            source = distribution / relative
            target = self._layout.root / relative
            if target.exists():
                logger.debug("File %s exists, skipping", target)
                continue
            if not source.is_file():
                logger.warning("Source File %s does not exist, skipping", source)
                continue
            logger.debug("Copying from %s to %s", source, target)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)

    def _remove_contents(self, record: InstalledPlugin) -> None:
        home = self._layout.root
        for relative in record.contents:
            path = home / relative
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise PluginError(f"Could not remove {path}: {e}", record.plugin_id) from e
        try:
            delete_tree(self._layout.dist / plugin_contents_dir(record.plugin_id))
        except BuildError as e:
            raise PluginError(str(e), record.plugin_id) from e

    def _enable_modules(self, record: InstalledPlugin) -> None:
        if not record.descriptor.enable_modules:
            return
        context = ModuleContext(self._layout.root, self._message_stream)
        modules = available_modules([record])
        for module_id in record.descriptor.enable_modules:
            module = modules.get(module_id)
            if module is None:
                raise PluginError(f"Unknown module {module_id}", record.plugin_id)
            try:
                module.enable(context)
            except ModuleError as e:
                raise PluginError(f"Could not enable module {module_id}: {e}", record.plugin_id) from e

    def _rebuild(self) -> None:
        if self._no_rebuild:
            logger.debug("Not rebuilding the WAR")
            return
        WarBuilder(self._layout).build()
