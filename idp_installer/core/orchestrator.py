"""Install and upgrade orchestration.

The orchestrator assumes the distribution is already in place under the
target directory (copied by ``CopyDistribution`` or unpacked there by hand)
and brings the rest of the installation up to date. Steps run in a fixed
order and there is no rollback: a failed run is repaired by fixing the cause
and running again, relying on each step skipping work already done.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from pathlib import Path

from idp_installer import __version__
from idp_installer.config.installer import CORE_MODULES, InstallerProperties
from idp_installer.config.parser import ConfigError
from idp_installer.config.properties import PropertiesWithComments, load_properties, store_properties
from idp_installer.config.schemas import PluginDescriptor
from idp_installer.core.errors import BuildError
from idp_installer.core.keys import KeyMaterialManager
from idp_installer.core.layout import (
    PREVIOUS_VERSION_NAME,
    VERSION_NAME,
    InstallLayout,
    copy_if_not_present,
    make_writable,
    set_group,
    set_mode,
    set_read_only,
)
from idp_installer.core.metadata import MetadataParameters, generate_metadata
from idp_installer.core.state import InstallState
from idp_installer.modules import IdPModule, ModuleContext, ModuleError
from idp_installer.plugins.state import PluginState, PluginStateError

logger = logging.getLogger(__name__)

# Secret-bearing properties that a merge may never overwrite
DO_NOT_REPLACE = frozenset(
    {
        "idp.sealer.storePassword",
        "idp.sealer.keyPassword",
        "idp.authn.LDAP.bindDNCredential",
        "idp.attribute.resolver.LDAP.bindDNCredential",
        "idp.persistentId.salt",
    }
)

# Operator directories seeded from the distribution
USER_SEEDED_DIRECTORIES = ("flows", "messages")

DEFAULT_SEALER_STORE_PASSWORD = "password"
DEFAULT_LDAP_PASSWORD = "myServicePassword"

_REPLACED_CONTEXT_CLASS = re.compile(
    r"net\.shibboleth\.ext\.spring\.context\.DeferPlaceholderFileSystemXmlWebApplicationContext"
)
_SYSTEM_IN_WEB_XML = re.compile(r"\$\{idp\.home\}/system")

PluginStateFactory = Callable[[PluginDescriptor], PluginState]


class UpgradeOrchestrator:
    """Runs the install/upgrade steps against an installation.

    Example:
        layout = InstallLayout(props.target_dir)
        UpgradeOrchestrator(props, InstallState(layout)).execute()
    """

    def __init__(
        self,
        properties: InstallerProperties,
        state: InstallState,
        layout: InstallLayout | None = None,
        registry: Mapping[str, IdPModule] | None = None,
        plugin_state_factory: PluginStateFactory | None = None,
        idp_version: str | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            properties: Properties driving the install
            state: Snapshot of the installation taken before any change
            layout: Layout of the target (default: the state's layout)
            registry: Modules to consider (default: every module the state knows)
            plugin_state_factory: Builds the compatibility checker for a plugin
            idp_version: Version being installed (default: this package's version)
        """
        self._properties = properties
        self._state = state
        self._layout = layout or state.layout
        self._registry = registry
        self._plugin_state_factory = plugin_state_factory or PluginState
        self._idp_version = idp_version or __version__
        self._keys = KeyMaterialManager(properties, state, self._layout)

    @property
    def idp_version(self) -> str:
        return self._idp_version

    @property
    def modules(self) -> Mapping[str, IdPModule]:
        if self._registry is None:
            return self._state.modules
        return self._registry

    def execute(self) -> None:
        """Run every step in order.

        Raises:
            BuildError: If any step fails; later steps are not run
        """
        self.handle_versioning()
        self.populate_user_directories()
        self.check_preconditions()
        self.enable_core_modules()
        self._keys.execute()
        self.populate_property_files(self._keys.created_sealer)
        self.check_web_xml(self._layout.edit_webapp / "WEB-INF" / "web.xml")
        self.enable_modules()
        self.delete_spurious_files()
        self.generate_metadata()
        self.reprotect()

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    def handle_versioning(self) -> None:
        """Report the versions involved and write the version marker."""
        installed = self._state.installed_version
        current = self._idp_version
        if installed is None:
            logger.info("New Install. Version: %s", current)
        elif installed == current:
            logger.info("Reinstall of version %s", current)
        else:
            logger.info("Update from version %s to version %s", installed, current)

        version_file = self._layout.version_file
        try:
            make_writable(version_file)
            store_properties(
                version_file,
                {VERSION_NAME: current, PREVIOUS_VERSION_NAME: installed or ""},
                comment=f"Version file written at {datetime.now(timezone.utc).isoformat()}",
            )
        except OSError as e:
            logger.error("Couldn't write version file: %s", e)
            raise BuildError("Couldn't write versioning information", version_file) from e

    def populate_user_directories(self) -> None:
        """Create the operator directories and seed flows and messages from dist.

        Existing files are never replaced.
        """
        layout = self._layout
        layout.create_user_directories()
        for name in USER_SEEDED_DIRECTORIES:
            copy_if_not_present(layout.dist / name, layout.root / name)

    def check_preconditions(self) -> None:
        """Warn about installed plugins not supported by this IdP version."""
        for plugin in self._state.installed_plugins:
            descriptor = plugin.descriptor
            logger.debug("Considering Plugin %s, version %s", descriptor.plugin_id, descriptor.version)
            try:
                plugin_state = self._plugin_state_factory(descriptor)
                plugin_state.initialize()
            except PluginStateError as e:
                logger.error("Could not process plugin %s, continuing: %s", descriptor.plugin_id, e)
                continue
            if not plugin_state.plugin_info.is_supported_with_idp_version(descriptor.version, self._idp_version):
                logger.warning(
                    "Installed Plugin %s version %s is not supported with IdP Version %s, continuing.",
                    descriptor.plugin_id,
                    descriptor.version,
                    self._idp_version,
                )

    def _module_context(self) -> ModuleContext:
        return ModuleContext(self._layout.root)

    def _enable(self, module: IdPModule, context: ModuleContext) -> None:
        try:
            module.enable(context)
        except ModuleError as e:
            logger.error("Error enabling module %s: %s", module.id, e)
            raise BuildError(f"Error enabling module {module.id}: {e}") from e

    def enable_core_modules(self) -> None:
        """Enable the core modules on a new install."""
        if not self._state.is_new_install:
            return
        context = self._module_context()
        modules = self.modules
        for module_id in sorted(CORE_MODULES):
            module = modules.get(module_id)
            if module is None:
                raise BuildError(f"Core module {module_id} is not available")
            self._enable(module, context)

    def populate_property_files(self, sealer_created: bool) -> None:
        """Rewrite idp.properties and ldap.properties, then create secrets.properties.

        Args:
            sealer_created: Whether the sealer was generated in this run
        """
        properties = self._properties
        state = self._state
        layout = self._layout

        if not state.idp_properties_present:
            target = layout.idp_properties
            if not target.exists():
                raise BuildError("idp.properties didn't exist. Was idp.Core installed?", target)
            merge = properties.idp_merge_properties
            if merge is not None:
                logger.debug("Updating %s from %s", target, merge)
                replacements = self._load_merge(merge)
            else:
                replacements = {"idp.entityID": properties.entity_id, "idp.scope": properties.scope}
                logger.debug("Updating %s from %s", target, sorted(replacements))
            self._rewrite(target, replacements)

        ldap_merge = properties.ldap_merge_properties
        if ldap_merge is not None and not state.ldap_properties_present:
            target = layout.ldap_properties
            if not target.exists():
                raise BuildError("ldap.properties doesn't exist", target)
            logger.debug("Updating %s from %s", target, ldap_merge)
            self._rewrite(target, self._load_merge(ldap_merge))

        if state.is_new_install:
            logger.debug("Detected a new Install. Creating secrets.properties.")
            self._write_secrets(sealer_created)

    def _load_merge(self, merge: Path) -> dict[str, str]:
        try:
            return load_properties(merge)
        except ConfigError as e:
            raise BuildError(f"Could not read merge file {merge}", merge) from e

    def _rewrite(self, target: Path, replacements: Mapping[str, str]) -> None:
        document = PropertiesWithComments(DO_NOT_REPLACE)
        try:
            document.load(target)
            document.replace_properties(replacements)
            document.store(target)
        except (OSError, ConfigError) as e:
            logger.error("Failed to regenerate %s: %s", target.name, e)
            raise BuildError(f"Failed to regenerate {target.name}: {e}", target) from e

    def _write_secrets(self, sealer_created: bool) -> None:
        properties = self._properties
        password = properties.sealer_password if sealer_created else DEFAULT_SEALER_STORE_PASSWORD
        ldap_password = properties.ldap_password or DEFAULT_LDAP_PASSWORD
        lines = [
            "# This is a reserved spot for most properties containing passwords or other secrets.",
            f"# Created by install at {datetime.now(timezone.utc).isoformat()}",
            "",
            "# Access to internal AES encryption key",
            f"idp.sealer.storePassword = {password}",
            f"idp.sealer.keyPassword = {password}",
            "",
            "# Default access to LDAP authn and attribute stores.",
            f"idp.authn.LDAP.bindDNCredential              = {ldap_password}",
            "idp.attribute.resolver.LDAP.bindDNCredential = %{idp.authn.LDAP.bindDNCredential:undefined}",
            "",
            "# Salt used to generate persistent/pairwise IDs, must be kept secret",
            "#idp.persistentId.salt = changethistosomethingrandom",
        ]
        secrets = self._layout.secrets_properties
        try:
            secrets.parent.mkdir(parents=True, exist_ok=True)
            secrets.write_text("\n".join(lines) + "\n", encoding="utf-8")
        except OSError as e:
            raise BuildError("Failed to generate secrets.properties", secrets) from e

    def check_web_xml(self, web_xml: Path) -> None:
        """Warn about an edited web.xml that refers to things that are gone."""
        if not web_xml.exists():
            return
        try:
            text = web_xml.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            raise BuildError(f"Could not read {web_xml}: {e}", web_xml) from e
        if _REPLACED_CONTEXT_CLASS.search(text):
            logger.warning(
                "Your copy of edit-webapp/WEB-INF/web.xml contains a reference to a replaced class, "
                "net.shibboleth.ext.spring.context.DeferPlaceholderFileSystemXmlWebApplicationContext"
            )
            logger.warning(
                "You MUST update this to net.shibboleth.shared.spring.context.DelimiterAwareApplicationContext "
                "and rebuild the war after installation or the IdP will refuse to start."
            )
        if _SYSTEM_IN_WEB_XML.search(text):
            logger.warning("Your copy of edit-webapp/WEB-INF/web.xml contains a reference to ${idp.home}/system")
            logger.warning(
                "This no longer exists. Make the required changes and rebuild the war after installation "
                "or the IdP will refuse to start."
            )

    def enable_modules(self) -> None:
        """Re-enable previously enabled modules, plus the initial set on a new install."""
        wanted = set(self._state.enabled_modules)
        if self._state.is_new_install:
            wanted |= self._properties.modules_to_enable

        context = self._module_context()
        modules = self.modules
        for module_id in sorted(wanted):
            module = modules.get(module_id)
            if module is None:
                logger.error("Module %s is not available, skipping", module_id)
                continue
            logger.debug("Enabling Module %s", module_id)
            self._enable(module, context)

    def delete_spurious_files(self) -> None:
        """Delete files this run created that an upgrade must not leave behind."""
        for path in self._state.get_paths_to_be_deleted():
            if not path.exists():
                logger.debug("File to be deleted %s was not created", path.name)
                continue
            try:
                path.unlink()
            except OSError as e:
                logger.warning("Delete of %s failed: %s", path, e)

    def generate_metadata(self) -> None:
        """Create metadata/idp-metadata.xml if it does not exist."""
        if self._layout.metadata_file.exists():
            logger.debug("Metadata file %s exists", self._layout.metadata_file)
            return
        entity_id, scope = self._configured_identity()
        params = MetadataParameters.from_layout(self._layout, entity_id, self._properties.host_name, scope)
        generate_metadata(self._layout, params)

    def _configured_identity(self) -> tuple[str, str]:
        """Entity ID and scope, preferring what idp.properties now says."""
        configured: dict[str, str] = {}
        if self._layout.idp_properties.is_file():
            try:
                configured = load_properties(self._layout.idp_properties)
            except ConfigError as e:
                raise BuildError(f"Could not read {self._layout.idp_properties}", self._layout.idp_properties) from e
        entity_id = configured.get("idp.entityID") or self._properties.entity_id
        scope = configured.get("idp.scope") or self._properties.scope
        return entity_id, scope

    def reprotect(self) -> None:
        """Make the distribution read-only and tighten credentials on a new install."""
        layout = self._layout
        set_read_only(layout.dist, True)
        set_read_only(layout.plugin_contents, False)
        set_read_only(layout.plugin_webapp, False)

        if not self._properties.set_group_and_mode:
            return
        set_mode(layout.bin, "755", ("**/*.sh",))
        set_mode(layout.dist, "444", ("**/*",))
        set_mode(layout.plugin_contents, "640", ("**/*",))
        set_mode(layout.plugin_webapp, "640", ("**/*",))
        if self._state.is_new_install:
            set_mode(layout.credentials, self._properties.credentials_key_file_mode, ("**/*",))
            group = self._properties.credentials_group
            if group is not None:
                set_group(layout.credentials, group, ("**/*",))
