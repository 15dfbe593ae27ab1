"""Snapshot of an existing installation."""

from __future__ import annotations

import logging
from functools import cached_property
from pathlib import Path

from idp_installer.config.parser import ConfigError, load_installed_plugin
from idp_installer.config.properties import load_properties
from idp_installer.config.schemas import InstalledPlugin
from idp_installer.core.errors import InstallStateError
from idp_installer.core.layout import VERSION_NAME, InstallLayout
from idp_installer.modules import IdPModule, ModuleContext, ModuleError, available_modules

logger = logging.getLogger(__name__)

# Files created during an upgrade that must not outlive it, relative to the
# IdP home. Each is scheduled for deletion only if it did not exist before
# the upgrade started.
PATHS_CREATED_ON_UPGRADE: tuple[tuple[str, ...], ...] = (("credentials", "secrets.properties"),)


class InstallState:
    """What is already installed at the target.

    The snapshot is taken once, before anything is changed, and is not
    refreshed as the install proceeds.
    """

    def __init__(self, layout: InstallLayout):
        """Inspect an installation.

        Args:
            layout: Layout of the target installation

        Raises:
            InstallStateError: If a legacy or damaged installation is found
        """
        self._layout = layout
        self._idp_properties_present = layout.idp_properties.exists()
        self._ldap_properties_present = layout.ldap_properties.exists()
        self._system_present = layout.system.exists()
        self._installed_version = self.detect_previous_version()
        self._enabled_modules = self.find_enabled_modules()
        self._paths_to_delete = self._compute_paths_to_delete()

    @property
    def layout(self) -> InstallLayout:
        return self._layout

    @property
    def idp_properties_present(self) -> bool:
        return self._idp_properties_present

    @property
    def ldap_properties_present(self) -> bool:
        return self._ldap_properties_present

    @property
    def system_present(self) -> bool:
        return self._system_present

    @property
    def installed_version(self) -> str | None:
        """Previously installed version, or None for a new install."""
        return self._installed_version

    @property
    def is_new_install(self) -> bool:
        return self._installed_version is None

    @property
    def enabled_modules(self) -> frozenset[str]:
        return self._enabled_modules

    def detect_previous_version(self) -> str | None:
        """Work out which version (if any) is installed.

        Returns:
            The installed version, or None if there is no installation

        Raises:
            InstallStateError: If configuration exists without a version
                marker, or the marker lacks the version
        """
        layout = self._layout
        if not layout.relying_party.exists() and not self._idp_properties_present:
            logger.debug("No configuration found in %s, new install", layout.root)
            return None

        if not layout.version_file.exists():
            logger.error(
                "Configuration found in %s but no %s: unsupported legacy installation",
                layout.conf,
                layout.version_file,
            )
            raise InstallStateError(
                "Legacy installation detected; upgrade from this version is not supported",
                layout.version_file,
            )

        try:
            properties = load_properties(layout.version_file)
        except ConfigError as e:
            raise InstallStateError(f"Could not read {layout.version_file}", layout.version_file) from e
        version = properties.get(VERSION_NAME, "").strip()
        if not version:
            logger.error("Could not find %s in %s", VERSION_NAME, layout.version_file)
            raise InstallStateError(f"Missing {VERSION_NAME} in version file", layout.version_file)
        logger.debug("Found previous version %s", version)
        return version

    def find_enabled_modules(self) -> frozenset[str]:
        """Ids of the modules enabled in an existing installation.

        Returns:
            An empty set for new installs
        """
        if self._installed_version is None:
            return frozenset()
        context = ModuleContext(self._layout.root)
        enabled = set()
        for module_id, module in self.modules.items():
            try:
                if module.is_enabled(context):
                    enabled.add(module_id)
            except (ModuleError, OSError) as e:
                logger.error("Error checking status of module %s, skipping: %s", module_id, e)
        logger.debug("Enabled modules: %s", sorted(enabled))
        return frozenset(enabled)

    def _compute_paths_to_delete(self) -> list[Path]:
        if self._installed_version is None:
            return []
        result = []
        for parts in PATHS_CREATED_ON_UPGRADE:
            path = self._layout.root.joinpath(*parts)
            if not path.exists():
                result.append(path)
        return result

    def get_paths_to_be_deleted(self) -> list[Path]:
        """Paths to remove once the upgrade is done (empty for new installs)."""
        return list(self._paths_to_delete)

    @cached_property
    def installed_plugins(self) -> list[InstalledPlugin]:
        """Records of previously installed plugins."""
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

    @cached_property
    def modules(self) -> dict[str, IdPModule]:
        """All modules known to this installation."""
        return available_modules(self.installed_plugins)
