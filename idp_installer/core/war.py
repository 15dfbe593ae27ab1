"""Build the deployable web archive."""

from __future__ import annotations

import logging
from pathlib import Path

from idp_installer.config.properties import load_properties
from idp_installer.core.errors import BuildError
from idp_installer.core.layout import VERSION_NAME, InstallLayout, delete_tree
from idp_installer.utils.filesystem import DEFAULT_EXCLUDES, copy_tree, create_zip, remove_file

logger = logging.getLogger(__name__)


class WarBuilder:
    """Assembles ``war/idp.war`` from the distribution webapp and its overlays.

    The overlays are applied in order, later ones winning on collision:
    ``dist/plugin-webapp`` then ``edit-webapp``.
    """

    def __init__(self, layout: InstallLayout):
        self._layout = layout

    @property
    def overlays(self) -> list[Path]:
        return [self._layout.plugin_webapp, self._layout.edit_webapp]

    def build(self) -> Path:
        """Build the WAR.

        Returns:
            Path to the built archive

        Raises:
            BuildError: If the base webapp is missing or any step fails
        """
        layout = self._layout
        base = layout.dist_webapp
        if not base.is_dir():
            logger.error("No webapp found at %s", base)
            raise BuildError(f"Missing webapp directory {base}", base)

        staging = layout.war_staging
        logger.info("Rebuilding %s, Version %s", layout.war_file, _installed_version(layout))
        delete_tree(staging)
        try:
            logger.debug("Initial populate from %s to %s", base, staging)
            copy_tree(base, staging, excludes=DEFAULT_EXCLUDES)
            for overlay in self.overlays:
                if overlay.is_dir():
                    logger.debug("Overlay from %s to %s", overlay, staging)
                    copy_tree(overlay, staging, excludes=DEFAULT_EXCLUDES)
                else:
                    logger.debug("No overlay at %s", overlay)

            remove_file(layout.war_file)
            logger.debug("Creating war file %s", layout.war_file)
            create_zip(staging, layout.war_file, excludes=DEFAULT_EXCLUDES)
        except (OSError, ValueError) as e:
            logger.error("Error building %s: %s", layout.war_file, e)
            raise BuildError(f"Could not build {layout.war_file}: {e}", layout.war_file) from e
        finally:
            delete_tree(staging)

        logger.info("Rebuilt %s", layout.war_file)
        return layout.war_file


def _installed_version(layout: InstallLayout) -> str:
    if not layout.version_file.is_file():
        return "unknown"
    return load_properties(layout.version_file).get(VERSION_NAME, "unknown")
