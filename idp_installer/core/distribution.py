"""Copy a distribution into the installation directory."""

from __future__ import annotations

import logging
from pathlib import Path

from idp_installer.config.installer import InstallerProperties
from idp_installer.core.errors import BuildError
from idp_installer.core.layout import InstallLayout, copy_distribution_tree, create_directory, set_read_only
from idp_installer.utils.filesystem import DEFAULT_EXCLUDES, copy_tree

logger = logging.getLogger(__name__)

# Directories under dist/ that are replaced wholesale from the source
DIST_DIRECTORIES = ("conf", "flows", "messages", "views", "webapp", "doc")


class CopyDistribution:
    """Lays a distribution down into ``dist/``, ``system/`` and ``bin/``."""

    def __init__(self, properties: InstallerProperties, layout: InstallLayout | None = None):
        self._properties = properties
        self._layout = layout or InstallLayout(properties.target_dir)

    @property
    def source(self) -> Path:
        source = self._properties.source_dir
        if source is None:
            raise BuildError("No source directory for distribution copy")
        return source

    def execute(self) -> None:
        """Perform the copy.

        Raises:
            BuildError: If the source is the target, or a copy fails
        """
        source = self.source
        target = self._layout.root
        if source.resolve() == target.resolve():
            logger.error("Source and target directories are the same: %s", source)
            raise BuildError("Cannot copy a distribution over itself", source)
        if not source.is_dir():
            raise BuildError(f"Source directory {source} does not exist", source)

        logger.info("Copying distribution from %s to %s", source, target)
        create_directory(target)
        set_read_only(self._layout.dist, False)

        for name in DIST_DIRECTORIES:
            copy_distribution_tree(source / "dist" / name, self._layout.dist / name)
        copy_distribution_tree(source / "system", self._layout.system)
        self._copy_bin(source / "bin")

    def _copy_bin(self, source: Path) -> None:
        if not source.is_dir():
            logger.debug("No bin directory in %s", source.parent)
            return
        try:
            copy_tree(source, self._layout.bin, excludes=DEFAULT_EXCLUDES)
        except OSError as e:
            raise BuildError(f"Could not copy {source}: {e}", source) from e
