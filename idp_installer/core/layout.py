"""On-disk layout of an IdP installation and the file operations on it."""

from __future__ import annotations

import logging
import os
import shutil
import stat
from collections.abc import Iterable
from pathlib import Path

from idp_installer.core.errors import BuildError
from idp_installer.utils.filesystem import (
    DEFAULT_EXCLUDES,
    copy_dir_if_not_present,
    copy_tree,
    ensure_directory,
    iter_files,
    remove_directory,
)
from idp_installer.utils.platform import is_windows

logger = logging.getLogger(__name__)

VERSION_FILE_NAME = "idp.installed.version"
VERSION_NAME = "idp.installed.version"
PREVIOUS_VERSION_NAME = "idp.previous.installed.version"

USER_DIRECTORIES = ("conf", "credentials", "flows", "logs", "messages", "metadata", "views", "war")


class InstallLayout:
    """Paths of an installation rooted at ``target_dir``.

    All operations are idempotent so an interrupted install can be re-run.
    """

    def __init__(self, target_dir: Path):
        self._root = Path(target_dir)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def bin(self) -> Path:
        return self._root / "bin"

    @property
    def conf(self) -> Path:
        return self._root / "conf"

    @property
    def credentials(self) -> Path:
        return self._root / "credentials"

    @property
    def dist(self) -> Path:
        return self._root / "dist"

    @property
    def dist_webapp(self) -> Path:
        return self.dist / "webapp"

    @property
    def plugin_webapp(self) -> Path:
        return self.dist / "plugin-webapp"

    @property
    def plugin_contents(self) -> Path:
        return self.dist / "plugin-contents"

    @property
    def edit_webapp(self) -> Path:
        return self._root / "edit-webapp"

    @property
    def flows(self) -> Path:
        return self._root / "flows"

    @property
    def logs(self) -> Path:
        return self._root / "logs"

    @property
    def messages(self) -> Path:
        return self._root / "messages"

    @property
    def metadata(self) -> Path:
        return self._root / "metadata"

    @property
    def metadata_file(self) -> Path:
        return self.metadata / "idp-metadata.xml"

    @property
    def system(self) -> Path:
        return self._root / "system"

    @property
    def views(self) -> Path:
        return self._root / "views"

    @property
    def war(self) -> Path:
        return self._root / "war"

    @property
    def war_file(self) -> Path:
        return self.war / "idp.war"

    @property
    def war_staging(self) -> Path:
        return self._root / "webapp.tmp"

    @property
    def version_file(self) -> Path:
        return self.dist / VERSION_FILE_NAME

    @property
    def idp_properties(self) -> Path:
        return self.conf / "idp.properties"

    @property
    def ldap_properties(self) -> Path:
        return self.conf / "ldap.properties"

    @property
    def relying_party(self) -> Path:
        return self.conf / "relying-party.xml"

    @property
    def secrets_properties(self) -> Path:
        return self.credentials / "secrets.properties"

    def plugin_record(self, plugin_id: str) -> Path:
        """Record of an installed plugin."""
        return self.plugin_contents / f"{plugin_id}.yaml"

    def __repr__(self) -> str:
        return f"InstallLayout({str(self._root)!r})"

    # -------------------------------------------------------------------------
    # Directory operations
    # -------------------------------------------------------------------------

    def create_user_directories(self) -> None:
        """Create the directories an operator works in."""
        for name in USER_DIRECTORIES:
            create_directory(self._root / name)


def create_directory(path: Path) -> None:
    """Create a directory, wrapping failures as BuildError."""
    try:
        ensure_directory(path)
    except OSError as e:
        logger.error("Could not create directory %s: %s", path, e)
        raise BuildError(f"Could not create directory {path}", path) from e


def copy_distribution_tree(src: Path, dest: Path) -> None:
    """Replace ``dest`` with a copy of ``src`` (a missing source is skipped)."""
    if not src.is_dir():
        logger.debug("Distribution directory %s not present, skipping", src)
        return
    try:
        delete_tree(dest)
        copy_tree(src, dest, excludes=DEFAULT_EXCLUDES)
    except OSError as e:
        raise BuildError(f"Could not copy {src} to {dest}: {e}", dest) from e


def copy_if_not_present(src: Path, dest: Path) -> None:
    """Copy the files of ``src`` that ``dest`` does not already have."""
    try:
        copied = copy_dir_if_not_present(src, dest)
    except OSError as e:
        raise BuildError(f"Could not copy {src} to {dest}: {e}", dest) from e
    logger.debug("Copied %d file(s) from %s to %s", len(copied), src, dest)


def delete_tree(path: Path) -> None:
    """Delete a directory tree; a missing tree is not an error."""
    if path.exists():
        logger.debug("Deleting %s", path)
    try:
        remove_directory(path)
    except OSError as e:
        raise BuildError(f"Could not delete {path}: {e}", path) from e


def set_read_only(path: Path, read_only: bool) -> None:
    """Set or clear the read-only attribute on a file or a whole tree.

    This only applies on Windows; on other platforms permissions are managed
    by set_mode.
    """
    if not is_windows() or not path.exists():
        return
    targets = [path] if path.is_file() else [path, *path.rglob("*")]
    for target in targets:
        if target.is_dir():
            continue
        mode = target.stat().st_mode
        if read_only:
            os.chmod(target, mode & ~stat.S_IWRITE)
        else:
            os.chmod(target, mode | stat.S_IWRITE)


def make_writable(path: Path) -> None:
    """Make a single existing file writable by its owner again."""
    if not path.is_file():
        return
    set_read_only(path, False)
    if not is_windows():
        os.chmod(path, path.stat().st_mode | stat.S_IWUSR)


def set_mode(path: Path, mode: str, includes: Iterable[str] = ("**/*",)) -> None:
    """chmod files under ``path`` matching ``includes`` (POSIX only).

    Args:
        path: File or directory
        mode: Octal mode string, e.g. "640"
        includes: Glob patterns relative to ``path``

    Raises:
        BuildError: If the mode is not octal or a file cannot be changed
    """
    if is_windows() or not path.exists():
        return
    try:
        bits = int(mode, 8)
    except ValueError as e:
        raise BuildError(f"Invalid file mode {mode!r}", path) from e
    files = [path] if path.is_file() else list(iter_files(path, includes))
    try:
        for target in files:
            os.chmod(target, bits)
    except OSError as e:
        raise BuildError(f"Could not set mode {mode} under {path}: {e}", path) from e


def set_group(path: Path, group: str, includes: Iterable[str] = ("**/*",)) -> None:
    """chgrp the directory and the files under ``path`` matching ``includes`` (POSIX only)."""
    if is_windows() or not path.exists():
        return
    files = [path] if path.is_file() else [path, *iter_files(path, includes)]
    try:
        for target in files:
            shutil.chown(target, group=group)
    except (OSError, LookupError) as e:
        raise BuildError(f"Could not set group {group} under {path}: {e}", path) from e
