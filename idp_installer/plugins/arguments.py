"""Arguments of the plugin command and the operation they select."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from idp_installer.registry.factory import is_remote
from idp_installer.utils.version import ComponentVersion

logger = logging.getLogger(__name__)


class OperationType(Enum):
    """What the plugin command has been asked to do."""

    UPDATE = "update"
    LIST = "list"
    INSTALLDIR = "install-dir"
    INSTALLREMOTE = "install-remote"
    UNINSTALL = "uninstall"
    OUTPUTLICENSE = "output-license"
    LISTCONTENTS = "list-contents"
    UNKNOWN = "unknown"


class ArgumentError(Exception):
    """Illegal combination of plugin command flags."""


@dataclass
class PluginInstallerArguments:
    """Flags of the plugin command.

    ``validate()`` must be called before the derived fields
    (``operation``, ``input_url``, ``input_directory``, ``input_name``,
    ``update_version``) are used. No file or network access happens beyond
    checking that a local input file exists.
    """

    plugin_id: str | None = None
    no_prompt: bool = False
    list_installed: bool = False
    full_list: bool = False
    list_available: bool = False
    no_check: bool = False
    license: str | None = None
    input: str | None = None
    install_id: str | None = None
    truststore: str | None = None
    update: str | None = None
    force_update: str | None = None
    uninstall: str | None = None
    contents_list: str | None = None
    update_urls: list[str] = field(default_factory=list)
    no_rebuild: bool = False

    operation: OperationType = OperationType.UNKNOWN
    input_url: str | None = None
    input_directory: Path | None = None
    input_name: str | None = None
    update_version: ComponentVersion | None = None

    def _fail(self, message: str) -> None:
        logger.error("%s", message)
        raise ArgumentError(message)

    def validate(self) -> OperationType:
        """Work out the operation, rejecting conflicting flags.

        Returns:
            The selected operation (also stored in ``operation``)

        Raises:
            ArgumentError: If the flags conflict or nothing was asked for
        """
        if self.force_update is not None and self.update is None:
            self._fail("--force-update requires --update")

        if self.list_installed or self.full_list or self.list_available:
            if self.input is not None or self.uninstall is not None:
                self._fail("Cannot List and Install or Remove in the same operation.")
            if self.update is not None:
                self._fail("Cannot List and Update or Remove in the same operation.")
            self.operation = OperationType.LIST
        elif self.input is not None:
            if self.update is not None or self.uninstall is not None:
                self._fail("Cannot Install and Update or Remove in the same operation.")
            self.operation = self._decode_input(self.input)
        elif self.install_id is not None:
            if self.update is not None or self.uninstall is not None:
                self._fail("Cannot Install and Update or Remove in the same operation.")
            self.plugin_id = self.install_id
            self.operation = OperationType.INSTALLREMOTE
        elif self.update is not None:
            if self.uninstall is not None:
                self._fail("Cannot Update and Remove in the same operation.")
            self.plugin_id = self.update
            if self.force_update is not None:
                try:
                    self.update_version = ComponentVersion.parse(self.force_update)
                except ValueError as e:
                    raise ArgumentError(f"Invalid version {self.force_update!r}") from e
            self.operation = OperationType.UPDATE
        elif self.uninstall is not None:
            self.plugin_id = self.uninstall
            self.operation = OperationType.UNINSTALL
        elif self.license is not None:
            self.plugin_id = self.license
            self.operation = OperationType.OUTPUTLICENSE
        elif self.contents_list is not None:
            self.plugin_id = self.contents_list
            self.operation = OperationType.LISTCONTENTS
        else:
            raise ArgumentError("Missing qualifier. Try --help")

        selected = self._selected_operations()
        if len(selected) > 1:
            self._fail(f"Cannot combine {', '.join(selected)} in the same operation.")
        return self.operation

    def _selected_operations(self) -> list[str]:
        selectors = {
            "list": self.list_installed or self.full_list or self.list_available,
            "install": self.input is not None,
            "install-ID": self.install_id is not None,
            "update": self.update is not None,
            "remove": self.uninstall is not None,
            "license": self.license is not None,
            "contents list": self.contents_list is not None,
        }
        return [name for name, selected in selectors.items() if selected]

    def _decode_input(self, value: str) -> OperationType:
        if is_remote(value):
            split = value.rfind("/") + 1
            self.input_url = value[:split]
            self.input_name = value[split:]
            logger.debug("Found URL: %s\t%s", self.input_url, self.input_name)
            return OperationType.INSTALLREMOTE

        path = Path(value).absolute()
        if not path.exists():
            logger.error("File %s does not exist", path)
            raise ArgumentError("Input File does not exist")
        self.input_directory = path.parent
        self.input_name = path.name
        logger.debug("Found File: %s\t%s", self.input_directory, self.input_name)
        return OperationType.INSTALLDIR
