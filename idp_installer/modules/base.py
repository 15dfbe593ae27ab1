"""Modules: optional, independently toggleable bundles of IdP files.

A module owns a set of resources. Enabling a module copies each resource from
the distribution folder into the IdP home; disabling removes it or moves it
aside. Local edits are never silently overwritten.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TextIO

from idp_installer.config.schemas import ModuleDefinition, ModuleResource
from idp_installer.utils.filesystem import compute_file_hash
from idp_installer.utils.platform import is_windows

logger = logging.getLogger(__name__)

SAVED_SUFFIX = ".idpsave"
NEW_SUFFIX = ".idpnew"


class ModuleError(Exception):
    """Error enabling, disabling or locating a module."""

    def __init__(self, message: str, module_id: str | None = None):
        self.module_id = module_id
        super().__init__(message)


class ResourceResult(Enum):
    """What happened to a single module resource."""

    CREATED = "created"
    REPLACED = "replaced"  # Changed destination moved aside to .idpsave, new copy written
    ADDED = "added"  # Changed destination kept, new copy written to .idpnew
    MISSING = "missing"
    REMOVED = "removed"
    SAVED = "saved"  # Moved aside to .idpsave on disable


@dataclass
class ResourceOutcome:
    """Result of enabling or disabling one resource."""

    resource: ModuleResource
    result: ResourceResult
    path: Path


@dataclass
class ModuleContext:
    """Where modules are enabled and where their messages go."""

    idp_home: Path
    message_stream: TextIO | None = None

    @property
    def source_root(self) -> Path:
        """Directory resource sources are resolved against."""
        return self.idp_home / "dist"


class IdPModule:
    """A module described by a ModuleDefinition."""

    def __init__(self, definition: ModuleDefinition):
        self._definition = definition

    @property
    def definition(self) -> ModuleDefinition:
        return self._definition

    @property
    def id(self) -> str:
        return self._definition.id

    @property
    def name(self) -> str:
        return self._definition.name

    @property
    def description(self) -> str | None:
        return self._definition.description

    @property
    def url(self) -> str | None:
        return self._definition.url

    @property
    def owner_id(self) -> str | None:
        """Plugin that contributed this module, if any."""
        return self._definition.plugin

    @property
    def resources(self) -> list[ModuleResource]:
        return list(self._definition.resources)

    def is_enabled(self, context: ModuleContext) -> bool:
        """A module is enabled if it has no resources or any destination exists."""
        logger.debug("Module %s checking enabled status", self.id)
        if not self._definition.resources:
            logger.debug("Module %s is always enabled", self.id)
            return True
        for resource in self._definition.resources:
            if (context.idp_home / resource.dest).exists():
                logger.debug("Module %s: resource %s exists, module is enabled", self.id, resource.dest)
                return True
        logger.debug("Module %s is not enabled", self.id)
        return False

    def enable(self, context: ModuleContext) -> list[ResourceOutcome]:
        """Enable the module.

        Args:
            context: Where to enable it

        Returns:
            One outcome per resource

        Raises:
            ModuleError: If a resource cannot be written or a mandatory
                source is missing
        """
        logger.debug("Module %s enabling", self.id)
        outcomes = [self._enable_resource(context, r) for r in self._definition.resources]
        logger.info("Module %s enabled", self.id)
        self._post_message(context, self._definition.post_enable)
        return outcomes

    def disable(self, context: ModuleContext, clean: bool = False) -> list[ResourceOutcome]:
        """Disable the module.

        Args:
            context: Where the module is enabled
            clean: Delete resources instead of moving them aside to .idpsave

        Returns:
            One outcome per resource

        Raises:
            ModuleError: If a resource cannot be removed or renamed
        """
        logger.debug("Module %s disabling", self.id)
        outcomes = [self._disable_resource(context, r, clean) for r in self._definition.resources]
        logger.info("Module %s disabled", self.id)
        self._post_message(context, self._definition.post_disable)
        return outcomes

    def _post_message(self, context: ModuleContext, message: str | None) -> None:
        if message and context.message_stream is not None:
            print(message.rstrip(), file=context.message_stream)

    def has_changed(self, context: ModuleContext, resource: ModuleResource) -> bool:
        """Check whether an existing destination differs from the resource source.

        Returns:
            False when the destination does not exist, True when it exists and
            differs from the source (or the source is missing)
        """
        dest = context.idp_home / resource.dest
        if not dest.exists():
            logger.debug("Module %s resource %s does not exist at destination", self.id, resource.src)
            return False
        src = context.source_root / resource.src
        if not src.is_file():
            logger.debug("Module %s resource %s does not exist at source", self.id, resource.src)
            return True
        try:
            return compute_file_hash(src, "sha1") != compute_file_hash(dest, "sha1")
        except OSError as e:
            logger.error("Module %s resource %s raised error while checking contents: %s", self.id, resource.src, e)
            return True

    def _enable_resource(self, context: ModuleContext, resource: ModuleResource) -> ResourceOutcome:
        logger.debug("Module %s enabling resource %s", self.id, resource.src)
        src = context.source_root / resource.src
        dest = context.idp_home / resource.dest

        if not src.is_file():
            if resource.optional:
                logger.debug("Module %s optional resource %s missing, skipping", self.id, resource.src)
                return ResourceOutcome(resource, ResourceResult.MISSING, dest)
            raise ModuleError(f"Module {self.id} resource {resource.src} does not exist", self.id)

        try:
            if self.has_changed(context, resource):
                if resource.replace:
                    saved = dest.with_name(dest.name + SAVED_SUFFIX)
                    dest.replace(saved)
                    logger.info("Module %s preserved %s", self.id, saved)
                    target, result = dest, ResourceResult.REPLACED
                else:
                    target = dest.with_name(dest.name + NEW_SUFFIX)
                    result = ResourceResult.ADDED
            else:
                target, result = dest, ResourceResult.CREATED

            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(src.read_bytes())
            if resource.exec_ and not is_windows():
                target.chmod(0o755)
            logger.info("Module %s created %s", self.id, target)
        except OSError as e:
            logger.error("Module %s unable to enable resource %s: %s", self.id, resource.src, e)
            raise ModuleError(f"Module {self.id} unable to enable resource {resource.src}", self.id) from e

        return ResourceOutcome(resource, result, target)

    def _disable_resource(
        self, context: ModuleContext, resource: ModuleResource, clean: bool
    ) -> ResourceOutcome:
        path = context.idp_home / resource.dest
        if not path.exists():
            logger.info("Module %s resource %s missing, ignoring", self.id, path)
            return ResourceOutcome(resource, ResourceResult.MISSING, path)

        try:
            if clean:
                logger.info("Module %s removing resource %s", self.id, path)
                path.unlink()
                return ResourceOutcome(resource, ResourceResult.REMOVED, path)

            saved = path.with_name(path.name + SAVED_SUFFIX)
            logger.info("Module %s moving aside resource %s", self.id, path)
            path.replace(saved)
            return ResourceOutcome(resource, ResourceResult.SAVED, saved)
        except OSError as e:
            raise ModuleError(f"Unable to remove or rename resource {path}", self.id) from e

    def __repr__(self) -> str:
        return f"IdPModule(id={self.id!r})"
