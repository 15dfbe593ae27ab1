"""Module registration and discovery.

Modules are declared in registry files packaged with the installer, and may
also be contributed by installed plugins. There is no runtime scanning:
everything available is listed in a manifest.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from importlib import resources
from typing import TYPE_CHECKING

from idp_installer.config.parser import parse_module_registry
from idp_installer.config.schemas import ModuleDefinition
from idp_installer.modules.base import IdPModule, ModuleContext, ModuleError

if TYPE_CHECKING:
    from idp_installer.config.schemas import InstalledPlugin

__all__ = [
    "IdPModule",
    "ModuleContext",
    "ModuleError",
    "available_modules",
    "get_module",
    "list_modules",
    "plugin_contents_dir",
    "plugin_module_definition",
    "register_module",
]

logger = logging.getLogger(__name__)

_MODULES: dict[str, IdPModule] = {}
_LOADED = False

# Packaged registry files - add new module manifests here
_MODULE_MANIFESTS = [
    "modules.yaml",
]


def register_module(definition: ModuleDefinition) -> IdPModule:
    """Register a module definition.

    Args:
        definition: The module to register

    Returns:
        The registered module

    Raises:
        ModuleError: If a different module with the same id is already registered
    """
    existing = _MODULES.get(definition.id)
    if existing is not None and existing.definition != definition:
        raise ModuleError(f"Module {definition.id} registered twice", definition.id)
    module = IdPModule(definition)
    _MODULES[definition.id] = module
    return module


def _load_modules() -> None:
    """Load the packaged registry files."""
    global _LOADED
    if _LOADED:
        return

    package = resources.files(__name__)
    for manifest in _MODULE_MANIFESTS:
        registry = parse_module_registry(package.joinpath(manifest).read_text(encoding="utf-8"))
        for definition in registry.modules:
            register_module(definition)
        logger.debug("Loaded %d module(s) from %s", len(registry.modules), manifest)

    _LOADED = True


def plugin_contents_dir(plugin_id: str) -> str:
    """Where a plugin's module resources live, relative to dist/."""
    return f"plugin-contents/{plugin_id}"


def plugin_module_definition(plugin_id: str, definition: ModuleDefinition) -> ModuleDefinition:
    """Bind a module contributed by a plugin to that plugin.

    Resource sources in a plugin descriptor are relative to the plugin's
    own contents directory.
    """
    base = plugin_contents_dir(plugin_id)
    resources = [r.model_copy(update={"src": f"{base}/{r.src}"}) for r in definition.resources]
    return definition.model_copy(update={"plugin": plugin_id, "resources": resources})


def available_modules(plugins: Iterable[InstalledPlugin] = ()) -> dict[str, IdPModule]:
    """All modules: the packaged ones plus those contributed by installed plugins.

    Args:
        plugins: Installed plugin records

    Returns:
        Mapping of module id to module
    """
    _load_modules()
    result = dict(_MODULES)
    for plugin in plugins:
        for definition in plugin.descriptor.modules:
            if definition.id in result:
                logger.warning(
                    "Plugin %s redefines module %s, ignoring", plugin.plugin_id, definition.id
                )
                continue
            result[definition.id] = IdPModule(plugin_module_definition(plugin.plugin_id, definition))
    return result


def get_module(module_id: str, plugins: Iterable[InstalledPlugin] = ()) -> IdPModule:
    """Get a module by id.

    Args:
        module_id: The module id (e.g., "idp.Core")
        plugins: Installed plugin records that may contribute modules

    Returns:
        The module

    Raises:
        ModuleError: If the module is not known
    """
    modules = available_modules(plugins)
    if module_id not in modules:
        available = ", ".join(sorted(modules)) or "none"
        raise ModuleError(f"Unknown module: {module_id}. Available modules: {available}", module_id)
    return modules[module_id]


def list_modules(plugins: Iterable[InstalledPlugin] = ()) -> list[IdPModule]:
    """List all known modules, sorted by id."""
    modules = available_modules(plugins)
    return [modules[k] for k in sorted(modules)]
