"""Configuration file parsing utilities."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from idp_installer.config.schemas import InstalledPlugin, ModuleRegistry, PluginDescriptor

PLUGIN_DESCRIPTOR_NAME = "plugin.yaml"


class ConfigError(Exception):
    """Error loading, parsing or resolving configuration."""

    def __init__(self, message: str, path: Path | None = None):
        self.path = path
        super().__init__(message)


def parse_yaml(text: str, path: Path | None = None) -> dict[str, Any]:
    """Parse YAML text that must contain a mapping.

    Args:
        text: YAML document
        path: File the text came from, for error messages

    Returns:
        Parsed YAML as a dictionary

    Raises:
        ConfigError: If the text cannot be parsed or is not a mapping
    """
    source = path or "<string>"
    try:
        result = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {source}: {e}", path) from e
    if result is None:
        return {}
    if not isinstance(result, dict):
        raise ConfigError(f"YAML file must contain a mapping: {source}", path)
    return result


def load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Parsed YAML as a dictionary

    Raises:
        ConfigError: If the file cannot be read or parsed
    """
    if not path.exists():
        raise ConfigError(f"File not found: {path}", path)

    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e
    return parse_yaml(text, path)


def save_yaml(path: Path, data: dict[str, Any]) -> None:
    """Save data to a YAML file.

    Args:
        path: Path to write to
        data: Data to serialize
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)


def parse_module_registry(text: str, source: Path | None = None) -> ModuleRegistry:
    """Parse a module registry document.

    Args:
        text: YAML text of the registry
        source: Where the text came from, for error messages

    Returns:
        Parsed ModuleRegistry

    Raises:
        ConfigError: If the document is invalid
    """
    data = parse_yaml(text, source)
    try:
        return ModuleRegistry.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid module registry: {e}", source) from e


def load_plugin_descriptor(plugin_dir: Path) -> PluginDescriptor:
    """Load the plugin descriptor from an unpacked plugin distribution.

    Args:
        plugin_dir: Top-level directory of the unpacked plugin

    Returns:
        Parsed PluginDescriptor

    Raises:
        ConfigError: If plugin.yaml is missing or invalid
    """
    descriptor_path = plugin_dir / PLUGIN_DESCRIPTOR_NAME
    data = load_yaml(descriptor_path)

    try:
        return PluginDescriptor.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid plugin descriptor: {e}", descriptor_path) from e


def load_installed_plugin(path: Path) -> InstalledPlugin:
    """Load an installed-plugin record.

    Args:
        path: Path to the record (dist/plugin-contents/<plugin_id>.yaml)

    Returns:
        Parsed InstalledPlugin

    Raises:
        ConfigError: If the record is missing or invalid
    """
    data = load_yaml(path)

    try:
        return InstalledPlugin.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid installed plugin record: {e}", path) from e


def save_installed_plugin(path: Path, record: InstalledPlugin) -> None:
    """Save an installed-plugin record.

    Args:
        path: Path to write to
        record: Record to save
    """
    save_yaml(path, record.model_dump(by_alias=True, exclude_none=True))
