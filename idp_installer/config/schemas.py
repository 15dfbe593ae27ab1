"""Pydantic schemas for installer configuration files.

This module defines the data models for:
- modules.yaml (module registry)
- plugin.yaml (plugin descriptor shipped inside a plugin distribution)
- dist/plugin-contents/<plugin_id>.yaml (record of an installed plugin)
"""

from pathlib import PurePosixPath

from pydantic import BaseModel, Field, field_validator

from idp_installer.utils.version import ComponentVersion

# =============================================================================
# Common Validation
# =============================================================================


def _check_relative(value: str) -> str:
    """Reject absolute paths and parent references."""
    path = PurePosixPath(value.replace("\\", "/"))
    if not value or path.is_absolute() or ".." in path.parts or value.startswith("/"):
        raise ValueError(f"Path must be relative and stay inside the IdP home: {value!r}")
    return value


# =============================================================================
# Module Models
# =============================================================================


class ModuleResource(BaseModel):
    """A file a module manages.

    - src: Path relative to the distribution folder (dist/)
    - dest: Path relative to the IdP home
    - replace: Move a locally changed destination aside (.idpsave) rather than
      writing the new content beside it (.idpnew)
    - optional: A missing source is skipped instead of failing
    - exec: Make the destination executable
    """

    src: str
    dest: str
    replace: bool = False
    optional: bool = False
    exec_: bool = Field(default=False, alias="exec")

    model_config = {"populate_by_name": True}

    @field_validator("src", "dest")
    @classmethod
    def validate_paths(cls, v: str) -> str:
        return _check_relative(v)


class ModuleDefinition(BaseModel):
    """Definition of an optional, independently toggleable IdP module."""

    id: str
    name: str
    description: str | None = None
    url: str | None = None
    plugin: str | None = None  # Owning plugin, if contributed by one
    resources: list[ModuleResource] = Field(default_factory=list)
    post_enable: str | None = None
    post_disable: str | None = None


class ModuleRegistry(BaseModel):
    """Contents of a module registry file."""

    modules: list[ModuleDefinition] = Field(default_factory=list)


# =============================================================================
# Plugin Models
# =============================================================================


class PluginDescriptor(BaseModel):
    """Descriptor found at the top of a plugin distribution (plugin.yaml)."""

    plugin_id: str
    version: str
    update_urls: list[str] = Field(default_factory=list)
    license: str | None = None  # License file, relative to the plugin directory
    files: list[str] = Field(default_factory=list)  # Copied into the IdP home if absent
    modules: list[ModuleDefinition] = Field(default_factory=list)
    enable_modules: list[str] = Field(default_factory=list)  # Enabled on install

    @field_validator("plugin_id")
    @classmethod
    def validate_plugin_id(cls, v: str) -> str:
        if not v.strip() or "/" in v or "\\" in v:
            raise ValueError(f"Invalid plugin id: {v!r}")
        return v.strip()

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        ComponentVersion.parse(v)
        return v

    @field_validator("files")
    @classmethod
    def validate_files(cls, v: list[str]) -> list[str]:
        return [_check_relative(f) for f in v]

    @field_validator("license")
    @classmethod
    def validate_license(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _check_relative(v)

    @property
    def parsed_version(self) -> ComponentVersion:
        """Get the declared version."""
        return ComponentVersion.parse(self.version)


class InstalledPlugin(BaseModel):
    """Record written for each installed plugin."""

    descriptor: PluginDescriptor
    installed_at: str
    contents: list[str] = Field(default_factory=list)  # Relative to the IdP home
    license_text: str | None = None

    @property
    def plugin_id(self) -> str:
        return self.descriptor.plugin_id

    @property
    def version(self) -> str:
        return self.descriptor.version
