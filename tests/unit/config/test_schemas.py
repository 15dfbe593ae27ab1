"""Tests for idp_installer.config.schemas module."""

import pytest
from pydantic import ValidationError

from idp_installer.config.schemas import (
    InstalledPlugin,
    ModuleDefinition,
    ModuleResource,
    PluginDescriptor,
)
from idp_installer.utils.version import ComponentVersion


class TestModuleResource:
    """Tests for ModuleResource."""

    def test_defaults(self):
        """Flags default to false."""
        resource = ModuleResource(src="conf/a.xml", dest="conf/a.xml")

        assert resource.replace is False
        assert resource.optional is False
        assert resource.exec_ is False

    def test_exec_alias(self):
        """'exec' populates exec_."""
        resource = ModuleResource.model_validate({"src": "bin/x.sh", "dest": "bin/x.sh", "exec": True})

        assert resource.exec_ is True

    @pytest.mark.parametrize("dest", ["/etc/passwd", "../outside", "conf/../../x", ""])
    def test_rejects_escaping_dest(self, dest: str):
        """Destinations must stay inside the IdP home."""
        with pytest.raises(ValidationError):
            ModuleResource(src="a", dest=dest)

    @pytest.mark.parametrize("src", ["/etc/passwd", "../outside", ""])
    def test_rejects_escaping_src(self, src: str):
        """Sources must stay inside the distribution."""
        with pytest.raises(ValidationError):
            ModuleResource(src=src, dest="conf/a.xml")


class TestModuleDefinition:
    """Tests for ModuleDefinition."""

    def test_minimal(self):
        """Only id and name are required."""
        module = ModuleDefinition(id="idp.X", name="X")

        assert module.resources == []
        assert module.plugin is None


class TestPluginDescriptor:
    """Tests for PluginDescriptor."""

    def test_parsed_version(self):
        """parsed_version returns a ComponentVersion."""
        descriptor = PluginDescriptor(plugin_id="p", version="2.3.1")

        assert descriptor.parsed_version == ComponentVersion(2, 3, 1)

    def test_plugin_id_stripped(self):
        """Surrounding whitespace is removed from the id."""
        assert PluginDescriptor(plugin_id=" p ", version="1").plugin_id == "p"

    @pytest.mark.parametrize("plugin_id", ["", "  ", "a/b", "a\\b"])
    def test_rejects_bad_id(self, plugin_id: str):
        """Ids that are empty or look like paths are rejected."""
        with pytest.raises(ValidationError):
            PluginDescriptor(plugin_id=plugin_id, version="1")

    def test_rejects_bad_version(self):
        """Unparseable versions are rejected."""
        with pytest.raises(ValidationError):
            PluginDescriptor(plugin_id="p", version="latest")

    def test_rejects_escaping_files(self):
        """Files must be relative to the plugin directory."""
        with pytest.raises(ValidationError):
            PluginDescriptor(plugin_id="p", version="1", files=["../x"])

    @pytest.mark.parametrize("license", ["/etc/passwd", "../LICENSE"])
    def test_rejects_escaping_license(self, license: str):
        """The license file must be inside the plugin directory."""
        with pytest.raises(ValidationError):
            PluginDescriptor(plugin_id="p", version="1", license=license)

    def test_relative_license(self):
        """A relative license path is kept."""
        assert PluginDescriptor(plugin_id="p", version="1", license="doc/LICENSE.txt").license == "doc/LICENSE.txt"


class TestInstalledPlugin:
    """Tests for InstalledPlugin."""

    def test_shortcuts(self):
        """plugin_id and version come from the descriptor."""
        record = InstalledPlugin(
            descriptor=PluginDescriptor(plugin_id="p", version="1.0"),
            installed_at="2024-01-01T00:00:00+00:00",
        )

        assert record.plugin_id == "p"
        assert record.version == "1.0"
        assert record.contents == []
