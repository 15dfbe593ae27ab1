"""Tests for idp_installer.modules package."""

import io
from pathlib import Path

import pytest

from idp_installer.config.schemas import InstalledPlugin, ModuleDefinition, ModuleResource, PluginDescriptor
from idp_installer.modules import (
    IdPModule,
    ModuleContext,
    ModuleError,
    available_modules,
    get_module,
    list_modules,
    plugin_module_definition,
)
from idp_installer.modules.base import ResourceResult


def _module(*resources: ModuleResource, **kwargs) -> IdPModule:
    return IdPModule(ModuleDefinition(id="test.Module", name="Test", resources=list(resources), **kwargs))


def _context(temp_dir: Path, files: dict[str, str] | None = None) -> ModuleContext:
    home = temp_dir / "idp"
    for relative, text in (files or {}).items():
        path = home / "dist" / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    home.mkdir(exist_ok=True)
    return ModuleContext(home)


class TestRegistry:
    """Tests for module discovery."""

    def test_packaged_modules(self):
        """The packaged registry provides the core modules."""
        modules = available_modules()

        assert {"idp.Core", "idp.EditWebApp", "idp.authn.Password", "idp.admin.Hello"} <= set(modules)

    def test_get_unknown(self):
        """Unknown ids raise ModuleError listing what is available."""
        with pytest.raises(ModuleError, match="Unknown module: nope. Available modules: .*idp.Core"):
            get_module("nope")

    def test_list_sorted(self):
        """list_modules is sorted by id."""
        ids = [m.id for m in list_modules()]

        assert ids == sorted(ids)

    def test_plugin_modules(self):
        """Plugins contribute modules bound to their contents directory."""
        definition = ModuleDefinition(
            id="net.example.Module", name="Ex", resources=[ModuleResource(src="conf/ex.xml", dest="conf/ex.xml")]
        )
        plugin = InstalledPlugin(
            descriptor=PluginDescriptor(plugin_id="net.example.p", version="1.0", modules=[definition]),
            installed_at="2024-01-01T00:00:00+00:00",
        )

        module = available_modules([plugin])["net.example.Module"]

        assert module.owner_id == "net.example.p"
        assert module.resources[0].src == "plugin-contents/net.example.p/conf/ex.xml"

    def test_plugin_cannot_redefine(self):
        """A plugin module with a packaged id is ignored."""
        definition = ModuleDefinition(id="idp.Core", name="Hijack")
        plugin = InstalledPlugin(
            descriptor=PluginDescriptor(plugin_id="p", version="1.0", modules=[definition]),
            installed_at="2024-01-01T00:00:00+00:00",
        )

        assert available_modules([plugin])["idp.Core"].owner_id is None

    def test_plugin_module_definition_keeps_original(self):
        """Binding returns a copy."""
        definition = ModuleDefinition(id="m", name="M", resources=[ModuleResource(src="a", dest="a")])

        bound = plugin_module_definition("p", definition)

        assert definition.resources[0].src == "a"
        assert bound.plugin == "p"


class TestEnable:
    """Tests for IdPModule.enable."""

    def test_creates(self, temp_dir: Path):
        """A new destination is created."""
        context = _context(temp_dir, {"conf/a.xml": "dist"})
        module = _module(ModuleResource(src="conf/a.xml", dest="conf/a.xml"))

        outcomes = module.enable(context)

        assert outcomes[0].result is ResourceResult.CREATED
        assert (context.idp_home / "conf" / "a.xml").read_text() == "dist"
        assert module.is_enabled(context)

    def test_unchanged_rewritten_in_place(self, temp_dir: Path):
        """An identical destination counts as created."""
        context = _context(temp_dir, {"conf/a.xml": "dist"})
        module = _module(ModuleResource(src="conf/a.xml", dest="conf/a.xml"))
        module.enable(context)

        assert module.enable(context)[0].result is ResourceResult.CREATED

    def test_local_change_kept(self, temp_dir: Path):
        """A changed destination is kept and the new copy goes to .idpnew."""
        context = _context(temp_dir, {"conf/a.xml": "dist"})
        dest = context.idp_home / "conf" / "a.xml"
        dest.parent.mkdir(parents=True)
        dest.write_text("local")
        module = _module(ModuleResource(src="conf/a.xml", dest="conf/a.xml"))

        outcomes = module.enable(context)

        assert outcomes[0].result is ResourceResult.ADDED
        assert dest.read_text() == "local"
        assert dest.with_name("a.xml.idpnew").read_text() == "dist"

    def test_local_change_replaced(self, temp_dir: Path):
        """With replace, the changed destination moves to .idpsave."""
        context = _context(temp_dir, {"conf/a.xml": "dist"})
        dest = context.idp_home / "conf" / "a.xml"
        dest.parent.mkdir(parents=True)
        dest.write_text("local")
        module = _module(ModuleResource(src="conf/a.xml", dest="conf/a.xml", replace=True))

        outcomes = module.enable(context)

        assert outcomes[0].result is ResourceResult.REPLACED
        assert dest.read_text() == "dist"
        assert dest.with_name("a.xml.idpsave").read_text() == "local"

    def test_missing_mandatory_source(self, temp_dir: Path):
        """A missing mandatory source is an error."""
        module = _module(ModuleResource(src="conf/none.xml", dest="conf/none.xml"))

        with pytest.raises(ModuleError, match="does not exist"):
            module.enable(_context(temp_dir))

    def test_missing_optional_source(self, temp_dir: Path):
        """A missing optional source is skipped."""
        module = _module(ModuleResource(src="conf/none.xml", dest="conf/none.xml", optional=True))

        assert module.enable(_context(temp_dir))[0].result is ResourceResult.MISSING

    def test_exec(self, temp_dir: Path):
        """exec resources become executable."""
        context = _context(temp_dir, {"bin/run.sh": "#!/bin/sh\n"})
        _module(ModuleResource(src="bin/run.sh", dest="bin/run.sh", exec=True)).enable(context)

        assert (context.idp_home / "bin" / "run.sh").stat().st_mode & 0o111

    def test_post_enable_message(self, temp_dir: Path):
        """The post-enable message goes to the message stream."""
        stream = io.StringIO()
        context = ModuleContext(_context(temp_dir).idp_home, stream)
        _module(post_enable="Rebuild the WAR\n").enable(context)

        assert stream.getvalue() == "Rebuild the WAR\n"


class TestDisable:
    """Tests for IdPModule.disable."""

    def test_moves_aside(self, temp_dir: Path):
        """Resources are moved to .idpsave by default."""
        context = _context(temp_dir, {"conf/a.xml": "dist"})
        module = _module(ModuleResource(src="conf/a.xml", dest="conf/a.xml"))
        module.enable(context)

        outcomes = module.disable(context)

        assert outcomes[0].result is ResourceResult.SAVED
        assert (context.idp_home / "conf" / "a.xml.idpsave").exists()
        assert not module.is_enabled(context)

    def test_clean(self, temp_dir: Path):
        """clean deletes resources outright."""
        context = _context(temp_dir, {"conf/a.xml": "dist"})
        module = _module(ModuleResource(src="conf/a.xml", dest="conf/a.xml"))
        module.enable(context)

        assert module.disable(context, clean=True)[0].result is ResourceResult.REMOVED
        assert not (context.idp_home / "conf" / "a.xml.idpsave").exists()

    def test_missing_resource(self, temp_dir: Path):
        """Disabling a module that is not there is harmless."""
        module = _module(ModuleResource(src="conf/a.xml", dest="conf/a.xml"))

        assert module.disable(_context(temp_dir))[0].result is ResourceResult.MISSING

    def test_no_resources_always_enabled(self, temp_dir: Path):
        """A module without resources is always enabled."""
        assert _module().is_enabled(_context(temp_dir))
