"""The ``module`` command: list, enable and disable modules."""

from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from idp_installer.cli.common import RC_IO, HomeOption, console, print_error, print_success, print_warning, resolve_home
from idp_installer.modules import IdPModule, ModuleContext, ModuleError, available_modules
from idp_installer.modules.base import ResourceResult
from idp_installer.plugins.installer import PluginInstaller

module_app = typer.Typer(
    help="Manage IdP modules",
    no_args_is_help=True,
)


def _modules(idp_home: Path) -> dict[str, IdPModule]:
    return available_modules(PluginInstaller(idp_home).installed_plugins())


def _lookup(modules: dict[str, IdPModule], module_ids: list[str]) -> list[IdPModule]:
    unknown = [m for m in module_ids if m not in modules]
    if unknown:
        print_error(f"Unknown module(s): {', '.join(unknown)}")
        raise typer.Exit(RC_IO)
    return [modules[m] for m in module_ids]


@module_app.command("list")
def list_modules(home: HomeOption = None) -> None:
    """List modules and whether they are enabled."""
    idp_home = resolve_home(home)
    context = ModuleContext(idp_home)

    table = Table(title="Modules")
    table.add_column("Module", style="cyan")
    table.add_column("Name")
    table.add_column("Status", style="green")
    table.add_column("Plugin", style="dim")

    for module_id, module in sorted(_modules(idp_home).items()):
        try:
            status = "enabled" if module.is_enabled(context) else "disabled"
        except (ModuleError, OSError) as e:
            status = f"error: {e}"
        table.add_row(module_id, module.name, status, module.owner_id or "")

    console.print(table)


@module_app.command()
def enable(
    module_ids: Annotated[
        list[str],
        typer.Argument(help="Modules to enable"),
    ],
    home: HomeOption = None,
) -> None:
    """Enable modules, copying their resources into the IdP home.

    Locally changed files are kept; the new version is written beside them
    with an .idpnew suffix (or the old one moved aside to .idpsave for
    resources that must be replaced).
    """
    idp_home = resolve_home(home)
    context = ModuleContext(idp_home, console.file)
    for module in _lookup(_modules(idp_home), module_ids):
        try:
            outcomes = module.enable(context)
        except ModuleError as e:
            print_error(str(e))
            raise typer.Exit(RC_IO) from e
        for outcome in outcomes:
            if outcome.result is ResourceResult.ADDED:
                print_warning(f"  {outcome.path} written beside a locally changed file")
            elif outcome.result is ResourceResult.REPLACED:
                print_warning(f"  Locally changed file saved as {outcome.path.name}.idpsave")
        print_success(f"Enabled {module.id}")


@module_app.command()
def disable(
    module_ids: Annotated[
        list[str],
        typer.Argument(help="Modules to disable"),
    ],
    clean: Annotated[
        bool,
        typer.Option(
            "--clean",
            help="Delete resources instead of moving them aside to .idpsave",
        ),
    ] = False,
    home: HomeOption = None,
) -> None:
    """Disable modules."""
    idp_home = resolve_home(home)
    context = ModuleContext(idp_home, console.file)
    for module in _lookup(_modules(idp_home), module_ids):
        try:
            module.disable(context, clean=clean)
        except ModuleError as e:
            print_error(str(e))
            raise typer.Exit(RC_IO) from e
        print_success(f"Disabled {module.id}")
