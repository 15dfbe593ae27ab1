"""Main CLI application for the IdP installer."""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from idp_installer import __version__
from idp_installer.cli.common import (
    RC_INIT,
    RC_IO,
    RC_UNKNOWN,
    HomeOption,
    confirm_key,
    console,
    parse_definitions,
    print_error,
    print_success,
    print_warning,
    resolve_home,
    setup_logging,
)
from idp_installer.cli.module import module_app
from idp_installer.cli.plugin import plugin_app
from idp_installer.config.installer import PROPERTY_SOURCE_FILE, SOURCE_DIR, TARGET_DIR, InstallerProperties
from idp_installer.config.parser import ConfigError
from idp_installer.core.distribution import CopyDistribution
from idp_installer.core.errors import BuildError, InstallStateError
from idp_installer.core.layout import InstallLayout
from idp_installer.core.orchestrator import UpgradeOrchestrator
from idp_installer.core.state import InstallState
from idp_installer.core.update import IdPUpdateChecker, UpdateError
from idp_installer.core.war import WarBuilder
from idp_installer.modules import ModuleError
from idp_installer.utils.version import ComponentVersion

app = typer.Typer(
    name="idp-installer",
    help="Install, upgrade and extend a SAML Identity Provider",
    add_completion=False,
    no_args_is_help=True,
)
app.add_typer(plugin_app, name="plugin")
app.add_typer(module_app, name="module")

logger = logging.getLogger(__name__)


@app.callback()
def callback(
    verbose: Annotated[
        int,
        typer.Option(
            "--verbose",
            "-v",
            count=True,
            help="Increase verbosity (-v info, -vv debug, -vvv debug with source)",
        ),
    ] = 0,
) -> None:
    """Install, upgrade and extend a SAML Identity Provider."""
    setup_logging(verbose)


@app.command()
def version() -> None:
    """Show the installer version."""
    console.print(f"idp-installer {__version__}")


PropertyFileOption = Annotated[
    Path | None,
    typer.Option(
        "--propertyFile",
        help="File of installer properties (name=value)",
    ),
]
DefineOption = Annotated[
    list[str] | None,
    typer.Option(
        "-D",
        help="Set an installer property (name=value); may be repeated",
    ),
]
TargetDirOption = Annotated[
    Path | None,
    typer.Option(
        "--target-dir",
        "-t",
        help="Installation directory",
    ),
]
NoPromptOption = Annotated[
    bool,
    typer.Option(
        "--noPrompt",
        help="Never prompt; missing properties are errors",
    ),
]


def _run_install(
    copy: bool,
    property_file: Path | None,
    definitions: list[str] | None,
    target_dir: Path | None,
    source_dir: Path | None,
    no_prompt: bool,
) -> None:
    values = parse_definitions(definitions)
    if property_file is not None:
        values[PROPERTY_SOURCE_FILE] = str(property_file.resolve())
    if target_dir is not None:
        values[TARGET_DIR] = str(target_dir.resolve())
    if source_dir is not None:
        values[SOURCE_DIR] = str(source_dir.resolve())

    try:
        properties = InstallerProperties(values, need_source_dir=copy, no_prompt=no_prompt)
        layout = InstallLayout(properties.target_dir)
    except ConfigError as e:
        print_error(str(e))
        raise typer.Exit(RC_INIT) from e

    try:
        if copy:
            CopyDistribution(properties, layout).execute()
    except (BuildError, ConfigError) as e:
        print_error(str(e))
        raise typer.Exit(RC_IO) from e

    try:
        state = InstallState(layout)
    except InstallStateError as e:
        print_error(str(e))
        raise typer.Exit(RC_INIT) from e

    try:
        UpgradeOrchestrator(properties, state, layout).execute()
        war = WarBuilder(layout).build()
        properties.tidy()
    except (BuildError, ConfigError, ModuleError) as e:
        print_error(str(e))
        raise typer.Exit(RC_IO) from e
    except OSError as e:
        logger.error("Install failed: %s", e, exc_info=True)
        print_error(f"Install failed: {e}")
        raise typer.Exit(RC_UNKNOWN) from e

    if state.is_new_install:
        print_success(f"Installed IdP {__version__} into {layout.root}")
    else:
        print_success(f"Updated IdP {state.installed_version} to {__version__} in {layout.root}")
    console.print(f"  Built: {war}")


@app.command()
def install(
    property_file: PropertyFileOption = None,
    definitions: DefineOption = None,
    target_dir: TargetDirOption = None,
    source_dir: Annotated[
        Path | None,
        typer.Option(
            "--source-dir",
            "-s",
            help="Distribution directory to copy from",
        ),
    ] = None,
    no_prompt: NoPromptOption = False,
) -> None:
    """Copy a distribution into place, then install or upgrade it.

    Detects whether this is a new install, a reinstall or an upgrade of an
    existing installation. On a new install keys, property files, secrets
    and sample metadata are generated.
    """
    _run_install(True, property_file, definitions, target_dir, source_dir, no_prompt)


@app.command("install-nocopy")
def install_nocopy(
    property_file: PropertyFileOption = None,
    definitions: DefineOption = None,
    target_dir: TargetDirOption = None,
    no_prompt: NoPromptOption = False,
) -> None:
    """Install or upgrade a distribution that is already in place."""
    _run_install(False, property_file, definitions, target_dir, None, no_prompt)


@app.command("build-war")
def build_war(home: HomeOption = None) -> None:
    """Rebuild war/idp.war from dist/webapp and its overlays."""
    layout = InstallLayout(resolve_home(home))
    try:
        war = WarBuilder(layout).build()
    except BuildError as e:
        print_error(str(e))
        raise typer.Exit(RC_IO) from e
    print_success(f"Built {war}")


@app.command()
def update(
    home: HomeOption = None,
    list_versions: Annotated[
        bool,
        typer.Option(
            "--list",
            "-l",
            help="List every published version",
        ),
    ] = False,
    download_dir: Annotated[
        Path | None,
        typer.Option(
            "--downloadDir",
            help="Download the update (and its signature) into this directory",
        ),
    ] = None,
    to_version: Annotated[
        str | None,
        typer.Option(
            "--version",
            help="Version to move to (default: the best newer version)",
        ),
    ] = None,
    from_version: Annotated[
        str | None,
        typer.Option(
            "--fromVersion",
            help="Version to check from (default: this installer's version)",
        ),
    ] = None,
    update_urls: Annotated[
        list[str] | None,
        typer.Option(
            "--updateURL",
            help="Location of the IdP version information; may be repeated",
        ),
    ] = None,
    truststore: Annotated[
        Path | None,
        typer.Option(
            "--truststore",
            help="Trust store of IdP signing keys",
        ),
    ] = None,
    no_prompt: NoPromptOption = False,
) -> None:
    """Check for a newer IdP release, and optionally download it."""
    idp_home = resolve_home(home)
    try:
        target = ComponentVersion.parse(to_version) if to_version else None
        checker = IdPUpdateChecker(
            idp_home,
            update_urls=update_urls or (),
            current_version=from_version,
            truststore=truststore,
            accept_key=None if no_prompt else confirm_key,
        )
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(RC_INIT) from e

    try:
        if list_versions:
            table = Table(title="IdP Versions")
            table.add_column("Version", style="cyan")
            table.add_column("Support Level", style="green")
            table.add_column("Upgrade Candidate")
            for status in checker.list_versions():
                label = f"{status.version} (current)" if status.is_current else str(status.version)
                table.add_row(label, status.support_level.value, "yes" if status.upgrade_candidate else "no")
            console.print(table)
            return

        result = checker.check(target)
        if result.support_level is None:
            print_warning(f"No information published for version {result.current}")
        elif result.has_security_advisory:
            print_error(f"Version {result.current} has known security vulnerabilities")
        else:
            console.print(f"Version {result.current}: {result.support_level.value}")

        if result.target is None:
            console.print(f"No upgrade available from {result.current}")
            return
        console.print(f"Version {result.current} can be upgraded to {result.target}")
        if download_dir is not None:
            archive = checker.download(result.target, download_dir)
            print_success(f"Downloaded {archive}")
    except UpdateError as e:
        print_error(str(e))
        raise typer.Exit(RC_IO) from e


if __name__ == "__main__":
    app()
