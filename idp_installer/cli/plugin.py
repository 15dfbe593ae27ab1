"""The ``plugin`` command: list, install, update and remove plugins."""

import logging
from typing import Annotated

import typer

from idp_installer.cli.common import (
    RC_INIT,
    RC_IO,
    HomeOption,
    confirm_key,
    console,
    print_error,
    print_success,
    resolve_home,
)
from idp_installer.config.schemas import InstalledPlugin
from idp_installer.core.errors import BuildError
from idp_installer.plugins.arguments import ArgumentError, OperationType, PluginInstallerArguments
from idp_installer.plugins.installer import PluginError, PluginInstaller
from idp_installer.utils.version import ComponentVersion

logger = logging.getLogger(__name__)

plugin_app = typer.Typer(
    help="Manage IdP plugins",
    invoke_without_command=True,
    no_args_is_help=True,
)


def _out(message: str) -> None:
    console.print(message, markup=False, highlight=False)


@plugin_app.callback()
def plugin(
    home: HomeOption = None,
    plugin_id: Annotated[
        str | None,
        typer.Option("--pluginId", "-p", help="Restrict listing to this plugin"),
    ] = None,
    list_installed: Annotated[
        bool,
        typer.Option("--list", "-l", help="List installed plugins"),
    ] = False,
    full_list: Annotated[
        bool,
        typer.Option("--full-list", "-fl", help="List installed plugins with version details"),
    ] = False,
    list_available: Annotated[
        bool,
        typer.Option("--list-available", "-L", help="List plugins available for install or update"),
    ] = False,
    input: Annotated[
        str | None,
        typer.Option("--input", "-i", help="Install from a local archive or an http(s) URL"),
    ] = None,
    install_id: Annotated[
        str | None,
        typer.Option("--install-ID", "-I", help="Install the best available version of a plugin"),
    ] = None,
    update: Annotated[
        str | None,
        typer.Option("--update", "-u", help="Update the plugin with this id"),
    ] = None,
    force_update: Annotated[
        str | None,
        typer.Option("--force-update", "-fu", help="Version to update to (with --update)"),
    ] = None,
    uninstall: Annotated[
        str | None,
        typer.Option("--uninstall", "-r", help="Remove the plugin with this id"),
    ] = None,
    license: Annotated[
        str | None,
        typer.Option("--license", help="Print the license of an installed plugin"),
    ] = None,
    contents_list: Annotated[
        str | None,
        typer.Option("--contents-list", "-cl", help="List the files a plugin installed"),
    ] = None,
    no_prompt: Annotated[
        bool,
        typer.Option("--noPrompt", help="Never ask; untrusted signing keys are rejected"),
    ] = False,
    no_check: Annotated[
        bool,
        typer.Option("--noCheck", help="Do not check the distribution signature"),
    ] = False,
    truststore: Annotated[
        str | None,
        typer.Option("--truststore", help="Trust store of plugin signing keys"),
    ] = None,
    update_urls: Annotated[
        list[str] | None,
        typer.Option("--updateURL", help="Location of plugin information; may be repeated"),
    ] = None,
    no_rebuild: Annotated[
        bool,
        typer.Option("--noRebuild", help="Do not rebuild the WAR"),
    ] = False,
) -> None:
    """Manage IdP plugins.

    Exactly one of --list/--full-list/--list-available, --input,
    --install-ID, --update, --uninstall, --license or --contents-list
    selects what to do.
    """
    args = PluginInstallerArguments(
        plugin_id=plugin_id,
        no_prompt=no_prompt,
        list_installed=list_installed,
        full_list=full_list,
        list_available=list_available,
        no_check=no_check,
        license=license,
        input=input,
        install_id=install_id,
        truststore=truststore,
        update=update,
        force_update=force_update,
        uninstall=uninstall,
        contents_list=contents_list,
        update_urls=list(update_urls or []),
        no_rebuild=no_rebuild,
    )
    try:
        operation = args.validate()
    except ArgumentError as e:
        print_error(str(e))
        raise typer.Exit(RC_INIT) from e

    idp_home = resolve_home(home)
    installer = PluginInstaller(
        idp_home,
        no_prompt=args.no_prompt,
        truststore=idp_home / args.truststore if args.truststore else None,
        no_check=args.no_check,
        no_rebuild=args.no_rebuild,
        update_urls=args.update_urls,
        accept_key=confirm_key,
    )

    try:
        _dispatch(installer, args, operation)
    except (PluginError, BuildError) as e:
        logger.error("Plugin operation failed: %s", e)
        print_error(str(e))
        raise typer.Exit(RC_IO) from e


def _dispatch(installer: PluginInstaller, args: PluginInstallerArguments, operation: OperationType) -> None:
    if operation is OperationType.LIST:
        if args.list_available:
            _list_available(installer)
        else:
            _list(installer, args.full_list, args.plugin_id)
    elif operation is OperationType.INSTALLDIR:
        record = installer.install_from_dir(args.input_directory, args.input_name)
        print_success(f"Installed {record.plugin_id} version {record.version}")
    elif operation is OperationType.INSTALLREMOTE:
        if args.install_id is not None:
            record = installer.install_by_id(args.install_id)
        else:
            record = installer.install_from_url(args.input_url, args.input_name)
        print_success(f"Installed {record.plugin_id} version {record.version}")
    elif operation is OperationType.UPDATE:
        record = installer.update(args.plugin_id, args.update_version)
        if record is None:
            _out(f"Plugin {args.plugin_id}: No update available")
        else:
            print_success(f"Updated {record.plugin_id} to version {record.version}")
    elif operation is OperationType.UNINSTALL:
        installer.uninstall(args.plugin_id)
        print_success(f"Uninstalled {args.plugin_id}")
    elif operation is OperationType.OUTPUTLICENSE:
        _output_license(installer, args.plugin_id)
    elif operation is OperationType.LISTCONTENTS:
        contents = installer.installed_contents(args.plugin_id)
        if not contents:
            logger.info("No contents")
        for path in contents:
            _out(path.as_posix())


def _list(installer: PluginInstaller, full: bool, plugin_id: str | None) -> None:
    listed = False
    for record in installer.installed_plugins():
        if plugin_id is not None and plugin_id != record.plugin_id:
            continue
        listed = True
        _out("Plugin: %-22s\tCurrent Version: %s" % (record.plugin_id, record.descriptor.parsed_version))
        if full:
            _print_details(installer, record)
    if not listed:
        _out("No plugins installed" if plugin_id is None else f"Plugin {plugin_id} not installed")


def _print_details(installer: PluginInstaller, record: InstalledPlugin) -> None:
    logger.debug("Interrogating %s", record.plugin_id)
    try:
        info = installer.plugin_state(record.descriptor).plugin_info
    except PluginError as e:
        logger.error("Could not interrogate plugin %s: %s", record.plugin_id, e)
        return
    _out("\tVersions ")
    for version, version_info in sorted(info.available_versions.items()):
        download = "" if info.download_info(version) is not None else " - No download available"
        _out(
            "\t%s:\tMin=%s\tMax=%s\tSupport level: %s%s"
            % (
                version,
                version_info.min_supported,
                version_info.max_supported,
                version_info.support_level.value,
                download,
            )
        )


def _list_available(installer: PluginInstaller) -> None:
    nothing = ComponentVersion(0, 0, 0)
    for plugin_id, info in installer.load_available().items():
        existing = installer.installed_plugin(plugin_id)
        if existing is None:
            version = info.best_version(nothing, installer.idp_version)
            if version is None:
                logger.debug("Plugin %s has no version available", plugin_id)
            else:
                _out(f"Plugin {plugin_id}: version {version} available for install")
            continue
        installed = existing.descriptor.parsed_version
        version = info.best_version(installed, installer.idp_version)
        if version is None:
            _out(f"Plugin {plugin_id}: Installed version {installed}: No update available")
        else:
            _out(f"Plugin {plugin_id}: Installed version {installed}: Update to {version} available")


def _output_license(installer: PluginInstaller, plugin_id: str) -> None:
    text = installer.license_text(plugin_id)
    if text is None:
        logger.info("Plugin %s has no license", plugin_id)
        _out(f"Plugin {plugin_id} has no license")
        return
    _out(f"License for {plugin_id}")
    for line in text.splitlines():
        _out(line)
