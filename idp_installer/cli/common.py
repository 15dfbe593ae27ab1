"""Console output, exit codes and option helpers shared by the CLI commands."""

import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

RC_OK = 0
RC_INIT = 1
RC_IO = 2
RC_UNKNOWN = 3

console = Console()
error_console = Console(stderr=True)

# Root logger for the idp_installer package
logger = logging.getLogger("idp_installer")

HomeOption = Annotated[
    Path | None,
    typer.Option(
        "--home",
        envvar="IDP_HOME",
        help="IdP installation directory (defaults to current directory)",
    ),
]


def setup_logging(verbosity: int) -> None:
    """Configure logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2=DEBUG, 3+=DEBUG with source locations
    """
    if verbosity == 0:
        level = logging.WARNING
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logger.setLevel(level)

    # Only add handler if not already configured
    if not logger.handlers:
        handler = RichHandler(
            console=error_console,
            show_time=verbosity >= 2,
            show_path=verbosity >= 3,
            rich_tracebacks=True,
        )
        handler.setLevel(level)
        logger.addHandler(handler)
    else:
        for h in logger.handlers:
            h.setLevel(level)


def print_error(message: str) -> None:
    """Print an error message to stderr."""
    error_console.print(f"[red]Error:[/red] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def resolve_home(home: Path | None) -> Path:
    """The IdP home to operate on; a missing directory is an init error."""
    path = Path.cwd() if home is None else home.resolve()
    if not path.is_dir():
        print_error(f"IdP home does not exist: {path}")
        raise typer.Exit(RC_INIT)
    return path


def confirm_key(description: str) -> bool:
    """Ask whether to trust a signing key."""
    console.print(description)
    return typer.confirm("Accept this key", default=False)


def parse_definitions(definitions: list[str] | None) -> dict[str, str]:
    """Parse ``-D name=value`` options.

    Raises:
        typer.BadParameter: If a definition has no ``=``
    """
    result = {}
    for definition in definitions or []:
        name, sep, value = definition.partition("=")
        if not sep or not name.strip():
            raise typer.BadParameter(f"Expected name=value, got {definition!r}", param_hint="-D")
        result[name.strip()] = value
    return result
