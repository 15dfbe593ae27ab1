"""Platform and OS detection utilities."""

import platform
import socket
from typing import Literal

PlatformOS = Literal["windows", "linux", "macos"]

DEFAULT_HOST_NAME = "localhost.localdomain"


def get_os() -> PlatformOS:
    """Get the current operating system.

    Returns:
        One of: "windows", "linux", "macos"
    """
    system = platform.system().lower()
    if system == "darwin":
        return "macos"
    elif system == "windows":
        return "windows"
    else:
        return "linux"


def is_windows() -> bool:
    """Check if the current OS is Windows.

    Returns:
        True if running on Windows
    """
    return get_os() == "windows"


def archive_suffix() -> str:
    """Distribution archive suffix for this platform (".zip" on Windows, else ".tar.gz")."""
    return ".zip" if is_windows() else ".tar.gz"


def best_host_name() -> str:
    """Guess the fully qualified name of this host.

    Returns:
        The FQDN, or "localhost.localdomain" if none can be determined
    """
    try:
        name = socket.getfqdn()
    except OSError:
        return DEFAULT_HOST_NAME
    if not name or name in ("localhost", "0.0.0.0"):
        return DEFAULT_HOST_NAME
    return name
