"""Filesystem utilities for the installer.

Tree copies, deletes and archive handling used by the distribution copy,
module resources, plugin installation and WAR packaging.
"""

import fnmatch
import hashlib
import shutil
import tarfile
import zipfile
from collections.abc import Iterable, Iterator
from pathlib import Path, PurePosixPath

DEFAULT_EXCLUDES = ("**/.gitkeep",)


def ensure_directory(path: Path) -> Path:
    """Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path to ensure exists

    Returns:
        The directory path
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def matches_any(relative: str, patterns: Iterable[str]) -> bool:
    """Check a forward-slash relative path against glob patterns.

    A leading ``**/`` also matches at the top level, so ``**/*.sh`` matches
    both ``start.sh`` and ``lib/start.sh``.
    """
    for pattern in patterns:
        if fnmatch.fnmatchcase(relative, pattern):
            return True
        if pattern.startswith("**/") and fnmatch.fnmatchcase(relative, pattern[3:]):
            return True
    return False


def iter_files(
    root: Path,
    includes: Iterable[str] = ("**/*",),
    excludes: Iterable[str] = (),
) -> Iterator[Path]:
    """Yield files under a directory matching the include/exclude globs.

    Args:
        root: Directory to walk
        includes: Glob patterns (relative, forward slashes) to include
        excludes: Glob patterns to exclude

    Yields:
        Matching file paths, in sorted order
    """
    if not root.is_dir():
        return
    includes = tuple(includes)
    excludes = tuple(excludes)
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(root).as_posix()
        if matches_any(relative, includes) and not matches_any(relative, excludes):
            yield path


def copy_tree(
    src: Path,
    dest: Path,
    overwrite: bool = True,
    excludes: Iterable[str] = DEFAULT_EXCLUDES,
) -> list[Path]:
    """Copy a directory tree file by file.

    Args:
        src: Source directory
        dest: Destination directory (created if missing)
        overwrite: Replace files already present at the destination
        excludes: Glob patterns of files not to copy

    Returns:
        Destination paths that were written
    """
    written = []
    ensure_directory(dest)
    for path in iter_files(src, excludes=excludes):
        target = dest / path.relative_to(src)
        if target.exists() and not overwrite:
            continue
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.exists():
            target.chmod(target.stat().st_mode | 0o200)
        shutil.copy2(path, target)
        written.append(target)
    return written


def copy_dir_if_not_present(src: Path, dest: Path) -> list[Path]:
    """Copy files from src that do not already exist under dest.

    Args:
        src: Source directory (a missing source copies nothing)
        dest: Destination directory

    Returns:
        Destination paths that were written
    """
    if not src.is_dir():
        return []
    return copy_tree(src, dest, overwrite=False)


def remove_directory(path: Path) -> bool:
    """Remove a directory and its contents.

    Args:
        path: Directory path to remove

    Returns:
        True if the directory was removed, False if it didn't exist
    """
    if not path.exists():
        return False
    shutil.rmtree(path, onexc=_make_writable_and_retry)
    return True


def _make_writable_and_retry(func, path, _exc) -> None:
    Path(path).chmod(0o700)
    func(path)


def remove_file(path: Path) -> bool:
    """Remove a file.

    Args:
        path: File path to remove

    Returns:
        True if the file was removed, False if it didn't exist
    """
    if not path.exists():
        return False
    path.unlink()
    return True


def _check_member_name(name: str) -> None:
    member_path = PurePosixPath(name)
    if member_path.is_absolute() or ".." in member_path.parts:
        raise ValueError(f"Unsafe path in archive: {name}")


def extract_archive(archive_path: Path, dest_dir: Path) -> Path:
    """Extract a .tar.gz/.tgz or .zip archive to a destination directory.

    Args:
        archive_path: Path to the archive
        dest_dir: Destination directory

    Returns:
        Path to the single top-level directory of the archive

    Raises:
        ValueError: If the archive contains unsafe paths, is not a supported
            format, or does not hold exactly one top-level directory
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    name = archive_path.name.lower()

    if name.endswith(".zip"):
        with zipfile.ZipFile(archive_path) as archive:
            for member_name in archive.namelist():
                _check_member_name(member_name)
            archive.extractall(dest_dir)
    elif name.endswith(".tar.gz") or name.endswith(".tgz"):
        with tarfile.open(archive_path, "r:gz") as tar:
            # Security: prevent path traversal
            for member in tar.getmembers():
                _check_member_name(member.name)
                if member.issym() or member.islnk():
                    raise ValueError(f"Links are not allowed in archive: {member.name}")
            tar.extractall(dest_dir, filter="data")
    else:
        raise ValueError(f"Unsupported archive type: {archive_path.name}")

    # Ignore macOS metadata files (._*) and other hidden files
    contents = [
        p for p in dest_dir.iterdir() if not p.name.startswith("._") and not p.name.startswith(".")
    ]
    if len(contents) != 1 or not contents[0].is_dir():
        raise ValueError(f"Archive {archive_path.name} must contain exactly one top-level directory")
    return contents[0]


def create_zip(
    source_dir: Path,
    zip_path: Path,
    excludes: Iterable[str] = DEFAULT_EXCLUDES,
) -> Path:
    """Create a zip archive (such as a WAR) from the contents of a directory.

    Entries are relative to ``source_dir`` and written in sorted order. Files
    dated before 1980 are stored with the earliest time a zip entry can hold.

    Args:
        source_dir: Directory whose contents are archived
        zip_path: Path for the output archive
        excludes: Glob patterns of files to leave out

    Returns:
        Path to the created archive
    """
    zip_path.parent.mkdir(parents=True, exist_ok=True)

    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED, strict_timestamps=False) as archive:
        for path in iter_files(source_dir, excludes=excludes):
            archive.write(path, path.relative_to(source_dir).as_posix())

    return zip_path


def compute_file_hash(path: Path, algorithm: str = "sha256") -> str:
    """Compute the hash of a file.

    Args:
        path: Path to the file
        algorithm: Hash algorithm (default: sha256)

    Returns:
        Hex-encoded hash string
    """
    hasher = hashlib.new(algorithm)
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            hasher.update(chunk)
    return hasher.hexdigest()
