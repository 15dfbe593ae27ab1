"""Line-oriented properties files that keep their comments and layout.

``PropertiesWithComments`` is used to rewrite ``idp.properties`` and
``ldap.properties``: lines that are not replaced are written back exactly as
they were read, and a set of protected, secret-bearing names can never be
overwritten.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import BinaryIO

from idp_installer.config.parser import ConfigError

logger = logging.getLogger(__name__)

ENCODING = "utf-8"
_LINE_PATTERN = re.compile(r"[^\r\n]*(?:\r\n|\r|\n)|[^\r\n]+$")
_KEY_TERMINATORS = "=: \t\f"


def _split_lines(text: str) -> list[tuple[str, str]]:
    """Split text into (content, line ending) pairs without losing anything."""
    result = []
    for raw in _LINE_PATTERN.findall(text):
        content = raw.rstrip("\r\n")
        result.append((content, raw[len(content) :]))
    return result


def parse_key_value(text: str) -> tuple[str, str] | None:
    """Parse one logical properties line the way java.util.Properties does.

    Args:
        text: Line content without its line ending

    Returns:
        (key, value) or None for blank and comment lines
    """
    stripped = text.lstrip(" \t\f")
    if not stripped or stripped[0] in "#!":
        return None

    key_chars = []
    index = 0
    while index < len(stripped):
        char = stripped[index]
        if char == "\\" and index + 1 < len(stripped):
            key_chars.append(stripped[index + 1])
            index += 2
            continue
        if char in _KEY_TERMINATORS:
            break
        key_chars.append(char)
        index += 1

    rest = stripped[index:].lstrip(" \t\f")
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip(" \t\f")
    return "".join(key_chars), rest


@dataclass
class _Entry:
    """A commented or active property line."""

    name: str
    value: str
    raw: str
    ending: str
    commented: bool
    replaced: bool = False

    def render(self) -> str:
        if not self.replaced:
            return self.raw + self.ending
        return f"{_escape(self.name, key=True)}={_escape(self.value)}{self.ending}"


class PropertiesWithComments:
    """An ordered properties document preserving comments and untouched lines."""

    def __init__(self, protected: Iterable[str] | None = None):
        """Initialize an empty document.

        Args:
            protected: Property names that may never be replaced
        """
        self._protected = frozenset(protected or ())
        self._name_replacements: dict[str, str] = {}
        self._contents: list[str | _Entry] = []
        self._properties: dict[str, _Entry] = {}
        self._newline = "\n"
        self._loaded = False

    @property
    def protected(self) -> frozenset[str]:
        """Names that cannot be replaced."""
        return self._protected

    def load_name_replacement(self, replacements: Mapping[str, str]) -> None:
        """Rename properties while loading (old name -> new name).

        Raises:
            ConfigError: If the data has already been loaded
        """
        if self._loaded:
            raise ConfigError("Cannot load name replacements after the data")
        self._name_replacements.update(replacements)

    def load(self, source: Path | BinaryIO) -> None:
        """Parse a properties file line by line.

        Args:
            source: Path or binary stream to read from

        Raises:
            ConfigError: If a path cannot be read
        """
        if isinstance(source, Path):
            try:
                data = source.read_bytes()
            except OSError as e:
                raise ConfigError(f"Cannot read {source}: {e}", source) from e
        else:
            data = source.read()
        self.loads(data.decode(ENCODING, errors="surrogateescape"))

    def loads(self, text: str) -> None:
        """Parse properties text."""
        self._contents = []
        self._properties = {}
        lines = _split_lines(text)
        for content, ending in lines:
            if ending:
                self._newline = ending
                break

        for content, ending in lines:
            what = content.strip()
            if not what:
                self._contents.append(content + ending)
            elif what.startswith("#"):
                if "=" in what:
                    self._add_property(content, ending, commented=True)
                else:
                    self._contents.append(content + ending)
            elif what.startswith("--") or "=" not in what:
                self._contents.append(content + ending)
            else:
                self._add_property(content, ending, commented=False)
        self._loaded = True

    def _add_property(self, content: str, ending: str, commented: bool) -> None:
        parsed = parse_key_value(content.lstrip()[1:] if commented else content)
        if parsed is None or not parsed[0].strip():
            self._contents.append(content + ending)
            return

        name, value = parsed[0].strip(), parsed[1]
        raw = content
        new_name = self._name_replacements.get(name, "").strip()
        replaced = False
        if new_name:
            if commented:
                raw = raw.replace(name, new_name)
            else:
                replaced = True
            name = new_name

        entry = _Entry(name, value, raw, ending, commented, replaced)
        self._properties[name] = entry
        self._contents.append(entry)

    def store(self, target: Path | BinaryIO) -> None:
        """Write the document back, preserving the order of all lines.

        Args:
            target: Path or binary stream to write to
        """
        data = self.dumps().encode(ENCODING, errors="surrogateescape")
        if isinstance(target, Path):
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        else:
            target.write(data)

    def dumps(self) -> str:
        """Render the document as text."""
        parts = []
        for item in self._contents:
            if isinstance(item, _Entry):
                parts.append(item.render())
            else:
                parts.append(item)
        return "".join(parts)

    def _check_replaceable(self, name: str) -> None:
        if name in self._protected:
            raise ConfigError(f"property '{name}' cannot be replaced")

    def replace_property(self, name: str, value: str) -> bool:
        """Replace a property in place, or append it.

        A commented-out property becomes active when replaced.

        Args:
            name: Property name
            value: New value

        Returns:
            True if an existing entry was replaced, False if a new one was added

        Raises:
            ConfigError: If the name is protected (the document is unchanged)
        """
        self._check_replaceable(name)
        entry = self._properties.get(name)
        if entry is not None:
            entry.value = value
            entry.commented = False
            entry.replaced = True
            return True

        self._terminate_last_line()
        entry = _Entry(name, value, "", self._newline, commented=False, replaced=True)
        self._contents.append(entry)
        self._properties[name] = entry
        return False

    def replace_properties(self, replacements: Mapping[str, str]) -> None:
        """Apply a bulk replacement.

        Raises:
            ConfigError: If any name is protected (nothing is replaced)
        """
        for name in replacements:
            self._check_replaceable(name)
        for name, value in replacements.items():
            self.replace_property(name, value)

    def add_comment(self, text: str) -> None:
        """Append a comment line."""
        self._terminate_last_line()
        self._contents.append(f"# {text}{self._newline}")

    def _terminate_last_line(self) -> None:
        if not self._contents:
            return
        last = self._contents[-1]
        if isinstance(last, _Entry):
            if not last.ending:
                last.ending = self._newline
        elif not last.endswith(("\n", "\r")):
            self._contents[-1] = last + self._newline

    def get(self, name: str) -> str | None:
        """Get the value of an active property."""
        entry = self._properties.get(name)
        if entry is None or entry.commented:
            return None
        return entry.value

    def is_commented(self, name: str) -> bool:
        """Check whether a known property is commented out."""
        entry = self._properties.get(name)
        return entry is not None and entry.commented

    def names(self) -> list[str]:
        """Names of all commented and active properties, in file order."""
        return list(self._properties)

    def __contains__(self, name: object) -> bool:
        return name in self._properties


def parse_properties(text: str) -> dict[str, str]:
    """Parse properties text into a mapping (last definition wins).

    Supports ``=``/``:``/whitespace separators, ``#``/``!`` comments and
    backslash line continuations.
    """
    result: dict[str, str] = {}
    pending = ""
    for content, _ending in _split_lines(text):
        line = pending + content.lstrip(" \t\f") if pending else content
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1 and not line.lstrip().startswith(("#", "!")):
            pending = line[:-1]
            continue
        pending = ""
        parsed = parse_key_value(line)
        if parsed is not None:
            result[parsed[0]] = _unescape(parsed[1])
    if pending:
        parsed = parse_key_value(pending)
        if parsed is not None:
            result[parsed[0]] = _unescape(parsed[1])
    return result


_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}


def _unescape(value: str) -> str:
    chars = []
    index = 0
    while index < len(value):
        char = value[index]
        if char != "\\" or index + 1 >= len(value):
            chars.append(char)
            index += 1
            continue
        following = value[index + 1]
        if following == "u" and re.fullmatch(r"[0-9a-fA-F]{4}", value[index + 2 : index + 6]):
            chars.append(chr(int(value[index + 2 : index + 6], 16)))
            index += 6
            continue
        chars.append(_ESCAPES.get(following, following))
        index += 2
    return "".join(chars)


def load_properties(path: Path) -> dict[str, str]:
    """Load a properties file into a mapping.

    Args:
        path: Path to the properties file

    Returns:
        Mapping of property names to values

    Raises:
        ConfigError: If the file cannot be read
    """
    try:
        text = path.read_text(encoding=ENCODING, errors="surrogateescape")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}", path) from e
    return parse_properties(text)


def store_properties(path: Path, properties: Mapping[str, str], comment: str | None = None) -> None:
    """Write a simple properties file.

    Args:
        path: Path to write to
        properties: Names and values, written in iteration order
        comment: Optional header comment; a timestamp line always follows it
    """
    lines = []
    if comment:
        lines.append(f"#{comment}")
    lines.append(f"#{datetime.now().astimezone().strftime('%a %b %d %H:%M:%S %Z %Y')}")
    for name, value in properties.items():
        lines.append(f"{_escape(name, key=True)}={_escape(value)}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding=ENCODING)


def _escape(text: str, key: bool = False) -> str:
    escaped = text.replace("\\", "\\\\")
    if key:
        for char in "=: ":
            escaped = escaped.replace(char, "\\" + char)
    elif escaped.startswith(" "):
        escaped = "\\" + escaped
    return escaped
