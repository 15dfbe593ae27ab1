"""Tests for idp_installer.config.properties module."""

import io
from pathlib import Path

import pytest

from idp_installer.config.parser import ConfigError
from idp_installer.config.properties import (
    PropertiesWithComments,
    load_properties,
    parse_key_value,
    parse_properties,
    store_properties,
)

SAMPLE = (
    "# Leading comment\n"
    "\n"
    "idp.entityID = https://idp.example.org/idp/shibboleth\n"
    "#idp.scope = example.org\n"
    "! bang comment\n"
    "idp.sealer.storePassword=secret\r\n"
    "--not a property\n"
    "idp.trailing:   value with spaces   \n"
    "last.line=no newline"
)


def _document(text: str = SAMPLE, protected=None) -> PropertiesWithComments:
    document = PropertiesWithComments(protected)
    document.loads(text)
    return document


class TestParseKeyValue:
    """Tests for parse_key_value."""

    def test_equals_separator(self):
        """Splits on '=' and strips the separator whitespace."""
        assert parse_key_value("a.b = c d") == ("a.b", "c d")

    def test_colon_separator(self):
        """Splits on ':'."""
        assert parse_key_value("name:value") == ("name", "value")

    def test_whitespace_separator(self):
        """Whitespace alone separates key and value."""
        assert parse_key_value("name value") == ("name", "value")

    def test_escaped_separator_in_key(self):
        """Escaped separators belong to the key."""
        assert parse_key_value(r"a\=b=c") == ("a=b", "c")

    def test_comment_and_blank(self):
        """Comments and blank lines are not properties."""
        assert parse_key_value("# a=b") is None
        assert parse_key_value("! a=b") is None
        assert parse_key_value("   ") is None


class TestRoundTrip:
    """Loading then storing without replacements is lossless."""

    def test_loads_dumps_identical(self):
        """Text round-trips exactly."""
        assert _document().dumps() == SAMPLE

    def test_load_store_bytes_identical(self, temp_dir: Path):
        """Bytes round-trip exactly through files."""
        source = temp_dir / "in.properties"
        source.write_bytes(SAMPLE.encode("utf-8"))
        document = PropertiesWithComments()
        document.load(source)
        target = temp_dir / "out.properties"
        document.store(target)

        assert target.read_bytes() == source.read_bytes()

    def test_stream_round_trip(self):
        """Streams round-trip exactly."""
        document = PropertiesWithComments()
        document.load(io.BytesIO(SAMPLE.encode("utf-8")))
        out = io.BytesIO()
        document.store(out)

        assert out.getvalue() == SAMPLE.encode("utf-8")

    def test_non_utf8_bytes_survive(self, temp_dir: Path):
        """Undecodable bytes are written back unchanged."""
        data = b"name=caf\xe9\n"
        source = temp_dir / "latin.properties"
        source.write_bytes(data)
        document = PropertiesWithComments()
        document.load(source)
        out = io.BytesIO()
        document.store(out)

        assert out.getvalue() == data


class TestPropertiesWithComments:
    """Tests for reading and replacing properties."""

    def test_active_and_commented(self):
        """Active and commented properties are both tracked."""
        document = _document()

        assert document.get("idp.entityID") == "https://idp.example.org/idp/shibboleth"
        assert document.get("idp.scope") is None
        assert document.is_commented("idp.scope")
        assert "idp.scope" in document
        assert "--not a property" not in document

    def test_replace_in_place(self):
        """Replacement keeps the line position and renders name=value."""
        document = _document()
        assert document.replace_property("idp.entityID", "https://other/idp") is True

        lines = document.dumps().splitlines()
        assert lines[2] == "idp.entityID=https://other/idp"
        assert lines[0] == "# Leading comment"

    def test_replace_uncomments(self):
        """Replacing a commented property activates it."""
        document = _document()
        document.replace_property("idp.scope", "example.com")

        assert document.get("idp.scope") == "example.com"
        assert "idp.scope=example.com\n" in document.dumps()
        assert "#idp.scope" not in document.dumps()

    def test_replace_keeps_crlf(self):
        """A replaced line keeps its original line ending."""
        document = _document(protected=())
        document.replace_property("idp.sealer.storePassword", "other")

        assert "idp.sealer.storePassword=other\r\n" in document.dumps()

    def test_new_property_appended(self):
        """Unknown names are appended after terminating the last line."""
        document = _document()
        assert document.replace_property("new.name", "v") is False

        assert document.dumps().endswith("last.line=no newline\nnew.name=v\n")

    def test_replaced_value_escaped(self):
        """Backslashes in a replaced value survive being read back."""
        merged = parse_properties("idp.home = C:\\\\shibboleth\\\\idp\n")
        document = _document()
        document.replace_properties(merged)

        assert "idp.home=C:\\\\shibboleth\\\\idp\n" in document.dumps()
        assert parse_properties(document.dumps())["idp.home"] == "C:\\shibboleth\\idp"

    def test_last_occurrence_owns_entry(self):
        """A duplicated name is replaced at its last occurrence."""
        document = _document("a=1\na=2\n")
        document.replace_property("a", "3")

        assert document.dumps() == "a=1\na=3\n"

    def test_protected_name_refused(self):
        """Protected names raise and leave the document unchanged."""
        document = _document(protected={"idp.sealer.storePassword"})

        with pytest.raises(ConfigError, match="cannot be replaced"):
            document.replace_property("idp.sealer.storePassword", "x")
        assert document.dumps() == SAMPLE

    def test_bulk_replace_is_all_or_nothing(self):
        """Bulk replacement checks every name before changing anything."""
        document = _document(protected={"idp.sealer.storePassword"})

        with pytest.raises(ConfigError):
            document.replace_properties({"idp.entityID": "x", "idp.sealer.storePassword": "y"})
        assert document.dumps() == SAMPLE

    def test_name_replacement_on_load(self):
        """Names can be renamed while loading."""
        document = PropertiesWithComments()
        document.load_name_replacement({"old.name": "new.name"})
        document.loads("old.name=value\n#old.name=commented\n")

        assert "new.name" in document
        assert "old.name" not in document

    def test_name_replacement_after_load_refused(self):
        """Name replacements must precede loading."""
        document = _document()

        with pytest.raises(ConfigError):
            document.load_name_replacement({"a": "b"})

    def test_add_comment(self):
        """Comments are appended as '# text'."""
        document = _document("a=1\n")
        document.add_comment("added")

        assert document.dumps() == "a=1\n# added\n"

    def test_names_in_file_order(self):
        """names() lists properties in file order."""
        assert _document("b=1\n#a=2\nc=3\n").names() == ["b", "a", "c"]


class TestParseProperties:
    """Tests for the flat properties reader."""

    def test_last_definition_wins(self):
        """Later definitions override earlier ones."""
        assert parse_properties("a=1\na=2\n") == {"a": "2"}

    def test_continuation_lines(self):
        """Backslash continues a value on the next line."""
        assert parse_properties("a = one, \\\n    two\n") == {"a": "one, two"}

    def test_escapes(self):
        """Escape sequences are decoded."""
        assert parse_properties("a=tab\\there\nb=\\u0041\n") == {"a": "tab\there", "b": "A"}

    def test_comments_ignored(self):
        """Comment lines produce nothing."""
        assert parse_properties("#a=1\n!b=2\n") == {}


class TestStoreProperties:
    """Tests for store_properties / load_properties."""

    def test_round_trip_values(self, temp_dir: Path):
        """Stored values load back unchanged."""
        path = temp_dir / "out.properties"
        store_properties(path, {"a.b": "1", "key with space": " leading", "c": "x\\y"}, comment="header")

        assert load_properties(path) == {"a.b": "1", "key with space": " leading", "c": "x\\y"}
        assert path.read_text().startswith("#header\n#")

    def test_missing_file(self, temp_dir: Path):
        """Missing files raise ConfigError."""
        with pytest.raises(ConfigError):
            load_properties(temp_dir / "missing.properties")
