"""Tests for serialization-aware search and replace."""

from datetime import date
from decimal import Decimal

import pytest

from wp_migrate.core.serialization import (
    ReplacementMap,
    StructuralReplacer,
    decode,
    is_serialized,
    replace,
    replace_row,
    serialize,
    unserialize,
)

from .conftest import NEW_URL, OLD_URL, widget_value


class TestReplacementMap:
    """Test suite for ReplacementMap."""

    def test_first_entry_in_map_order_wins(self):
        """At one position the earlier pair takes precedence."""
        mapping = ReplacementMap({"example.com": "A", "example": "B"})
        assert mapping.substitute(b"example.com example") == b"A B"

    def test_replacement_text_is_not_rescanned(self):
        """Substitution is a single pass; replacements never chain or loop."""
        assert ReplacementMap({"a": "ab"}).substitute(b"aa") == b"abab"
        assert ReplacementMap({"old": "new", "new": "newer"}).substitute(b"old new") == b"new newer"

    def test_empty_find_is_rejected(self):
        """An empty find string would match everywhere."""
        with pytest.raises(ValueError):
            ReplacementMap({"": "x"})

    def test_coerce_and_as_dict(self):
        """Mappings are coerced and order is preserved."""
        mapping = ReplacementMap.coerce({"b": "1", "a": "2"})
        assert ReplacementMap.coerce(mapping) is mapping
        assert list(mapping.as_dict()) == ["b", "a"]
        assert len(mapping) == 2
        assert not ReplacementMap()


class TestStructuralReplacer:
    """Test suite for StructuralReplacer."""

    def test_equal_length_replacement_keeps_prefix(self):
        """A same-length replacement leaves the prefix unchanged."""
        result = replace(widget_value(), {"old.example.com": "new.example.com"})
        assert result == 'a:2:{s:3:"url";s:22:"http://new.example.com";s:4:"text";s:9:"old stuff";}'

    def test_longer_replacement_recomputes_prefix(self):
        """The emitted length prefix matches the new byte length."""
        result = replace(widget_value(), {OLD_URL: NEW_URL})

        assert f's:27:"{NEW_URL}"' in result
        assert "s:22:" not in result
        assert is_serialized(result)
        assert unserialize(result)["url"] == NEW_URL

    def test_every_string_leaf_is_rewritten(self):
        """Keys, nested arrays and object properties are all rewritten."""
        value = serialize(
            {
                OLD_URL: "key",
                "nested": {"deep": [f"{OLD_URL}/a", f"see {OLD_URL}"]},
            }
        ).decode()
        result = replace(value, {OLD_URL: NEW_URL})
        decoded = unserialize(result)

        assert NEW_URL in decoded
        assert decoded["nested"]["deep"] == {0: f"{NEW_URL}/a", 1: f"see {NEW_URL}"}

    def test_object_properties_and_class_name(self):
        """Object class names are kept; property values are rewritten."""
        value = f'O:8:"stdClass":1:{{s:4:"link";s:{len(OLD_URL)}:"{OLD_URL}";}}'
        result = replace(value, {OLD_URL: NEW_URL})

        tree = decode(result)
        assert tree.class_name == b"stdClass"
        assert tree.properties[0][1].content == NEW_URL.encode()

    def test_nested_serialized_payload(self):
        """A serialized string inside a serialized string is fixed at both levels."""
        inner = widget_value()
        outer = serialize({"payload": inner}).decode()
        result = replace(outer, {OLD_URL: NEW_URL})

        inner_result = unserialize(result)["payload"]
        assert is_serialized(inner_result)
        assert unserialize(inner_result)["url"] == NEW_URL

    def test_plain_values_use_literal_substitution(self):
        """Non-serialized text is substituted everywhere it occurs."""
        assert replace(f"Visit {OLD_URL} or {OLD_URL}/blog", {OLD_URL: NEW_URL}) == (
            f"Visit {NEW_URL} or {NEW_URL}/blog"
        )

    def test_unchanged_value_is_returned_as_is(self):
        """Values without a match are returned untouched."""
        value = "nothing to see"
        assert replace(value, {OLD_URL: NEW_URL}) is value

    def test_malformed_serialized_value_falls_back(self):
        """A wrong length prefix falls back to raw substitution and is counted."""
        corrupted = 'a:1:{s:3:"url";s:20:"http://old.example.com";}'
        replacer = StructuralReplacer({OLD_URL: NEW_URL})
        result = replacer.replace(corrupted)

        assert result == 'a:1:{s:3:"url";s:20:"http://new-site.example.org";}'
        assert replacer.fallbacks == 1

    def test_bytes_in_bytes_out(self):
        """Bytes cells stay bytes."""
        result = replace(widget_value().encode(), {OLD_URL: NEW_URL})
        assert isinstance(result, bytes)
        assert NEW_URL.encode() in result

    def test_whitespace_around_serialized_value(self):
        """Whitespace around a serialized value is preserved."""
        result = replace(f"  {widget_value()}\n", {OLD_URL: NEW_URL})
        assert result.startswith("  a:2:")
        assert result.endswith("}\n")
        assert is_serialized(result)

    def test_non_text_cells_pass_through(self):
        """Numbers, decimals, dates and None are never touched."""
        replacer = StructuralReplacer({"1": "2"})
        for value in [1, 1.5, Decimal("1.1"), date(2021, 1, 1), None]:
            assert replacer.replace(value) is value


class TestReplaceRow:
    """Test suite for row-level replacement."""

    def test_column_names_are_not_touched(self):
        """Only cell values are rewritten."""
        row = {"old.example.com": OLD_URL, "option_value": widget_value(), "autoload": None}
        result = replace_row(row, {OLD_URL: NEW_URL, "old.example.com": "x"})

        assert list(result) == ["old.example.com", "option_value", "autoload"]
        assert result["old.example.com"] == NEW_URL
        assert unserialize(result["option_value"])["url"] == NEW_URL
        assert result["autoload"] is None
