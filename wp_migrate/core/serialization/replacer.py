"""Serialization-aware search and replace.

:class:`StructuralReplacer` applies an ordered :class:`ReplacementMap` to
cell values. Plain values get literal substitution; serialized values are
decoded, every string leaf (keys and property names included) is rewritten,
and the tree is re-encoded so each length prefix matches its new payload.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from ..exceptions import MalformedSerialization
from .codec import as_bytes, decode, encode, is_serialized
from .inspection import looks_serialized
from .values import (
    SerializedArray,
    SerializedObject,
    SerializedString,
    SerializedValue,
)

logger = structlog.get_logger()

# Nested payloads (a serialized string inside a serialized string) are
# rewritten recursively up to this depth.
MAX_NESTED_PAYLOADS = 8


class ReplacementMap:
    """Ordered find -> replace pairs.

    Substitution is a single left-to-right pass over the input. At each
    position the first pair (in map order) whose find string matches wins,
    and replacement text is never scanned again, so ``{"a": "ab"}`` cannot
    loop and ``{"old": "new", "new": "newer"}`` never chains.
    """

    def __init__(self, pairs: Mapping[str, str] | Iterable[tuple[str, str]] | None = None):
        items = pairs.items() if isinstance(pairs, Mapping) else (pairs or [])
        self._pairs: list[tuple[bytes, bytes]] = []
        seen: set[bytes] = set()
        for find, replace in items:
            find_bytes, replace_bytes = as_bytes(find), as_bytes(replace)
            if not find_bytes:
                raise ValueError("find string must not be empty")
            if find_bytes in seen:
                continue
            seen.add(find_bytes)
            self._pairs.append((find_bytes, replace_bytes))

        self._lookup = dict(self._pairs)
        self._pattern = (
            re.compile(b"|".join(re.escape(find) for find, _ in self._pairs))
            if self._pairs
            else None
        )

    @classmethod
    def coerce(cls, value: "ReplacementMap | Mapping[str, str] | Iterable[tuple[str, str]] | None") -> "ReplacementMap":
        return value if isinstance(value, ReplacementMap) else cls(value)

    def __len__(self) -> int:
        return len(self._pairs)

    def __bool__(self) -> bool:
        return bool(self._pairs)

    def __iter__(self):
        return iter(self._pairs)

    def __repr__(self) -> str:
        return f"ReplacementMap({self.as_dict()!r})"

    def as_dict(self) -> dict[str, str]:
        return {
            find.decode("utf-8", "surrogateescape"): replace.decode("utf-8", "surrogateescape")
            for find, replace in self._pairs
        }

    def matches(self, data: bytes) -> bool:
        """Cheap pre-check: does any find string occur in ``data``?"""
        return self._pattern is not None and self._pattern.search(data) is not None

    def substitute(self, data: bytes) -> bytes:
        """Literal substitution in one pass (no structural awareness)."""
        if self._pattern is None:
            return data
        return self._pattern.sub(lambda match: self._lookup[match.group(0)], data)


class StructuralReplacer:
    """Apply a :class:`ReplacementMap` to cells without breaking serialized data."""

    def __init__(self, replacements: ReplacementMap | Mapping[str, str] | None = None):
        self.replacements = ReplacementMap.coerce(replacements)
        self.logger = logger.bind(component="structural_replacer")
        self.fallbacks = 0

    def replace(self, raw: Any) -> Any:
        """Rewrite one value; ``str`` in gives ``str`` out, ``bytes`` gives ``bytes``.

        Values of any other type (numbers, dates, ``None``) are returned as-is.
        """
        if isinstance(raw, str):
            data = raw.encode("utf-8", "surrogateescape")
            result = self._replace_bytes(data, 0)
            return raw if result is data else result.decode("utf-8", "surrogateescape")
        if isinstance(raw, (bytes, bytearray, memoryview)):
            return self._replace_bytes(bytes(raw), 0)
        return raw

    def replace_row(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Rewrite every non-null cell of ``row``; column names are never touched."""
        return {
            column: value if value is None else self.replace(value)
            for column, value in row.items()
        }

    def _replace_bytes(self, data: bytes, nesting: int) -> bytes:
        if not self.replacements.matches(data):
            return data
        if not is_serialized(data):
            if looks_serialized(data):
                self.fallbacks += 1
                self.logger.debug("Corrupted serialized value, using raw replace", size=len(data))
            return self.replacements.substitute(data)

        # Whitespace around a serialized value is not part of it; keep it verbatim.
        stripped = data.strip()
        lead = data[: len(data) - len(data.lstrip())]
        trail = data[len(data.rstrip()) :]
        try:
            tree = decode(stripped)
        except MalformedSerialization as e:
            self.fallbacks += 1
            self.logger.debug("Serialized value failed to decode, using raw replace", error=str(e))
            return self.replacements.substitute(data)
        return lead + encode(self._walk(tree, nesting)) + trail

    def _walk(self, node: SerializedValue, nesting: int) -> SerializedValue:
        if isinstance(node, SerializedString):
            return self._rewrite_string(node, nesting)
        if isinstance(node, SerializedArray):
            return SerializedArray(
                tuple(
                    (self._walk(key, nesting), self._walk(value, nesting))
                    for key, value in node.items
                )
            )
        if isinstance(node, SerializedObject):
            return SerializedObject(
                node.class_name,
                tuple(
                    (self._walk(name, nesting), self._walk(value, nesting))
                    for name, value in node.properties
                ),
            )
        return node

    def _rewrite_string(self, node: SerializedString, nesting: int) -> SerializedString:
        if not self.replacements.matches(node.content):
            return node
        if nesting < MAX_NESTED_PAYLOADS:
            content = self._replace_bytes(node.content, nesting + 1)
        else:
            content = self.replacements.substitute(node.content)
        return node.with_content(content)


def replace(raw: Any, replacements: ReplacementMap | Mapping[str, str]) -> Any:
    """Functional form of :meth:`StructuralReplacer.replace`."""
    return StructuralReplacer(replacements).replace(raw)


def replace_row(row: Mapping[str, Any], replacements: ReplacementMap | Mapping[str, str]) -> dict[str, Any]:
    """Functional form of :meth:`StructuralReplacer.replace_row`."""
    return StructuralReplacer(replacements).replace_row(row)
