"""Length-prefix-driven codec for PHP-serialized values.

Parsing is driven by the declared byte lengths, never by scanning for
delimiters, so quotes, braces and semicolons inside string payloads are
handled exactly like PHP's ``unserialize()`` handles them.
"""

import math
import re

from ..exceptions import MalformedSerialization
from .values import (
    SerializedArray,
    SerializedBool,
    SerializedFloat,
    SerializedInt,
    SerializedNull,
    SerializedObject,
    SerializedReference,
    SerializedString,
    SerializedValue,
    from_python,
    to_python,
)

MAX_DEPTH = 256

_INT_RE = re.compile(rb"[+-]?\d+")
_UINT_RE = re.compile(rb"\d+")
_FLOAT_RE = re.compile(rb"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?|-?INF|NAN")
# Where a value may legally start; used to confirm a guessed string terminator.
_TOKEN_START = re.compile(rb"[sabiOdrR]:|N;")

_SCALAR_SHAPES = {
    b"b": re.compile(rb"b:[01];\Z"),
    b"i": re.compile(rb"i:[+-]?\d+;\Z"),
    b"d": re.compile(rb"d:(?:" + _FLOAT_RE.pattern + rb");\Z"),
}
_STRING_HEAD = re.compile(rb's:(\d+):"')
_CONTAINER_HEADS = {
    b"a": re.compile(rb"a:\d+:\{"),
    b"O": re.compile(rb'O:\d+:"[^"]*":\d+:\{'),
}


def as_bytes(raw: str | bytes | bytearray | memoryview) -> bytes:
    """Return ``raw`` as bytes; text is encoded as UTF-8 (lossless for surrogates)."""
    if isinstance(raw, str):
        return raw.encode("utf-8", "surrogateescape")
    return bytes(raw)


def is_serialized(raw) -> bool:
    """Tell whether ``raw`` is a complete PHP-serialized value.

    The common negative case is settled from the first two bytes and the
    terminator alone. Strings are confirmed by checking the declared
    length against the payload size, scalars by their token shape, and
    arrays/objects by a full decode.
    """
    if not isinstance(raw, (str, bytes, bytearray, memoryview)):
        return False
    data = as_bytes(raw).strip()
    if not data:
        return False
    if data == b"N;":
        return True
    if len(data) < 4 or data[1:2] != b":":
        return False

    tag = data[:1]
    if tag in _SCALAR_SHAPES:
        return _SCALAR_SHAPES[tag].match(data) is not None
    if tag == b"s":
        if not data.endswith(b'";'):
            return False
        match = _STRING_HEAD.match(data)
        if match is None:
            return False
        return int(match.group(1)) == len(data) - match.end() - 2
    if tag in _CONTAINER_HEADS:
        if not data.endswith(b"}") or _CONTAINER_HEADS[tag].match(data) is None:
            return False
        try:
            decode(data)
        except MalformedSerialization:
            return False
        return True
    return False


def decode(raw, *, lenient: bool = False) -> SerializedValue:
    """Parse a serialized value into a tree.

    Args:
        raw: Serialized text or bytes (no surrounding whitespace)
        lenient: Recover from wrong string lengths and element counts by
            re-parsing against the actual payload (used by :func:`repair`)

    Raises:
        MalformedSerialization: On any structural problem; never anything else
    """
    if not isinstance(raw, (str, bytes, bytearray, memoryview)):
        raise MalformedSerialization(f"cannot decode value of type {type(raw).__name__}")
    parser = _Parser(as_bytes(raw), lenient=lenient)
    value = parser.parse_value(0)
    if parser.pos != len(parser.data):
        parser.fail("trailing data after value")
    return value


def encode(value: SerializedValue) -> bytes:
    """Serialize a tree back to bytes, recomputing every string length."""
    parts: list[bytes] = []
    _encode_into(value, parts, 0)
    return b"".join(parts)


def serialize(obj) -> bytes:
    """``serialize()`` for plain Python values (see :func:`values.from_python`)."""
    return encode(from_python(obj))


def unserialize(raw):
    """``unserialize()`` into plain Python values (see :func:`values.to_python`)."""
    return to_python(decode(raw))


class _Parser:
    """Cursor over a byte string; one instance per decode call."""

    def __init__(self, data: bytes, lenient: bool = False):
        self.data = data
        self.pos = 0
        self.lenient = lenient

    def fail(self, message: str, offset: int | None = None):
        raise MalformedSerialization(message, self.pos if offset is None else offset)

    def expect(self, token: bytes) -> None:
        if not self.data.startswith(token, self.pos):
            found = self.data[self.pos : self.pos + len(token)]
            self.fail(f"expected {token!r}, found {found!r}")
        self.pos += len(token)

    def read_int(self, signed: bool = True) -> int:
        match = (_INT_RE if signed else _UINT_RE).match(self.data, self.pos)
        if match is None:
            self.fail("expected integer")
        self.pos = match.end()
        return int(match.group())

    def parse_value(self, depth: int) -> SerializedValue:
        if depth > MAX_DEPTH:
            self.fail(f"nesting deeper than {MAX_DEPTH} levels")
        if self.pos >= len(self.data):
            self.fail("unexpected end of data")

        tag = self.data[self.pos : self.pos + 1]
        if tag == b"N":
            self.expect(b"N;")
            return SerializedNull()
        if tag == b"b":
            self.expect(b"b:")
            start = self.pos
            flag = self.read_int()
            if flag not in (0, 1):
                self.fail(f"invalid boolean {flag}", start)
            self.expect(b";")
            return SerializedBool(bool(flag))
        if tag == b"i":
            self.expect(b"i:")
            number = self.read_int()
            self.expect(b";")
            return SerializedInt(number)
        if tag == b"d":
            self.expect(b"d:")
            return self._read_float()
        if tag == b"s":
            self.expect(b"s:")
            return self._read_string()
        if tag in (b"r", b"R"):
            self.pos += 1
            self.expect(b":")
            index = self.read_int(signed=False)
            self.expect(b";")
            return SerializedReference(tag.decode("ascii"), index)
        if tag == b"a":
            self.expect(b"a:")
            count = self.read_int(signed=False)
            self.expect(b":{")
            return SerializedArray(self._read_entries(count, depth))
        if tag == b"O":
            self.expect(b"O:")
            class_name = self._read_class_name()
            self.expect(b":")
            count = self.read_int(signed=False)
            self.expect(b":{")
            return SerializedObject(class_name, self._read_entries(count, depth))
        self.fail(f"unknown type tag {tag!r}")

    def _read_float(self) -> SerializedFloat:
        match = _FLOAT_RE.match(self.data, self.pos)
        if match is None:
            self.fail("invalid float")
        raw = match.group()
        self.pos = match.end()
        self.expect(b";")
        return SerializedFloat(float(raw.decode("ascii")), raw)

    def _read_string(self) -> SerializedString:
        declared = self.read_int(signed=False)
        self.expect(b':"')
        start = self.pos
        end = start + declared
        if self.data.startswith(b'";', end):
            self.pos = end + 2
            return SerializedString(self.data[start:end], declared)

        actual_end = self._find_string_end(start)
        if not self.lenient:
            detail = f", payload is {actual_end - start}" if actual_end is not None else ""
            self.fail(f"declared string length {declared}{detail}", start)
        if actual_end is None:
            self.fail("unterminated string", start)
        self.pos = actual_end + 2
        return SerializedString(self.data[start:actual_end], declared)

    def _find_string_end(self, start: int) -> int | None:
        """Best-effort search for the real ``";`` terminator of a string."""
        index = self.data.find(b'";', start)
        while index != -1:
            after = index + 2
            if (
                after == len(self.data)
                or self.data.startswith(b"}", after)
                or _TOKEN_START.match(self.data, after)
            ):
                return index
            index = self.data.find(b'";', index + 1)
        return None

    def _read_class_name(self) -> bytes:
        declared = self.read_int(signed=False)
        self.expect(b':"')
        start = self.pos
        end = start + declared
        if self.data.startswith(b'":', end):
            self.pos = end + 1
            return self.data[start:end]
        if self.lenient:
            actual_end = self.data.find(b'":', start)
            if actual_end != -1:
                self.pos = actual_end + 1
                return self.data[start:actual_end]
        self.fail(f"declared class name length {declared} does not match", start)

    def _read_entries(self, count: int, depth: int) -> tuple:
        entries = []
        if self.lenient:
            while self.pos < len(self.data) and not self.data.startswith(b"}", self.pos):
                entries.append(self._read_entry(depth))
        else:
            for _ in range(count):
                entries.append(self._read_entry(depth))
        if self.pos >= len(self.data):
            self.fail("unterminated array or object")
        self.expect(b"}")
        return tuple(entries)

    def _read_entry(self, depth: int) -> tuple:
        key_offset = self.pos
        key = self.parse_value(depth + 1)
        if not isinstance(key, (SerializedInt, SerializedString)):
            self.fail("array keys must be integers or strings", key_offset)
        return key, self.parse_value(depth + 1)


def _format_float(number: float) -> bytes:
    """Format a float the way PHP's ``serialize()`` does (serialize_precision -1)."""
    if math.isnan(number):
        return b"NAN"
    if math.isinf(number):
        return b"INF" if number > 0 else b"-INF"
    text = repr(number)
    if "e" in text:
        mantissa, exponent = text.split("e")
        if "." not in mantissa:
            mantissa += ".0"
        power = int(exponent)
        text = f"{mantissa}E{'+' if power >= 0 else '-'}{abs(power)}"
    elif text.endswith(".0"):
        text = text[:-2]
    return text.encode("ascii")


def _encode_into(value: SerializedValue, out: list[bytes], depth: int) -> None:
    if depth > MAX_DEPTH:
        raise MalformedSerialization(f"nesting deeper than {MAX_DEPTH} levels")
    if isinstance(value, SerializedString):
        out.append(b's:%d:"' % len(value.content))
        out.append(value.content)
        out.append(b'";')
    elif isinstance(value, SerializedBool):
        out.append(b"b:1;" if value.value else b"b:0;")
    elif isinstance(value, SerializedInt):
        out.append(b"i:%d;" % value.value)
    elif isinstance(value, SerializedFloat):
        out.append(b"d:" + (value.raw if value.raw is not None else _format_float(value.value)) + b";")
    elif isinstance(value, SerializedNull):
        out.append(b"N;")
    elif isinstance(value, SerializedArray):
        out.append(b"a:%d:{" % len(value.items))
        for key, item in value.items:
            _encode_into(key, out, depth + 1)
            _encode_into(item, out, depth + 1)
        out.append(b"}")
    elif isinstance(value, SerializedObject):
        out.append(b'O:%d:"' % len(value.class_name))
        out.append(value.class_name)
        out.append(b'":%d:{' % len(value.properties))
        for name, prop in value.properties:
            _encode_into(name, out, depth + 1)
            _encode_into(prop, out, depth + 1)
        out.append(b"}")
    elif isinstance(value, SerializedReference):
        out.append(b"%s:%d;" % (value.kind.encode("ascii"), value.index))
    else:
        raise TypeError(f"not a serialized value node: {type(value).__name__}")
