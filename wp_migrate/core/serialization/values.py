"""Tagged value model for PHP-serialized data.

Every decoded unit is one of the node classes below. Nodes are immutable;
transformations build new nodes, so a decoded tree can be shared safely
between the replacer and validation code.
"""

from dataclasses import dataclass, field
from typing import Union


@dataclass(frozen=True, slots=True)
class SerializedNull:
    """``N;``"""


@dataclass(frozen=True, slots=True)
class SerializedBool:
    """``b:0;`` / ``b:1;``"""

    value: bool


@dataclass(frozen=True, slots=True)
class SerializedInt:
    """``i:<n>;``"""

    value: int


@dataclass(frozen=True, slots=True)
class SerializedFloat:
    """``d:<n>;``

    ``raw`` keeps the original token text so decode/encode is lossless even
    for representations Python would print differently (``1.0E+25``).
    """

    value: float
    raw: bytes | None = field(default=None, compare=False)


@dataclass(frozen=True, slots=True)
class SerializedString:
    """``s:<len>:"<content>";``

    ``declared_length`` is the prefix found in the source data. Encoding
    always emits ``len(content)``; use :meth:`with_content` after mutation.
    """

    content: bytes
    declared_length: int = -1

    def __post_init__(self) -> None:
        if self.declared_length < 0:
            object.__setattr__(self, "declared_length", len(self.content))

    def with_content(self, content: bytes) -> "SerializedString":
        return SerializedString(content, len(content))

    @property
    def length_ok(self) -> bool:
        return self.declared_length == len(self.content)


@dataclass(frozen=True, slots=True)
class SerializedReference:
    """``r:<n>;`` or ``R:<n>;`` back-reference, kept opaque."""

    kind: str
    index: int


ArrayKey = Union[SerializedInt, SerializedString]


@dataclass(frozen=True, slots=True)
class SerializedArray:
    """``a:<count>:{<key><value>...}`` with insertion order preserved."""

    items: tuple[tuple[ArrayKey, "SerializedValue"], ...] = ()

    def to_python(self) -> dict:
        return {to_python(key): to_python(value) for key, value in self.items}


@dataclass(frozen=True, slots=True)
class SerializedObject:
    """``O:<len>:"<class>":<count>:{<name><value>...}``

    Property names are kept as raw bytes so private/protected visibility
    markers (``\\0Class\\0name``, ``\\0*\\0name``) survive untouched.
    """

    class_name: bytes
    properties: tuple[tuple[ArrayKey, "SerializedValue"], ...] = ()


SerializedValue = Union[
    SerializedNull,
    SerializedBool,
    SerializedInt,
    SerializedFloat,
    SerializedString,
    SerializedArray,
    SerializedObject,
    SerializedReference,
]


def type_tag(value: SerializedValue) -> str:
    """Return the single-letter PHP type marker for ``value``."""
    if isinstance(value, SerializedNull):
        return "N"
    if isinstance(value, SerializedBool):
        return "b"
    if isinstance(value, SerializedInt):
        return "i"
    if isinstance(value, SerializedFloat):
        return "d"
    if isinstance(value, SerializedString):
        return "s"
    if isinstance(value, SerializedArray):
        return "a"
    if isinstance(value, SerializedObject):
        return "O"
    return value.kind


def to_python(value: SerializedValue):
    """Convert a tree to plain Python values (debugging and test helper).

    Strings are decoded as UTF-8 with ``surrogateescape``; objects become
    ``{"__class__": name, **properties}``.
    """
    if isinstance(value, SerializedNull):
        return None
    if isinstance(value, (SerializedBool, SerializedInt, SerializedFloat)):
        return value.value
    if isinstance(value, SerializedString):
        return value.content.decode("utf-8", "surrogateescape")
    if isinstance(value, SerializedArray):
        return value.to_python()
    if isinstance(value, SerializedObject):
        result = {"__class__": value.class_name.decode("utf-8", "surrogateescape")}
        for name, prop in value.properties:
            result[to_python(name)] = to_python(prop)
        return result
    return f"{value.kind}:{value.index}"


def from_python(obj) -> SerializedValue:
    """Build a tree from plain Python values, mirroring PHP's ``serialize()``.

    ``dict`` and ``list``/``tuple`` become arrays (lists get integer keys);
    ``str`` is encoded as UTF-8.
    """
    if obj is None:
        return SerializedNull()
    if isinstance(obj, bool):
        return SerializedBool(obj)
    if isinstance(obj, int):
        return SerializedInt(obj)
    if isinstance(obj, float):
        return SerializedFloat(obj)
    if isinstance(obj, bytes):
        return SerializedString(obj)
    if isinstance(obj, str):
        return SerializedString(obj.encode("utf-8", "surrogateescape"))
    if isinstance(obj, (list, tuple)):
        obj = dict(enumerate(obj))
    if isinstance(obj, dict):
        items = []
        for key, item in obj.items():
            array_key = SerializedInt(key) if isinstance(key, int) else from_python(str(key))
            items.append((array_key, from_python(item)))
        return SerializedArray(tuple(items))
    raise TypeError(f"Cannot serialize value of type {type(obj).__name__}")
