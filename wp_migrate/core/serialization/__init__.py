"""Serialization-safe search and replace for PHP-serialized data."""

from .codec import decode, encode, is_serialized, serialize, unserialize  # noqa: F401
from .inspection import SerializationStats, collect_stats, looks_serialized, repair, validate  # noqa: F401
from .replacer import ReplacementMap, StructuralReplacer, replace, replace_row  # noqa: F401
from .values import (  # noqa: F401
    SerializedArray,
    SerializedBool,
    SerializedFloat,
    SerializedInt,
    SerializedNull,
    SerializedObject,
    SerializedReference,
    SerializedString,
    SerializedValue,
)

__all__ = [
    "decode",
    "encode",
    "is_serialized",
    "serialize",
    "unserialize",
    "SerializationStats",
    "collect_stats",
    "looks_serialized",
    "repair",
    "validate",
    "ReplacementMap",
    "StructuralReplacer",
    "replace",
    "replace_row",
    "SerializedArray",
    "SerializedBool",
    "SerializedFloat",
    "SerializedInt",
    "SerializedNull",
    "SerializedObject",
    "SerializedReference",
    "SerializedString",
    "SerializedValue",
]
