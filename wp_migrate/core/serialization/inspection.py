"""Validation, repair and statistics for serialized values."""

from collections import Counter
from collections.abc import Iterable
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ..exceptions import MalformedSerialization
from .codec import as_bytes, decode, encode, is_serialized
from .values import type_tag

logger = structlog.get_logger()

# Values that start like a serialized array/object/string are candidates
# for validation even when they no longer pass is_serialized().
_CANDIDATE_PREFIXES = (b"a:", b"O:", b"s:")


class SerializationStats(BaseModel):
    """Counts of serialized values seen in a set of cells."""

    total_serialized: int = 0
    valid_serialized: int = 0
    invalid_serialized: int = 0
    serialized_types: dict[str, int] = Field(default_factory=dict)


def looks_serialized(raw: Any) -> bool:
    """Shape-only test: starts with a container/string marker and ends like one.

    Used to spot values that *were* serialized but have since been corrupted
    (wrong length prefixes), which :func:`is_serialized` rejects.
    """
    if not isinstance(raw, (str, bytes, bytearray, memoryview)):
        return False
    data = as_bytes(raw).strip()
    return data.startswith(_CANDIDATE_PREFIXES) and (data.endswith(b"}") or data.endswith(b'";'))


def validate(raw: Any) -> bool:
    """True when ``raw`` is not serialized-looking, or decodes cleanly."""
    if not looks_serialized(raw):
        return True
    try:
        decode(as_bytes(raw).strip())
    except MalformedSerialization:
        return False
    return True


def repair(raw: Any) -> Any:
    """Fix wrong string lengths and element counts in a corrupted value.

    Returns the input unchanged when it already decodes, is not
    serialized-looking, or cannot be recovered by a lenient re-parse.
    """
    if not looks_serialized(raw) or validate(raw):
        return raw
    data = as_bytes(raw)
    stripped = data.strip()
    try:
        tree = decode(stripped, lenient=True)
    except MalformedSerialization as e:
        logger.debug("Serialized value could not be repaired", error=str(e))
        return raw
    lead = data[: len(data) - len(data.lstrip())]
    trail = data[len(data.rstrip()) :]
    fixed = lead + encode(tree) + trail
    return fixed.decode("utf-8", "surrogateescape") if isinstance(raw, str) else fixed


def collect_stats(values: Iterable[Any]) -> SerializationStats:
    """Count valid and corrupted serialized values among ``values``."""
    stats = SerializationStats()
    types: Counter[str] = Counter()
    for value in values:
        if is_serialized(value):
            stats.total_serialized += 1
            stats.valid_serialized += 1
            types[type_tag(decode(as_bytes(value).strip()))] += 1
        elif looks_serialized(value):
            stats.total_serialized += 1
            stats.invalid_serialized += 1
    stats.serialized_types = dict(types)
    return stats
