"""Field path helpers for opaque JSON content documents.

Paths use dotted keys with bracketed array indices, matching the notation the
assistant and the review tooling use:

    hero.title
    hero.stats.items[0].label
    [2].answer            (top-level array documents)

Keys containing ".", "[" or "]" cannot be written in this notation. Such
fields are never addressed: format_field_path refuses them and
iter_string_leaves skips them.
"""

import logging
import re
from typing import Any, List, Union

_INDEX_RE = re.compile(r"\[(\d+)\]")
_MISSING = object()
_RESERVED = (".", "[", "]")

logger = logging.getLogger(__name__)

PathPart = Union[str, int]


def parse_field_path(field: str) -> List[PathPart]:
    """Split a field path into keys (str) and array indices (int).

    Raises:
        ValueError: if the path is empty or malformed
    """
    if not field or not field.strip():
        raise ValueError("Field path must not be empty")

    parts: List[PathPart] = []
    for segment in field.strip().split("."):
        if segment == "":
            raise ValueError(f"Malformed field path: {field!r}")
        bracket = segment.find("[")
        key = segment if bracket == -1 else segment[:bracket]
        rest = "" if bracket == -1 else segment[bracket:]
        if key:
            parts.append(key)
        if rest:
            indices = _INDEX_RE.findall(rest)
            # Every character of the remainder must be consumed by [n] groups
            if "".join(f"[{i}]" for i in indices) != rest:
                raise ValueError(f"Malformed array index in field path: {field!r}")
            parts.extend(int(i) for i in indices)
    return parts


def is_addressable_key(key: Any) -> bool:
    return isinstance(key, str) and key != "" and not any(ch in key for ch in _RESERVED)


def format_field_path(parts: List[PathPart]) -> str:
    """Join path parts into dotted notation.

    Raises:
        ValueError: if a key cannot be expressed in the notation
    """
    out = ""
    for part in parts:
        if isinstance(part, int):
            out += f"[{part}]"
        else:
            if not is_addressable_key(part):
                raise ValueError(f"Key {part!r} cannot be written as a field path")
            out += f".{part}" if out else part
    return out


def _step(current: Any, part: PathPart) -> Any:
    if isinstance(part, int):
        if isinstance(current, list) and 0 <= part < len(current):
            return current[part]
        return _MISSING
    if isinstance(current, dict) and part in current:
        return current[part]
    return _MISSING


def has_field(document: Any, field: str) -> bool:
    current = document
    for part in parse_field_path(field):
        current = _step(current, part)
        if current is _MISSING:
            return False
    return True


def get_field(document: Any, field: str) -> Any:
    """Return the value at `field`.

    Raises:
        KeyError: when any step of the path does not exist
    """
    current = document
    for part in parse_field_path(field):
        current = _step(current, part)
        if current is _MISSING:
            raise KeyError(field)
    return current


def set_field(document: Any, field: str, value: Any) -> None:
    """Replace the value at an existing `field` in place.

    Only existing leaves are replaced; the document's shape never changes.

    Raises:
        KeyError: when the path (including the final key) does not exist
    """
    parts = parse_field_path(field)
    parent = document
    for part in parts[:-1]:
        parent = _step(parent, part)
        if parent is _MISSING:
            raise KeyError(field)
    last = parts[-1]
    if _step(parent, last) is _MISSING:
        raise KeyError(field)
    parent[last] = value


def iter_string_leaves(document: Any, prefix: List[PathPart] = None):
    """Yield (field_path, value) for every string leaf in the document."""
    prefix = prefix or []
    if isinstance(document, dict):
        for key, value in document.items():
            if not is_addressable_key(key):
                logger.warning("Skipping field %r under %r: key cannot be written as a field path", key, format_field_path(prefix))
                continue
            yield from iter_string_leaves(value, prefix + [key])
    elif isinstance(document, list):
        for index, value in enumerate(document):
            yield from iter_string_leaves(value, prefix + [index])
    elif isinstance(document, str) and prefix:
        yield format_field_path(prefix), document
