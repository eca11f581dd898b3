"""Query key canonicalisation and matching."""

from collections.abc import Iterable

from querylab.types import KeySegment, QueryKey

_ESCAPE_MAP = {"\\": "\\\\", ":": "\\:", "#": "\\#"}
_UNESCAPE_MAP = {"\\\\": "\\", "\\:": ":", "\\#": "#"}


def normalize_key(key: QueryKey) -> tuple[KeySegment, ...]:
    """Validate a query key and return it as a tuple.

    A bare string is treated as a one-segment key. The empty key is rejected:
    it would share its canonical form with ``[""]``.
    """
    if isinstance(key, str):
        key = (key,)
    segments = tuple(key)
    if not segments:
        raise ValueError("Query key must have at least one segment")
    for segment in segments:
        # bool is an int subclass but has no stable identity as a segment
        if isinstance(segment, bool) or not isinstance(segment, (str, int)):
            raise TypeError(
                f"Query key segments must be str or int, got {type(segment).__name__}"
            )
    return segments


def canonicalize_key(key: QueryKey) -> str:
    """Serialize a query key to its canonical string.

    Segments are joined with ``:``. Integer segments carry a ``#`` marker so
    that ``["todo", 1]`` and ``["todo", "1"]`` stay distinct.

    Example:
        canonicalize_key(["data", "mock-posts"])  # "data:mock-posts"
        canonicalize_key(["todo", 1])             # "todo:#1"
    """

    def escape(part: KeySegment) -> str:
        if isinstance(part, int):
            return f"#{part}"
        result = part
        for char, escaped in _ESCAPE_MAP.items():
            result = result.replace(char, escaped)
        return result

    return ":".join(escape(p) for p in normalize_key(key))


def parse_key(canonical: str) -> tuple[KeySegment, ...]:
    """Parse a canonical key string back into its segments."""
    parts: list[KeySegment] = []
    current = ""
    is_int = False
    i = 0

    def flush() -> None:
        parts.append(int(current) if is_int else current)

    while i < len(canonical):
        char = canonical[i]
        if char == "\\":
            escaped = canonical[i : i + 2]
            if escaped in _UNESCAPE_MAP:
                current += _UNESCAPE_MAP[escaped]
                i += 2
                continue
            current += char
            i += 1
        elif char == "#" and current == "" and not is_int:
            is_int = True
            i += 1
        elif char == ":":
            flush()
            current = ""
            is_int = False
            i += 1
        else:
            current += char
            i += 1

    flush()
    return tuple(parts)


def is_key_prefix(parent: QueryKey, child: QueryKey) -> bool:
    """Check if parent is a prefix of child (for invalidation)."""
    parent_segments = normalize_key(parent)
    child_segments = normalize_key(child)
    if len(parent_segments) > len(child_segments):
        return False
    return all(
        type(a) is type(b) and a == b
        for a, b in zip(parent_segments, child_segments)
    )


def matching_keys(
    pattern: QueryKey, keys: Iterable[QueryKey], *, exact: bool = False
) -> list[tuple[KeySegment, ...]]:
    """Return the keys matched by ``pattern``, by prefix unless ``exact``."""
    target = canonicalize_key(pattern)
    matched = []
    for key in keys:
        if exact:
            if canonicalize_key(key) == target:
                matched.append(normalize_key(key))
        elif is_key_prefix(pattern, key):
            matched.append(normalize_key(key))
    return matched
