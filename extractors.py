"""Ordered fallback extraction over loosely-shaped API payloads.

Both Notion and note.com return several response shapes for the same
logical value. Instead of branching on types at every call site, callers
list extractors in priority order and take the first one that yields a value.
"""

from typing import Any, Callable, Iterable, Optional

Extractor = Callable[[Any], Any]

_MISSING = object()


def dig(*path: Any) -> Extractor:
    """
    Build an extractor that walks nested dict keys and list indexes.

    Args:
        *path: Keys (for dicts) or integer indexes (for lists)

    Returns:
        Callable returning the value at ``path`` or None when any step is missing
    """
    def extract(payload: Any) -> Any:
        current = payload
        for step in path:
            if isinstance(current, dict):
                current = current.get(step, _MISSING)
            elif isinstance(current, (list, tuple)) and isinstance(step, int):
                current = current[step] if -len(current) <= step < len(current) else _MISSING
            else:
                return None
            if current is _MISSING:
                return None
        return current

    return extract


def _is_empty(value: Any) -> bool:
    return value is None or value == '' or value == [] or value == {}


def first_of(payload: Any, extractors: Iterable[Extractor], default: Optional[Any] = None) -> Any:
    """
    Return the first non-empty value produced by ``extractors``.

    Extractors that raise ``KeyError``, ``IndexError``, ``TypeError`` or
    ``AttributeError`` are treated as having found nothing.

    Args:
        payload: Object to extract from
        extractors: Fallible extraction callables tried in order
        default: Value returned when no extractor yields anything

    Returns:
        Extracted value or ``default``
    """
    for extractor in extractors:
        try:
            value = extractor(payload)
        except (KeyError, IndexError, TypeError, AttributeError):
            continue
        if not _is_empty(value):
            return value
    return default


__all__ = ['Extractor', 'dig', 'first_of']
