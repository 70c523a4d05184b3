"""Dot-path value extraction for recipe document lists.

Paths such as ``data.invoices.id`` are resolved against arbitrary parsed JSON.
When a key is missing from a mapping, every value of that mapping is searched
with the same, unconsumed path, so ``invoices.id`` also finds ids nested one or
more levels deeper than expected. Lists are transparent: every element is
searched with the current path.
"""

from typing import Any


def extract_json_values(data: Any, path: str) -> list[str]:
    """Extract all string values found at ``path`` in ``data``.

    Results keep encounter order and duplicates are kept.
    """
    return _extract(data, path.split("."))


def _extract(data: Any, keys: list[str]) -> list[str]:
    if not keys:
        if isinstance(data, str):
            return [data]
        if isinstance(data, list):
            return [item for item in data if isinstance(item, str)]
        return []

    key, remaining = keys[0], keys[1:]
    results: list[str] = []

    if isinstance(data, dict):
        if key in data:
            results.extend(_extract(data[key], remaining))
        else:
            for value in data.values():
                results.extend(_extract(value, keys))
    elif isinstance(data, list):
        for item in data:
            results.extend(_extract(item, keys))

    return results
