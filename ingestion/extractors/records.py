"""
Record list extraction from possibly nested API responses
"""

from typing import Any, List, Optional, Sequence


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else [value]


def _walk(payload: Any, chain: Sequence[str]) -> Any:
    current = payload
    for step in chain:
        if not isinstance(current, dict) or step not in current:
            return None
        current = current[step]
    return current


def extract_records(payload: Any, target_chain: Optional[Sequence[str]] = None) -> List[Any]:
    """
    Pull the record list out of a response body.

    Order:
        1. ``target_chain`` path, when configured and present
        2. the payload itself if it is a list
        3. ``data`` if it is a list
        4. ``data.list`` (wrapped if not a list)
        5. ``list`` (wrapped if not a list)
        6. any other dict as a single record
        7. nothing
    """
    if target_chain:
        target = _walk(payload, target_chain)
        if target is not None:
            return _as_list(target)

    if isinstance(payload, list):
        return payload

    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, list):
            return data
        if isinstance(data, dict) and data.get("list") is not None:
            return _as_list(data["list"])
        if payload.get("list") is not None:
            return _as_list(payload["list"])
        return [payload]

    return []
