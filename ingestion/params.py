"""
Request parameter merging: project template + task overrides -> request dict
"""

import json
from typing import Any, Dict, Iterable, Optional

from core.exceptions import DataFormatError
from schemas.fields import RequestParam, parse_params


def _number(value: Any):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    raw = str(value).strip()
    try:
        return int(raw)
    except ValueError:
        return float(raw)


def coerce_param(param: RequestParam, value: Any) -> Any:
    """Convert a template/override value according to the parameter type."""
    try:
        if param.type in ("number", "decimal"):
            return _number(value)
        if param.type == "boolean":
            if isinstance(value, str):
                return value in ("true", "1")
            return bool(value)
        if param.type in ("array", "json"):
            return json.loads(value) if isinstance(value, str) else value
    except ValueError as e:
        raise DataFormatError(
            f"Request parameter {param.key} is not a valid {param.type}",
            context={"field_name": param.key, "field_value": repr(value)[:200]},
            original_exception=e
        )
    return value


def params_to_dict(params: Iterable[Any]) -> Dict[str, Any]:
    """
    Resolve each entry to its value (or declared default) and coerce it.

    Entries with neither a value nor a default are left out.
    """
    result: Dict[str, Any] = {}
    for param in parse_params(params):
        value = param.value if param.value is not None else param.default
        if value is None:
            continue
        result[param.key] = coerce_param(param, value)
    return result


def merge_request_params(
    project_params: Iterable[Any],
    task_params: Optional[Iterable[Any]] = None,
) -> Dict[str, Any]:
    """Project template first, task overrides replace same-keyed entries."""
    merged = params_to_dict(project_params)
    if task_params:
        merged.update(params_to_dict(task_params))
    return merged
