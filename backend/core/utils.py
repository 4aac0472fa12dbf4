"""
Utility functions for the workflow engine.

Includes:
- Duration parsing ("500ms", "5s", "2m", "1h")
- Run id generation
- JSON-safe serialization of step outputs
- UTC datetime helpers
"""

import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

_DURATION_RE = re.compile(r"^(\d+(?:\.\d+)?)(ms|s|m|h)$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def parse_duration(value: Any, default: Optional[float] = None) -> Optional[float]:
    """
    Parse a duration into seconds.

    Bare numbers and plain integer strings are milliseconds. Strings may carry
    a unit suffix: ms, s, m or h.

    Args:
        value: Duration value (number or string)
        default: Returned when the value cannot be parsed

    Returns:
        Duration in seconds, or ``default``
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return value / 1000.0
    if not isinstance(value, str):
        return default

    text = value.strip()
    match = _DURATION_RE.match(text)
    if match:
        return float(match.group(1)) * _DURATION_UNITS[match.group(2)]

    leading = _LEADING_INT_RE.match(text)
    if leading and int(leading.group(1)) != 0:
        return int(leading.group(1)) / 1000.0
    return default


def generate_run_id() -> str:
    """Return a new run id of the form ``run_<12 hex chars>``."""
    return f"run_{uuid.uuid4().hex[:12]}"


def safe_serialize(obj: Any, depth: int = 0) -> Any:
    """Recursively ensure all values are JSON-serializable."""
    if depth > 10:
        return str(obj)
    if obj is None or isinstance(obj, (bool, int, float, str)):
        return obj
    if isinstance(obj, dict):
        return {str(k): safe_serialize(v, depth + 1) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [safe_serialize(v, depth + 1) for v in obj]
    if hasattr(obj, "model_dump"):
        return safe_serialize(obj.model_dump(mode="json"), depth + 1)
    return {"_raw": str(obj)}


def utc_now() -> datetime:
    """
    Get the current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def iso_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return utc_now().isoformat()
