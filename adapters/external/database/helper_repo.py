from enum import Enum
from typing import Any, Dict

from core.services.normalize import _norm_lower

_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1


def sanitize_for_mongo(value: Any) -> Any:
    """
    Recursively sanitize values so they are acceptable by MongoDB/BSON.

    - ints outside int64 become strings (wei-scale amounts)
    - enum members become their values
    - dicts, lists and tuples are walked recursively
    """
    if isinstance(value, bool):
        return value

    if isinstance(value, Enum):
        return value.value

    if isinstance(value, int):
        if _INT64_MIN <= value <= _INT64_MAX:
            return value
        return str(value)

    if isinstance(value, dict):
        return {k: sanitize_for_mongo(v) for k, v in value.items()}

    if isinstance(value, list):
        return [sanitize_for_mongo(v) for v in value]

    if isinstance(value, tuple):
        return [sanitize_for_mongo(v) for v in value]

    return value


def lower_fields(doc: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    """
    Lower-case the given top-level string fields in place.
    """
    for k in keys:
        if k in doc and isinstance(doc.get(k), str):
            doc[k] = _norm_lower(doc.get(k))
    return doc


def claim_free_filter(now_ms: int) -> Dict[str, Any]:
    """
    Matches documents with no lease or an expired one.
    """
    return {"$or": [{"claim": None}, {"claim.until": {"$lt": int(now_ms)}}]}
