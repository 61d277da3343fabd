"""
Response envelope normalization.

The remote API is inconsistent about how it wraps lists: some endpoints
return a bare array, some {"data": [...]} with pagination metadata, some a
resource-specific field such as {"funis": [...]}. unwrap() tries a fixed,
ordered list of strategies and always returns an Envelope; a payload no
strategy understands becomes an empty envelope rather than an error.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence

EMPTY = "empty"


@dataclass(frozen=True)
class Envelope:
    records: List[Any] = field(default_factory=list)
    strategy: str = EMPTY
    total: Optional[int] = None
    page: Optional[int] = None
    total_pages: Optional[int] = None


class BareArray:
    name = "bare_array"

    def extract(self, payload: Any) -> Optional[List[Any]]:
        return payload if isinstance(payload, list) else None


class DataField:
    name = "data_field"

    def extract(self, payload: Any) -> Optional[List[Any]]:
        if isinstance(payload, dict) and isinstance(payload.get("data"), list):
            return payload["data"]
        return None


class NamedField:
    name = "named_field"

    def __init__(self, field_name: str):
        self.field_name = field_name

    def extract(self, payload: Any) -> Optional[List[Any]]:
        if isinstance(payload, dict) and isinstance(payload.get(self.field_name), list):
            return payload[self.field_name]
        return None


class FirstArrayProperty:
    name = "first_array_property"

    def extract(self, payload: Any) -> Optional[List[Any]]:
        if not isinstance(payload, dict):
            return None
        for value in payload.values():
            if isinstance(value, list):
                return value
        return None


def default_strategies(named_field: Optional[str] = None) -> Sequence:
    """The unwrap order: bare array, data, named field, first array property."""
    strategies = [BareArray(), DataField()]
    if named_field:
        strategies.append(NamedField(named_field))
    strategies.append(FirstArrayProperty())
    return strategies


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        # Non-integral counts are ignored, not truncated
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def unwrap(payload: Any, named_field: Optional[str] = None) -> Envelope:
    """
    Normalize a decoded JSON payload into an Envelope.

    Args:
        payload: Decoded response body (list, dict or anything else).
        named_field: Resource-specific list field to try after "data".

    Returns:
        Envelope with the matched records and any pagination metadata
        present on a dict payload (total, page, totalPages).
    """
    meta = {}
    if isinstance(payload, dict):
        meta = {
            "total": _as_int(payload.get("total")),
            "page": _as_int(payload.get("page")),
            "total_pages": _as_int(payload.get("totalPages")),
        }

    for strategy in default_strategies(named_field):
        records = strategy.extract(payload)
        if records is not None:
            return Envelope(records=list(records), strategy=strategy.name, **meta)
    return Envelope(strategy=EMPTY, **meta)
