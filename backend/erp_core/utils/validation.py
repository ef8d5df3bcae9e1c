from __future__ import annotations
"""Reusable validation helpers for request payloads.

All helpers raise InvalidArgument so HTTP handlers and the provisioning worker
report malformed input the same way.
"""
from typing import Iterable, Mapping
from erp_core.errors import InvalidArgument


def require_fields(data: Mapping, fields: Iterable[str]) -> Mapping:
    """Ensure each field is present and non-empty (False / 0 count as present)."""
    if not isinstance(data, Mapping):
        raise InvalidArgument('payload must be an object')
    missing = [f for f in fields if data.get(f) in (None, '', [], {})]
    if missing:
        raise InvalidArgument(f"missing required fields: {', '.join(missing)}")
    return data


def validate_choice(value, allowed: Iterable[str], field_name: str = 'status') -> str:
    """Validate that value is inside allowed; returns it to enable inline usage."""
    if value not in allowed:
        raise InvalidArgument(f"{field_name} invalid")
    return value


def validate_email(value, field_name: str = 'email') -> str:
    if not isinstance(value, str) or '@' not in value.strip() or value.strip().startswith('@'):
        raise InvalidArgument(f"{field_name} invalid")
    return value.strip().lower()

__all__ = ['require_fields', 'validate_choice', 'validate_email']
