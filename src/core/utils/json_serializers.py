# Copyright (c) 2024-2026 nickdsmith. All Rights Reserved.
# SPDX-License-Identifier: PROPRIETARY
#
# This file is proprietary and confidential. Unauthorized copying of this file,
# via any medium is strictly prohibited.

"""Shared JSON serialization utilities for type-safe JSON encoding."""

from collections.abc import Mapping
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any


def _serialize_known_type(obj: Any) -> tuple[bool, Any]:
    """Try to serialize by known type. Returns (handled, result)."""
    if isinstance(obj, (datetime, date)):
        return True, obj.isoformat()
    if isinstance(obj, Decimal):
        return True, float(obj)
    if isinstance(obj, Path):
        return True, str(obj)
    if isinstance(obj, Enum):
        return True, obj.value
    if isinstance(obj, Mapping):
        return True, dict(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return True, list(obj)
    return False, None


def json_serializer(obj: Any) -> Any:
    """
    Type-safe JSON serializer used for log lines and outbound payloads.

    Keeps numbers numeric instead of converting everything to strings:
    - datetime/date -> ISO 8601 string
    - Decimal -> float (reference store NUMERIC columns)
    - Path -> string
    - Enum -> value
    - read-only mappings (reference snapshots) -> dict
    - sets/tuples -> list
    - Everything else -> string (fallback)

    Args:
        obj: Object to serialize

    Returns:
        JSON-serializable representation with proper types
    """
    handled, result = _serialize_known_type(obj)
    if handled:
        return result
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    return str(obj)


__all__ = ["json_serializer"]
