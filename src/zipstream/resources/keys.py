"""Content-derived record keys."""

import hashlib
import json
from collections.abc import Mapping
from typing import Any


def canonical_value(value: Any) -> str:
    """Render one record value for fingerprinting.

    None and booleans use their JSON literals, containers their sorted-key
    JSON text; everything else uses str().
    """
    if value is None or isinstance(value, bool):
        return json.dumps(value)
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return str(value)


def derive_key(record: Mapping[str, Any]) -> str:
    """SHA-256 hex digest of the record's values concatenated in field-name order."""
    material = "".join(canonical_value(record[name]) for name in sorted(record))
    return hashlib.sha256(material.encode("utf-8")).hexdigest()
