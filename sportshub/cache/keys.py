"""
Cache key derivation.
"""
import json
from typing import Any, Dict, Optional


def params_key(params: Optional[Dict[str, Any]]) -> str:
    """
    Canonical serialization of a parameter set.

    Keys are sorted and None values dropped, so {"a": 1, "b": 2} and
    {"b": 2, "a": 1} serialize identically.
    """
    cleaned = {k: v for k, v in (params or {}).items() if v is not None}
    return json.dumps(cleaned, sort_keys=True, separators=(",", ":"), default=str)


def build_key(endpoint: str, params: Optional[Dict[str, Any]] = None) -> str:
    """Generate cache key from endpoint and params."""
    return f"{endpoint}:{params_key(params)}"
