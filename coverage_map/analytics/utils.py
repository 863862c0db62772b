"""
Shared Utilities for the Coverage Analytics Module
==================================================

Small helpers for prefix validation, repeater identity normalization,
timestamp truncation and null-aware merging of sample fields.

Supported Identifier Formats
----------------------------
    Prefix:         "A1" (2-character hex, normalized to uppercase)
    Public key:     "a1b2c3..." (any length hex, normalized to uppercase)
    Marked hash:    "0xA1" (notational marker is stripped by path_utils)

Timestamps
----------
Sample and repeater times are epoch milliseconds on the wire. The map
frontend receives them truncated to roughly one-minute resolution:

    >>> truncate_time(1700000000000)
    17000000
    >>> from_truncated_time(17000000)
    1700000000000

Usage
-----
    >>> from coverage_map.analytics.utils import validate_prefix, defined_or
    >>> validate_prefix("a1")
    True
    >>> defined_or(max, None, -7.5)
    -7.5
"""

import re
import time
from typing import Any, Callable, Iterable, List, Optional

# Regex patterns for identifier validation
HEX_PATTERN = re.compile(r'^[0-9A-Fa-f]+$')
PREFIX_PATTERN = re.compile(r'^[0-9A-Fa-f]{2}$')

# About 1 minute accuracy (milliseconds)
TIME_TRUNCATION = 100000


def validate_prefix(prefix: Optional[str]) -> bool:
    """
    Validate that a string is a 2-character hex prefix.
    
    Examples:
        >>> validate_prefix("AB")
        True
        >>> validate_prefix("0xAB")
        False
        >>> validate_prefix("A")
        False
    """
    if not prefix:
        return False
    
    return bool(PREFIX_PATTERN.match(str(prefix).strip()))


def normalize_prefix(prefix: Optional[str]) -> Optional[str]:
    """Return the uppercase prefix, or None if it is not 2 hex chars."""
    if not validate_prefix(prefix):
        return None
    return str(prefix).strip().upper()


def normalize_pubkey(pubkey: Optional[str]) -> Optional[str]:
    """
    Normalize a repeater public key to uppercase hex.
    
    Returns None for missing or non-hex keys.
    """
    if not pubkey:
        return None
    
    key = str(pubkey).strip()
    if key.lower().startswith("0x"):
        key = key[2:]
    
    if not key or not HEX_PATTERN.match(key):
        return None
    return key.upper()


def truncate_time(time_ms: Optional[float]) -> int:
    """Truncate an epoch-millisecond timestamp for compact responses."""
    return int(round((time_ms or 0) / TIME_TRUNCATION))


def from_truncated_time(truncated: int) -> int:
    """Inverse of truncate_time() (to TIME_TRUNCATION resolution)."""
    return truncated * TIME_TRUNCATION


def now_ms() -> int:
    """Current time in epoch milliseconds."""
    return int(time.time() * 1000)


def defined_or(fn: Callable[[Any, Any], Any], a: Any, b: Any) -> Any:
    """
    Combine two optional values.
    
    Applies fn when both are present, otherwise returns whichever one
    is not None (or None when both are missing).
    """
    if a is not None and b is not None:
        return fn(a, b)
    if a is None and b is None:
        return None
    return a if a is not None else b


def logical_or(a: Any, b: Any) -> bool:
    return bool(a or b)


def merge_paths(*paths: Optional[Iterable[str]]) -> List[str]:
    """Union of several paths, preserving first-seen order."""
    merged: List[str] = []
    seen = set()
    for path in paths:
        for hop in path or []:
            if hop not in seen:
                seen.add(hop)
                merged.append(hop)
    return merged
