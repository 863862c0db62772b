"""
Path Utilities - Forwarding path parsing and position numbering
===============================================================

Centralized path parsing and normalization for MeshCore forwarding
paths. A path is an ordered list of 2-character repeater prefixes, from
the first forwarder to the last one heard by the observer.

Key Concepts
------------
    Original path:
        Every hop uppercased, in received order.

    Effective path:
        The original path with a trailing self-hop removed. When the
        observing node's own prefix is the last element, that element is
        the observer itself rather than a forwarder.

    Position:
        1-indexed distance from the end of the effective path. Position 1
        is the final hop (closest to the observer); higher numbers are
        further upstream.

Example
-------
    >>> parsed = parse_path(["a1", "b2", "c3", "19"], local_hash="0x19")
    >>> parsed.effective
    ['A1', 'B2', 'C3']
    >>> parsed.positions()
    [3, 2, 1]
"""

import json
import logging
from dataclasses import dataclass
from typing import List, Optional

logger = logging.getLogger("Analytics.PathUtils")


@dataclass
class ParsedPath:
    """Normalized forwarding path."""
    effective: List[str]
    original: List[str]
    had_local: bool

    @property
    def effective_length(self) -> int:
        return len(self.effective)

    def positions(self) -> List[int]:
        """Position from end for every element of the effective path."""
        return [
            get_position_from_index(i, self.effective_length)
            for i in range(self.effective_length)
        ]


def get_hash_prefix(identifier: Optional[str]) -> Optional[str]:
    """
    Extract the 2-character uppercase prefix from an identifier.

    Handles formats:
        - "0x19" -> "19"
        - "0xABCDEF12" -> "AB"
        - "abcdef12" -> "AB"
        - "AB" -> "AB"
    """
    if not identifier:
        return None

    h = str(identifier)
    if h.startswith("0x") or h.startswith("0X"):
        return h[2:4].upper()
    return h[:2].upper()


def _coerce_hops(raw_path) -> Optional[list]:
    """Accept a list/tuple of hops or a JSON-encoded list."""
    if isinstance(raw_path, (list, tuple)):
        return list(raw_path)

    if isinstance(raw_path, str):
        try:
            decoded = json.loads(raw_path)
        except (json.JSONDecodeError, ValueError):
            logger.debug(f"Unparseable path string: {raw_path[:50]!r}")
            return None
        return decoded if isinstance(decoded, list) else None

    return None


def parse_path(raw_path, local_hash: Optional[str] = None) -> Optional[ParsedPath]:
    """
    Parse and normalize a forwarding path.

    Args:
        raw_path: Sequence of hop prefixes (or a JSON list string)
        local_hash: Observer's own identifier, e.g. "0x19". Optional; it only
            decides whether a trailing self-hop is trimmed

    Returns:
        ParsedPath, or None if the path is absent or empty
    """
    if not raw_path:
        return None

    hops = _coerce_hops(raw_path)
    if not hops:
        return None

    original = []
    for hop in hops:
        if isinstance(hop, int):
            original.append(f"{hop:02X}")
        else:
            original.append(str(hop).upper())

    local_prefix = get_hash_prefix(local_hash) if local_hash else None
    had_local = local_prefix is not None and original[-1] == local_prefix

    effective = original[:-1] if had_local else list(original)

    return ParsedPath(effective=effective, original=original, had_local=had_local)


def get_position_from_index(index: int, effective_length: int) -> int:
    """
    Convert a 0-based effective path index to a position number.

    Position 1 = last forwarder (closest to the observer), 2 = second to
    last, and so on.
    """
    return effective_length - index


def prefix_matches(prefix: str, identifier: Optional[str]) -> bool:
    """Check whether an identifier (hash, pubkey, prefix) starts with prefix."""
    if not identifier:
        return False
    return get_hash_prefix(identifier) == prefix.upper()
