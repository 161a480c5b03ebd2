"""
Classify a byte prefix as PE (MZ) or something else.
"""
from __future__ import annotations

PE_MAGIC = b"MZ"

# Bytes inspected for classification
CLASSIFY_PREFIX = 8


def is_pe_prefix(prefix: bytes) -> bool:
    """True if the prefix starts with the DOS magic. Only the magic is checked, not the headers."""
    return bytes(prefix[:2]) == PE_MAGIC
