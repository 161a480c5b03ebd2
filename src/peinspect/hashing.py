"""
Whole-file hashes for inputs handed off by the classifier (and for cache keys).
"""
from __future__ import annotations

import hashlib
from typing import Iterable

ALGORITHMS = ("md5", "sha1", "sha256")


def compute_hashes(chunks: Iterable[bytes]) -> dict[str, str]:
    """md5/sha1/sha256 hex digests, updated incrementally chunk by chunk."""
    digests = {name: hashlib.new(name) for name in ALGORITHMS}
    for chunk in chunks:
        for d in digests.values():
            d.update(chunk)
    return {name: d.hexdigest() for name, d in digests.items()}
