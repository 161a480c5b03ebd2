"""
Section statistics: Shannon entropy and chi-square over a byte span.

High entropy (close to 8) suggests compressed or encrypted content; a large
chi-square means the byte distribution is far from uniform.
"""
from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass

# Entropy above this suggests packed/compressed
HIGH_ENTROPY_THRESHOLD = 7.0
MAX_ENTROPY = 8.0


@dataclass(frozen=True)
class SectionStats:
    entropy: float
    chi_square: float
    analyzed_bytes: int
    sampled: bool = False


def byte_histogram(data: bytes) -> list[int]:
    counts = [0] * 256
    for value, n in Counter(data).items():
        counts[value] = n
    return counts


def _entropy_from_counts(counts: list[int], total: int) -> float:
    if total == 0:
        return 0.0
    h = 0.0
    for c in counts:
        if c:
            p = c / total
            h -= p * math.log2(p)
    return max(0.0, min(MAX_ENTROPY, h))


def _chi_square_from_counts(counts: list[int], total: int) -> float:
    if total == 0:
        return 0.0
    expected = total / 256
    return sum((c - expected) ** 2 / expected for c in counts)


def shannon_entropy(data: bytes) -> float:
    """Shannon entropy in bits per byte, 0.0 .. 8.0."""
    return _entropy_from_counts(byte_histogram(data), len(data))


def chi_square(data: bytes) -> float:
    """Chi-square statistic against a uniform byte distribution (expected N/256 per value)."""
    return _chi_square_from_counts(byte_histogram(data), len(data))


def sample_span(data, sample_size: int) -> bytes:
    """
    First, middle and last sample_size slices of data, concatenated.
    Only these three slices are read from data.
    """
    n = len(data)
    if n <= sample_size * 3:
        return bytes(data[0:n])
    middle = n // 2 - sample_size // 2
    return b"".join(
        (
            bytes(data[0:sample_size]),
            bytes(data[middle:middle + sample_size]),
            bytes(data[n - sample_size:n]),
        )
    )


def section_statistics(
    data,
    full_data: bool = True,
    large_section_threshold: int = 1024 * 1024,
    sample_size: int = 100 * 1024,
) -> SectionStats:
    """
    Entropy and chi-square for one section span. Unless full_data is
    requested, spans larger than large_section_threshold or 3 x sample_size
    are sampled, so at most 3 x sample_size bytes are read.
    """
    if not full_data and len(data) > min(large_section_threshold, 3 * sample_size):
        span = sample_span(data, sample_size)
    else:
        span = data
    sampled = len(span) < len(data)
    counts = byte_histogram(span)
    total = len(span)
    return SectionStats(
        entropy=_entropy_from_counts(counts, total),
        chi_square=_chi_square_from_counts(counts, total),
        analyzed_bytes=total,
        sampled=sampled,
    )


def format_entropy(value: float) -> str:
    return f"{value:.6f}"


def format_chi_square(value: float) -> str:
    return f"{value:.2f}"


def entropy_label(value: float) -> str:
    if value > HIGH_ENTROPY_THRESHOLD:
        return "Encrypted"
    if value > 6.5:
        return "Packed"
    if value > 5.5:
        return "Compressed"
    return "Normal"
