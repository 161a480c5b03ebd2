"""Tests for section statistics: entropy, chi-square and sampling."""
import os

import pytest

from peinspect.parser.entropy import (
    chi_square,
    entropy_label,
    format_chi_square,
    format_entropy,
    sample_span,
    section_statistics,
    shannon_entropy,
)


class SpyBuffer:
    """Sequence of zero bytes of arbitrary length that records how many bytes were sliced out."""

    def __init__(self, size: int):
        self.size = size
        self.bytes_read = 0

    def __len__(self) -> int:
        return self.size

    def __getitem__(self, item):
        assert isinstance(item, slice)
        start, stop, _ = item.indices(self.size)
        n = max(0, stop - start)
        self.bytes_read += n
        return bytes(n)


def test_entropy_empty_is_zero() -> None:
    assert shannon_entropy(b"") == 0.0
    assert chi_square(b"") == 0.0


def test_entropy_single_value_is_zero() -> None:
    assert shannon_entropy(b"\x41" * 500) == 0.0


def test_entropy_uniform_is_eight() -> None:
    assert shannon_entropy(bytes(range(256)) * 8) == pytest.approx(8.0)
    assert chi_square(bytes(range(256)) * 8) == 0.0


def test_entropy_bounds_random() -> None:
    for n in (1, 17, 4096):
        data = os.urandom(n)
        assert 0.0 <= shannon_entropy(data) <= 8.0
        assert chi_square(data) >= 0.0


def test_zero_section_scenario() -> None:
    stats = section_statistics(bytes(1024))
    assert format_entropy(stats.entropy) == "0.000000"
    # all mass in one bin: (1024 - 4)^2/4 + 255 * 4
    assert format_chi_square(stats.chi_square) == "261120.00"


def test_sample_span_small_reads_whole() -> None:
    assert sample_span(b"abc", 10) == b"abc"


def test_sample_span_takes_first_middle_last() -> None:
    data = bytes(range(100))
    assert sample_span(data, 10) == bytes(range(10)) + bytes(range(45, 55)) + bytes(range(90, 100))


def test_sampling_reads_at_most_three_samples() -> None:
    spy = SpyBuffer(200 * 1024 * 1024)
    stats = section_statistics(spy, full_data=False, large_section_threshold=1024 * 1024, sample_size=100 * 1024)
    assert stats.sampled
    assert stats.analyzed_bytes == 3 * 100 * 1024
    assert spy.bytes_read <= 3 * 100 * 1024


def test_full_data_mode_does_not_sample() -> None:
    data = os.urandom(4096)
    stats = section_statistics(data, full_data=True, large_section_threshold=1024, sample_size=256)
    assert not stats.sampled
    assert stats.analyzed_bytes == 4096


def test_small_section_not_sampled_in_large_mode() -> None:
    stats = section_statistics(bytes(512), full_data=False, large_section_threshold=1024, sample_size=256)
    assert not stats.sampled


def test_section_below_threshold_still_bounded_by_samples() -> None:
    spy = SpyBuffer(900 * 1024)
    stats = section_statistics(spy, full_data=False, large_section_threshold=1024 * 1024, sample_size=100 * 1024)
    assert stats.sampled
    assert spy.bytes_read <= 3 * 100 * 1024


@pytest.mark.parametrize(
    "value,label",
    [(7.5, "Encrypted"), (6.8, "Packed"), (6.0, "Compressed"), (3.0, "Normal")],
)
def test_entropy_label(value, label) -> None:
    assert entropy_label(value) == label
