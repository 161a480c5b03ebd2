"""Tests for the progressive analysis orchestrator."""
import asyncio
import hashlib
import struct

import pytest

from conftest import RX, build_pe
from peinspect.cache import MemoryCache
from peinspect.config import AnalysisConfig
from peinspect.errors import StorageWriteFailure
from peinspect.external import BaseExternalAnalyzer
from peinspect.orchestrator import ProgressiveAnalyzer, run
from peinspect.parser import pipeline
from peinspect.parser.pipeline import DirectParser
from peinspect.sources import BytesSource

MB = 1024 * 1024


class FakeAnalyzer(BaseExternalAnalyzer):
    def __init__(self, payload=None, exc=None, is_available=True):
        self.payload = payload
        self.exc = exc
        self.is_available = is_available
        self.calls = 0

    @property
    def name(self) -> str:
        return "fake"

    def available(self) -> bool:
        return self.is_available

    def analyze(self, data):
        self.calls += 1
        if self.exc is not None:
            raise self.exc
        return self.payload


class LazySource:
    """A huge file that is a real PE prefix followed by zeros; counts bytes handed out."""

    def __init__(self, prefix: bytes, size: int):
        self.prefix = prefix
        self._size = size
        self.bytes_read = 0

    @property
    def size(self) -> int:
        return self._size

    def read(self, offset: int, length: int) -> bytes:
        length = max(0, min(length, self._size - offset))
        self.bytes_read += length
        head = self.prefix[offset:offset + length]
        return head + bytes(length - len(head))


class FailingCache(MemoryCache):
    def put(self, key, result):
        raise StorageWriteFailure("quota exceeded")


def _many_sections(n=8):
    return build_pe([(f".s{i}", bytes([i]) * 512 + bytes(range(256)), RX) for i in range(n)])


def _analyze(analyzer, data_or_source, **kwargs):
    source = data_or_source if hasattr(data_or_source, "read") else BytesSource(data_or_source)
    seen = []
    report = asyncio.run(analyzer.analyze(source, progress=seen.append, **kwargs))
    return report, seen


def _assert_progress(seen):
    assert seen == sorted(seen)
    assert seen[-1] == 100
    assert all(0 <= v <= 100 for v in seen)


def test_small_file_direct(pe_bytes) -> None:
    report, seen = _analyze(ProgressiveAnalyzer(external=FakeAnalyzer()), pe_bytes)
    assert report.is_pe
    assert not report.is_large_file
    assert report.strategy == "direct"
    assert report.error is None
    assert [s.name for s in report.analysis.sections] == [".text", ".data", ".idata"]
    assert report.analysis.file_size == len(pe_bytes)
    assert 10 in seen and 85 in seen
    _assert_progress(seen)


def test_small_file_does_not_call_external_by_default(pe_bytes) -> None:
    fake = FakeAnalyzer(exc=RuntimeError("should not run"))
    report, _ = _analyze(ProgressiveAnalyzer(external=fake), pe_bytes)
    assert fake.calls == 0
    assert report.strategy == "direct"


def test_delegated_small_file_falls_back_to_direct(pe_bytes) -> None:
    fake = FakeAnalyzer(exc=RuntimeError("crash"))
    config = AnalysisConfig(delegate_small_files=True)
    report, seen = _analyze(ProgressiveAnalyzer(config, external=fake), pe_bytes)
    assert fake.calls == 1
    assert report.strategy == "direct"
    assert len(report.analysis.sections) == 3
    _assert_progress(seen)


def test_non_pe_goes_to_hashing() -> None:
    data = b"hello world"
    report, seen = _analyze(ProgressiveAnalyzer(external=FakeAnalyzer()), data)
    assert not report.is_pe
    assert report.strategy == "not_applicable"
    assert report.analysis is None
    assert report.hashes["md5"] == hashlib.md5(data).hexdigest()
    assert report.hashes["sha256"] == hashlib.sha256(data).hexdigest()
    assert seen == [10, 100]


def test_truncated_mz_gives_error_only_result() -> None:
    buf = bytearray(64)
    buf[0:2] = b"MZ"
    struct.pack_into("<I", buf, 0x3C, 0x1000)
    report, seen = _analyze(ProgressiveAnalyzer(external=FakeAnalyzer()), bytes(buf))
    assert report.is_pe
    assert report.strategy == "failed"
    assert report.analysis.file_size == 64
    assert report.analysis.sections == []
    assert report.analysis.error
    _assert_progress(seen)


def test_large_file_uses_external() -> None:
    image = _many_sections(2)
    payload = {"header": {"file": {"machine": {"hex": "0x8664", "decimal": 0x8664}}}, "sections": [{"name": ".x"}]}
    fake = FakeAnalyzer(payload=payload)
    config = AnalysisConfig(large_file_threshold=1024)
    report, seen = _analyze(ProgressiveAnalyzer(config, external=fake), image)
    assert report.is_large_file
    assert report.strategy == "external"
    assert report.analysis.machine_type == "IMAGE_FILE_MACHINE_AMD64"
    assert report.analysis.file_size == len(image)
    assert report.analysis.raw_payload == payload
    _assert_progress(seen)


@pytest.mark.parametrize(
    "fake",
    [
        FakeAnalyzer(exc=RuntimeError("native module crashed")),
        FakeAnalyzer(payload={"not": "a pe result"}),
        FakeAnalyzer(payload=["wrong", "type"]),
    ],
)
def test_large_file_degraded_when_external_fails(fake) -> None:
    image = _many_sections(8)
    config = AnalysisConfig(large_file_threshold=1024)
    report, seen = _analyze(ProgressiveAnalyzer(config, external=fake), image)
    assert report.strategy == "degraded"
    sections = report.analysis.sections
    assert len(sections) == 6
    assert [s.name for s in sections[:5]] == [".s0", ".s1", ".s2", ".s3", ".s4"]
    assert sections[5].name == "[3 more sections - skipped for performance]"
    assert "header information" in report.analysis.error
    assert report.error == report.analysis.error
    _assert_progress(seen)


def test_large_file_force_full_runs_direct() -> None:
    image = _many_sections(8)
    config = AnalysisConfig(large_file_threshold=1024)
    fake = FakeAnalyzer(exc=RuntimeError("boom"))
    report, _ = _analyze(ProgressiveAnalyzer(config, external=fake), image, force_full=True)
    assert report.strategy == "direct"
    assert len(report.analysis.sections) == 8
    assert report.analysis.error is None


def test_200mb_file_with_failing_external_reads_header_only() -> None:
    source = LazySource(_many_sections(8), 200 * MB)
    config = AnalysisConfig()
    report, seen = _analyze(ProgressiveAnalyzer(config, external=FakeAnalyzer(is_available=False)), source)
    assert report.is_large_file
    assert report.strategy == "degraded"
    assert report.analysis.file_size == 200 * MB
    assert len(report.analysis.sections) <= 6
    assert "Only header information analyzed" in report.analysis.error
    assert source.bytes_read <= config.header_chunk_size + 8
    _assert_progress(seen)


def test_degraded_path_samples_mid_size_section(monkeypatch) -> None:
    calls = []
    original = pipeline.section_statistics

    def recording(data, **kwargs):
        stats = original(data, **kwargs)
        calls.append((len(data), stats.analyzed_bytes, stats.sampled))
        return stats

    monkeypatch.setattr(pipeline, "section_statistics", recording)
    image = build_pe([(".big", bytes(range(256)) * 3600, RX)])
    config = AnalysisConfig(large_file_threshold=1024)
    report, _ = _analyze(ProgressiveAnalyzer(config, external=FakeAnalyzer(is_available=False)), image)
    assert report.strategy == "degraded"
    assert calls == [(900 * 1024, 3 * config.sample_size, True)]
    assert report.analysis.sections[0].entropy == "8.000000"


def test_large_file_parse_is_bounded_by_section_caps() -> None:
    parser = DirectParser(AnalysisConfig(max_sections=12))
    parsed = parser.parse(_many_sections(11), large_file=True)
    assert len(parsed.sections) == 11
    assert parsed.skipped_sections == 0
    capped = parser.parse(_many_sections(11), large_file=True, section_cap=5)
    assert len(capped.sections) == 5
    assert capped.skipped_sections == 6


def test_cancellation_stops_reading(pe_bytes) -> None:
    report, seen = _analyze(ProgressiveAnalyzer(external=FakeAnalyzer()), pe_bytes, still_wanted=lambda: False)
    assert report.strategy == "failed"
    assert report.error.startswith("Analysis cancelled")
    assert report.analysis.file_size == len(pe_bytes)
    _assert_progress(seen)


def test_progress_callback_errors_are_ignored(pe_bytes) -> None:
    def explode(value):
        raise ValueError("ui went away")

    report = asyncio.run(ProgressiveAnalyzer(external=FakeAnalyzer()).analyze(BytesSource(pe_bytes), progress=explode))
    assert report.strategy == "direct"


class TestCaching:
    def test_result_is_cached_and_reused(self, pe_bytes) -> None:
        cache = MemoryCache()
        analyzer = ProgressiveAnalyzer(external=FakeAnalyzer(), cache=cache)
        first, _ = _analyze(analyzer, pe_bytes, cache_key="k1")
        assert first.strategy == "direct"
        assert len(cache) == 1

        second, seen = _analyze(analyzer, pe_bytes, cache_key="k1")
        assert second.strategy == "cached"
        assert second.analysis.essential() == first.analysis.essential()
        _assert_progress(seen)

    def test_degraded_results_are_not_cached(self) -> None:
        cache = MemoryCache()
        config = AnalysisConfig(large_file_threshold=1024)
        analyzer = ProgressiveAnalyzer(config, external=FakeAnalyzer(exc=RuntimeError("x")), cache=cache)
        report, _ = _analyze(analyzer, _many_sections(8), cache_key="k2")
        assert report.strategy == "degraded"
        assert len(cache) == 0

    def test_storage_failure_is_not_propagated(self, pe_bytes) -> None:
        analyzer = ProgressiveAnalyzer(external=FakeAnalyzer(), cache=FailingCache())
        report, seen = _analyze(analyzer, pe_bytes, cache_key="k3")
        assert report.strategy == "direct"
        assert report.error is None
        assert len(report.analysis.sections) == 3
        _assert_progress(seen)


def test_run_on_file(pe_file) -> None:
    report = run(str(pe_file), external=FakeAnalyzer())
    assert report.strategy == "direct"
    assert report.analysis.file_size == pe_file.stat().st_size


def test_concurrent_requests_are_independent(pe_bytes) -> None:
    analyzer = ProgressiveAnalyzer(external=FakeAnalyzer())

    async def both():
        return await asyncio.gather(
            analyzer.analyze(BytesSource(pe_bytes)),
            analyzer.analyze(BytesSource(b"not a pe")),
        )

    pe_report, other = asyncio.run(both())
    assert pe_report.strategy == "direct"
    assert other.strategy == "not_applicable"
