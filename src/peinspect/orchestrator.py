"""
Progressive analysis orchestrator: classify -> size-branch -> analyze (direct,
external or degraded) -> normalize, with progress reporting.

One ProgressiveAnalyzer may serve several concurrent requests; per-request
state (buffers, progress) lives in analyze() only.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, Optional

from peinspect.cache import ResultCache
from peinspect.config import AnalysisConfig
from peinspect.errors import AnalysisCancelled, ExternalModuleFailure, MalformedHeader, StorageWriteFailure
from peinspect.external import BaseExternalAnalyzer, get_external_analyzer, run_external
from peinspect.hashing import compute_hashes
from peinspect.normalizer import ExternalPayload, normalize
from peinspect.parser import CLASSIFY_PREFIX, DirectParser, is_pe_prefix
from peinspect.sources import ByteSource, FileSource, iter_chunks, read_chunked
from peinspect.types import AnalysisResult, ScanReport

logger = logging.getLogger(__name__)

DEGRADED_MESSAGE = (
    "Large PE file: Only header information analyzed. "
    "Full section analysis would be too resource-intensive."
)

ProgressCallback = Callable[[int], None]
Hasher = Callable[[Iterable[bytes]], dict]


class _Progress:
    """Clamps reported values to a non-decreasing 0..100 sequence."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self.callback = callback
        self.value = 0

    def emit(self, value: int) -> None:
        value = max(self.value, min(100, int(value)))
        self.value = value
        logger.debug("Progress %d%%", value)
        if self.callback is None:
            return
        try:
            self.callback(value)
        except Exception as e:
            logger.warning("Progress callback raised: %s", e)

    def span(self, start: int, end: int) -> Callable[[int, int], None]:
        """on_chunk callback mapping done/total onto start..end."""
        def on_chunk(done: int, total: int) -> None:
            self.emit(start + (end - start) * done // max(total, 1))
        return on_chunk


class ProgressiveAnalyzer:
    """
    Size-adaptive PE analysis over a ByteSource.

    external: analyzer used for large files (and small ones when
    config.delegate_small_files); defaults to the registry entry named by
    config.external_analyzer. cache: optional ResultCache consulted when a
    cache_key is given. hasher: collaborator for non-PE inputs.
    """

    def __init__(
        self,
        config: AnalysisConfig | None = None,
        external: BaseExternalAnalyzer | None = None,
        cache: ResultCache | None = None,
        hasher: Hasher | None = None,
    ):
        self.config = (config or AnalysisConfig()).validate()
        self.external = external if external is not None else get_external_analyzer(self.config.external_analyzer)
        self.cache = cache
        self.hasher = hasher or compute_hashes
        self.parser = DirectParser(self.config)

    async def analyze(
        self,
        source: ByteSource,
        progress: Optional[ProgressCallback] = None,
        force_full: bool = False,
        still_wanted: Optional[Callable[[], bool]] = None,
        cache_key: Optional[str] = None,
    ) -> ScanReport:
        """
        Run one analysis request. Never raises: failures come back as a report
        whose analysis carries only the file size and an error string.
        Progress always ends at 100.
        """
        tracker = _Progress(progress)
        report = ScanReport(file_size=source.size)
        try:
            await self._run(report, source, tracker, force_full, still_wanted, cache_key)
        except AnalysisCancelled as e:
            logger.info("Analysis cancelled: %s", e)
            self._fail(report, f"Analysis cancelled: {e}")
        except MalformedHeader as e:
            logger.warning("Malformed PE headers: %s", e)
            self._fail(report, f"Malformed PE header: {e}")
        except Exception as e:
            logger.exception("Analysis failed")
            self._fail(report, f"Analysis failed: {e}")
        finally:
            tracker.emit(100)
        return report

    @staticmethod
    def _fail(report: ScanReport, message: str) -> None:
        report.strategy = "failed"
        report.error = message
        report.analysis = AnalysisResult.failed(report.file_size, message) if report.is_pe else None

    async def _run(
        self,
        report: ScanReport,
        source: ByteSource,
        tracker: _Progress,
        force_full: bool,
        still_wanted: Optional[Callable[[], bool]],
        cache_key: Optional[str],
    ) -> None:
        size = source.size
        report.is_pe = is_pe_prefix(source.read(0, CLASSIFY_PREFIX))
        tracker.emit(10)
        if not report.is_pe:
            logger.info("Not a PE file (%d bytes); computing hashes only", size)
            report.strategy = "not_applicable"
            report.hashes = await asyncio.to_thread(
                self.hasher, iter_chunks(source, self.config.read_chunk_size, still_wanted)
            )
            return

        report.is_large_file = size > self.config.large_file_threshold
        tracker.emit(20)

        if self.cache is not None and cache_key:
            cached = self._cache_get(cache_key)
            if cached is not None:
                logger.info("Using cached analysis for %s...", cache_key[:12])
                report.strategy = "cached"
                report.analysis = cached
                return
        tracker.emit(30)

        if report.is_large_file:
            result, report.strategy = await self._analyze_large(source, tracker, force_full, still_wanted)
        else:
            result, report.strategy = await self._analyze_small(source, tracker, still_wanted)
        tracker.emit(85)

        report.analysis = result
        report.error = result.error
        if self.cache is not None and cache_key and not result.is_degraded:
            self._cache_put(cache_key, result)

    async def _read_all(self, source: ByteSource, tracker: _Progress, still_wanted) -> bytes:
        return await read_chunked(
            source, 0, source.size, self.config.read_chunk_size, still_wanted, tracker.span(40, 60)
        )

    async def _try_external(self, data: bytes, file_size: int) -> Optional[AnalysisResult]:
        if self.external is None:
            return None
        try:
            payload = await run_external(self.external, data, self.config.external_timeout)
        except ExternalModuleFailure as e:
            logger.warning("External analysis failed, falling back: %s", e)
            return None
        return normalize(ExternalPayload(payload, file_size))

    async def _direct_full(self, data: bytes, file_size: int, tracker: _Progress) -> AnalysisResult:
        parsed = await self.parser.parse_async(data, file_size=file_size, large_file=False, force_full=True)
        tracker.emit(70)
        return normalize(parsed)

    async def _analyze_small(self, source: ByteSource, tracker: _Progress, still_wanted):
        data = await self._read_all(source, tracker, still_wanted)
        if self.config.delegate_small_files:
            result = await self._try_external(data, source.size)
            if result is not None:
                tracker.emit(70)
                return result, "external"
        logger.info("Direct full analysis of %d-byte file", source.size)
        return await self._direct_full(data, source.size, tracker), "direct"

    async def _analyze_large(self, source: ByteSource, tracker: _Progress, force_full: bool, still_wanted):
        size = source.size
        data: Optional[bytes] = None
        if self.external is not None and self.external.available():
            logger.info("Large file (%d bytes): delegating to external analyzer '%s'", size, self.external.name)
            data = await self._read_all(source, tracker, still_wanted)
            result = await self._try_external(data, size)
            if result is not None:
                tracker.emit(70)
                return result, "external"
        else:
            logger.info("Large file (%d bytes) and no external analyzer available", size)

        if force_full:
            if data is None:
                data = await self._read_all(source, tracker, still_wanted)
            logger.info("Full analysis forced for large file")
            return await self._direct_full(data, size, tracker), "direct"

        chunk = self.config.header_chunk_size
        if data is not None:
            header = data[:chunk]
            data = None
        else:
            header = await read_chunked(source, 0, chunk, self.config.read_chunk_size, still_wanted, tracker.span(40, 60))
        logger.warning("Degraded analysis: header chunk of %d bytes, at most %d sections",
                       len(header), self.config.degraded_section_cap)
        parsed = await self.parser.parse_async(
            header, file_size=size, large_file=True, section_cap=self.config.degraded_section_cap
        )
        tracker.emit(70)
        result = normalize(parsed)
        result.error = DEGRADED_MESSAGE
        return result, "degraded"

    def _cache_get(self, key: str) -> Optional[AnalysisResult]:
        try:
            return self.cache.get(key)
        except Exception as e:
            logger.warning("Cache lookup failed for %s...: %s", key[:12], e)
            return None

    def _cache_put(self, key: str, result: AnalysisResult) -> None:
        try:
            self.cache.put(key, result)
        except StorageWriteFailure as e:
            logger.warning("Could not persist analysis result: %s", e)


def run(
    path: str,
    config: AnalysisConfig | None = None,
    force_full: bool = False,
    cache: ResultCache | None = None,
    cache_key: str | None = None,
    progress: Optional[ProgressCallback] = None,
    external: BaseExternalAnalyzer | None = None,
) -> ScanReport:
    """Blocking convenience wrapper: analyze one file on disk."""
    analyzer = ProgressiveAnalyzer(config, external=external, cache=cache)
    return asyncio.run(
        analyzer.analyze(FileSource(path), progress=progress, force_full=force_full, cache_key=cache_key)
    )
