"""
Direct parser: Header Extractor + Section Statistics Engine over an in-memory buffer.

Produces the raw-parser shape (DirectParseResult); the normalizer turns it
into the canonical AnalysisResult.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from peinspect.config import AnalysisConfig
from peinspect.errors import SectionProcessingError
from peinspect.parser.entropy import section_statistics
from peinspect.parser.headers import PEHeaders, SectionHeader, extract_headers, read_section_table
from peinspect.types import ImportRecord

logger = logging.getLogger(__name__)

IMPORT_PLACEHOLDER = ImportRecord(
    module="Import information available",
    functions=["Use detailed analysis for function names"],
)


@dataclass
class ParsedSection:
    index: int
    name: str = ""
    virtual_address: int = 0
    virtual_size: int = 0
    raw_size: int = 0
    characteristics: int = 0
    entropy: float = 0.0
    chi_square: float = 0.0
    analyzed_bytes: int = 0
    sampled: bool = False
    error: Optional[str] = None


@dataclass
class DirectParseResult:
    """Raw output of the direct byte-level parser."""
    file_size: int
    headers: PEHeaders
    sections: list[ParsedSection] = field(default_factory=list)
    skipped_sections: int = 0
    imports: Optional[list[ImportRecord]] = None
    large_file: bool = False


class DirectParser:
    """Parses headers and per-section statistics from a buffer (whole file or a prefix)."""

    def __init__(self, config: AnalysisConfig | None = None):
        self.config = config or AnalysisConfig()

    def _section_limit(self, section_cap: int | None) -> int:
        if section_cap is None:
            return self.config.max_sections
        return min(self.config.max_sections, section_cap)

    def _parse_section(self, view: memoryview, entry: SectionHeader, full_data: bool) -> ParsedSection:
        try:
            if entry.error:
                raise SectionProcessingError(entry.index, entry.error)
            start = min(entry.pointer_to_raw_data, len(view))
            end = min(start + entry.size_of_raw_data, len(view))
            stats = section_statistics(
                view[start:end],
                full_data=full_data,
                large_section_threshold=self.config.large_section_threshold,
                sample_size=self.config.sample_size,
            )
        except Exception as e:
            logger.warning("Section %d could not be processed: %s", entry.index, e)
            return ParsedSection(index=entry.index, name=entry.name, error=str(e))
        return ParsedSection(
            index=entry.index,
            name=entry.name,
            virtual_address=entry.virtual_address,
            virtual_size=entry.virtual_size,
            raw_size=entry.size_of_raw_data,
            characteristics=entry.characteristics,
            entropy=stats.entropy,
            chi_square=stats.chi_square,
            analyzed_bytes=stats.analyzed_bytes,
            sampled=stats.sampled,
        )

    def _prepare(self, buffer: bytes, section_cap: int | None):
        headers = extract_headers(buffer)
        entries = read_section_table(buffer, headers, self._section_limit(section_cap))
        return headers, entries

    def _finish(
        self,
        file_size: int,
        headers: PEHeaders,
        entries: list[SectionHeader],
        sections: list[ParsedSection],
        large_file: bool,
    ) -> DirectParseResult:
        skipped = max(0, headers.file.number_of_sections - len(sections))
        if skipped:
            logger.info("Section list truncated: %d of %d sections processed", len(sections), len(sections) + skipped)
        return DirectParseResult(
            file_size=file_size,
            headers=headers,
            sections=sections,
            skipped_sections=skipped,
            imports=None if large_file else _import_hint(headers, entries),
            large_file=large_file,
        )

    def parse(
        self,
        buffer: bytes,
        file_size: int | None = None,
        large_file: bool = False,
        force_full: bool = False,
        section_cap: int | None = None,
    ) -> DirectParseResult:
        """
        Parse buffer. Raises NotApplicable / MalformedHeader when the headers
        cannot be established; individual section failures become placeholders.
        """
        headers, entries = self._prepare(buffer, section_cap)
        view = memoryview(buffer)
        full_data = force_full or not large_file
        sections = [self._parse_section(view, e, full_data) for e in entries]
        return self._finish(len(buffer) if file_size is None else file_size, headers, entries, sections, large_file)

    async def parse_async(
        self,
        buffer: bytes,
        file_size: int | None = None,
        large_file: bool = False,
        force_full: bool = False,
        section_cap: int | None = None,
    ) -> DirectParseResult:
        """Same as parse(), yielding to the event loop between sections."""
        headers, entries = self._prepare(buffer, section_cap)
        view = memoryview(buffer)
        full_data = force_full or not large_file
        sections: list[ParsedSection] = []
        for entry in entries:
            sections.append(self._parse_section(view, entry, full_data))
            await asyncio.sleep(0)
        return self._finish(len(buffer) if file_size is None else file_size, headers, entries, sections, large_file)


def _import_hint(headers: PEHeaders, entries: list[SectionHeader]) -> Optional[list[ImportRecord]]:
    """
    Detect that an import section exists. The import table itself is not
    walked on this path, so the record is a placeholder without symbol names.
    """
    import_dir = next((d for d in headers.data_directories if d.name == "Import Table"), None)
    if import_dir is None or not import_dir.virtual_address or not import_dir.size:
        return None
    for entry in entries:
        if entry.error:
            continue
        contains = (
            entry.virtual_address <= import_dir.virtual_address
            and entry.virtual_address + entry.virtual_size >= import_dir.virtual_address + import_dir.size
        )
        if ".idata" in entry.name or "IMPORT" in entry.name or contains:
            return [ImportRecord(module=IMPORT_PLACEHOLDER.module, functions=list(IMPORT_PLACEHOLDER.functions))]
    return None
