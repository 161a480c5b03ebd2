"""
Direct PE parser: header extraction and per-section statistics from raw bytes.
"""
from peinspect.parser.entropy import (
    SectionStats,
    chi_square,
    entropy_label,
    sample_span,
    section_statistics,
    shannon_entropy,
)
from peinspect.parser.format_ import CLASSIFY_PREFIX, is_pe_prefix
from peinspect.parser.headers import PEHeaders, extract_headers, read_section_table
from peinspect.parser.pipeline import DirectParser, DirectParseResult, ParsedSection

__all__ = [
    "CLASSIFY_PREFIX",
    "DirectParser",
    "DirectParseResult",
    "ParsedSection",
    "PEHeaders",
    "SectionStats",
    "chi_square",
    "entropy_label",
    "extract_headers",
    "is_pe_prefix",
    "read_section_table",
    "sample_span",
    "section_statistics",
    "shannon_entropy",
]
