"""
Error taxonomy for PE analysis.
"""
from __future__ import annotations


class PEInspectError(Exception):
    """Base class for all peinspect errors."""


class NotApplicable(PEInspectError):
    """Input is not a PE file. A classification outcome rather than a failure."""


class MalformedHeader(PEInspectError):
    """DOS or COFF headers cannot be established from the buffer."""


class SectionProcessingError(PEInspectError):
    """A single section could not be decoded; recovered with a placeholder record."""

    def __init__(self, index: int, reason: str):
        super().__init__(f"section {index}: {reason}")
        self.index = index
        self.reason = reason


class ExternalModuleFailure(PEInspectError):
    """The external analysis module raised, timed out or returned a malformed payload."""


class StorageWriteFailure(PEInspectError):
    """Persisting a reduced result failed (disk full, permissions, ...)."""


class AnalysisCancelled(PEInspectError):
    """The caller no longer wants the result; chunked reads stopped early."""
