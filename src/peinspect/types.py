"""
Shared data types for PE analysis: header records, sections and the canonical result.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from peinspect.tables import (
    IMAGE_SCN_MEM_EXECUTE,
    IMAGE_SCN_MEM_WRITE,
    SECTION_CHARACTERISTICS,
    decode_flags,
)

ERROR_SECTION_NAME = "Error processing section"
UNKNOWN = "Unknown"


@dataclass
class DosHeaderRecord:
    """DOS (MZ) header. Legacy fields default to zero when unavailable."""
    e_magic: str = "0x0000"
    e_lfanew: int = 0
    e_cblp: int = 0
    e_cp: int = 0
    e_crlc: int = 0
    e_cparhdr: int = 0
    e_minalloc: int = 0
    e_maxalloc: int = 0
    e_ss: int = 0
    e_sp: int = 0
    e_csum: int = 0
    e_ip: int = 0
    e_cs: int = 0
    e_lfarlc: int = 0
    e_ovno: int = 0


@dataclass
class FileHeaderRecord:
    """COFF file header."""
    machine: str = UNKNOWN
    machine_code: int = 0
    number_of_sections: int = 0
    time_date_stamp: int = 0
    timestamp: str = UNKNOWN
    pointer_to_symbol_table: int = 0
    number_of_symbols: int = 0
    size_of_optional_header: int = 0
    characteristics: int = 0
    characteristics_flags: tuple[str, ...] = ()


@dataclass
class OptionalHeaderRecord:
    """Optional header (PE32 or PE32+)."""
    magic: str = UNKNOWN
    magic_code: int = 0
    major_linker_version: int = 0
    minor_linker_version: int = 0
    size_of_code: int = 0
    size_of_initialized_data: int = 0
    size_of_uninitialized_data: int = 0
    address_of_entry_point: int = 0
    base_of_code: int = 0
    base_of_data: Optional[int] = None  # PE32 only
    image_base: int = 0
    section_alignment: int = 0
    file_alignment: int = 0
    major_operating_system_version: int = 0
    minor_operating_system_version: int = 0
    major_image_version: int = 0
    minor_image_version: int = 0
    major_subsystem_version: int = 0
    minor_subsystem_version: int = 0
    win32_version_value: int = 0
    size_of_image: int = 0
    size_of_headers: int = 0
    checksum: int = 0
    subsystem: str = UNKNOWN
    subsystem_code: int = 0
    dll_characteristics: int = 0
    size_of_stack_reserve: int = 0
    size_of_stack_commit: int = 0
    size_of_heap_reserve: int = 0
    size_of_heap_commit: int = 0
    loader_flags: int = 0
    number_of_rva_and_sizes: int = 0


@dataclass
class DataDirectoryRecord:
    name: str
    virtual_address: int = 0
    size: int = 0


@dataclass
class SectionRecord:
    """Canonical section entry. Statistics are fixed-precision strings for stable display."""
    name: str
    virtual_address: str = "0x00000000"
    virtual_size: int = 0
    raw_size: int = 0
    entropy: str = "0.000000"
    chi_square: str = "0.00"
    characteristics: int = 0

    @property
    def entropy_value(self) -> float:
        return float(self.entropy)

    @property
    def chi_square_value(self) -> float:
        return float(self.chi_square)

    @property
    def address(self) -> int:
        return int(self.virtual_address, 16)

    @property
    def flags(self) -> tuple[str, ...]:
        return decode_flags(self.characteristics, SECTION_CHARACTERISTICS)

    @property
    def is_writable_executable(self) -> bool:
        mask = IMAGE_SCN_MEM_EXECUTE | IMAGE_SCN_MEM_WRITE
        return (self.characteristics & mask) == mask

    @property
    def is_placeholder(self) -> bool:
        return self.name == ERROR_SECTION_NAME or self.name.startswith("[")


@dataclass
class ImportRecord:
    """Imported module; functions may be a placeholder when the import table was not walked."""
    module: str
    functions: list[str] = field(default_factory=list)


@dataclass
class ResourceRecord:
    type: str = UNKNOWN
    language: str = UNKNOWN
    size: int = 0
    entropy: str = "0.000000"
    hash: str = ""


@dataclass
class AnalysisResult:
    """
    Canonical analysis result. Both the direct parser and the external module
    converge here; collaborators only ever consume this type.
    """
    file_size: int
    machine_type: str = UNKNOWN
    timestamp: str = UNKNOWN
    sections: list[SectionRecord] = field(default_factory=list)
    imports: Optional[list[ImportRecord]] = None
    resources: Optional[list[ResourceRecord]] = None
    dos_header: Optional[DosHeaderRecord] = None
    file_header: Optional[FileHeaderRecord] = None
    optional_header: Optional[OptionalHeaderRecord] = None
    data_directories: list[DataDirectoryRecord] = field(default_factory=list)
    error: Optional[str] = None
    raw_payload: Optional[dict[str, Any]] = None  # external-module payload, untouched

    @classmethod
    def failed(cls, file_size: int, error: str) -> AnalysisResult:
        """Error-only result: the known file size plus a message."""
        return cls(file_size=file_size, error=error)

    @property
    def is_degraded(self) -> bool:
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        """Flat JSON-friendly dict. Optional parts are omitted when absent."""
        out = asdict(self)
        if self.file_header is not None:
            out["file_header"]["characteristics_flags"] = list(self.file_header.characteristics_flags)
        for key in ("imports", "resources", "dos_header", "file_header", "optional_header", "error", "raw_payload"):
            if out[key] is None:
                del out[key]
        return out

    def essential(self) -> dict[str, Any]:
        """Reduced subset persisted between views (no imports, resources or headers)."""
        return {
            "file_size": self.file_size,
            "machine_type": self.machine_type,
            "timestamp": self.timestamp,
            "sections": [
                {
                    "name": s.name,
                    "virtual_address": s.virtual_address,
                    "virtual_size": s.virtual_size,
                    "raw_size": s.raw_size,
                    "entropy": s.entropy,
                }
                for s in self.sections
            ],
        }


@dataclass
class ScanReport:
    """Outcome of one orchestrated analysis request."""
    file_size: int
    is_pe: bool = False
    is_large_file: bool = False
    strategy: str = "not_applicable"  # direct | external | degraded | cached | not_applicable | failed
    analysis: Optional[AnalysisResult] = None
    hashes: Optional[dict[str, str]] = None
    error: Optional[str] = None
