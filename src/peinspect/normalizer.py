"""
Result normalizer: the single translation point between the raw shapes and
the canonical AnalysisResult.

Accepted inputs:
  * DirectParseResult       - output of the direct byte-level parser
  * ExternalPayload / dict with a "header" key - external analysis module output
  * dict                    - canonical shape from AnalysisResult.to_dict()/essential()
  * AnalysisResult          - already canonical, returned as an equal copy

normalize() does no I/O and never mutates its input.
"""
from __future__ import annotations

import copy
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

from peinspect import fields as F
from peinspect.errors import SectionProcessingError
from peinspect.parser.entropy import MAX_ENTROPY, format_chi_square, format_entropy
from peinspect.parser.headers import format_timestamp
from peinspect.parser.pipeline import DirectParseResult, ParsedSection
from peinspect.tables import (
    DATA_DIRECTORY_NAMES,
    FILE_CHARACTERISTICS,
    MACHINE_CODES,
    SUBSYSTEM_CODES,
    decode_flags,
    machine_name,
    magic_name,
    subsystem_name,
)
from peinspect.types import (
    ERROR_SECTION_NAME,
    UNKNOWN,
    AnalysisResult,
    DataDirectoryRecord,
    DosHeaderRecord,
    FileHeaderRecord,
    ImportRecord,
    OptionalHeaderRecord,
    ResourceRecord,
    SectionRecord,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExternalPayload:
    """External-module output tagged with the true size of the analyzed file."""
    payload: Mapping[str, Any]
    file_size: Optional[int] = None


def skipped_sentinel(count: int) -> SectionRecord:
    return SectionRecord(name=f"[{count} more sections - skipped for performance]")


def error_section() -> SectionRecord:
    return SectionRecord(name=ERROR_SECTION_NAME)


def _entropy_text(value: float) -> str:
    if not math.isfinite(value):
        value = 0.0
    return format_entropy(min(MAX_ENTROPY, max(0.0, value)))


def _chi_text(value: float) -> str:
    if not math.isfinite(value):
        value = 0.0
    return format_chi_square(max(0.0, value))


def normalize(raw: Any) -> AnalysisResult:
    """Convert any supported raw shape into a canonical AnalysisResult."""
    if isinstance(raw, AnalysisResult):
        return copy.deepcopy(raw)
    if isinstance(raw, DirectParseResult):
        return _from_direct(raw)
    if isinstance(raw, ExternalPayload):
        return _from_external(raw.payload, raw.file_size)
    if isinstance(raw, Mapping):
        if isinstance(raw.get("header"), Mapping):
            return _from_external(raw, None)
        return _from_canonical(raw)
    raise TypeError(f"cannot normalize {type(raw).__name__}")


# --- Direct parser shape ---------------------------------------------------

def _direct_section(section: ParsedSection) -> SectionRecord:
    if section.error:
        return error_section()
    return SectionRecord(
        name=section.name,
        virtual_address=f"0x{section.virtual_address:08x}",
        virtual_size=section.virtual_size,
        raw_size=section.raw_size,
        entropy=_entropy_text(section.entropy),
        chi_square=_chi_text(section.chi_square),
        characteristics=section.characteristics,
    )


def _from_direct(raw: DirectParseResult) -> AnalysisResult:
    headers = raw.headers
    sections = [_direct_section(s) for s in raw.sections]
    if raw.skipped_sections:
        sections.append(skipped_sentinel(raw.skipped_sections))
    return AnalysisResult(
        file_size=raw.file_size,
        machine_type=headers.file.machine,
        timestamp=headers.file.timestamp,
        sections=sections,
        imports=copy.deepcopy(raw.imports),
        dos_header=copy.deepcopy(headers.dos),
        file_header=copy.deepcopy(headers.file),
        optional_header=copy.deepcopy(headers.optional),
        data_directories=copy.deepcopy(headers.data_directories),
    )


# --- Mapping shapes (external and canonical) -------------------------------

def _dos(raw: Any) -> Optional[DosHeaderRecord]:
    if not isinstance(raw, Mapping):
        return None
    values = {spec.name: spec.resolve(raw) for spec in F.DOS_FIELDS}
    return DosHeaderRecord(e_magic=f"0x{F.DOS_MAGIC.resolve(raw):04x}", **values)


def _machine(raw: Mapping) -> tuple[str, int]:
    """
    Machine name and code. A numeric code wins; a name string is mapped back
    to its code, and an unrecognized name is kept as given.
    """
    code = F.MACHINE_CODE.resolve(raw)
    name = F.MACHINE_LABEL.resolve(raw)
    if not code and name is not None:
        return name, MACHINE_CODES.get(name, 0)
    if code is None:
        return UNKNOWN, 0
    return machine_name(code), code


def _file(raw: Any) -> Optional[FileHeaderRecord]:
    if not isinstance(raw, Mapping):
        return None
    machine, code = _machine(raw)
    stamp = F.TIME_DATE_STAMP.resolve(raw)
    values = {spec.name: spec.resolve(raw) for spec in F.FILE_FIELDS}
    return FileHeaderRecord(
        machine=machine,
        machine_code=code,
        time_date_stamp=stamp,
        timestamp=format_timestamp(stamp),
        characteristics_flags=decode_flags(values["characteristics"], FILE_CHARACTERISTICS),
        **values,
    )


def _subsystem_code(raw: Mapping) -> int:
    code = F.SUBSYSTEM_CODE.resolve(raw)
    if not code and isinstance(raw.get("subsystem"), str):
        return SUBSYSTEM_CODES.get(raw["subsystem"], 0)
    return code


def _optional(raw: Any) -> Optional[OptionalHeaderRecord]:
    if not isinstance(raw, Mapping):
        return None
    magic = F.OPTIONAL_MAGIC.resolve(raw)
    subsystem = _subsystem_code(raw)
    values = {spec.name: spec.resolve(raw) for spec in F.OPTIONAL_FIELDS}
    return OptionalHeaderRecord(
        magic=magic_name(magic),
        magic_code=magic,
        base_of_data=F.BASE_OF_DATA.resolve(raw),
        subsystem=subsystem_name(subsystem),
        subsystem_code=subsystem,
        **values,
    )


def _directories(raw: Any) -> list[DataDirectoryRecord]:
    if not isinstance(raw, list):
        return []
    out: list[DataDirectoryRecord] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        index = F.DIRECTORY_INDEX.resolve(entry)
        if isinstance(index, int) and 0 <= index < len(DATA_DIRECTORY_NAMES):
            name = DATA_DIRECTORY_NAMES[index]
        else:
            name = F.DIRECTORY_NAME.resolve(entry)
        address = F.DIRECTORY_ADDRESS.resolve(entry)
        size = F.DIRECTORY_SIZE.resolve(entry)
        if address == 0 and size == 0:
            continue
        out.append(DataDirectoryRecord(name=name, virtual_address=address, size=size))
    return out


def _mapping_section(index: int, raw: Any) -> SectionRecord:
    if not isinstance(raw, Mapping):
        raise SectionProcessingError(index, f"expected an object, got {type(raw).__name__}")
    return SectionRecord(
        name=F.SECTION_NAME.resolve(raw),
        virtual_address=f"0x{F.SECTION_VIRTUAL_ADDRESS.resolve(raw):08x}",
        virtual_size=F.SECTION_VIRTUAL_SIZE.resolve(raw),
        raw_size=F.SECTION_RAW_SIZE.resolve(raw),
        entropy=_entropy_text(F.SECTION_ENTROPY.resolve(raw)),
        chi_square=_chi_text(F.SECTION_CHI_SQUARE.resolve(raw)),
        characteristics=F.SECTION_CHARACTERISTICS.resolve(raw),
    )


def _sections(raw: Any) -> list[SectionRecord]:
    if not isinstance(raw, list):
        return []
    out: list[SectionRecord] = []
    for i, entry in enumerate(raw):
        try:
            out.append(_mapping_section(i, entry))
        except Exception as e:
            logger.warning("Section %d replaced by placeholder: %s", i, e)
            out.append(error_section())
    return out


def _function_name(raw: Any) -> str:
    if isinstance(raw, Mapping):
        name = raw.get("name")
        if name:
            return str(name)
        return f"ordinal_{raw.get('ordinal', '?')}"
    return str(raw)


def _imports(raw: Any) -> Optional[list[ImportRecord]]:
    if not isinstance(raw, list):
        return None
    out: list[ImportRecord] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        functions = entry.get("functions")
        out.append(
            ImportRecord(
                module=F.IMPORT_MODULE.resolve(entry),
                functions=[_function_name(f) for f in functions] if isinstance(functions, list) else [],
            )
        )
    return out


def _resource_type(value: str) -> str:
    # RT_GROUP_ICON -> "group icon"
    if value.startswith("RT_"):
        return value[3:].replace("_", " ").lower()
    return value


def _resources(raw: Any) -> Optional[list[ResourceRecord]]:
    if not isinstance(raw, list):
        return None
    out: list[ResourceRecord] = []
    for entry in raw:
        if not isinstance(entry, Mapping):
            continue
        out.append(
            ResourceRecord(
                type=_resource_type(F.RESOURCE_TYPE.resolve(entry)),
                language=str(F.RESOURCE_LANGUAGE.resolve(entry)),
                size=F.RESOURCE_SIZE.resolve(entry),
                entropy=_entropy_text(F.RESOURCE_ENTROPY.resolve(entry)),
                hash=F.RESOURCE_HASH.resolve(entry),
            )
        )
    return out


def _build(
    payload: Mapping,
    dos_raw: Any,
    file_raw: Any,
    optional_raw: Any,
    directories_raw: Any,
    file_size: Optional[int],
    raw_payload: Optional[dict[str, Any]],
) -> AnalysisResult:
    file_header = _file(file_raw)
    machine_type, timestamp = F.MACHINE_TYPE.resolve(payload), F.TIMESTAMP.resolve(payload)
    if file_header is not None:
        # Header values win; result-level values only fill what the header lacks
        if file_header.machine != UNKNOWN:
            machine_type = file_header.machine
        if file_header.timestamp != UNKNOWN:
            timestamp = file_header.timestamp
    error = payload.get("error")
    return AnalysisResult(
        file_size=F.FILE_SIZE.resolve(payload) if file_size is None else file_size,
        machine_type=machine_type or UNKNOWN,
        timestamp=timestamp or UNKNOWN,
        sections=_sections(payload.get("sections")),
        imports=_imports(payload.get("imports")),
        resources=_resources(payload.get("resources")),
        dos_header=_dos(dos_raw),
        file_header=file_header,
        optional_header=_optional(optional_raw),
        data_directories=_directories(directories_raw),
        error=error if isinstance(error, str) and error else None,
        raw_payload=raw_payload,
    )


def _from_external(payload: Mapping, file_size: Optional[int]) -> AnalysisResult:
    header = payload.get("header")
    if not isinstance(header, Mapping):
        header = {}
    directories = header.get("dataDirectories", header.get("data_directories"))
    return _build(
        payload,
        header.get("dos"),
        header.get("file"),
        header.get("optional"),
        directories,
        file_size,
        copy.deepcopy(dict(payload)),
    )


def _from_canonical(payload: Mapping) -> AnalysisResult:
    raw_payload = payload.get("raw_payload")
    return _build(
        payload,
        payload.get("dos_header"),
        payload.get("file_header"),
        payload.get("optional_header"),
        payload.get("data_directories"),
        None,
        copy.deepcopy(dict(raw_payload)) if isinstance(raw_payload, Mapping) else None,
    )
