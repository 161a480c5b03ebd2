"""
Header Extractor: DOS header, COFF file header, optional header and data
directories decoded straight from a byte buffer, plus the section table.

Every offset read from the file is bounds-checked against the buffer before
it is dereferenced; the buffer may be only a prefix of the file.
"""
from __future__ import annotations

import datetime
import logging
import struct
from dataclasses import dataclass, field
from typing import Optional

from peinspect.errors import MalformedHeader, NotApplicable
from peinspect.parser.format_ import is_pe_prefix
from peinspect.tables import (
    DATA_DIRECTORY_NAMES,
    FILE_CHARACTERISTICS,
    NT_SIGNATURE,
    PE32_PLUS_MAGIC,
    decode_flags,
    machine_name,
    magic_name,
    subsystem_name,
)
from peinspect.types import (
    UNKNOWN,
    DataDirectoryRecord,
    DosHeaderRecord,
    FileHeaderRecord,
    OptionalHeaderRecord,
)

logger = logging.getLogger(__name__)

DOS_HEADER_SIZE = 64
FILE_HEADER_SIZE = 20
SECTION_HEADER_SIZE = 40
MAX_DATA_DIRECTORIES = 16

# e_magic .. e_ovno (14 words), skip e_res/e_oemid/e_oeminfo/e_res2, then e_lfanew at 0x3c
_DOS_FMT = "<14H"
_FILE_FMT = "<HHIIIHH"
_OPT32_FMT = "<HBB9I6H4I2H6I"
_OPT64_FMT = "<HBB5IQ2I6H4I2H4Q2I"
_SECTION_FMT = "<8sIIIIIIHHI"


@dataclass
class PEHeaders:
    dos: DosHeaderRecord
    file: FileHeaderRecord
    optional: Optional[OptionalHeaderRecord]
    data_directories: list[DataDirectoryRecord] = field(default_factory=list)
    section_table_offset: int = 0


@dataclass
class SectionHeader:
    """One decoded section table entry; error is set when the entry could not be read."""
    index: int
    name: str = ""
    virtual_size: int = 0
    virtual_address: int = 0
    size_of_raw_data: int = 0
    pointer_to_raw_data: int = 0
    characteristics: int = 0
    error: Optional[str] = None


def format_timestamp(value: int) -> str:
    """ISO-8601 UTC rendering of a COFF timestamp; 'Unknown' for zero or out of range."""
    if not value:
        return UNKNOWN
    try:
        dt = datetime.datetime.fromtimestamp(value, datetime.timezone.utc)
    except (ValueError, OSError, OverflowError):
        return UNKNOWN
    return dt.strftime("%Y-%m-%dT%H:%M:%S.000Z")


def decode_section_name(raw: bytes) -> str:
    name = raw.split(b"\x00", 1)[0].decode("utf-8", errors="ignore").strip()
    return name or "Unnamed"


def _parse_dos(buffer: bytes) -> DosHeaderRecord:
    if len(buffer) < DOS_HEADER_SIZE:
        raise MalformedHeader(f"buffer of {len(buffer)} bytes is shorter than the DOS header")
    words = struct.unpack_from(_DOS_FMT, buffer, 0)
    (e_lfanew,) = struct.unpack_from("<I", buffer, 0x3C)
    return DosHeaderRecord(
        e_magic=f"0x{words[0]:04x}",
        e_lfanew=e_lfanew,
        e_cblp=words[1],
        e_cp=words[2],
        e_crlc=words[3],
        e_cparhdr=words[4],
        e_minalloc=words[5],
        e_maxalloc=words[6],
        e_ss=words[7],
        e_sp=words[8],
        e_csum=words[9],
        e_ip=words[10],
        e_cs=words[11],
        e_lfarlc=words[12],
        e_ovno=words[13],
    )


def _parse_file_header(buffer: bytes, offset: int) -> FileHeaderRecord:
    if offset + FILE_HEADER_SIZE > len(buffer):
        raise MalformedHeader("COFF file header is truncated")
    machine, nsections, stamp, symtab, nsyms, opt_size, chars = struct.unpack_from(_FILE_FMT, buffer, offset)
    return FileHeaderRecord(
        machine=machine_name(machine),
        machine_code=machine,
        number_of_sections=nsections,
        time_date_stamp=stamp,
        timestamp=format_timestamp(stamp),
        pointer_to_symbol_table=symtab,
        number_of_symbols=nsyms,
        size_of_optional_header=opt_size,
        characteristics=chars,
        characteristics_flags=decode_flags(chars, FILE_CHARACTERISTICS),
    )


def _parse_optional_header(
    buffer: bytes, offset: int, declared_size: int
) -> tuple[Optional[OptionalHeaderRecord], list[DataDirectoryRecord]]:
    if offset + 2 > len(buffer) or declared_size < 2:
        return None, []
    (magic,) = struct.unpack_from("<H", buffer, offset)
    is_plus = magic == PE32_PLUS_MAGIC
    fmt = _OPT64_FMT if is_plus else _OPT32_FMT
    fixed = struct.calcsize(fmt)
    if offset + fixed > len(buffer):
        logger.debug("Optional header truncated at offset %#x", offset)
        return None, []

    v = struct.unpack_from(fmt, buffer, offset)
    if is_plus:
        (
            _, major_linker, minor_linker, code, init_data, uninit_data, entry, base_code,
            image_base, sec_align, file_align,
            os_major, os_minor, img_major, img_minor, sub_major, sub_minor,
            win32, size_image, size_headers, checksum, subsystem, dll_chars,
            stack_res, stack_com, heap_res, heap_com, loader_flags, rva_count,
        ) = v
        base_data = None
    else:
        (
            _, major_linker, minor_linker, code, init_data, uninit_data, entry, base_code,
            base_data, image_base, sec_align, file_align,
            os_major, os_minor, img_major, img_minor, sub_major, sub_minor,
            win32, size_image, size_headers, checksum, subsystem, dll_chars,
            stack_res, stack_com, heap_res, heap_com, loader_flags, rva_count,
        ) = v

    record = OptionalHeaderRecord(
        magic=magic_name(magic),
        magic_code=magic,
        major_linker_version=major_linker,
        minor_linker_version=minor_linker,
        size_of_code=code,
        size_of_initialized_data=init_data,
        size_of_uninitialized_data=uninit_data,
        address_of_entry_point=entry,
        base_of_code=base_code,
        base_of_data=base_data,
        image_base=image_base,
        section_alignment=sec_align,
        file_alignment=file_align,
        major_operating_system_version=os_major,
        minor_operating_system_version=os_minor,
        major_image_version=img_major,
        minor_image_version=img_minor,
        major_subsystem_version=sub_major,
        minor_subsystem_version=sub_minor,
        win32_version_value=win32,
        size_of_image=size_image,
        size_of_headers=size_headers,
        checksum=checksum,
        subsystem=subsystem_name(subsystem),
        subsystem_code=subsystem,
        dll_characteristics=dll_chars,
        size_of_stack_reserve=stack_res,
        size_of_stack_commit=stack_com,
        size_of_heap_reserve=heap_res,
        size_of_heap_commit=heap_com,
        loader_flags=loader_flags,
        number_of_rva_and_sizes=rva_count,
    )

    dirs_offset = offset + fixed
    # Bounded by the declared count, the table size, the declared header size and the buffer
    limit = min(
        rva_count,
        MAX_DATA_DIRECTORIES,
        max(0, (declared_size - fixed) // 8),
        max(0, (len(buffer) - dirs_offset) // 8),
    )
    directories: list[DataDirectoryRecord] = []
    for i in range(limit):
        rva, size = struct.unpack_from("<II", buffer, dirs_offset + i * 8)
        if rva == 0 and size == 0:
            continue
        directories.append(DataDirectoryRecord(name=DATA_DIRECTORY_NAMES[i], virtual_address=rva, size=size))
    return record, directories


def extract_headers(buffer: bytes) -> PEHeaders:
    """
    Decode DOS, COFF and optional headers from buffer.

    Raises NotApplicable when the DOS magic is absent (not a PE file) and
    MalformedHeader when the DOS/COFF headers cannot be established.
    """
    if not is_pe_prefix(buffer):
        raise NotApplicable("missing MZ signature")
    dos = _parse_dos(buffer)

    nt_offset = dos.e_lfanew
    if nt_offset + len(NT_SIGNATURE) > len(buffer):
        raise MalformedHeader(f"e_lfanew {nt_offset:#x} is outside the {len(buffer)}-byte buffer")
    if buffer[nt_offset:nt_offset + 4] != NT_SIGNATURE:
        raise MalformedHeader(f"missing PE signature at {nt_offset:#x}")

    file_offset = nt_offset + len(NT_SIGNATURE)
    file_header = _parse_file_header(buffer, file_offset)
    opt_offset = file_offset + FILE_HEADER_SIZE
    optional, directories = _parse_optional_header(buffer, opt_offset, file_header.size_of_optional_header)
    return PEHeaders(
        dos=dos,
        file=file_header,
        optional=optional,
        data_directories=directories,
        section_table_offset=opt_offset + file_header.size_of_optional_header,
    )


def read_section_table(buffer: bytes, headers: PEHeaders, limit: int) -> list[SectionHeader]:
    """Decode up to limit section headers. Entries past the buffer come back with error set."""
    out: list[SectionHeader] = []
    count = min(headers.file.number_of_sections, limit)
    for i in range(count):
        pos = headers.section_table_offset + i * SECTION_HEADER_SIZE
        if pos + SECTION_HEADER_SIZE > len(buffer):
            out.append(SectionHeader(index=i, error=f"section header at {pos:#x} is beyond the buffer"))
            continue
        name, vsize, vaddr, raw_size, raw_ptr, _, _, _, _, chars = struct.unpack_from(_SECTION_FMT, buffer, pos)
        out.append(
            SectionHeader(
                index=i,
                name=decode_section_name(name),
                virtual_size=vsize,
                virtual_address=vaddr,
                size_of_raw_data=raw_size,
                pointer_to_raw_data=raw_ptr,
                characteristics=chars,
            )
        )
    return out
