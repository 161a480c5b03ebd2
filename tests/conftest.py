"""Shared fixtures: synthetic PE images built in memory."""
import struct
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

FILE_ALIGNMENT = 0x200
SECTION_ALIGNMENT = 0x1000
E_LFANEW = 0x80
TIMESTAMP = 0x5F5E1000  # 2020-09-13T12:26:40Z

RX = 0x60000020  # CODE | EXECUTE | READ
RW = 0xC0000040  # INITIALIZED_DATA | READ | WRITE
RWX = 0xE0000020


def _align(value, alignment):
    return (value + alignment - 1) // alignment * alignment


def build_pe(
    sections=None,
    machine=0x14C,
    timestamp=TIMESTAMP,
    characteristics=0x0102,
    subsystem=3,
    pe32_plus=False,
    directories=None,
    declared_sections=None,
    magic=None,
    rva_count=16,
):
    """
    Build a minimal PE image.

    sections: list of (name, data, characteristics). directories: {index: (rva, size)}.
    declared_sections overrides NumberOfSections in the COFF header. magic overrides the
    PE32 optional-header magic; rva_count is written as NumberOfRvaAndSizes while all 16
    directory slots stay present.
    """
    sections = sections if sections is not None else [(".text", bytes(range(256)) * 4, RX)]
    directories = directories or {}

    dos = bytearray(E_LFANEW)
    dos[0:2] = b"MZ"
    struct.pack_into("<H", dos, 2, 0x90)  # e_cblp
    struct.pack_into("<I", dos, 0x3C, E_LFANEW)

    opt_fixed = 112 if pe32_plus else 96
    opt_size = opt_fixed + 16 * 8
    headers_end = E_LFANEW + 4 + 20 + opt_size + 40 * len(sections)
    size_of_headers = _align(headers_end, FILE_ALIGNMENT)

    table = bytearray()
    raw = bytearray()
    raw_ptr = size_of_headers
    rva = SECTION_ALIGNMENT
    for name, data, chars in sections:
        raw_size = _align(len(data), FILE_ALIGNMENT) if data else 0
        table += struct.pack(
            "<8sIIIIIIHHI",
            name.encode()[:8], len(data), rva, raw_size, raw_ptr if data else 0, 0, 0, 0, 0, chars,
        )
        raw += data + bytes(raw_size - len(data))
        raw_ptr += raw_size
        rva += _align(max(len(data), 1), SECTION_ALIGNMENT)
    size_of_image = rva

    nsections = len(sections) if declared_sections is None else declared_sections
    file_header = struct.pack("<HHIIIHH", machine, nsections, timestamp, 0, 0, opt_size, characteristics)

    if pe32_plus:
        optional = struct.pack(
            "<HBB5IQ2I6H4I2H4Q2I",
            0x20B, 14, 0, 0x1000, 0x1000, 0, SECTION_ALIGNMENT, SECTION_ALIGNMENT,
            0x140000000, SECTION_ALIGNMENT, FILE_ALIGNMENT,
            6, 0, 0, 0, 6, 0,
            0, size_of_image, size_of_headers, 0,
            subsystem, 0x8160,
            0x100000, 0x1000, 0x100000, 0x1000,
            0, rva_count,
        )
    else:
        optional = struct.pack(
            "<HBB9I6H4I2H6I",
            0x10B if magic is None else magic, 14, 0, 0x1000, 0x1000, 0, SECTION_ALIGNMENT, SECTION_ALIGNMENT, 0x2000,
            0x400000, SECTION_ALIGNMENT, FILE_ALIGNMENT,
            6, 0, 0, 0, 6, 0,
            0, size_of_image, size_of_headers, 0,
            subsystem, 0x8140,
            0x100000, 0x1000, 0x100000, 0x1000,
            0, rva_count,
        )
    dirs = b"".join(struct.pack("<II", *directories.get(i, (0, 0))) for i in range(16))

    image = bytes(dos) + b"PE\x00\x00" + file_header + optional + dirs + bytes(table)
    image += bytes(size_of_headers - len(image))
    return image + bytes(raw)


@pytest.fixture
def pe_bytes():
    """Three-section PE32: uniform .text, zero-filled .data, .idata with an import directory."""
    return build_pe(
        [
            (".text", bytes(range(256)) * 16, RX),
            (".data", bytes(1024), RW),
            (".idata", b"\x01\x02\x03\x04" * 64, RW),
        ],
        directories={1: (0x3000, 0x40)},
    )


@pytest.fixture
def pe_file(tmp_path, pe_bytes):
    path = tmp_path / "sample.exe"
    path.write_bytes(pe_bytes)
    return path
