"""
Lookup tables for PE header fields (machine, subsystem, magic, flag bits, directories).

Machine, subsystem and characteristics names come from pefile's two-way
dicts; only the names pefile does not carry are listed here.
"""
from __future__ import annotations

import pefile

DOS_MAGIC = 0x5A4D  # "MZ"
NT_SIGNATURE = b"PE\x00\x00"

# PE optional header magic: 0x10b = PE32 (32-bit), 0x20b = PE32+ (64-bit)
PE32_MAGIC = 0x10B
PE32_PLUS_MAGIC = 0x20B

OPTIONAL_MAGIC_NAMES: dict[int, str] = {
    PE32_MAGIC: "PE32 (32-bit)",
    PE32_PLUS_MAGIC: "PE32+ (64-bit)",
}


def _code_names(two_way: dict) -> dict[int, str]:
    """code -> name from a pefile two-way dict; the first name wins for shared codes."""
    table: dict[int, str] = {}
    for name, code in two_way.items():
        if isinstance(name, str) and isinstance(code, int):
            table.setdefault(code, name)
    return table


def _bit_table(two_way: dict, skip_mask: int = 0) -> list[tuple[int, str]]:
    """(bit, name) for each single-bit flag of a pefile two-way dict, ordered by bit."""
    table: list[tuple[int, str]] = []
    for code, name in _code_names(two_way).items():
        if code and not code & (code - 1) and not code & skip_mask:
            table.append((code, name))
    return sorted(table)


MACHINE_TYPES: dict[int, str] = _code_names(pefile.MACHINE_TYPE)
MACHINE_CODES: dict[str, int] = {name: code for code, name in MACHINE_TYPES.items()}
SUBSYSTEMS: dict[int, str] = _code_names(pefile.SUBSYSTEM_TYPE)
SUBSYSTEM_CODES: dict[str, int] = {name: code for code, name in SUBSYSTEMS.items()}

FILE_CHARACTERISTICS: list[tuple[int, str]] = _bit_table(pefile.IMAGE_CHARACTERISTICS)

IMAGE_SCN_MEM_EXECUTE = pefile.SECTION_CHARACTERISTICS["IMAGE_SCN_MEM_EXECUTE"]
IMAGE_SCN_MEM_READ = pefile.SECTION_CHARACTERISTICS["IMAGE_SCN_MEM_READ"]
IMAGE_SCN_MEM_WRITE = pefile.SECTION_CHARACTERISTICS["IMAGE_SCN_MEM_WRITE"]

# The alignment nibble is an enumerated field, not a set of flags
SECTION_CHARACTERISTICS: list[tuple[int, str]] = _bit_table(
    pefile.SECTION_CHARACTERISTICS,
    skip_mask=pefile.SECTION_CHARACTERISTICS["IMAGE_SCN_ALIGN_MASK"],
)

DATA_DIRECTORY_NAMES: tuple[str, ...] = (
    "Export Table",
    "Import Table",
    "Resource Table",
    "Exception Table",
    "Certificate Table",
    "Base Relocation Table",
    "Debug",
    "Architecture",
    "Global Pointer",
    "TLS Table",
    "Load Config Table",
    "Bound Import",
    "Import Address Table",
    "Delay Import Descriptor",
    "CLR Runtime Header",
    "Reserved",
)


def decode_flags(value: int, table: list[tuple[int, str]]) -> tuple[str, ...]:
    """Names of the known bits set in value; unknown bits are ignored."""
    return tuple(name for bit, name in table if value & bit)


def machine_name(code: int) -> str:
    return MACHINE_TYPES.get(code, f"Unknown (0x{code:x})")


def subsystem_name(code: int) -> str:
    return SUBSYSTEMS.get(code, f"Unknown ({code})")


def magic_name(code: int) -> str:
    return OPTIONAL_MAGIC_NAMES.get(code, f"Unknown (0x{code:x})")
