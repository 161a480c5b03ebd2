"""
Typed field accessors for heterogeneous analysis payloads.

A value may arrive as a number, a "0x"-prefixed string, or an object such as
``{"hex": "0x1000", "decimal": 4096}``, under a snake_case or camelCase key.
Each FieldSpec lists its accessor strategies in a fixed priority order
(explicit decimal field, explicit hex-string field, nested object field) and
falls back to a documented default. Accessors never raise.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()

Accessor = Callable[[Mapping], Any]


def _as_int(value: Any) -> Any:
    """Coerce a non-negative int, integral float, decimal string or 0x string; MISSING otherwise."""
    if isinstance(value, bool):
        return MISSING
    if isinstance(value, int):
        return value if value >= 0 else MISSING
    if isinstance(value, float) and value.is_integer() and value >= 0:
        return int(value)
    if isinstance(value, str):
        s = value.strip()
        try:
            if s.lower().startswith("0x"):
                return int(s, 16)
            if s.isdigit():
                return int(s)
        except ValueError:
            return MISSING
    return MISSING


def decimal(key: str) -> Accessor:
    """A plain number (or decimal digit string) stored directly under key."""
    def get(obj: Mapping) -> Any:
        value = obj.get(key, MISSING)
        if isinstance(value, str) and value.strip().lower().startswith("0x"):
            return MISSING
        return MISSING if value is MISSING else _as_int(value)
    return get


def hex_string(key: str) -> Accessor:
    """A "0x"-prefixed string stored directly under key."""
    def get(obj: Mapping) -> Any:
        value = obj.get(key, MISSING)
        if isinstance(value, str) and value.strip().lower().startswith("0x"):
            return _as_int(value)
        return MISSING
    return get


def nested(key: str, *path: str) -> Accessor:
    """A number found by walking key/path through nested objects."""
    def get(obj: Mapping) -> Any:
        value = obj.get(key, MISSING)
        for part in path:
            if not isinstance(value, Mapping):
                return MISSING
            value = value.get(part, MISSING)
        return MISSING if value is MISSING else _as_int(value)
    return get


def number(key: str) -> Accessor:
    """A float-valued field (entropy, chi-square): number or numeric string."""
    def get(obj: Mapping) -> Any:
        value = obj.get(key, MISSING)
        if isinstance(value, bool) or value is MISSING or value is None:
            return MISSING
        try:
            return float(value)
        except (TypeError, ValueError):
            return MISSING
    return get


def text(key: str, *path: str) -> Accessor:
    """A non-empty string, optionally nested."""
    def get(obj: Mapping) -> Any:
        value = obj.get(key, MISSING)
        for part in path:
            if not isinstance(value, Mapping):
                return MISSING
            value = value.get(part, MISSING)
        if isinstance(value, str) and value.strip():
            return value
        return MISSING
    return get


def label(key: str) -> Accessor:
    """A non-empty string that is not a number, such as an enum name."""
    def get(obj: Mapping) -> Any:
        value = text(key)(obj)
        if value is MISSING or _as_int(value) is not MISSING:
            return MISSING
        return value
    return get


@dataclass(frozen=True)
class FieldSpec:
    name: str
    strategies: tuple[Accessor, ...]
    default: Any = 0

    def resolve(self, obj: Any) -> Any:
        if not isinstance(obj, Mapping):
            return self.default
        for strategy in self.strategies:
            value = strategy(obj)
            if value is not MISSING:
                return value
        return self.default


def camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def numeric_field(name: str, *aliases: str, default: Any = 0) -> FieldSpec:
    """
    FieldSpec for an integer field: decimal under each key, then hex string
    under each key, then {decimal}/{hex}/{value} objects under each key.
    """
    keys: list[str] = []
    for key in (name, camel(name), *aliases):
        if key not in keys:
            keys.append(key)
    strategies: list[Accessor] = [decimal(k) for k in keys]
    strategies += [hex_string(k) for k in keys]
    for k in keys:
        strategies += [nested(k, "decimal"), nested(k, "hex"), nested(k, "value")]
    return FieldSpec(name, tuple(strategies), default)


# --- Section fields -------------------------------------------------------

SECTION_NAME = FieldSpec("name", (text("name"), text("info", "name")), "Unnamed")
SECTION_VIRTUAL_ADDRESS = FieldSpec(
    "virtual_address",
    numeric_field("virtual_address").strategies + (nested("info", "virtualAddress"),),
)
SECTION_VIRTUAL_SIZE = FieldSpec(
    "virtual_size",
    numeric_field("virtual_size", "Misc_VirtualSize").strategies + (nested("info", "virtualSize"),),
)
SECTION_RAW_SIZE = FieldSpec(
    "raw_size",
    numeric_field("raw_size", "size_of_raw_data", "sizeOfRawData").strategies + (nested("info", "sizeOfRawData"),),
)
SECTION_CHARACTERISTICS = FieldSpec(
    "characteristics",
    numeric_field("characteristics").strategies + (nested("info", "characteristics"),),
)
SECTION_ENTROPY = FieldSpec("entropy", (number("entropy"),), 0.0)
SECTION_CHI_SQUARE = FieldSpec(
    "chi_square", (number("chi_square"), number("chiSquared"), number("chiSquare")), 0.0
)

# --- Result-level fields --------------------------------------------------

FILE_SIZE = numeric_field("file_size")
MACHINE_TYPE = FieldSpec("machine_type", (text("machine_type"), text("machineType")), "Unknown")
TIMESTAMP = FieldSpec("timestamp", (text("timestamp"),), "Unknown")

# --- Header fields ---------------------------------------------------------

DOS_FIELDS: tuple[FieldSpec, ...] = tuple(
    numeric_field(n)
    for n in (
        "e_lfanew", "e_cblp", "e_cp", "e_crlc", "e_cparhdr", "e_minalloc", "e_maxalloc",
        "e_ss", "e_sp", "e_csum", "e_ip", "e_cs", "e_lfarlc", "e_ovno",
    )
)
DOS_MAGIC = numeric_field("e_magic", "magic")

MACHINE_CODE = numeric_field("machine_code", "machine", default=None)
MACHINE_LABEL = FieldSpec("machine", (label("machine"),), None)
TIME_DATE_STAMP = numeric_field("time_date_stamp")
FILE_FIELDS: tuple[FieldSpec, ...] = (
    numeric_field("number_of_sections"),
    numeric_field("pointer_to_symbol_table"),
    numeric_field("number_of_symbols"),
    numeric_field("size_of_optional_header"),
    numeric_field("characteristics"),
)

OPTIONAL_MAGIC = numeric_field("magic_code", "magic")
SUBSYSTEM_CODE = numeric_field("subsystem_code", "subsystem")
BASE_OF_DATA = numeric_field("base_of_data", default=None)
OPTIONAL_FIELDS: tuple[FieldSpec, ...] = tuple(
    numeric_field(n)
    for n in (
        "major_linker_version", "minor_linker_version", "size_of_code",
        "size_of_initialized_data", "size_of_uninitialized_data", "address_of_entry_point",
        "base_of_code", "image_base", "section_alignment", "file_alignment",
        "major_operating_system_version", "minor_operating_system_version",
        "major_image_version", "minor_image_version", "major_subsystem_version",
        "minor_subsystem_version", "win32_version_value", "size_of_image",
        "size_of_headers", "dll_characteristics", "size_of_stack_reserve",
        "size_of_stack_commit", "size_of_heap_reserve", "size_of_heap_commit",
        "loader_flags", "number_of_rva_and_sizes",
    )
) + (numeric_field("checksum", "checkSum"),)

DIRECTORY_INDEX = FieldSpec("index", (decimal("index"),), None)
DIRECTORY_NAME = FieldSpec("name", (text("name"),), "Unknown")
DIRECTORY_ADDRESS = numeric_field("virtual_address")
DIRECTORY_SIZE = numeric_field("size")

# --- Imports / resources ---------------------------------------------------

IMPORT_MODULE = FieldSpec("module", (text("module"), text("dll"), text("name")), "Unknown")
RESOURCE_TYPE = FieldSpec("type", (text("type"),), "Unknown")
RESOURCE_LANGUAGE = FieldSpec(
    "language", (text("language"), text("language", "name"), nested("language", "id")), "Unknown"
)
RESOURCE_SIZE = numeric_field("size")
RESOURCE_ENTROPY = FieldSpec("entropy", (number("entropy"),), 0.0)
RESOURCE_HASH = FieldSpec("hash", (text("hash"), text("sha256"), text("md5")), "")
