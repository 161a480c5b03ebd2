"""
External analysis module backed by pefile.

Emits pefile's view of the file in its own shape: camelCase keys, a nested
``header`` object and numbers as ``{hex, decimal}`` pairs. The normalizer is
the only consumer of this shape.
"""
from __future__ import annotations

import hashlib
from typing import Any

from peinspect.external.base import BaseExternalAnalyzer
from peinspect.parser.entropy import chi_square, shannon_entropy


def _num(value: int) -> dict[str, Any]:
    return {"hex": f"0x{value:x}", "decimal": value}


def _text(raw: bytes) -> str:
    return raw.decode("utf-8", errors="ignore").rstrip("\x00")


def pefile_available() -> bool:
    try:
        import pefile  # noqa: F401
        return True
    except ImportError:
        return False


class PefileAnalyzer(BaseExternalAnalyzer):
    """Full parse with pefile, including the import and resource directories."""

    @property
    def name(self) -> str:
        return "pefile"

    def available(self) -> bool:
        return pefile_available()

    def analyze(self, data: bytes) -> dict[str, Any]:
        import pefile

        pe = pefile.PE(data=data, fast_load=True)
        try:
            pe.parse_data_directories(
                directories=[
                    pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_IMPORT"],
                    pefile.DIRECTORY_ENTRY["IMAGE_DIRECTORY_ENTRY_RESOURCE"],
                ]
            )
            return {
                "format": "pe",
                "fileSize": len(data),
                "header": _header(pe),
                "sections": [_section(s) for s in pe.sections],
                "imports": _imports(pe),
                "resources": _resources(pe, pefile),
            }
        finally:
            pe.close()


def _header(pe) -> dict[str, Any]:
    dos = pe.DOS_HEADER
    fh = pe.FILE_HEADER
    oh = getattr(pe, "OPTIONAL_HEADER", None)
    header: dict[str, Any] = {
        "dos": {
            "e_magic": f"0x{dos.e_magic:04x}",
            "e_lfanew": _num(dos.e_lfanew),
            "e_cblp": dos.e_cblp,
            "e_cp": dos.e_cp,
            "e_crlc": dos.e_crlc,
            "e_cparhdr": dos.e_cparhdr,
            "e_minalloc": dos.e_minalloc,
            "e_maxalloc": dos.e_maxalloc,
            "e_ss": dos.e_ss,
            "e_sp": dos.e_sp,
            "e_csum": dos.e_csum,
            "e_ip": dos.e_ip,
            "e_cs": dos.e_cs,
            "e_lfarlc": dos.e_lfarlc,
            "e_ovno": dos.e_ovno,
        },
        "file": {
            "machine": _num(fh.Machine),
            "numberOfSections": fh.NumberOfSections,
            "timeDateStamp": fh.TimeDateStamp,
            "pointerToSymbolTable": fh.PointerToSymbolTable,
            "numberOfSymbols": fh.NumberOfSymbols,
            "sizeOfOptionalHeader": fh.SizeOfOptionalHeader,
            "characteristics": _num(fh.Characteristics),
        },
    }
    if oh is None:
        return header
    optional = {
        "magic": f"0x{oh.Magic:x}",
        "majorLinkerVersion": oh.MajorLinkerVersion,
        "minorLinkerVersion": oh.MinorLinkerVersion,
        "sizeOfCode": oh.SizeOfCode,
        "sizeOfInitializedData": oh.SizeOfInitializedData,
        "sizeOfUninitializedData": oh.SizeOfUninitializedData,
        "addressOfEntryPoint": _num(oh.AddressOfEntryPoint),
        "baseOfCode": _num(oh.BaseOfCode),
        "imageBase": _num(oh.ImageBase),
        "sectionAlignment": oh.SectionAlignment,
        "fileAlignment": oh.FileAlignment,
        "majorOperatingSystemVersion": oh.MajorOperatingSystemVersion,
        "minorOperatingSystemVersion": oh.MinorOperatingSystemVersion,
        "majorImageVersion": oh.MajorImageVersion,
        "minorImageVersion": oh.MinorImageVersion,
        "majorSubsystemVersion": oh.MajorSubsystemVersion,
        "minorSubsystemVersion": oh.MinorSubsystemVersion,
        "win32VersionValue": oh.Reserved1,
        "sizeOfImage": oh.SizeOfImage,
        "sizeOfHeaders": oh.SizeOfHeaders,
        "checkSum": _num(oh.CheckSum),
        "subsystem": oh.Subsystem,
        "dllCharacteristics": _num(oh.DllCharacteristics),
        "sizeOfStackReserve": oh.SizeOfStackReserve,
        "sizeOfStackCommit": oh.SizeOfStackCommit,
        "sizeOfHeapReserve": oh.SizeOfHeapReserve,
        "sizeOfHeapCommit": oh.SizeOfHeapCommit,
        "loaderFlags": oh.LoaderFlags,
        "numberOfRvaAndSizes": oh.NumberOfRvaAndSizes,
    }
    if hasattr(oh, "BaseOfData"):
        optional["baseOfData"] = _num(oh.BaseOfData)
    header["optional"] = optional
    header["dataDirectories"] = [
        {"index": i, "name": d.name, "virtualAddress": _num(d.VirtualAddress), "size": d.Size}
        for i, d in enumerate(getattr(oh, "DATA_DIRECTORY", []))
    ]
    return header


def _section(section) -> dict[str, Any]:
    data = section.get_data()
    return {
        "name": _text(section.Name),
        "virtualAddress": _num(section.VirtualAddress),
        "virtualSize": _num(section.Misc_VirtualSize),
        "rawSize": _num(section.SizeOfRawData),
        "pointerToRawData": _num(section.PointerToRawData),
        "characteristics": _num(section.Characteristics),
        "entropy": section.get_entropy(),
        "chiSquared": chi_square(data),
    }


def _imports(pe) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for entry in getattr(pe, "DIRECTORY_ENTRY_IMPORT", None) or []:
        functions = [
            _text(imp.name) if imp.name else f"ordinal_{imp.ordinal}"
            for imp in entry.imports
        ]
        out.append({"dll": _text(entry.dll), "functions": functions})
    return out


def _resources(pe, pefile) -> list[dict[str, Any]]:
    root = getattr(pe, "DIRECTORY_ENTRY_RESOURCE", None)
    if root is None:
        return []
    out: list[dict[str, Any]] = []
    for type_entry in root.entries:
        if type_entry.name is not None:
            type_name = str(type_entry.name)
        else:
            type_name = pefile.RESOURCE_TYPE.get(type_entry.struct.Id, str(type_entry.struct.Id))
        for id_entry in getattr(getattr(type_entry, "directory", None), "entries", []):
            for lang_entry in getattr(getattr(id_entry, "directory", None), "entries", []):
                res = lang_entry.data
                blob = pe.get_data(res.struct.OffsetToData, res.struct.Size)
                out.append(
                    {
                        "type": type_name,
                        "language": {
                            "id": res.lang,
                            "sublang": res.sublang,
                            "name": pefile.LANG.get(res.lang, "Unknown"),
                        },
                        "size": res.struct.Size,
                        "entropy": shannon_entropy(blob),
                        "sha256": hashlib.sha256(blob).hexdigest(),
                    }
                )
    return out
