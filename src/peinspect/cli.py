#!/usr/bin/env python3
"""CLI: analyze a sample (classify -> parse -> report)."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from peinspect.cache import DiskCache
from peinspect.config import MB, AnalysisConfig, setup_logging
from peinspect.hashing import compute_hashes
from peinspect.orchestrator import run as orchestrator_run
from peinspect.parser.entropy import entropy_label
from peinspect.sources import FileSource, iter_chunks
from peinspect.threat import assess_threat, suspicious_indicators
from peinspect.types import ScanReport


def _print_report(report: ScanReport) -> None:
    print(f"File size: {report.file_size} bytes")
    if not report.is_pe:
        print("Not a PE file")
        for name, digest in (report.hashes or {}).items():
            print(f"  {name}: {digest}")
        return

    print(f"Strategy: {report.strategy}{' (large file)' if report.is_large_file else ''}")
    result = report.analysis
    if result is None:
        return
    print(f"Machine: {result.machine_type}")
    print(f"Timestamp: {result.timestamp}")
    if result.optional_header is not None:
        oh = result.optional_header
        print(f"Format: {oh.magic}  Subsystem: {oh.subsystem}  Entry point: 0x{oh.address_of_entry_point:x}")
    if result.sections:
        print("Sections:")
        for s in result.sections:
            if s.is_placeholder:
                print(f"  {s.name}")
                continue
            print(
                f"  {s.name:<8} va={s.virtual_address} vsize={s.virtual_size} raw={s.raw_size} "
                f"entropy={s.entropy} ({entropy_label(s.entropy_value)}) chi2={s.chi_square}"
            )
    for imp in result.imports or []:
        print(f"Import: {imp.module} ({len(imp.functions)} functions)")
    for ind in suspicious_indicators(result):
        print(f"[{ind.severity}] {ind.title}: {ind.description}")
    threat = assess_threat(result)
    print(f"Threat: {threat.level} (score={threat.score}) - {threat.summary}")
    if result.error:
        print(f"Note: {result.error}", file=sys.stderr)


def main() -> int:
    p = argparse.ArgumentParser(description="peinspect: static PE structure analysis")
    p.add_argument("sample", type=Path, help="Path to sample")
    p.add_argument("--json", action="store_true", help="Print the analysis as JSON")
    p.add_argument("--force-full", action="store_true", help="Analyze every byte even for large files")
    p.add_argument("--large-threshold-mb", type=int, default=None, help="Large-file threshold (MiB)")
    p.add_argument("--cache-dir", type=Path, default=None, help="Directory for cached results")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = p.parse_args()

    setup_logging(logging.DEBUG if args.verbose else logging.WARNING)

    if not args.sample.is_file():
        print(f"Error: sample not found: {args.sample}", file=sys.stderr)
        return 1

    try:
        config = AnalysisConfig.from_env()
        if args.large_threshold_mb is not None:
            config = config.with_overrides(large_file_threshold=args.large_threshold_mb * MB)
    except ValueError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    cache = cache_key = None
    if args.cache_dir is not None:
        cache = DiskCache(args.cache_dir)
        source = FileSource(str(args.sample))
        cache_key = compute_hashes(iter_chunks(source, config.read_chunk_size))["sha256"]

    report = orchestrator_run(
        str(args.sample),
        config=config,
        force_full=args.force_full,
        cache=cache,
        cache_key=cache_key,
    )

    if args.json:
        out = {
            "file_size": report.file_size,
            "is_pe": report.is_pe,
            "is_large_file": report.is_large_file,
            "strategy": report.strategy,
        }
        if report.analysis is not None:
            out["analysis"] = report.analysis.to_dict()
        if report.hashes is not None:
            out["hashes"] = report.hashes
        if report.error is not None:
            out["error"] = report.error
        print(json.dumps(out, indent=2))
    else:
        _print_report(report)

    return 0 if report.strategy != "failed" else 1


if __name__ == "__main__":
    raise SystemExit(main())
