"""
Analysis thresholds and logging setup.

Thresholds are tunables, not part of the algorithms: every one of them can be
overridden from the environment (PEINSPECT_<FIELD>) or passed explicitly.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields, replace

logger = logging.getLogger(__name__)

ENV_PREFIX = "PEINSPECT_"
LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"

MB = 1024 * 1024
KB = 1024


@dataclass(frozen=True)
class AnalysisConfig:
    """Size thresholds and limits for one analyzer instance."""
    large_file_threshold: int = 50 * MB
    header_chunk_size: int = 5 * MB
    large_section_threshold: int = 1 * MB
    sample_size: int = 100 * KB
    read_chunk_size: int = 64 * KB
    degraded_section_cap: int = 5
    max_sections: int = 96
    external_timeout: float = 120.0
    delegate_small_files: bool = False
    external_analyzer: str = "pefile"

    def validate(self) -> AnalysisConfig:
        if self.sample_size <= 0 or self.read_chunk_size <= 0 or self.header_chunk_size <= 0:
            raise ValueError("sample_size, read_chunk_size and header_chunk_size must be positive")
        if self.large_section_threshold < self.sample_size:
            raise ValueError("large_section_threshold must be >= sample_size")
        if self.degraded_section_cap < 1 or self.max_sections < 1:
            raise ValueError("section caps must be at least 1")
        return self

    def with_overrides(self, **kwargs) -> AnalysisConfig:
        return replace(self, **kwargs).validate()

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> AnalysisConfig:
        """
        Build a config from PEINSPECT_* variables. Values that do not parse are
        logged and ignored so a bad variable never blocks analysis.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                overrides[f.name] = _coerce(raw, f.default)
            except ValueError:
                logger.warning("Ignoring invalid %s%s=%r", ENV_PREFIX, f.name.upper(), raw)
        return replace(cls(), **overrides).validate()


def _coerce(raw: str, default: object) -> object:
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(raw)
    if isinstance(default, int):
        return int(raw, 0)
    if isinstance(default, float):
        return float(raw)
    return raw


def setup_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
