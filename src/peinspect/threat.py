"""
Combined threat scoring: pattern-match records plus structural signals from
an AnalysisResult. The pattern-matching engine itself lives elsewhere; only
its match records are consumed here.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from peinspect.parser.entropy import HIGH_ENTROPY_THRESHOLD
from peinspect.types import AnalysisResult

SEVERITY_SCORES = {"high": 30, "medium": 15, "low": 5}
WX_HIGH_ENTROPY_BONUS = 20
SUSPICIOUS_IMPORT_BONUS = 15
MAX_SCORE = 100

SUSPICIOUS_IMPORT_RE = re.compile(
    r"VirtualAlloc|WriteProcessMemory|CreateProcess|WinExec|ShellExecute|URLDownload",
    re.IGNORECASE,
)
SUSPICIOUS_IMPORT_KEYWORDS = ("inject", "memory", "remote", "process", "write")
COMMON_SECTION_NAMES = frozenset({".text", ".code", "CODE", "INIT", ".init", ".data", ".rdata", ".rsrc"})
LOW_ENTROPY_THRESHOLD = 0.5
LOW_ENTROPY_MIN_SIZE = 1024


@dataclass
class PatternMatch:
    """One rule hit reported by the pattern-matching engine."""
    rule: str
    severity: str = "low"
    description: str = ""
    matches: list[str] = field(default_factory=list)
    offset: int | None = None


@dataclass
class ThreatAssessment:
    score: int
    level: str
    summary: str
    details: list[str] = field(default_factory=list)


@dataclass
class Indicator:
    title: str
    description: str
    severity: str


def _imported_functions(result: AnalysisResult) -> list[str]:
    return [fn for imp in result.imports or [] for fn in imp.functions]


def assess_threat(result: AnalysisResult | None, matches: list[PatternMatch] | None = None) -> ThreatAssessment:
    """Additive score: severity weights per match, plus W+X high-entropy and suspicious-import bonuses."""
    score = 0
    details: list[str] = []
    for m in matches or []:
        score += SEVERITY_SCORES.get(m.severity, 0)
        details.append(f'Rule "{m.rule}" triggered ({m.severity} severity)')

    if result is not None:
        wx = [
            s for s in result.sections
            if not s.is_placeholder and s.is_writable_executable and s.entropy_value > HIGH_ENTROPY_THRESHOLD
        ]
        if wx:
            score += WX_HIGH_ENTROPY_BONUS
            details.append(
                f"Found {len(wx)} section(s) with both EXECUTE and WRITE permissions and high entropy"
            )
        if any(SUSPICIOUS_IMPORT_RE.search(fn) for fn in _imported_functions(result)):
            score += SUSPICIOUS_IMPORT_BONUS
            details.append("Found suspicious imports commonly used by malware")

    score = min(score, MAX_SCORE)
    if score >= 75:
        level, summary = "critical", "Critical security threat detected"
    elif score >= 50:
        level, summary = "high", "High security risk detected"
    elif score >= 25:
        level, summary = "medium", "Moderate security concerns found"
    else:
        level, summary = "low", "Low risk assessment"
    return ThreatAssessment(score=score, level=level, summary=summary, details=details)


def suspicious_indicators(result: AnalysisResult) -> list[Indicator]:
    indicators: list[Indicator] = []
    sections = [s for s in result.sections if not s.is_placeholder]

    high = next((s for s in sections if s.entropy_value > HIGH_ENTROPY_THRESHOLD), None)
    if high is not None:
        indicators.append(
            Indicator(
                "Possible packed/encrypted content",
                f'Section "{high.name}" has high entropy ({high.entropy}), suggesting possible packing or encryption.',
                "high",
            )
        )

    functions = [fn.lower() for fn in _imported_functions(result)]
    if any(k in fn for fn in functions for k in SUSPICIOUS_IMPORT_KEYWORDS):
        indicators.append(
            Indicator(
                "Suspicious API imports",
                "This executable imports functions commonly used for code/DLL injection or memory manipulation.",
                "medium",
            )
        )

    low = next(
        (s for s in sections if s.entropy_value < LOW_ENTROPY_THRESHOLD and s.raw_size > LOW_ENTROPY_MIN_SIZE),
        None,
    )
    if low is not None:
        indicators.append(
            Indicator(
                "Unusual section entropy",
                f'Section "{low.name}" has unusually low entropy, which could indicate large blocks of the same byte.',
                "low",
            )
        )

    unusual = [s.name for s in sections if s.name not in COMMON_SECTION_NAMES]
    if unusual:
        indicators.append(
            Indicator("Unusual section names", f"Found sections with uncommon names: {', '.join(unusual)}", "low")
        )
    return indicators
