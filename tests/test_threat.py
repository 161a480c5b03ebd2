"""Tests for threat scoring and suspicious indicators."""
from peinspect.threat import PatternMatch, assess_threat, suspicious_indicators
from peinspect.types import AnalysisResult, ImportRecord, SectionRecord

RWX = 0xE0000020


def _result(sections=(), imports=None):
    return AnalysisResult(file_size=1, sections=list(sections), imports=imports)


def test_empty_is_low() -> None:
    t = assess_threat(None, [])
    assert (t.score, t.level) == (0, "low")


def test_severity_weights() -> None:
    t = assess_threat(None, [PatternMatch("a", "high"), PatternMatch("b", "medium"), PatternMatch("c", "low")])
    assert t.score == 50
    assert t.level == "high"
    assert len(t.details) == 3


def test_wx_high_entropy_bonus() -> None:
    packed = SectionRecord(name="UPX1", entropy="7.500000", characteristics=RWX)
    t = assess_threat(_result([packed]))
    assert t.score == 20


def test_wx_low_entropy_has_no_bonus() -> None:
    plain = SectionRecord(name=".text", entropy="5.000000", characteristics=RWX)
    assert assess_threat(_result([plain])).score == 0


def test_suspicious_import_bonus() -> None:
    imports = [ImportRecord("KERNEL32.dll", ["virtualallocex", "GetTickCount"])]
    assert assess_threat(_result(imports=imports)).score == 15


def test_score_capped() -> None:
    t = assess_threat(None, [PatternMatch(str(i), "high") for i in range(5)])
    assert t.score == 100
    assert t.level == "critical"


def test_indicators() -> None:
    result = _result(
        [
            SectionRecord(name=".text", entropy="6.000000", raw_size=4096),
            SectionRecord(name="UPX1", entropy="7.900000", raw_size=4096),
            SectionRecord(name=".data", entropy="0.100000", raw_size=2048),
            SectionRecord(name="Error processing section"),
        ],
        imports=[ImportRecord("KERNEL32.dll", ["WriteProcessMemory"])],
    )
    titles = [i.title for i in suspicious_indicators(result)]
    assert titles == [
        "Possible packed/encrypted content",
        "Suspicious API imports",
        "Unusual section entropy",
        "Unusual section names",
    ]
    unusual = suspicious_indicators(result)[-1]
    assert "UPX1" in unusual.description
    assert "Error processing" not in unusual.description


def test_no_indicators_for_plain_file() -> None:
    result = _result([SectionRecord(name=".text", entropy="6.000000", raw_size=4096)])
    assert suspicious_indicators(result) == []
