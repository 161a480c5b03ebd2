"""Tests for AnalysisConfig."""
import pytest

from peinspect.config import AnalysisConfig


def test_defaults() -> None:
    c = AnalysisConfig()
    assert c.large_file_threshold == 50 * 1024 * 1024
    assert c.header_chunk_size == 5 * 1024 * 1024
    assert c.sample_size == 100 * 1024
    assert c.degraded_section_cap == 5


def test_from_env() -> None:
    env = {
        "PEINSPECT_LARGE_FILE_THRESHOLD": "0x1000",
        "PEINSPECT_EXTERNAL_TIMEOUT": "2.5",
        "PEINSPECT_DELEGATE_SMALL_FILES": "yes",
        "PEINSPECT_EXTERNAL_ANALYZER": "custom",
    }
    c = AnalysisConfig.from_env(env)
    assert c.large_file_threshold == 0x1000
    assert c.external_timeout == 2.5
    assert c.delegate_small_files is True
    assert c.external_analyzer == "custom"


def test_from_env_ignores_invalid(caplog) -> None:
    c = AnalysisConfig.from_env({"PEINSPECT_SAMPLE_SIZE": "lots", "PEINSPECT_DELEGATE_SMALL_FILES": "maybe"})
    assert c.sample_size == AnalysisConfig().sample_size
    assert c.delegate_small_files is False
    assert "PEINSPECT_SAMPLE_SIZE" in caplog.text


def test_validate_rejects_inconsistent_thresholds() -> None:
    with pytest.raises(ValueError):
        AnalysisConfig(sample_size=2048, large_section_threshold=1024).validate()
    with pytest.raises(ValueError):
        AnalysisConfig().with_overrides(degraded_section_cap=0)
    with pytest.raises(ValueError):
        AnalysisConfig().with_overrides(max_sections=0)


def test_with_overrides_returns_new_config() -> None:
    base = AnalysisConfig()
    c = base.with_overrides(large_file_threshold=1024)
    assert c.large_file_threshold == 1024
    assert base.large_file_threshold == 50 * 1024 * 1024
