"""
Static PE structure analysis: header decoding, section entropy and
size-adaptive orchestration.
"""
__version__ = "0.1.0"

from peinspect.config import AnalysisConfig
from peinspect.normalizer import ExternalPayload, normalize
from peinspect.orchestrator import ProgressiveAnalyzer, run
from peinspect.types import (
    AnalysisResult,
    ImportRecord,
    ResourceRecord,
    ScanReport,
    SectionRecord,
)

__all__ = [
    "__version__",
    "AnalysisConfig",
    "AnalysisResult",
    "ExternalPayload",
    "ImportRecord",
    "ProgressiveAnalyzer",
    "ResourceRecord",
    "ScanReport",
    "SectionRecord",
    "normalize",
    "run",
]
