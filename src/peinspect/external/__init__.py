"""
External analysis module registry and runner.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any

from peinspect.errors import ExternalModuleFailure
from peinspect.external.base import BaseExternalAnalyzer
from peinspect.external.pefile_analyzer import PefileAnalyzer

logger = logging.getLogger(__name__)

# Default set of analyzers; can be extended by registering more
_REGISTRY: dict[str, BaseExternalAnalyzer] = {
    "pefile": PefileAnalyzer(),
}


def register_external_analyzer(analyzer: BaseExternalAnalyzer) -> None:
    _REGISTRY[analyzer.name] = analyzer


def get_external_analyzer(name: str | None = None) -> BaseExternalAnalyzer | None:
    """Return the named analyzer, or the first available one when name is None."""
    if name is not None:
        return _REGISTRY.get(name)
    for analyzer in _REGISTRY.values():
        if analyzer.available():
            return analyzer
    return None


def validate_payload(payload: Any) -> dict[str, Any]:
    """Reject payloads the normalizer cannot work with."""
    if not isinstance(payload, dict):
        raise ExternalModuleFailure(f"expected a JSON object, got {type(payload).__name__}")
    if not isinstance(payload.get("header"), dict):
        raise ExternalModuleFailure("payload has no 'header' object")
    if not isinstance(payload.get("sections"), list):
        raise ExternalModuleFailure("payload has no 'sections' list")
    return payload


async def run_external(analyzer: BaseExternalAnalyzer, data: bytes, timeout: float) -> dict[str, Any]:
    """
    Run analyzer.analyze(data) in a worker thread with a timeout.
    Any failure (unavailable, exception, timeout, bad shape) is raised as ExternalModuleFailure.

    A timeout abandons the worker thread but cannot stop it: the analyzer keeps
    running in the background until it returns, and its result is discarded.
    """
    if not analyzer.available():
        raise ExternalModuleFailure(f"external analyzer '{analyzer.name}' is not available")
    try:
        payload = await asyncio.wait_for(asyncio.to_thread(analyzer.analyze, data), timeout=timeout)
    except asyncio.TimeoutError as e:
        raise ExternalModuleFailure(f"external analyzer '{analyzer.name}' timed out after {timeout}s") from e
    except ExternalModuleFailure:
        raise
    except Exception as e:
        raise ExternalModuleFailure(f"external analyzer '{analyzer.name}' failed: {e}") from e
    return validate_payload(payload)


__all__ = [
    "BaseExternalAnalyzer",
    "PefileAnalyzer",
    "get_external_analyzer",
    "register_external_analyzer",
    "run_external",
    "validate_payload",
]
