"""
Base interface for external (native) analysis modules.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class BaseExternalAnalyzer(ABC):
    """
    An analysis module outside the direct parser. It receives the full file
    bytes and returns its own JSON-shaped dict, or raises.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Identifier used by the registry and in logs (e.g. 'pefile')."""
        ...

    def available(self) -> bool:
        """Return True if the module's backing library can be used."""
        return True

    @abstractmethod
    def analyze(self, data: bytes) -> dict[str, Any]:
        """Analyze the file bytes and return the module's raw payload."""
        ...
