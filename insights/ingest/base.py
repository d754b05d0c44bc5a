"""Abstract base class for news search sources."""

from __future__ import annotations

from abc import ABC, abstractmethod

from insights.models import Article


class SourceError(RuntimeError):
    """The provider answered with an error status instead of results."""


class BaseSource(ABC):
    """Base class for keyword-driven news search sources."""

    def __init__(self, config: dict):
        self.config = config

    @abstractmethod
    async def search(self, keyword: str) -> list[Article]:
        """Run one search for ``keyword`` and return the valid candidate articles.

        Raises on transport failures and provider-reported errors; the
        collector decides how to degrade.
        """
        ...

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable source name."""
        ...
