"""Article relevance classification."""

from __future__ import annotations

from insights.classify.classifier import classify, persist  # noqa: F401
