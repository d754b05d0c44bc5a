"""Core data models for the insights pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class ProcessingStatus(str, Enum):
    """Lifecycle of a collected article."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    RETRYING = "RETRYING"


class Category(str, Enum):
    """Business category assigned by the classifier."""

    PRODUCT = "PRODUCT"
    PARTNERSHIP = "PARTNERSHIP"
    STRATEGY = "STRATEGY"

    @property
    def display_name(self) -> str:
        return _CATEGORY_LABELS[self][0]

    @property
    def description(self) -> str:
        return _CATEGORY_LABELS[self][1]

    @classmethod
    def from_name(cls, name: str | None) -> Category | None:
        """Case-insensitive lookup; also accepts the legacy Portuguese tokens."""
        if name is None:
            return None
        token = str(name).strip().upper()
        token = _CATEGORY_ALIASES.get(token, token)
        try:
            return cls(token)
        except ValueError:
            return None


_CATEGORY_LABELS = {
    Category.PRODUCT: ("🧩 Product", "New products, technologies and innovations"),
    Category.PARTNERSHIP: ("🤝 Partnership", "Partnership and collaboration opportunities"),
    Category.STRATEGY: ("📈 Strategy", "Strategic moves and market trends"),
}

_CATEGORY_ALIASES = {
    "PRODUTO": "PRODUCT",
    "PARCERIA": "PARTNERSHIP",
    "ESTRATEGIA": "STRATEGY",
    "ESTRATÉGIA": "STRATEGY",
}

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5


def confidence_tier(score: float | None) -> str:
    """Bucket a confidence score into High / Medium / Low / N/A."""
    if score is None:
        return "N/A"
    if score >= HIGH_CONFIDENCE:
        return "High"
    if score >= MEDIUM_CONFIDENCE:
        return "Medium"
    return "Low"


@dataclass
class Article:
    """A single collected news article."""

    url: str
    title: str
    description: str
    source_name: str = ""
    content: str | None = None
    image_url: str | None = None
    author: str | None = None
    published_at: datetime | None = None
    language: str | None = None
    country: str | None = None
    keyword: str = ""
    status: ProcessingStatus = ProcessingStatus.PENDING
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: int | None = None

    def short_title(self, max_length: int = 50) -> str:
        if len(self.title) > max_length:
            return self.title[:max_length] + "..."
        return self.title


@dataclass
class AnalysisResult:
    """Parsed classifier output for one article."""

    relevant: bool | None = None
    reason: str | None = None
    category: Category | None = None
    suggested_action: str | None = None
    confidence: float | None = None
    summary: str | None = None
    keywords: str | None = None
    processing_time_ms: int = 0
    completed_at: datetime = field(default_factory=datetime.now)
    error: bool = False

    @property
    def is_successful(self) -> bool:
        """A result counts as successful once both relevance and category are known."""
        return self.relevant is not None and self.category is not None


@dataclass
class Insight:
    """AI classification stored for exactly one article."""

    article_id: int
    is_relevant: bool | None
    category: Category | None
    relevance_reason: str | None = None
    suggested_action: str | None = None
    confidence_score: float | None = None
    executive_summary: str | None = None
    extracted_keywords: str | None = None
    ai_model: str = ""
    processing_time_ms: int = 0
    processed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    article: Article | None = None
    id: int | None = None

    @property
    def confidence_level(self) -> str:
        return confidence_tier(self.confidence_score)

    @property
    def has_high_confidence(self) -> bool:
        return self.confidence_score is not None and self.confidence_score >= HIGH_CONFIDENCE


@dataclass
class PipelineRun:
    """Record of a single pipeline execution."""

    trigger: str = "full"  # full, collect, process
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None
    status: str = "running"  # running, completed, failed
    collected: int = 0
    processed: int = 0
    retried: int = 0
    expired: int = 0
    execution_time_ms: int = 0
    llm_tokens_used: int = 0
    error: str | None = None
    id: int | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "trigger": self.trigger,
            "status": self.status,
            "collected": self.collected,
            "processed": self.processed,
            "retried": self.retried,
            "expired": self.expired,
            "execution_time_ms": self.execution_time_ms,
            "llm_tokens_used": self.llm_tokens_used,
            "error": self.error,
            "success": self.success,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
