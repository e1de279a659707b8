"""Recommendation models produced by the AI analyzer."""

import re
import uuid
from enum import Enum

from pydantic import BaseModel, Field, computed_field

_ADJUSTMENT_PATTERN = re.compile(
    r"RECOMMENDED ADJUSTMENT:\s*(.*?)(?=\n[A-Z][A-Z' ]+:|\Z)",
    re.DOTALL,
)


class Impact(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Confidence(str, Enum):
    """Corroboration label.

    VERIFIED: cited by two or more distinct sources
    EMERGING: cited by a single source
    """

    VERIFIED = "verified"
    EMERGING = "emerging"


class Citation(BaseModel):
    """Link from a recommendation back to the article that supports it."""

    fetch_result_id: str
    source_id: str
    source_url: str
    source_name: str
    excerpt: str = ""


class Recommendation(BaseModel):
    """A structured, citation-backed finding.

    `index` is the recommendation's position within its digest run and
    keeps increasing across batches. Drafts reference `id` for stable
    linkage and carry `index` for display.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    index: int = 0
    category: str = "General SEO"
    title: str
    summary: str
    details: str = ""
    impact: Impact = Impact.MEDIUM
    process_change: bool | None = None
    citations: list[Citation] = Field(min_length=1)

    @computed_field
    @property
    def confidence(self) -> Confidence:
        distinct_sources = {c.source_id for c in self.citations}
        return Confidence.VERIFIED if len(distinct_sources) >= 2 else Confidence.EMERGING

    @property
    def adjustment(self) -> str:
        """Text of the RECOMMENDED ADJUSTMENT section in details, if any."""
        match = _ADJUSTMENT_PATTERN.search(self.details or "")
        return match.group(1).strip() if match else ""

    @property
    def implies_process_change(self) -> bool:
        if self.process_change is not None:
            return self.process_change
        return bool(self.adjustment)

    def __str__(self) -> str:
        return f"Recommendation(#{self.index} '{self.title[:50]}' {self.impact.value}/{self.confidence.value})"
