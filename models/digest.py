"""Digest and fetch result models.

A Digest is one run of the intelligence pipeline for a period. Its
status follows a small state machine:

    started -> completed
    started -> failed

Terminal states are never left. The four counters always equal the
number of child rows persisted for the digest; the database increments
them in the same transaction that inserts each row.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class DigestStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not DigestStatus.STARTED


class DigestStage(str, Enum):
    """Finer-grained progress marker shown to operators."""

    FETCHING = "fetching"
    ANALYZING = "analyzing"
    DRAFTING = "drafting"
    DELIVERING = "delivering"
    DONE = "done"


class Digest(BaseModel):
    id: str
    period: str
    status: DigestStatus = DigestStatus.STARTED
    stage: DigestStage = DigestStage.FETCHING
    sources_fetched: int = 0
    recommendations_generated: int = 0
    task_drafts_created: int = 0
    sop_drafts_created: int = 0
    report_url: str | None = None
    error_message: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class FetchResult(BaseModel):
    """One persisted article, owned by a digest. Immutable once created."""

    id: str
    digest_id: str
    source_id: str
    url: str
    title: str
    content: str
    content_hash: str
    fetched_at: datetime
    published_at: datetime | None = None


class AnalysisArticle(BaseModel):
    """A fetch result joined with its source, ready for prompting.

    Content is already truncated to the analyzer's per-article budget.
    """

    id: str
    source_id: str
    url: str
    title: str
    content: str
    source_name: str
    source_tier: str
    category: str
