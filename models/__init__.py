"""Pydantic models for the SEO intelligence pipeline.

Source, Article:
    Configured content sources and the normalized items fetched from them.

Digest, FetchResult, AnalysisArticle:
    One pipeline run and the articles it collected.

Recommendation, Citation:
    Typed findings extracted from model output, with their evidence.

TaskDraft, SopDraft:
    Reviewer-gated proposals derived from recommendations.

ProcedureSet, ProcedureDocument, Project, Task:
    Durable objects the review workflow creates or edits.

Example:
    >>> from models import Source, FetchMethod
    >>> Source(name="Whitespark", url="https://whitespark.ca/blog/feed/", fetch_method=FetchMethod.RSS)
"""

from models.source import Article, FetchMethod, Source, SourceTier, TRANSCRIPT_MARKER
from models.digest import AnalysisArticle, Digest, DigestStage, DigestStatus, FetchResult
from models.recommendation import Citation, Confidence, Impact, Recommendation
from models.drafts import DraftStatus, SopDraft, SopDraftType, TaskDraft, TaskPriority
from models.procedures import (
    ProcedureContext,
    ProcedureDocument,
    ProcedureSet,
    ProcedureStep,
    Project,
    Task,
)

__all__ = [
    "Article",
    "FetchMethod",
    "Source",
    "SourceTier",
    "TRANSCRIPT_MARKER",
    "AnalysisArticle",
    "Digest",
    "DigestStage",
    "DigestStatus",
    "FetchResult",
    "Citation",
    "Confidence",
    "Impact",
    "Recommendation",
    "DraftStatus",
    "SopDraft",
    "SopDraftType",
    "TaskDraft",
    "TaskPriority",
    "ProcedureContext",
    "ProcedureDocument",
    "ProcedureSet",
    "ProcedureStep",
    "Project",
    "Task",
]
