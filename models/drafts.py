"""Draft models: reviewer-gated proposals derived from recommendations."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, model_validator


class DraftStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    DISMISSED = "dismissed"


class TaskPriority(str, Enum):
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SopDraftType(str, Enum):
    UPDATE = "update"  # Edit an existing procedure document
    NEW = "new"        # Propose a complete new procedure document


class TaskDraft(BaseModel):
    id: str = ""
    digest_id: str = ""
    recommendation_id: str
    recommendation_index: int
    title: str
    description: str
    suggested_priority: TaskPriority
    suggested_due_in_days: int
    status: DraftStatus = DraftStatus.PENDING
    task_id: str | None = None
    created_at: datetime | None = None
    reviewed_at: datetime | None = None


class SopDraft(BaseModel):
    """Proposed procedure change.

    `update` drafts must name the procedure document they edit and quote
    the section being replaced in `before_content`. `new` drafts carry
    the whole proposed document in `after_content` and no before text.
    """

    id: str = ""
    digest_id: str = ""
    recommendation_id: str | None = None
    recommendation_index: int | None = None
    draft_type: SopDraftType
    procedure_set_id: str | None = None
    procedure_doc_id: str | None = None
    title: str
    description: str = ""
    before_content: str = ""
    after_content: str
    status: DraftStatus = DraftStatus.PENDING
    created_at: datetime | None = None
    reviewed_at: datetime | None = None

    @model_validator(mode="after")
    def _check_shape(self) -> "SopDraft":
        if self.draft_type is SopDraftType.UPDATE and not self.procedure_doc_id:
            raise ValueError("update drafts must reference a procedure document")
        if self.draft_type is SopDraftType.NEW and self.before_content:
            raise ValueError("new drafts have no before_content")
        return self
