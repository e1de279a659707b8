"""Procedure (SOP) and work-item models the review workflow mutates."""

from datetime import date, datetime

from pydantic import BaseModel, Field


class ProcedureStep(BaseModel):
    """One template step in a procedure set."""

    title: str
    description: str = ""
    due_in_days: int | None = None
    sort_order: int = 0


class ProcedureDocument(BaseModel):
    id: str
    title: str
    content: str
    updated_at: datetime | None = None


class ProcedureSet(BaseModel):
    """A named group of procedure steps with an optional strategy document."""

    id: str
    name: str
    description: str = ""
    active: bool = True
    document_id: str | None = None
    steps: list[ProcedureStep] = Field(default_factory=list)


class ProcedureContext(BaseModel):
    """A procedure set with its document content loaded, for drafting."""

    procedure_set: ProcedureSet
    document: ProcedureDocument | None = None


class Project(BaseModel):
    id: str
    name: str


class Task(BaseModel):
    id: str
    project_id: str
    title: str
    description: str
    priority: str
    due_date: date
    source_draft_id: str | None = None
    created_at: datetime | None = None
