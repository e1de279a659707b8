"""Review workflow: apply, dismiss and edit drafts.

Every mutation is a compare-and-set on `status = 'pending'` inside the
database, so two reviewers acting on the same draft cannot both succeed.
A rejected operation raises a ReviewError subclass and leaves the draft
untouched; the reviewer can retry with corrected input.
"""

import logging
from datetime import date, timedelta

from database import Database
from models.drafts import DraftStatus, SopDraft, SopDraftType, TaskDraft
from models.procedures import Task

logger = logging.getLogger(__name__)


class ReviewError(Exception):
    """Base class for user-visible review failures."""


class DraftNotFoundError(ReviewError):
    pass


class DraftNotPendingError(ReviewError):
    def __init__(self, draft_id: str, status: DraftStatus | str):
        status = status.value if isinstance(status, DraftStatus) else status
        super().__init__(f"Draft {draft_id} is {status}, not pending")
        self.draft_id = draft_id
        self.status = status


class InvalidProjectError(ReviewError):
    pass


class MissingProcedureError(ReviewError):
    pass


class InvalidEditError(ReviewError):
    pass


class ReviewWorkflow:
    """Operator actions on task and SOP drafts.

    Example:
        >>> review = ReviewWorkflow(db)
        >>> task = review.apply_task_draft(draft_id, project_id)
        >>> review.dismiss_draft(other_draft_id)
    """

    def __init__(self, db: Database):
        self.db = db

    def _task_draft(self, draft_id: str) -> TaskDraft:
        draft = self.db.get_task_draft(draft_id)
        if draft is None:
            raise DraftNotFoundError(f"Task draft {draft_id} not found")
        return draft

    def _sop_draft(self, draft_id: str) -> SopDraft:
        draft = self.db.get_sop_draft(draft_id)
        if draft is None:
            raise DraftNotFoundError(f"SOP draft {draft_id} not found")
        return draft

    def _lost_race(self, table: str, draft_id: str) -> DraftNotPendingError:
        # The CAS failed, so someone else changed the status first
        current = self.db.get_task_draft(draft_id) if table == "task_drafts" else self.db.get_sop_draft(draft_id)
        return DraftNotPendingError(draft_id, current.status if current else "gone")

    def apply_task_draft(self, draft_id: str, project_id: str, due_date: date | None = None) -> Task:
        """Create a real task from a pending draft.

        Args:
            draft_id: Task draft to apply
            project_id: Target project (must exist)
            due_date: Defaults to today plus the draft's suggested days

        Raises:
            DraftNotFoundError, DraftNotPendingError, InvalidProjectError
        """
        draft = self._task_draft(draft_id)
        if draft.status is not DraftStatus.PENDING:
            raise DraftNotPendingError(draft_id, draft.status)
        if not project_id or self.db.get_project(project_id) is None:
            raise InvalidProjectError(f"Project {project_id!r} does not exist")

        due = due_date or date.today() + timedelta(days=draft.suggested_due_in_days)
        task = self.db.apply_task_draft(draft, project_id, due)
        if task is None:
            raise self._lost_race("task_drafts", draft_id)
        return task

    def apply_task_drafts(self, draft_ids: list[str], project_id: str) -> list[Task]:
        """Bulk-apply task drafts with their suggested due dates.

        Drafts that are missing or no longer pending are skipped.

        Raises:
            InvalidProjectError: Before any draft is touched
        """
        if not project_id or self.db.get_project(project_id) is None:
            raise InvalidProjectError(f"Project {project_id!r} does not exist")
        tasks = []
        for draft_id in draft_ids:
            try:
                tasks.append(self.apply_task_draft(draft_id, project_id))
            except (DraftNotFoundError, DraftNotPendingError) as e:
                logger.info("Bulk apply skipped draft | draft=%s reason=%s", draft_id, e)
        logger.info("Bulk apply complete | requested=%d applied=%d", len(draft_ids), len(tasks))
        return tasks

    def apply_sop_draft(self, draft_id: str) -> str:
        """Apply a pending SOP draft to the procedure library.

        Update drafts replace the quoted section of the target document
        with the draft's after content (appending when the section is no
        longer present). New drafts create a document.

        Returns:
            Id of the procedure document written

        Raises:
            DraftNotFoundError, DraftNotPendingError, MissingProcedureError
        """
        draft = self._sop_draft(draft_id)
        if draft.status is not DraftStatus.PENDING:
            raise DraftNotPendingError(draft_id, draft.status)

        if draft.draft_type is SopDraftType.UPDATE:
            doc = self.db.get_procedure_document(draft.procedure_doc_id)
            if doc is None:
                raise MissingProcedureError(f"Procedure document {draft.procedure_doc_id} does not exist")
            if draft.before_content and draft.before_content in doc.content:
                content = doc.content.replace(draft.before_content, draft.after_content, 1)
            else:
                logger.warning("Quoted section not found, appending | draft=%s doc=%s", draft_id, doc.id)
                content = f"{doc.content.rstrip()}\n\n{draft.after_content}"
            if not self.db.apply_sop_update(draft_id, doc.id, content):
                raise self._lost_race("sop_drafts", draft_id)
            logger.info("SOP update applied | draft=%s doc=%s", draft_id, doc.id)
            return doc.id

        if draft.procedure_set_id and self.db.get_procedure_set(draft.procedure_set_id) is None:
            raise MissingProcedureError(f"Procedure set {draft.procedure_set_id} does not exist")
        doc_id = self.db.apply_sop_new(draft_id, draft.title, draft.after_content, draft.procedure_set_id)
        if doc_id is None:
            raise self._lost_race("sop_drafts", draft_id)
        logger.info("SOP document created | draft=%s doc=%s", draft_id, doc_id)
        return doc_id

    def dismiss_draft(self, draft_id: str) -> None:
        """Dismiss a pending task or SOP draft.

        Raises:
            DraftNotFoundError, DraftNotPendingError
        """
        if self.db.get_task_draft(draft_id) is not None:
            table = "task_drafts"
        elif self.db.get_sop_draft(draft_id) is not None:
            table = "sop_drafts"
        else:
            raise DraftNotFoundError(f"Draft {draft_id} not found")
        if not self.db.dismiss_draft(table, draft_id):
            raise self._lost_race(table, draft_id)
        logger.info("Draft dismissed | draft=%s", draft_id)

    def edit_sop_draft(self, draft_id: str, after_content: str) -> SopDraft:
        """Overwrite a pending SOP draft's proposed content.

        Raises:
            DraftNotFoundError, DraftNotPendingError, InvalidEditError
        """
        if not after_content or not after_content.strip():
            raise InvalidEditError("after_content must not be empty")
        draft = self._sop_draft(draft_id)
        if draft.status is not DraftStatus.PENDING:
            raise DraftNotPendingError(draft_id, draft.status)
        if not self.db.edit_sop_draft(draft_id, after_content):
            raise self._lost_race("sop_drafts", draft_id)
        logger.info("SOP draft edited | draft=%s chars=%d", draft_id, len(after_content))
        return self._sop_draft(draft_id)
