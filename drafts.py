"""Draft generation: task and SOP proposals derived from recommendations.

Both generators are deterministic and total. A recommendation that
cannot be mapped yields no draft; nothing here raises into the digest.

Task drafts:
    One per high/medium impact recommendation that is not purely about
    documentation. Priority and due date follow impact and confidence:

        high + verified  -> urgent, 3 days
        high + emerging  -> high,   7 days
        medium           -> medium, 14 days
        low              -> low,    30 days (no draft is generated)

SOP drafts:
    One per recommendation that implies a process change. The procedure
    set with the largest keyword overlap is the target:
        - set with a document  -> 'update' draft quoting the best section
        - set without document -> 'new' draft built from the set's steps
        - no matching set      -> 'new' standalone procedure
"""

import logging
import re

from pydantic import ValidationError

from models.drafts import SopDraft, SopDraftType, TaskDraft, TaskPriority
from models.procedures import ProcedureContext, ProcedureDocument
from models.recommendation import Confidence, Impact, Recommendation

logger = logging.getLogger(__name__)

DUE_IN_DAYS = {
    TaskPriority.URGENT: 3,
    TaskPriority.HIGH: 7,
    TaskPriority.MEDIUM: 14,
    TaskPriority.LOW: 30,
}

# Recommendations whose title or category is about docs, not work
_DOCUMENTATION_ONLY = re.compile(
    r"\b(documentation|docs|wiki|knowledge base|informational|fyi|for awareness)\b",
    re.IGNORECASE,
)

# Minimum shared keywords before a procedure set counts as a match
MIN_OVERLAP = 2

_WORD = re.compile(r"[a-z0-9][a-z0-9'-]{2,}")
_STOPWORDS = frozenset("""
    the and for with that this from into your our their they them have has had
    are was were will would should could can not but all any more most less than
    when what which while where who how why its it's out about over under after
    before new use using used via per each also just only very make made
""".split())


def is_documentation_only(rec: Recommendation) -> bool:
    return bool(_DOCUMENTATION_ONLY.search(f"{rec.title} {rec.category}"))


def task_priority(rec: Recommendation) -> TaskPriority:
    if rec.impact is Impact.HIGH:
        return TaskPriority.URGENT if rec.confidence is Confidence.VERIFIED else TaskPriority.HIGH
    if rec.impact is Impact.MEDIUM:
        return TaskPriority.MEDIUM
    return TaskPriority.LOW


def _sources_section(rec: Recommendation) -> str:
    lines = ["Sources:"]
    for c in rec.citations:
        line = f"- {c.source_name}: {c.source_url}"
        if c.excerpt:
            line += f' ("{c.excerpt}")'
        lines.append(line)
    return "\n".join(lines)


def _task_description(rec: Recommendation) -> str:
    parts = [rec.summary]
    if rec.details:
        parts.append(rec.details.strip())
    parts.append(f"Confidence: {rec.confidence.value} ({len({c.source_id for c in rec.citations})} source(s))")
    parts.append(_sources_section(rec))
    return "\n\n".join(parts)


def generate_task_drafts(recommendations: list[Recommendation]) -> list[TaskDraft]:
    """Derive task drafts, in recommendation order."""
    drafts = []
    for rec in recommendations:
        if rec.impact is Impact.LOW or is_documentation_only(rec):
            continue
        priority = task_priority(rec)
        try:
            drafts.append(TaskDraft(
                recommendation_id=rec.id,
                recommendation_index=rec.index,
                title=rec.title,
                description=_task_description(rec),
                suggested_priority=priority,
                suggested_due_in_days=DUE_IN_DAYS[priority],
            ))
        except ValidationError as e:
            logger.warning("Task draft skipped | rec=%d error=%s", rec.index, e)
    logger.debug("Task drafts generated | recommendations=%d drafts=%d", len(recommendations), len(drafts))
    return drafts


def keywords(text: str) -> set[str]:
    return {w for w in _WORD.findall(text.lower()) if w not in _STOPWORDS}


def _recommendation_keywords(rec: Recommendation) -> set[str]:
    return keywords(" ".join([rec.category, rec.title, rec.summary, rec.adjustment]))


def _context_keywords(ctx: ProcedureContext) -> set[str]:
    ps = ctx.procedure_set
    parts = [ps.name, ps.description]
    parts.extend(f"{s.title} {s.description}" for s in ps.steps)
    if ctx.document:
        parts.append(ctx.document.title)
    return keywords(" ".join(parts))


def match_procedure(rec: Recommendation, contexts: list[ProcedureContext]) -> ProcedureContext | None:
    """Procedure set sharing the most keywords with a recommendation.

    Ties go to the earlier context. Returns None below MIN_OVERLAP.
    """
    rec_words = _recommendation_keywords(rec)
    best, best_score = None, 0
    for ctx in contexts:
        score = len(rec_words & _context_keywords(ctx))
        if score > best_score:
            best, best_score = ctx, score
    return best if best_score >= MIN_OVERLAP else None


def split_sections(content: str) -> list[str]:
    """Split a document into sections.

    Markdown headings start a new section; without headings, paragraphs
    (blank-line separated) are the sections. Each section is returned
    exactly as it appears in the document.
    """
    lines = content.splitlines(keepends=True)
    if any(line.lstrip().startswith("#") for line in lines):
        sections, current = [], []
        for line in lines:
            if line.lstrip().startswith("#") and current:
                sections.append("".join(current))
                current = []
            current.append(line)
        if current:
            sections.append("".join(current))
    else:
        sections = re.split(r"\n\s*\n", content)
    return [s.strip() for s in sections if s.strip()]


def best_section(document: ProcedureDocument, rec: Recommendation) -> str:
    """Section of the document most related to the recommendation."""
    sections = split_sections(document.content)
    if not sections:
        return ""
    rec_words = _recommendation_keywords(rec)
    return max(sections, key=lambda s: len(rec_words & keywords(s)))


def _update_note(rec: Recommendation, period: str) -> str:
    change = rec.adjustment or rec.summary
    return f"UPDATE ({period}): {rec.title}\n{change}"


def _new_document(rec: Recommendation, ctx: ProcedureContext | None, period: str) -> str:
    lines = []
    if ctx is not None:
        ps = ctx.procedure_set
        lines += [f"# {ps.name} Strategy", "", "## Strategy Overview", "", ps.description or ps.name]
        if ps.steps:
            lines += ["", "## How It Works", ""]
            for n, step in enumerate(ps.steps, start=1):
                line = f"{n}. {step.title}"
                if step.description:
                    line += f": {step.description}"
                if step.due_in_days:
                    line += f" (due in {step.due_in_days} days)"
                lines.append(line)
    else:
        lines += [f"# {rec.title}", "", "## Purpose", "", rec.summary]

    lines += ["", f"## Recent Intelligence ({period})", "", f"### {rec.title}", "", rec.summary]
    if rec.adjustment:
        lines += ["", "Recommended adjustment:", rec.adjustment]
    lines += ["", _sources_section(rec)]
    return "\n".join(lines)


def _sop_draft(rec: Recommendation, ctx: ProcedureContext | None, period: str) -> SopDraft:
    label = f"Recommendation #{rec.index} ({rec.impact.value} impact, {rec.confidence.value})"
    if ctx is not None and ctx.document is not None:
        doc = ctx.document
        before = best_section(doc, rec)
        after = f"{before}\n\n{_update_note(rec, period)}" if before else _update_note(rec, period)
        return SopDraft(
            recommendation_id=rec.id,
            recommendation_index=rec.index,
            draft_type=SopDraftType.UPDATE,
            procedure_set_id=ctx.procedure_set.id,
            procedure_doc_id=doc.id,
            title=f"Update {doc.title}: {rec.title}",
            description=f"{label} changes the '{ctx.procedure_set.name}' procedure.",
            before_content=before,
            after_content=after,
        )
    if ctx is not None:
        return SopDraft(
            recommendation_id=rec.id,
            recommendation_index=rec.index,
            draft_type=SopDraftType.NEW,
            procedure_set_id=ctx.procedure_set.id,
            title=f"{ctx.procedure_set.name} Strategy",
            description=f"{label}; the '{ctx.procedure_set.name}' set has no strategy document yet.",
            after_content=_new_document(rec, ctx, period),
        )
    return SopDraft(
        recommendation_id=rec.id,
        recommendation_index=rec.index,
        draft_type=SopDraftType.NEW,
        title=f"{rec.title} Procedure",
        description=f"{label}; no existing procedure covers it.",
        after_content=_new_document(rec, None, period),
    )


def generate_sop_drafts(
    recommendations: list[Recommendation],
    contexts: list[ProcedureContext],
    period: str,
) -> list[SopDraft]:
    """Derive SOP drafts for recommendations that imply a process change.

    Args:
        recommendations: All recommendations of the run, in index order
        contexts: Active procedure sets with their documents
        period: Digest period label, quoted in update notes
    """
    drafts = []
    for rec in recommendations:
        if not rec.implies_process_change:
            continue
        try:
            drafts.append(_sop_draft(rec, match_procedure(rec, contexts), period))
        except ValidationError as e:
            logger.warning("SOP draft skipped | rec=%d error=%s", rec.index, e)
    logger.debug("SOP drafts generated | recommendations=%d drafts=%d", len(recommendations), len(drafts))
    return drafts
