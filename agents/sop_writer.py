"""Optional SOP refinement agent.

Rewrites the deterministic `after_content` of SOP drafts into polished
procedure prose. Refinement is best effort: any failure keeps the
original draft, so draft generation never fails a digest.
"""

import asyncio
import logging

from pydantic_ai import UsageLimits
from pydantic_ai.models import Model

from agents.analyzer import AnalyzerContext, create_text_agent
from config import Config
from models.drafts import SopDraft, SopDraftType
from models.recommendation import Recommendation

logger = logging.getLogger(__name__)

SOP_WRITER_PROMPT = """You are a strategy document writer for {agency_name}, {agency_focus}.

You receive a draft change to a standard operating procedure together with the recommendation behind it. Rewrite the draft into clear, practical procedure text.

## Rules
- Keep every concrete instruction, number and source reference from the draft.
- Do not invent facts, tools or deadlines.
- For a section update, return only the rewritten section (it replaces the original section verbatim).
- For a new document, return the complete document with headings.
- Return the procedure text only, with no preamble and no code fences."""


def _build_message(draft: SopDraft, rec: Recommendation | None) -> str:
    kind = "SECTION UPDATE" if draft.draft_type is SopDraftType.UPDATE else "NEW DOCUMENT"
    lines = [f"DRAFT TYPE: {kind}", f"TITLE: {draft.title}"]
    if rec is not None:
        lines += [
            "",
            f"RECOMMENDATION: {rec.title} ({rec.impact.value} impact, {rec.confidence.value})",
            rec.summary,
        ]
        if rec.details:
            lines.append(rec.details)
    if draft.before_content:
        lines += ["", "CURRENT SECTION:", draft.before_content]
    lines += ["", "DRAFT:", draft.after_content]
    return "\n".join(lines)


class SopWriterAgent:
    """Polishes SOP drafts with one model call each."""

    def __init__(self, config: Config, model: str | Model | None = None):
        self.config = config
        self._agent = create_text_agent(model or config.sop_model)
        self._context = AnalyzerContext(
            system_prompt=SOP_WRITER_PROMPT.format(
                agency_name=config.agency_name,
                agency_focus=config.agency_focus,
            )
        )

    async def refine(self, draft: SopDraft, rec: Recommendation | None) -> str:
        result = await asyncio.wait_for(
            self._agent.run(
                _build_message(draft, rec),
                deps=self._context,
                usage_limits=UsageLimits(request_limit=1),
                model_settings={"max_tokens": self.config.analyzer_max_tokens},
            ),
            timeout=self.config.provider_timeout_seconds,
        )
        return result.output.strip()

    async def refine_drafts(
        self,
        drafts: list[SopDraft],
        recommendations: list[Recommendation],
    ) -> list[SopDraft]:
        """Return drafts with refined after_content where refinement worked."""
        by_id = {r.id: r for r in recommendations}
        refined = []
        for draft in drafts:
            try:
                text = await self.refine(draft, by_id.get(draft.recommendation_id))
            except Exception as e:
                logger.warning("SOP refinement failed, keeping draft | title=%s error=%s", draft.title[:50], e)
                refined.append(draft)
                continue
            if not text:
                refined.append(draft)
                continue
            refined.append(draft.model_copy(update={"after_content": text}))
        logger.info("SOP drafts refined | drafts=%d", len(drafts))
        return refined
