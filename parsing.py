"""Parser for the analyzer's free-form response text.

Response contract: one block per recommendation,

    <<<RECOMMENDATION>>>
    {"title": ..., "summary": ..., "impact": "high|medium|low",
     "citations": [{"article": 0, "excerpt": "..."}],
     "category": ..., "details": ..., "process_change": true}
    <<<END>>>

Anything outside blocks is ignored. A bare JSON object with a
"recommendations" array (citationIndices / citationExcerpts) is also
accepted when the response has no blocks at all.

Malformed blocks, missing required fields and recommendations whose
citations all point outside the batch are logged and skipped; the rest
of the response is still used.
"""

import json
import logging
import re
from typing import Any

from pydantic import ValidationError

from models.digest import AnalysisArticle
from models.recommendation import Citation, Impact, Recommendation

logger = logging.getLogger(__name__)

BLOCK_START = "<<<RECOMMENDATION>>>"
BLOCK_END = "<<<END>>>"

_FENCE_START = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_FENCE_END = re.compile(r"\n?```\s*$")

REQUIRED_FIELDS = ("title", "summary", "impact", "citations")


def strip_code_fences(text: str) -> str:
    cleaned = text.strip()
    cleaned = _FENCE_START.sub("", cleaned)
    cleaned = _FENCE_END.sub("", cleaned)
    return cleaned.strip()


def _load_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        logger.warning("Malformed recommendation block skipped | error=%s", e)
        return None
    if not isinstance(value, dict):
        logger.warning("Recommendation block is not an object | type=%s", type(value).__name__)
        return None
    return value


def _legacy_items(text: str) -> list[dict[str, Any]]:
    """Items from the older single-object response shape."""
    cleaned = strip_code_fences(text)
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        # Tolerate prose around the object
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            logger.error("No recommendation blocks or JSON object in response")
            return []
        try:
            parsed = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as e:
            logger.error("Failed to parse response JSON | error=%s", e)
            return []

    items = parsed.get("recommendations") if isinstance(parsed, dict) else None
    if not isinstance(items, list):
        logger.error("No recommendations array in response")
        return []

    converted = []
    for item in items:
        if not isinstance(item, dict):
            continue
        item = dict(item)
        if "citations" not in item and "citationIndices" in item:
            indices = item.get("citationIndices") or []
            excerpts = item.get("citationExcerpts") or []
            item["citations"] = [
                {"article": idx, "excerpt": excerpts[i] if i < len(excerpts) else ""}
                for i, idx in enumerate(indices)
            ]
        converted.append(item)
    return converted


def extract_items(response: str) -> list[dict[str, Any]]:
    """Split a response into raw recommendation objects, in order."""
    if BLOCK_START not in response:
        return _legacy_items(response)

    # Each block runs from its start marker to the first end marker before
    # the next start marker
    blocks = []
    unterminated = 0
    for segment in response.split(BLOCK_START)[1:]:
        body, found, _ = segment.partition(BLOCK_END)
        if found:
            blocks.append(body)
        else:
            unterminated += 1
    if unterminated > 0:
        # Cut off at the token limit, or interrupted by the next block
        logger.warning("Unterminated recommendation blocks dropped | count=%d", unterminated)

    items = []
    for block in blocks:
        item = _load_object(block)
        if item is not None:
            items.append(item)
    return items


def _resolve_citations(raw: Any, batch: list[AnalysisArticle]) -> list[Citation]:
    """Map batch-relative article references to citations.

    References outside the batch are dropped; repeated references to the
    same fetch result are merged.
    """
    if not isinstance(raw, list):
        return []
    citations: list[Citation] = []
    seen: set[str] = set()
    for entry in raw:
        if isinstance(entry, dict):
            ref, excerpt = entry.get("article"), entry.get("excerpt", "")
        else:
            ref, excerpt = entry, ""
        if isinstance(ref, bool) or not isinstance(ref, int):
            logger.debug("Citation reference is not an integer | ref=%r", ref)
            continue
        if not 0 <= ref < len(batch):
            logger.debug("Citation out of batch range dropped | ref=%d batch=%d", ref, len(batch))
            continue
        article = batch[ref]
        if article.id in seen:
            continue
        seen.add(article.id)
        citations.append(Citation(
            fetch_result_id=article.id,
            source_id=article.source_id,
            source_url=article.url,
            source_name=article.source_name,
            excerpt=excerpt if isinstance(excerpt, str) else "",
        ))
    return citations


def build_recommendation(
    item: dict[str, Any],
    batch: list[AnalysisArticle],
    index: int,
) -> Recommendation | None:
    """Validate one raw object into a Recommendation, or None to skip it."""
    missing = [f for f in REQUIRED_FIELDS if not item.get(f)]
    if missing:
        logger.warning("Recommendation skipped | missing=%s title=%r", ",".join(missing), item.get("title"))
        return None

    impact = str(item["impact"]).strip().lower()
    if impact not in {i.value for i in Impact}:
        logger.warning("Recommendation skipped | invalid impact=%r", item["impact"])
        return None

    citations = _resolve_citations(item["citations"], batch)
    if not citations:
        logger.warning("Recommendation skipped | no resolvable citations title=%r", item["title"])
        return None

    process_change = item.get("process_change")
    try:
        return Recommendation(
            index=index,
            category=str(item.get("category") or "General SEO"),
            title=str(item["title"]).strip(),
            summary=str(item["summary"]).strip(),
            details=str(item.get("details") or ""),
            impact=impact,
            process_change=process_change if isinstance(process_change, bool) else None,
            citations=citations,
        )
    except ValidationError as e:
        logger.warning("Recommendation skipped | validation error=%s", e)
        return None


def parse_recommendations(
    response: str,
    batch: list[AnalysisArticle],
    start_index: int = 0,
) -> list[Recommendation]:
    """Parse a provider response into recommendations for one batch.

    Args:
        response: Raw provider text
        batch: The articles the prompt listed, in prompt order
        start_index: Run-wide index of the first recommendation

    Returns:
        Recommendations with consecutive indices from start_index
    """
    if not response or not response.strip():
        logger.error("Empty response from provider")
        return []

    items = extract_items(response)
    recommendations: list[Recommendation] = []
    for item in items:
        rec = build_recommendation(item, batch, start_index + len(recommendations))
        if rec is not None:
            recommendations.append(rec)

    logger.debug(
        "Response parsed | items=%d kept=%d chars=%d",
        len(items), len(recommendations), len(response),
    )
    return recommendations
