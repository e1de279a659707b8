"""Digest delivery and alerts.

This module handles all output for a finished (or failed) digest:
- Markdown digest report saved to disk (its path becomes the report link)
- Webhook POST notifications
- JSONL alerts file

All notification methods are async and fail gracefully (errors are logged
but don't affect other notifications or the digest's status).

Output Formats:
    Markdown: Recommendations with citations, task drafts, SOP drafts
    Webhook: JSON payload for integration with external systems
    JSONL: One JSON object per line for log aggregation
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import aiohttp

from config import Config
from models.digest import Digest
from models.drafts import SopDraft, SopDraftType, TaskDraft
from models.recommendation import Confidence, Impact, Recommendation

logger = logging.getLogger(__name__)

TOP_RECOMMENDATIONS = 5


def _digest_filename(digest: Digest) -> str:
    return f"{digest.period}_digest_{digest.id[:8]}.md"


def render_digest_markdown(
    digest: Digest,
    recommendations: list[Recommendation],
    task_drafts: list[TaskDraft],
    sop_drafts: list[SopDraft],
) -> str:
    """Render a digest into a human-readable markdown report."""
    generated_str = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    high = sum(1 for r in recommendations if r.impact is Impact.HIGH)
    verified = sum(1 for r in recommendations if r.confidence is Confidence.VERIFIED)
    lines = [
        f"# SEO Intelligence Report: {digest.period}",
        "",
        f"**Generated:** {generated_str}",
        f"**Digest:** {digest.id}",
        f"**Articles analyzed:** {digest.sources_fetched}",
        f"**Recommendations:** {len(recommendations)} (high impact: {high}, verified: {verified})",
        f"**Task drafts:** {len(task_drafts)}",
        f"**SOP drafts:** {len(sop_drafts)}",
    ]

    if recommendations:
        lines.extend(["", "## Recommendations"])
    for rec in recommendations:
        lines.extend([
            "",
            f"### {rec.index + 1}. {rec.title}",
            "",
            f"*{rec.category}* | impact: **{rec.impact.value}** | confidence: **{rec.confidence.value}**",
            "",
            rec.summary,
        ])
        if rec.details:
            lines.extend(["", rec.details])
        lines.extend(["", "Sources:"])
        for c in rec.citations:
            line = f"- [{c.source_name}]({c.source_url})"
            if c.excerpt:
                line += f": \"{c.excerpt}\""
            lines.append(line)

    if task_drafts:
        lines.extend(["", "## Task Drafts", ""])
        for draft in task_drafts:
            lines.append(
                f"- [{draft.suggested_priority.value}] {draft.title} "
                f"(due in {draft.suggested_due_in_days} days, rec #{draft.recommendation_index + 1}, id {draft.id})"
            )

    if sop_drafts:
        lines.extend(["", "## SOP Drafts"])
        for draft in sop_drafts:
            lines.extend(["", f"### {draft.title}", "", f"*{draft.draft_type.value}* | id {draft.id}", ""])
            if draft.description:
                lines.extend([draft.description, ""])
            if draft.draft_type is SopDraftType.UPDATE:
                lines.extend(["Before:", "", "```", draft.before_content, "```", "", "After:", ""])
            lines.extend(["```", draft.after_content, "```"])

    return "\n".join(lines) + "\n"


def build_summary(digest: Digest, recommendations: list[Recommendation], report_url: str | None) -> str:
    """Short plain-text summary for chat-style webhook consumers."""
    high = [r for r in recommendations if r.impact is Impact.HIGH]
    verified = sum(1 for r in recommendations if r.confidence is Confidence.VERIFIED)
    lines = [
        f"SEO Intelligence Report: {digest.period}",
        "",
        f"Articles analyzed: {digest.sources_fetched}",
        f"Recommendations: {len(recommendations)}",
        f"High-impact: {len(high)} | Verified: {verified}",
        f"Task drafts: {digest.task_drafts_created} | SOP drafts: {digest.sop_drafts_created}",
    ]
    if high:
        lines.extend(["", "Top recommendations:"])
        for rec in high[:TOP_RECOMMENDATIONS]:
            badge = "V" if rec.confidence is Confidence.VERIFIED else "E"
            lines.append(f"[{badge}] {rec.title}")
    if report_url:
        lines.extend(["", f"Full report: {report_url}"])
    lines.extend(["", "Review drafts to approve actions."])
    return "\n".join(lines)


async def save_digest_report(markdown: str, digest: Digest, reports_dir: Path) -> Path | None:
    """Save a digest markdown file."""
    try:
        reports_dir.mkdir(parents=True, exist_ok=True)
        filepath = reports_dir / _digest_filename(digest)
        filepath.write_text(markdown, encoding="utf-8")
        logger.info("Digest report saved | file=%s", filepath.name)
        return filepath
    except Exception as e:
        logger.error("Digest report save failed: %s", e, exc_info=True)
        return None


async def send_webhook(payload: dict[str, Any], url: str) -> bool:
    """Send notification via webhook POST."""
    if not url:
        return True

    try:
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url, json=payload, timeout=aiohttp.ClientTimeout(total=10)
            ) as resp:
                if resp.status < 300:
                    logger.debug("Webhook sent | type=%s", payload.get("type"))
                    return True
                logger.warning("Webhook failed | status=%d type=%s", resp.status, payload.get("type"))
                return False
    except asyncio.TimeoutError:
        logger.warning("Webhook timeout | url=%s", url[:50])
        return False
    except Exception as e:
        logger.error("Webhook error: %s (%s)", e, type(e).__name__, exc_info=True)
        return False


async def append_alerts_file(alert: dict[str, Any], filepath: str) -> bool:
    """Append alert to JSONL file."""
    if not filepath:
        return True

    try:
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)

        # Warn if file is getting large (> 100MB)
        if path.exists():
            size_mb = path.stat().st_size / (1024 * 1024)
            if size_mb > 100:
                logger.warning("Alerts file large | size=%.1fMB path=%s", size_mb, filepath)

        with open(path, "a", encoding="utf-8") as f:
            f.write(json.dumps(alert, ensure_ascii=False) + "\n")
        return True
    except Exception as e:
        logger.error("Alerts file error: %s (%s)", e, type(e).__name__, exc_info=True)
        return False


async def _broadcast(payload: dict[str, Any], config: Config) -> bool:
    webhook_ok = await send_webhook(payload, config.webhook_url)
    alerts_ok = await append_alerts_file(payload, config.alerts_file)
    return webhook_ok and alerts_ok


async def deliver_digest(
    digest: Digest,
    recommendations: list[Recommendation],
    task_drafts: list[TaskDraft],
    sop_drafts: list[SopDraft],
    config: Config,
) -> Path | None:
    """Write the digest report and send the configured notifications.

    Returns:
        Path of the saved report, or None if it could not be written
    """
    markdown = render_digest_markdown(digest, recommendations, task_drafts, sop_drafts)
    report_path = await save_digest_report(markdown, digest, config.reports_dir)
    report_url = str(report_path) if report_path else None

    payload = {
        "type": "digest_completed",
        "timestamp": datetime.now().isoformat(),
        "digest_id": digest.id,
        "period": digest.period,
        "sources_fetched": digest.sources_fetched,
        "recommendations": len(recommendations),
        "task_drafts": len(task_drafts),
        "sop_drafts": len(sop_drafts),
        "report_url": report_url,
        "message": build_summary(digest, recommendations, report_url),
    }
    if not await _broadcast(payload, config):
        logger.warning("Digest notification incomplete | digest=%s", digest.id)
    return report_path


async def notify_failure(digest_id: str, period: str, error: str, config: Config) -> bool:
    """Best-effort alert that a digest run failed."""
    payload = {
        "type": "digest_failed",
        "timestamp": datetime.now().isoformat(),
        "digest_id": digest_id,
        "period": period,
        "error": error,
    }
    return await _broadcast(payload, config)
