"""Tests for digest report rendering and delivery."""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

from models.digest import Digest
from models.drafts import SopDraft, SopDraftType, TaskDraft, TaskPriority
from models.recommendation import Citation, Recommendation
from notifications import build_summary, deliver_digest, notify_failure, render_digest_markdown


def _make_digest() -> Digest:
    return Digest(
        id="0123456789abcdef",
        period="2026-10",
        sources_fetched=12,
        task_drafts_created=1,
        sop_drafts_created=1,
        created_at=datetime.now(timezone.utc),
    )


def _make_rec(index: int = 0, impact: str = "high") -> Recommendation:
    return Recommendation(
        index=index,
        category="LSA",
        title=f"Rec {index}",
        summary="Google changed LSA lead dispute rules.",
        impact=impact,
        citations=[
            Citation(fetch_result_id="f1", source_id="s1", source_url="https://a.example.com", source_name="A", excerpt="quote"),
            Citation(fetch_result_id="f2", source_id="s2", source_url="https://b.example.com", source_name="B"),
        ],
    )


def _make_drafts(rec: Recommendation) -> tuple[list[TaskDraft], list[SopDraft]]:
    task = TaskDraft(
        id="task-1",
        recommendation_id=rec.id,
        recommendation_index=rec.index,
        title=rec.title,
        description="d",
        suggested_priority=TaskPriority.URGENT,
        suggested_due_in_days=3,
    )
    sop = SopDraft(
        id="sop-1",
        draft_type=SopDraftType.UPDATE,
        procedure_doc_id="doc-1",
        title="Update LSA SOP",
        before_content="Old step",
        after_content="New step",
    )
    return [task], [sop]


class TestRender:
    def test_markdown_contains_everything(self):
        rec = _make_rec()
        tasks, sops = _make_drafts(rec)
        markdown = render_digest_markdown(_make_digest(), [rec], tasks, sops)
        assert markdown.startswith("# SEO Intelligence Report: 2026-10")
        assert "### 1. Rec 0" in markdown
        assert "confidence: **verified**" in markdown
        assert '- [A](https://a.example.com): "quote"' in markdown
        assert "[urgent] Rec 0" in markdown
        assert "Before:" in markdown and "Old step" in markdown and "New step" in markdown

    def test_summary_lists_high_impact(self):
        recs = [_make_rec(0, "high"), _make_rec(1, "low")]
        summary = build_summary(_make_digest(), recs, "reports/x.md")
        assert "[V] Rec 0" in summary
        assert "Rec 1" not in summary
        assert "Full report: reports/x.md" in summary


class TestDeliver:
    def test_writes_report_and_alert(self, config):
        rec = _make_rec()
        tasks, sops = _make_drafts(rec)
        path = asyncio.run(deliver_digest(_make_digest(), [rec], tasks, sops, config))
        assert path.name == "2026-10_digest_01234567.md"
        assert path.read_text(encoding="utf-8").startswith("# SEO Intelligence Report")

        with open(config.alerts_file, encoding="utf-8") as f:
            alert = json.loads(f.readline())
        assert alert["type"] == "digest_completed"
        assert alert["report_url"] == str(path)
        assert alert["recommendations"] == 1

    def test_webhook_posted_when_configured(self, config):
        config.webhook_url = "https://hooks.example.com/seo"
        with patch("notifications.send_webhook", AsyncMock(return_value=True)) as send:
            asyncio.run(deliver_digest(_make_digest(), [], [], [], config))
        payload, url = send.await_args.args
        assert url == "https://hooks.example.com/seo"
        assert payload["digest_id"] == "0123456789abcdef"

    def test_unwritable_reports_dir_does_not_raise(self, config, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        config.reports_dir = blocker / "reports"
        assert asyncio.run(deliver_digest(_make_digest(), [], [], [], config)) is None

    def test_failure_alert(self, config):
        assert asyncio.run(notify_failure("d1", "2026-10", "ProviderError: timeout", config))
        with open(config.alerts_file, encoding="utf-8") as f:
            alert = json.loads(f.readline())
        assert alert["type"] == "digest_failed"
        assert alert["error"] == "ProviderError: timeout"
