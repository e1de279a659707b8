"""Tests for SQLite persistence and the digest invariants it enforces."""

import sqlite3
from datetime import date, datetime, timezone

import pytest

from database import (
    Database,
    DigestAlreadyRunningError,
    DigestClosedError,
    PeriodAlreadyDigestedError,
    content_hash,
)
from models.digest import DigestStage, DigestStatus
from models.drafts import TaskDraft, TaskPriority
from models.recommendation import Citation, Recommendation
from models.source import Article, FetchMethod, Source, SourceTier


def _make_source(db: Database, name: str = "Google Search Central") -> Source:
    return db.add_source(Source(
        name=name,
        url=f"https://example.com/{name.replace(' ', '-').lower()}/feed",
        tier=SourceTier.TIER_1,
        category="General SEO",
        fetch_method=FetchMethod.RSS,
    ))


def _make_articles(n: int, prefix: str = "post") -> list[Article]:
    now = datetime.now(timezone.utc)
    return [
        Article(url=f"https://example.com/{prefix}-{i}", title=f"{prefix} {i}", content=f"{prefix} body {i}", fetched_at=now)
        for i in range(n)
    ]


def _make_recommendation(db: Database, digest_id: str, index: int = 0) -> Recommendation:
    article = db.analysis_articles(digest_id)[0]
    return Recommendation(
        index=index,
        title=f"Recommendation {index}",
        summary="Summary",
        impact="high",
        citations=[Citation(
            fetch_result_id=article.id,
            source_id=article.source_id,
            source_url=article.url,
            source_name=article.source_name,
            excerpt="quote",
        )],
    )


def _make_task_draft(rec: Recommendation) -> TaskDraft:
    return TaskDraft(
        recommendation_id=rec.id,
        recommendation_index=rec.index,
        title=rec.title,
        description=rec.summary,
        suggested_priority=TaskPriority.URGENT,
        suggested_due_in_days=3,
    )


class TestSources:
    def test_add_and_get(self, db):
        source = _make_source(db)
        assert source.id
        loaded = db.get_source(source.id)
        assert loaded.name == "Google Search Central"
        assert loaded.tier is SourceTier.TIER_1

    def test_duplicate_name_rejected(self, db):
        _make_source(db)
        with pytest.raises(sqlite3.IntegrityError):
            _make_source(db)

    def test_active_filter(self, db):
        a = _make_source(db, "A")
        _make_source(db, "B")
        db.update_source(a.model_copy(update={"active": False}))
        assert [s.name for s in db.list_sources(active_only=True)] == ["B"]
        assert len(db.list_sources()) == 2

    def test_mark_fetched(self, db):
        source = _make_source(db)
        db.mark_source_fetched(source.id)
        assert db.get_source(source.id).last_fetched_at is not None


class TestDigestLifecycle:
    def test_create_starts_digest(self, db):
        digest = db.create_digest("2026-10")
        assert digest.status is DigestStatus.STARTED
        assert digest.stage is DigestStage.FETCHING
        assert db.active_digest().id == digest.id

    def test_only_one_started_digest(self, db):
        first = db.create_digest("2026-10")
        with pytest.raises(DigestAlreadyRunningError) as exc_info:
            db.create_digest("2026-11")
        assert exc_info.value.digest_id == first.id

    def test_new_digest_allowed_after_terminal(self, db):
        first = db.create_digest("2026-10")
        assert db.fail_digest(first.id, "boom")
        second = db.create_digest("2026-11")
        assert second.id != first.id

    def test_once_per_period_refuses_existing_period(self, db):
        first = db.create_digest("2026-10")
        db.fail_digest(first.id, "boom")
        with pytest.raises(PeriodAlreadyDigestedError) as exc_info:
            db.create_digest("2026-10", once_per_period=True)
        assert exc_info.value.status == "failed"
        assert len(db.digests_for_period("2026-10")) == 1
        # Other periods and forced reruns are unaffected
        assert db.create_digest("2026-11", once_per_period=True).period == "2026-11"

    def test_terminal_states_are_final(self, db):
        digest = db.create_digest("2026-10")
        assert db.complete_digest(digest.id, "reports/x.md")
        assert not db.fail_digest(digest.id, "late failure")
        assert not db.complete_digest(digest.id)
        loaded = db.get_digest(digest.id)
        assert loaded.status is DigestStatus.COMPLETED
        assert loaded.stage is DigestStage.DONE
        assert loaded.report_url == "reports/x.md"
        assert loaded.error_message is None

    def test_fail_records_message(self, db):
        digest = db.create_digest("2026-10")
        db.fail_digest(digest.id, "ProviderError: timeout")
        loaded = db.get_digest(digest.id)
        assert loaded.status is DigestStatus.FAILED
        assert loaded.error_message == "ProviderError: timeout"
        assert loaded.completed_at is not None

    def test_concurrent_connection_sees_running_digest(self, db, config):
        db.create_digest("2026-10")
        other = Database(config.db_path)
        try:
            with pytest.raises(DigestAlreadyRunningError):
                other.create_digest("2026-10")
        finally:
            other.close()


class TestDigestChildren:
    def test_fetch_results_deduplicated_by_content(self, db):
        source = _make_source(db)
        digest = db.create_digest("2026-10")
        articles = _make_articles(3)
        assert db.add_fetch_results(digest.id, source.id, articles) == 3
        # Same content from another source is not stored twice
        other = _make_source(db, "Mirror")
        assert db.add_fetch_results(digest.id, other.id, articles[:2] + _make_articles(1, "new")) == 1
        assert db.get_digest(digest.id).sources_fetched == 4
        hashes = {r.content_hash for r in db.fetch_results_for_digest(digest.id)}
        assert content_hash("post body 0") in hashes

    def test_empty_content_items_kept_apart(self, db):
        source = _make_source(db)
        digest = db.create_digest("2026-10")
        now = datetime.now(timezone.utc)
        articles = [
            Article(url=f"https://youtube.com/watch?v={i}", title=f"Video {i}", content="", fetched_at=now)
            for i in range(3)
        ]
        assert db.add_fetch_results(digest.id, source.id, articles) == 3
        # The same empty item fetched again is still a duplicate
        assert db.add_fetch_results(digest.id, source.id, articles[:1]) == 0
        assert db.get_digest(digest.id).sources_fetched == 3

    def test_same_content_allowed_in_other_digest(self, db):
        source = _make_source(db)
        first = db.create_digest("2026-09")
        db.add_fetch_results(first.id, source.id, _make_articles(2))
        db.complete_digest(first.id)
        second = db.create_digest("2026-10")
        assert db.add_fetch_results(second.id, source.id, _make_articles(2)) == 2

    def test_analysis_articles_join_source(self, db):
        source = _make_source(db)
        digest = db.create_digest("2026-10")
        db.add_fetch_results(digest.id, source.id, _make_articles(2))
        articles = db.analysis_articles(digest.id)
        assert [a.title for a in articles] == ["post 0", "post 1"]
        assert articles[0].source_name == source.name
        assert articles[0].source_tier == "tier_1"

    def test_analysis_articles_survive_deleted_source(self, db):
        source = _make_source(db)
        digest = db.create_digest("2026-10")
        db.add_fetch_results(digest.id, source.id, _make_articles(1))
        db.delete_source(source.id)
        assert db.analysis_articles(digest.id)[0].source_name == "Unknown source"

    def test_recommendations_with_citations(self, db):
        source = _make_source(db)
        digest = db.create_digest("2026-10")
        db.add_fetch_results(digest.id, source.id, _make_articles(1))
        recs = [_make_recommendation(db, digest.id, 0), _make_recommendation(db, digest.id, 1)]
        db.add_recommendations(digest.id, recs)
        loaded = db.recommendations_for_digest(digest.id)
        assert [r.id for r in loaded] == [r.id for r in recs]
        assert loaded[0].citations[0].excerpt == "quote"
        assert db.get_digest(digest.id).recommendations_generated == 2

    def test_closed_digest_rejects_children(self, db):
        source = _make_source(db)
        digest = db.create_digest("2026-10")
        db.complete_digest(digest.id)
        with pytest.raises(DigestClosedError):
            db.add_fetch_results(digest.id, source.id, _make_articles(1))
        assert db.get_digest(digest.id).sources_fetched == 0

    def test_counters_match_rows(self, db):
        source = _make_source(db)
        digest = db.create_digest("2026-10")
        db.add_fetch_results(digest.id, source.id, _make_articles(3))
        rec = _make_recommendation(db, digest.id)
        db.add_recommendations(digest.id, [rec])
        saved = db.add_task_drafts(digest.id, [_make_task_draft(rec)])
        assert saved[0].id and saved[0].digest_id == digest.id

        loaded = db.get_digest(digest.id)
        counts = db.count_children(digest.id)
        assert counts == {
            "sources_fetched": loaded.sources_fetched,
            "recommendations_generated": loaded.recommendations_generated,
            "task_drafts_created": loaded.task_drafts_created,
            "sop_drafts_created": loaded.sop_drafts_created,
        }
        assert counts["sources_fetched"] == 3


class TestTaskDraftApply:
    def test_apply_creates_task_once(self, db):
        source = _make_source(db)
        digest = db.create_digest("2026-10")
        db.add_fetch_results(digest.id, source.id, _make_articles(1))
        rec = _make_recommendation(db, digest.id)
        db.add_recommendations(digest.id, [rec])
        draft = db.add_task_drafts(digest.id, [_make_task_draft(rec)])[0]
        project = db.add_project("Acme Landscaping")

        task = db.apply_task_draft(draft, project.id, date(2026, 11, 1))
        assert task is not None
        assert db.apply_task_draft(draft, project.id, date(2026, 11, 1)) is None
        assert len(db.list_tasks(project.id)) == 1
        assert db.get_task_draft(draft.id).task_id == task.id


class TestMaintenance:
    def test_prune_removes_old_terminal_digests_with_children(self, db):
        source = _make_source(db)
        old = db.create_digest("2024-01")
        db.add_fetch_results(old.id, source.id, _make_articles(2))
        db.complete_digest(old.id)
        db.conn.execute("UPDATE digests SET created_at = '2024-01-05T00:00:00+00:00' WHERE id = ?", (old.id,))
        current = db.create_digest("2026-10")

        assert db.prune_digests(365) == 1
        assert db.get_digest(old.id) is None
        assert db.fetch_results_for_digest(old.id) == []
        assert db.get_digest(current.id) is not None

    def test_prune_keeps_started_digest(self, db):
        digest = db.create_digest("2024-01")
        db.conn.execute("UPDATE digests SET created_at = '2024-01-05T00:00:00+00:00' WHERE id = ?", (digest.id,))
        assert db.prune_digests(30) == 0

    def test_job_runs(self, db):
        run_id = db.start_job_run("seo_pipeline", {"period": "2026-10"})
        db.finish_job_run(run_id, "completed", {"recommendations": 4})
        runs = db.list_job_runs()
        assert runs[0]["status"] == "completed"
        assert runs[0]["details"] == {"recommendations": 4}

    def test_stats(self, db):
        _make_source(db)
        stats = db.stats()
        assert stats["sources"] == 1
        assert stats["digests"] == 0
