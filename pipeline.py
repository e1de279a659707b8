"""Digest orchestration for the SEO intelligence pipeline.

This module coordinates one digest run end to end:

Pipeline Flow:
    1. DUE CHECK: Skip unless enabled, on/after the run day, and the
       period has no digest yet (--force bypasses these three)
    2. START: Create the digest ('started'); refused while another runs
    3. FETCH: Concurrently fetch all active sources, persist articles
    4. ANALYZE: Truncate, batch, and analyze batches in order; each
       batch's recommendations are persisted as soon as it returns
    5. DRAFT: Derive task and SOP drafts (optionally refine SOP text)
    6. DELIVER: Markdown report, webhook, JSONL alert
    7. FINISH: 'completed', or 'failed' with the error (then re-raise)

Whatever was persisted before a failure stays; a partial digest is
still reviewable.
"""

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any

from agents.analyzer import AnalyzerAgent
from agents.sop_writer import SopWriterAgent
from batching import batch, truncate
from config import Config
from database import Database, DigestAlreadyRunningError, PeriodAlreadyDigestedError
from drafts import generate_sop_drafts, generate_task_drafts
from fetchers import fetch_all_sources
from models.digest import Digest, DigestStage
from models.recommendation import Recommendation
from notifications import deliver_digest, notify_failure
from observability.logging import clear_context, set_run_context
from observability.tracing import trace_operation

logger = logging.getLogger(__name__)

JOB_NAME = "seo_pipeline"


def period_label(today: date, cadence: str) -> str:
    """Label of the period containing `today` (2026-10-18, 2026-W42, 2026-10)."""
    if cadence == "daily":
        return today.isoformat()
    if cadence == "weekly":
        year, week, _ = today.isocalendar()
        return f"{year}-W{week:02d}"
    return f"{today.year}-{today.month:02d}"


def is_run_day(today: date, cadence: str, run_day: int) -> bool:
    """Whether the period's run has become due by `today`."""
    if cadence == "weekly":
        return today.isoweekday() >= run_day
    if cadence == "monthly":
        return today.day >= run_day
    return True


@dataclass
class RunResult:
    """Outcome of one run_pipeline() invocation.

    Attributes:
        status: 'skipped', 'completed' or 'failed'
        period: Period label the run was for
        reason: Why the run was skipped (empty otherwise)
        digest_id: Digest created by the run, if any
    """

    status: str
    period: str
    reason: str = ""
    digest_id: str | None = None
    sources_fetched: int = 0
    recommendations_generated: int = 0
    task_drafts_created: int = 0
    sop_drafts_created: int = 0
    batches: int = 0
    report_url: str | None = None
    duration: float = 0.0
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def skipped(self) -> bool:
        return self.status == "skipped"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        d = asdict(self)
        d["duration"] = round(d["duration"], 2)
        return d


class Pipeline:
    """Runs digests against one database.

    Components:
        - Database: SQLite storage for sources, digests and drafts
        - AnalyzerAgent: one provider call per article batch
        - SopWriterAgent: optional polish of SOP drafts

    The analyzer and SOP writer can be injected (tests pass agents backed
    by pydantic-ai's FunctionModel).
    """

    def __init__(
        self,
        config: Config,
        db: Database | None = None,
        analyzer: AnalyzerAgent | None = None,
        sop_writer: SopWriterAgent | None = None,
    ):
        """Initialize pipeline with all components.

        Args:
            config: Application configuration
            db: Database to use (opened from config.db_path if omitted)
            analyzer: Analyzer agent (built from config if omitted)
            sop_writer: SOP refinement agent (built when SOP_REFINE_ENABLED)
        """
        self.config = config
        self._owns_db = db is None
        self.db = db or Database(config.db_path)
        self.analyzer = analyzer or AnalyzerAgent(config)
        if sop_writer is None and config.sop_refine_enabled:
            sop_writer = SopWriterAgent(config)
        self.sop_writer = sop_writer

        # Optional: Distributed tracing
        if config.enable_logfire:
            from observability.tracing import setup_tracing
            setup_tracing(enabled=True, service_name="seo-intel", token=config.logfire_token)

    def skip_reason(self, period: str, today: date, force: bool = False) -> str:
        """Why a run for `period` should not start now ('' when it should)."""
        if force:
            return ""
        if not self.config.pipeline_enabled:
            return "pipeline disabled"
        if not is_run_day(today, self.config.run_cadence, self.config.run_day):
            return f"not due before day {self.config.run_day}"
        existing = self.db.digests_for_period(period)
        if existing:
            return f"period already has a {existing[-1].status.value} digest"
        return ""

    async def run_pipeline(self, force: bool = False, today: date | None = None) -> RunResult:
        """Run one digest if due.

        Not due, already run for the period, or another digest in flight:
        returns a 'skipped' result with no side effects. Otherwise creates
        and drives a digest to 'completed'.

        Args:
            force: Ignore the enabled flag, run day and period check
            today: Date to evaluate the schedule for (defaults to today)

        Raises:
            Exception: Whatever failed the digest, after it was marked 'failed'
        """
        today = today or date.today()
        period = period_label(today, self.config.run_cadence)

        reason = self.skip_reason(period, today, force)
        if reason:
            logger.info("Run skipped | period=%s reason=%s", period, reason)
            return RunResult(status="skipped", period=period, reason=reason)

        try:
            digest = self.db.create_digest(period, once_per_period=not force)
        except (DigestAlreadyRunningError, PeriodAlreadyDigestedError) as e:
            logger.info("Run skipped | period=%s reason=%s", period, e)
            return RunResult(status="skipped", period=period, reason=str(e))

        pruned = self.db.prune_digests(self.config.retention_days)
        if pruned:
            logger.debug("Pruned old digests | count=%d", pruned)

        set_run_context(digest.id[:8])
        job_id = self.db.start_job_run(JOB_NAME, {"digest_id": digest.id, "period": period, "forced": force})
        result = RunResult(status="started", period=period, digest_id=digest.id)
        start = time.time()
        logger.info("Pipeline started | digest=%s period=%s forced=%s", digest.id, period, force)

        try:
            with trace_operation("seo_pipeline", digest_id=digest.id, period=period):
                await self._execute(digest, result)
        except asyncio.CancelledError:
            self.db.fail_digest(digest.id, "Run cancelled")
            self.db.finish_job_run(job_id, "failed", {"digest_id": digest.id, "error": "cancelled"})
            logger.info("Pipeline run cancelled | digest=%s", digest.id)
            clear_context()
            raise
        except Exception as e:
            message = f"{type(e).__name__}: {e}"
            self.db.fail_digest(digest.id, message)
            self._fill_counts(result, digest.id)
            result.status = "failed"
            result.duration = time.time() - start
            self.db.finish_job_run(job_id, "failed", {**result.to_dict(), "error": message})
            logger.error("Pipeline failed | digest=%s error=%s", digest.id, message, exc_info=True)
            await notify_failure(digest.id, period, message, self.config)
            clear_context()
            raise

        result.status = "completed"
        result.duration = time.time() - start
        self.db.finish_job_run(job_id, "completed", result.to_dict())
        logger.info(
            "Pipeline done | duration=%.1fs articles=%d recommendations=%d task_drafts=%d sop_drafts=%d tokens=%d/%d",
            result.duration, result.sources_fetched, result.recommendations_generated,
            result.task_drafts_created, result.sop_drafts_created,
            result.input_tokens, result.output_tokens,
        )
        clear_context()
        return result

    async def _execute(self, digest: Digest, result: RunResult) -> None:
        # Fetch
        with trace_operation("fetch_sources"):
            await self._fetch(digest)

        # Analyze
        self.db.set_digest_stage(digest.id, DigestStage.ANALYZING)
        with trace_operation("analyze"):
            recommendations = await self._analyze(digest, result)

        # Draft
        self.db.set_digest_stage(digest.id, DigestStage.DRAFTING)
        with trace_operation("draft"):
            task_drafts = self.db.add_task_drafts(digest.id, generate_task_drafts(recommendations))
            sop_drafts = generate_sop_drafts(recommendations, self.db.procedure_contexts(), digest.period)
            if self.sop_writer and sop_drafts:
                sop_drafts = await self.sop_writer.refine_drafts(sop_drafts, recommendations)
            sop_drafts = self.db.add_sop_drafts(digest.id, sop_drafts)
        logger.info("Drafts created | tasks=%d sops=%d", len(task_drafts), len(sop_drafts))

        # Deliver
        self.db.set_digest_stage(digest.id, DigestStage.DELIVERING)
        with trace_operation("deliver"):
            current = self.db.get_digest(digest.id)
            report_path = await deliver_digest(current, recommendations, task_drafts, sop_drafts, self.config)

        result.report_url = str(report_path) if report_path else None
        if not self.db.complete_digest(digest.id, result.report_url):
            logger.warning("Digest was already finalized | digest=%s", digest.id)
        self._fill_counts(result, digest.id)
        result.input_tokens = self.analyzer.input_tokens
        result.output_tokens = self.analyzer.output_tokens

    async def _fetch(self, digest: Digest) -> None:
        sources = self.db.list_sources(active_only=True)
        if not sources:
            logger.warning("No active sources configured")
        for fetched in await fetch_all_sources(sources, self.config):
            if fetched.ok:
                self.db.mark_source_fetched(fetched.source.id)
            if fetched.articles:
                stored = self.db.add_fetch_results(digest.id, fetched.source.id, fetched.articles)
                logger.debug("Articles stored | source=%s stored=%d", fetched.source.name, stored)

    async def _analyze(self, digest: Digest, result: RunResult) -> list[Recommendation]:
        max_chars = self.config.max_article_chars
        articles = [
            a.model_copy(update={"content": truncate(a.content, max_chars)})
            for a in self.db.analysis_articles(digest.id)
        ]
        batches = batch(articles, self.config.batch_size)
        logger.info("Analysis started | articles=%d batches=%d size=%d", len(articles), len(batches), self.config.batch_size)

        recommendations: list[Recommendation] = []
        for n, group in enumerate(batches, start=1):
            with trace_operation("analyze_batch", batch=n, articles=len(group)):
                recs = await self.analyzer.analyze_batch(group, start_index=len(recommendations))
            # Persist before the next call so a later failure keeps this batch
            self.db.add_recommendations(digest.id, recs)
            recommendations.extend(recs)
            result.batches = n
            logger.info("Batch analyzed | batch=%d/%d articles=%d recommendations=%d", n, len(batches), len(group), len(recs))
        return recommendations

    def _fill_counts(self, result: RunResult, digest_id: str) -> None:
        digest = self.db.get_digest(digest_id)
        if digest is None:
            return
        result.sources_fetched = digest.sources_fetched
        result.recommendations_generated = digest.recommendations_generated
        result.task_drafts_created = digest.task_drafts_created
        result.sop_drafts_created = digest.sop_drafts_created

    async def run_continuous(self, force_first: bool = False) -> None:
        """Check for a due digest every POLL_INTERVAL_SECONDS, forever.

        Failed runs are logged and the loop keeps going; the failed digest
        stays recorded for its period.
        """
        run_count = 0
        completed = 0
        total_errors = 0
        force = force_first

        logger.info("Starting continuous mode | interval=%ds cadence=%s", self.config.poll_interval_seconds, self.config.run_cadence)

        try:
            while True:
                run_count += 1
                try:
                    result = await self.run_pipeline(force=force)
                    if result.status == "completed":
                        completed += 1
                except Exception as e:
                    logger.error("Run failed | run=%d error=%s", run_count, e)
                    total_errors += 1
                force = False

                logger.debug("Check complete | run=%d completed=%d total_errors=%d", run_count, completed, total_errors)
                await asyncio.sleep(self.config.poll_interval_seconds)

        except asyncio.CancelledError:
            logger.info("Pipeline stopped | checks=%d completed=%d total_errors=%d", run_count, completed, total_errors)
            raise

    def close(self) -> None:
        """Clean up resources."""
        if self._owns_db:
            self.db.close()


async def run_once(config: Config, force: bool = False) -> dict[str, Any]:
    """Run pipeline once and return the result dict.

    Args:
        config: Application configuration
        force: Bypass the schedule checks (not the single-active check)
    """
    pipeline = Pipeline(config)
    try:
        return (await pipeline.run_pipeline(force=force)).to_dict()
    finally:
        pipeline.close()


async def run_continuous(config: Config, force_first: bool = False) -> None:
    """Run pipeline continuously.

    Args:
        config: Application configuration
        force_first: Force the first check to run a digest
    """
    pipeline = Pipeline(config)
    try:
        await pipeline.run_continuous(force_first=force_first)
    finally:
        pipeline.close()
