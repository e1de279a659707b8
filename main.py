#!/usr/bin/env python3
"""SEO Intel: monthly SEO intelligence digests for an agency.

This CLI runs the digest pipeline (fetch sources, analyze with an LLM,
draft tasks and SOP changes) and lets an operator manage sources and
review the drafts it produces.

Commands:
    run         Run the digest pipeline (once, forced, or continuously)
    status      Show configuration and database statistics
    digests     List recent digests
    show        Show one digest with its recommendations and drafts
    sources     list | add | update | remove | test | seed
    drafts      apply-task | apply-tasks | apply-sop | dismiss | edit-sop
    projects    add | list
    procedures  list | add-set | add-step | add-doc
    prune       Delete digests older than RETENTION_DAYS

Examples:
    python main.py sources seed                # Load the default catalogue
    python main.py run --force                 # Run now regardless of schedule
    python main.py run -c                      # Check for a due digest every hour
    python main.py show 1f0c9a2b...            # Inspect a digest
    python main.py drafts apply-task DRAFT --project PROJECT

Environment:
    ANTHROPIC_API_KEY: Required for the default analyzer model
    See config.py for all configuration options
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path

from config import Config
from database import Database
from observability.logging import setup_logging

logger = logging.getLogger(__name__)


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    """Run the digest pipeline."""
    from pipeline import run_continuous, run_once

    if args.interval:
        config.poll_interval_seconds = args.interval

    try:
        if args.continuous:
            logger.info("Starting continuous mode...")
            asyncio.run(run_continuous(config, force_first=args.force))
            return 0
        result = asyncio.run(run_once(config, force=args.force))
        logger.info("Run complete | result=%s", json.dumps(result))
        return 0
    except KeyboardInterrupt:
        logger.info("Stopped by user (Ctrl+C)")
        return 130
    except Exception as e:
        logger.error("Pipeline failed | error=%s type=%s", e, type(e).__name__, exc_info=True)
        return 1


def cmd_status(args: argparse.Namespace, config: Config) -> int:
    """Display configuration and database statistics."""
    with Database(config.db_path) as db:
        db_stats = db.stats()
        active = db.active_digest()
        last_runs = db.list_job_runs(limit=1)

    _print_json({
        "config": {
            "pipeline_enabled": config.pipeline_enabled,
            "run_cadence": config.run_cadence,
            "run_day": config.run_day,
            "analyzer_model": config.analyzer_model,
            "sop_refine_enabled": config.sop_refine_enabled,
            "batch_size": config.batch_size,
            "lookback_days": config.lookback_days,
            "enable_logfire": config.enable_logfire,
        },
        "database": {"path": str(config.db_path), **db_stats},
        "active_digest": active.id if active else None,
        "last_run": last_runs[0] if last_runs else None,
    })
    return 0


def cmd_digests(args: argparse.Namespace, config: Config) -> int:
    """List recent digests."""
    with Database(config.db_path) as db:
        digests = db.list_digests(limit=args.limit)

    if not digests:
        print("No digests yet.")
        return 0

    for d in digests:
        print(
            f"{d.id}  {d.period:<10}  {d.status.value:<9}  {d.stage.value:<10}  "
            f"articles={d.sources_fetched} recs={d.recommendations_generated} "
            f"tasks={d.task_drafts_created} sops={d.sop_drafts_created}"
        )
        if d.error_message:
            print(f"    error: {d.error_message}")
    return 0


def cmd_show(args: argparse.Namespace, config: Config) -> int:
    """Show a digest with its recommendations and drafts."""
    with Database(config.db_path) as db:
        digest = db.get_digest(args.digest_id)
        if digest is None:
            print(f"Digest {args.digest_id} not found", file=sys.stderr)
            return 1
        recs = db.recommendations_for_digest(digest.id)
        task_drafts = db.task_drafts_for_digest(digest.id)
        sop_drafts = db.sop_drafts_for_digest(digest.id)

    print(f"\n=== Digest {digest.period} ({digest.status.value}) ===\n")
    if digest.report_url:
        print(f"Report: {digest.report_url}")
    if digest.error_message:
        print(f"Error: {digest.error_message}")

    for rec in recs:
        print(f"\n[{rec.index}] {rec.title}")
        print(f"    {rec.category} | impact={rec.impact.value} | {rec.confidence.value}")
        for c in rec.citations:
            print(f"    - {c.source_name}: {c.source_url}")

    if task_drafts:
        print("\n--- Task drafts ---")
        for t in task_drafts:
            print(f"{t.id}  [{t.status.value}] {t.suggested_priority.value:<6} {t.title}")
    if sop_drafts:
        print("\n--- SOP drafts ---")
        for s in sop_drafts:
            print(f"{s.id}  [{s.status.value}] {s.draft_type.value:<6} {s.title}")
    return 0


def _fetch_config(pairs: list[str] | None) -> dict[str, str]:
    config = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got {pair!r}")
        config[key] = value
    return config


def cmd_sources(args: argparse.Namespace, config: Config) -> int:
    """Manage content sources."""
    from registry import SourceRegistry

    with Database(config.db_path) as db:
        registry = SourceRegistry(db, config)

        if args.action == "list":
            for s in registry.list_sources(active_only=args.active):
                state = "active" if s.active else "inactive"
                last = s.last_fetched_at.strftime("%Y-%m-%d %H:%M") if s.last_fetched_at else "never"
                print(f"{s.id}  {s.name:<32} {s.fetch_method.value:<8} {s.tier.value}  {s.category:<14} {state:<8} last={last}")
            return 0

        if args.action == "add":
            source = registry.add(
                name=args.name,
                url=args.url,
                tier=args.tier,
                category=args.category,
                fetch_method=args.method,
                fetch_config=_fetch_config(args.option),
            )
            print(f"Source added: {source.id}")
            return 0

        if args.action == "update":
            changes = {
                key: value
                for key, value in (
                    ("name", args.name),
                    ("url", args.url),
                    ("tier", args.tier),
                    ("category", args.category),
                    ("fetch_method", args.method),
                )
                if value is not None
            }
            if args.option:
                changes["fetch_config"] = _fetch_config(args.option)
            if args.activate:
                changes["active"] = True
            if args.deactivate:
                changes["active"] = False
            registry.update(args.source_id, **changes)
            print(f"Source updated: {args.source_id}")
            return 0

        if args.action == "remove":
            registry.delete(args.source_id)
            print(f"Source removed: {args.source_id}")
            return 0

        if args.action == "test":
            _print_json(asyncio.run(registry.test(args.source_id)))
            return 0

        created = registry.seed_defaults()
        print(f"Seeded {created} source(s)")
        return 0


def cmd_drafts(args: argparse.Namespace, config: Config) -> int:
    """Review task and SOP drafts."""
    from review import ReviewError, ReviewWorkflow

    with Database(config.db_path) as db:
        review = ReviewWorkflow(db)
        try:
            if args.action == "apply-task":
                due = date.fromisoformat(args.due) if args.due else None
                task = review.apply_task_draft(args.draft_id, args.project, due)
                print(f"Task created: {task.id} (due {task.due_date})")
            elif args.action == "apply-tasks":
                tasks = review.apply_task_drafts(args.draft_ids, args.project)
                print(f"Applied {len(tasks)} of {len(args.draft_ids)} draft(s)")
            elif args.action == "apply-sop":
                doc_id = review.apply_sop_draft(args.draft_id)
                print(f"Procedure document written: {doc_id}")
            elif args.action == "dismiss":
                review.dismiss_draft(args.draft_id)
                print(f"Draft dismissed: {args.draft_id}")
            else:
                content = Path(args.file).read_text(encoding="utf-8") if args.file else sys.stdin.read()
                review.edit_sop_draft(args.draft_id, content)
                print(f"Draft updated: {args.draft_id}")
        except ReviewError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
    return 0


def cmd_projects(args: argparse.Namespace, config: Config) -> int:
    """Manage projects that task drafts are applied to."""
    with Database(config.db_path) as db:
        if args.action == "add":
            project = db.add_project(args.name)
            print(f"Project added: {project.id}")
            return 0
        for p in db.list_projects():
            tasks = db.list_tasks(p.id)
            print(f"{p.id}  {p.name}  tasks={len(tasks)}")
    return 0


def cmd_procedures(args: argparse.Namespace, config: Config) -> int:
    """Manage the procedure (SOP) library."""
    from models.procedures import ProcedureStep

    with Database(config.db_path) as db:
        if args.action == "list":
            for ps in db.list_procedure_sets():
                state = "" if ps.active else " (inactive)"
                doc = ps.document_id or "no document"
                print(f"{ps.id}  {ps.name}{state}  steps={len(ps.steps)}  doc={doc}")
            return 0

        if args.action == "add-set":
            ps = db.add_procedure_set(args.name, args.description)
            print(f"Procedure set added: {ps.id}")
            return 0

        if args.action == "add-step":
            if db.get_procedure_set(args.set_id) is None:
                print(f"Procedure set {args.set_id} not found", file=sys.stderr)
                return 1
            step = ProcedureStep(
                title=args.title,
                description=args.description,
                due_in_days=args.due_in_days,
                sort_order=args.order,
            )
            db.add_procedure_step(args.set_id, step)
            print(f"Step added to {args.set_id}")
            return 0

        if args.set_id and db.get_procedure_set(args.set_id) is None:
            print(f"Procedure set {args.set_id} not found", file=sys.stderr)
            return 1
        content = Path(args.file).read_text(encoding="utf-8")
        doc = db.add_procedure_document(args.title, content, args.set_id)
        print(f"Procedure document added: {doc.id}")
    return 0


def cmd_prune(args: argparse.Namespace, config: Config) -> int:
    """Delete terminal digests outside the retention window."""
    days = args.days or config.retention_days
    with Database(config.db_path) as db:
        deleted = db.prune_digests(days)
    print(f"Deleted {deleted} digest(s) older than {days} days")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SEO Intel: SEO intelligence digests",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # run command
    run_parser = subparsers.add_parser("run", help="Run the digest pipeline")
    run_parser.add_argument(
        "-c", "--continuous",
        action="store_true",
        help="Keep checking for a due digest",
    )
    run_parser.add_argument(
        "-f", "--force",
        action="store_true",
        help="Run now, ignoring the enabled flag, run day and period check",
    )
    run_parser.add_argument(
        "--interval",
        type=int,
        help="Poll interval in seconds (continuous mode)",
    )

    subparsers.add_parser("status", help="Show configuration and statistics")

    digests_parser = subparsers.add_parser("digests", help="List recent digests")
    digests_parser.add_argument("--limit", type=int, default=20, help="Max digests (default: 20)")

    show_parser = subparsers.add_parser("show", help="Show one digest")
    show_parser.add_argument("digest_id")

    # sources command
    sources_parser = subparsers.add_parser("sources", help="Manage content sources")
    sources_sub = sources_parser.add_subparsers(dest="action", required=True)

    list_parser = sources_sub.add_parser("list", help="List sources")
    list_parser.add_argument("--active", action="store_true", help="Only active sources")

    add_parser = sources_sub.add_parser("add", help="Add a source")
    add_parser.add_argument("--name", required=True)
    add_parser.add_argument("--url", required=True)
    add_parser.add_argument("--tier", default="tier_3", choices=["tier_1", "tier_2", "tier_3"])
    add_parser.add_argument("--category", default="general")
    add_parser.add_argument("--method", default="rss", choices=["rss", "youtube", "reddit", "webpage"])
    add_parser.add_argument(
        "--option",
        action="append",
        metavar="KEY=VALUE",
        help="Fetch option, e.g. channelId=UC... or subreddit=localseo (repeatable)",
    )

    update_parser = sources_sub.add_parser("update", help="Update a source")
    update_parser.add_argument("source_id")
    update_parser.add_argument("--name")
    update_parser.add_argument("--url")
    update_parser.add_argument("--tier", choices=["tier_1", "tier_2", "tier_3"])
    update_parser.add_argument("--category")
    update_parser.add_argument("--method", choices=["rss", "youtube", "reddit", "webpage"])
    update_parser.add_argument("--option", action="append", metavar="KEY=VALUE")
    state = update_parser.add_mutually_exclusive_group()
    state.add_argument("--activate", action="store_true")
    state.add_argument("--deactivate", action="store_true")

    remove_parser = sources_sub.add_parser("remove", help="Delete a source")
    remove_parser.add_argument("source_id")

    test_parser = sources_sub.add_parser("test", help="Fetch a source and preview the articles")
    test_parser.add_argument("source_id")

    sources_sub.add_parser("seed", help="Insert the default source catalogue")

    # drafts command
    drafts_parser = subparsers.add_parser("drafts", help="Review drafts")
    drafts_sub = drafts_parser.add_subparsers(dest="action", required=True)

    apply_task = drafts_sub.add_parser("apply-task", help="Create a task from a draft")
    apply_task.add_argument("draft_id")
    apply_task.add_argument("--project", required=True, help="Target project id")
    apply_task.add_argument("--due", help="Due date YYYY-MM-DD (default: suggested)")

    apply_tasks = drafts_sub.add_parser("apply-tasks", help="Create tasks from several drafts")
    apply_tasks.add_argument("draft_ids", nargs="+")
    apply_tasks.add_argument("--project", required=True, help="Target project id")

    apply_sop = drafts_sub.add_parser("apply-sop", help="Apply an SOP draft to the procedure library")
    apply_sop.add_argument("draft_id")

    dismiss = drafts_sub.add_parser("dismiss", help="Dismiss a draft")
    dismiss.add_argument("draft_id")

    edit_sop = drafts_sub.add_parser("edit-sop", help="Replace an SOP draft's proposed content")
    edit_sop.add_argument("draft_id")
    edit_sop.add_argument("--file", help="Read new content from file (default: stdin)")

    # projects command
    projects_parser = subparsers.add_parser("projects", help="Manage projects")
    projects_sub = projects_parser.add_subparsers(dest="action", required=True)
    project_add = projects_sub.add_parser("add", help="Add a project")
    project_add.add_argument("name")
    projects_sub.add_parser("list", help="List projects")

    # procedures command
    procedures_parser = subparsers.add_parser("procedures", help="Manage procedure sets and documents")
    procedures_sub = procedures_parser.add_subparsers(dest="action", required=True)
    procedures_sub.add_parser("list", help="List procedure sets")

    add_set = procedures_sub.add_parser("add-set", help="Add a procedure set")
    add_set.add_argument("name")
    add_set.add_argument("--description", default="")

    add_step = procedures_sub.add_parser("add-step", help="Add a step to a procedure set")
    add_step.add_argument("set_id")
    add_step.add_argument("title")
    add_step.add_argument("--description", default="")
    add_step.add_argument("--due-in-days", type=int)
    add_step.add_argument("--order", type=int, default=0)

    add_doc = procedures_sub.add_parser("add-doc", help="Add a procedure document from a file")
    add_doc.add_argument("title")
    add_doc.add_argument("file")
    add_doc.add_argument("--set-id", help="Attach as the set's strategy document")

    prune_parser = subparsers.add_parser("prune", help="Delete old digests")
    prune_parser.add_argument("--days", type=int, help="Override RETENTION_DAYS")

    return parser


def main() -> int:
    """Main entry point.

    Returns:
        Exit code
    """
    parser = _build_parser()
    args = parser.parse_args()

    config = Config.load()
    setup_logging(config, verbose=args.verbose)

    # Only the pipeline needs model credentials
    if args.command == "run":
        error = config.validate()
        if error:
            print(f"Configuration error: {error}", file=sys.stderr)
            return 1

    commands = {
        "run": cmd_run,
        "status": cmd_status,
        "digests": cmd_digests,
        "show": cmd_show,
        "sources": cmd_sources,
        "drafts": cmd_drafts,
        "projects": cmd_projects,
        "procedures": cmd_procedures,
        "prune": cmd_prune,
    }

    if args.command not in commands:
        parser.print_help()
        return 0

    try:
        return commands[args.command](args, config)
    except Exception as e:
        logger.error("Command failed | cmd=%s error=%s", args.command, e, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
