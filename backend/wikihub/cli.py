"""
Operator command line.

    wikihub sync osrs --limit 200
    wikihub sync wikipedia --full --inline
    wikihub edits list --status pending
    wikihub edits approve 42 --note "Thanks"
"""
from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from .core.db import SessionLocal
from .core.errors import WikiError
from .core.logging import configure_logging
from .core.sources import parse_source
from .models.pending_edit import EditStatus
from .services import content, cross_links, moderation, sync
from .services.embeddings import backfill_embeddings, get_embedder

_SPAN_MARKERS = {"equal": "  ", "deleted": "- ", "inserted": "+ "}


def _cmd_sync(db, args) -> int:
    source = parse_source(args.source)
    if not args.inline:
        task_id = sync.enqueue_sync(
            source,
            full_sync=args.full,
            resume_from=args.resume_from,
            limit=args.limit,
        )
        print(f"Queued sync for {source.value}: task {task_id}")
        return 0

    run = sync.run_sync(
        db,
        source,
        full_sync=args.full,
        resume_from=args.resume_from,
        limit=args.limit,
    )
    print(
        f"Run {run.id} {run.status.value}: {run.pages_processed} processed, "
        f"{run.pages_created} created, {run.pages_updated} updated, "
        f"{run.pages_unchanged} unchanged, {run.pages_diverged} diverged, "
        f"{run.pages_failed} failed"
    )
    if run.checkpoint:
        print(f"Checkpoint: {run.checkpoint}")
    return 0


def _cmd_status(db, args) -> int:
    print(json.dumps(content.status_summary(db), indent=2, default=str))
    return 0


def _cmd_edits(db, args) -> int:
    if args.edits_command == "list":
        status = EditStatus(args.status) if args.status != "all" else None
        for edit in moderation.list_pending_edits(db, status=status, limit=args.limit):
            article = edit.article
            print(
                f"{edit.id:>6}  {edit.status.value:<8}  {article.source.value}/{article.slug}  "
                f"{edit.created_at:%Y-%m-%d %H:%M}  {edit.reason or ''}"
            )
        return 0

    if args.edits_command == "show":
        edit = moderation.get_pending_edit(db, args.edit_id)
        print(f"Edit {edit.id} on {edit.article.source.value}/{edit.article.slug} [{edit.status.value}]")
        print(f"From: {edit.submitter_email or 'anonymous'} ({edit.submitter_ip})")
        if edit.reason:
            print(f"Reason: {edit.reason}")
        print()
        for span in moderation.edit_diff(edit):
            if span.kind == "equal" and not args.full:
                continue
            print(f"{_SPAN_MARKERS[span.kind]}{span.text}")
        return 0

    if args.edits_command == "approve":
        edit = moderation.approve_pending_edit(db, args.edit_id, note=args.note)
    else:
        edit = moderation.reject_pending_edit(db, args.edit_id, note=args.note)
    print(f"Edit {edit.id} {edit.status.value}")
    return 0


def _cmd_detect_links(db, args) -> int:
    source = parse_source(args.source) if args.source else None
    created = cross_links.detect_all(db, source=source)
    print(f"Detected {created} cross-links")
    return 0


def _cmd_embed(db, args) -> int:
    embedder = get_embedder()
    if embedder is None:
        print("Embeddings are not configured (OLLAMA_BASE_URL unset)", file=sys.stderr)
        return 1
    source = parse_source(args.source) if args.source else None
    count = backfill_embeddings(db, embedder, source=source, full=args.full)
    print(f"Embedded {count} articles")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wikihub", description="WikiHub operator tools")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("sync", help="Sync one source from upstream")
    p.add_argument("source")
    p.add_argument("--full", action="store_true", help="Re-sync every page, overwriting local edits")
    p.add_argument("--resume-from", help="Listing key to continue after")
    p.add_argument("--limit", type=int, help="Stop after this many pages")
    p.add_argument("--inline", action="store_true", help="Run in this process instead of queueing")
    p.set_defaults(handler=_cmd_sync)

    p = sub.add_parser("status", help="Article, redirect and edit counts")
    p.set_defaults(handler=_cmd_status)

    p = sub.add_parser("edits", help="Review suggested edits")
    edits = p.add_subparsers(dest="edits_command", required=True)
    e = edits.add_parser("list")
    e.add_argument("--status", default="pending", choices=[s.value for s in EditStatus] + ["all"])
    e.add_argument("--limit", type=int, default=50)
    e = edits.add_parser("show")
    e.add_argument("edit_id", type=int)
    e.add_argument("--full", action="store_true", help="Include unchanged text in the diff")
    for name in ("approve", "reject"):
        e = edits.add_parser(name)
        e.add_argument("edit_id", type=int)
        e.add_argument("--note")
    p.set_defaults(handler=_cmd_edits)

    p = sub.add_parser("detect-links", help="Run cross-reference detection")
    p.add_argument("--source")
    p.set_defaults(handler=_cmd_detect_links)

    p = sub.add_parser("embed", help="Backfill article embeddings")
    p.add_argument("--source")
    p.add_argument("--full", action="store_true", help="Re-embed articles that already have a vector")
    p.set_defaults(handler=_cmd_embed)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    db = SessionLocal()
    try:
        return args.handler(db, args)
    except WikiError as exc:
        print(f"error ({exc.code}): {exc}", file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
