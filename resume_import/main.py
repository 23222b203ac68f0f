"""CLI entry point for the resume import pipeline."""

import argparse
import importlib
import json
import logging
import sys

from resume_import.config import AppConfig, load_config, validate_config
from resume_import.errors import ResumeImportError
from resume_import.models.base import make_engine, make_session_factory, init_db
from resume_import.utils.logging_config import setup_logging

logger = logging.getLogger("resume_import")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="resume-import",
        description="Resume Import - mailbox scanning and resume parsing pipeline",
    )
    parser.add_argument(
        "--config", default=None,
        help="Path to config file (default: built-in defaults + environment)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--scanner", default=None,
        help="Mailbox scanner factory as 'module:attribute'",
    )
    parser.add_argument(
        "--parser", dest="parse_resume", default=None,
        help="Resume parse callable (or factory) as 'module:attribute'",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    enqueue = sub.add_parser("enqueue", help="Enqueue a mailbox import for a job posting")
    enqueue.add_argument("job_id", type=int)
    enqueue.add_argument("--mailbox", required=True)
    enqueue.add_argument("--search", dest="search_text", default=None)
    enqueue.add_argument("--max-emails", type=int, default=None)
    enqueue.add_argument("--mode", default=None, choices=["graph-search", "deep-scan"])
    enqueue.add_argument("--lookback-days", type=int, default=None)
    enqueue.add_argument("--requested-by", default=None)

    sub.add_parser("dispatch", help="Promote the next enqueued run (and scan it with --scanner)")

    work = sub.add_parser("work", help="Run one AI worker slice (requires --parser)")
    work.add_argument("--concurrency", type=int, default=None)
    work.add_argument("--timeout-ms", type=int, default=None)

    cancel = sub.add_parser("cancel", help="Cancel an enqueued or running import")
    cancel.add_argument("run_id")

    status = sub.add_parser("status", help="Show one run's status")
    status.add_argument("run_id")

    summary = sub.add_parser("summary", help="Show running, queued and recently finished runs")
    summary.add_argument("--recent", type=int, default=3)

    reap = sub.add_parser("reap", help="Release stale AI claims and fail stuck runs")
    reap.add_argument("--older-than-hours", type=float, default=2)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser.parse_args(argv)


def load_object(path: str):
    """Import ``module:attribute``; classes are instantiated with no arguments."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got {path!r}")
    obj = getattr(importlib.import_module(module_name), attribute)
    if isinstance(obj, type):
        return obj()
    return obj


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def run_command(args: argparse.Namespace, config: AppConfig) -> int:
    engine = make_engine(config.database_url)
    session_factory = make_session_factory(engine)

    if args.command == "init-db":
        init_db(engine)
        print("Database initialized.")
        return 0

    scanner = load_object(args.scanner) if args.scanner else None
    parse_resume = load_object(args.parse_resume) if args.parse_resume else None

    if args.command == "serve":
        import uvicorn
        from resume_import.web.app import create_app
        app = create_app(config, session_factory, scanner=scanner, parse_resume=parse_resume)
        uvicorn.run(app, host=args.host, port=args.port)
        return 0

    if args.command == "dispatch":
        from resume_import.pipeline import run_dispatch_cycle
        _print(run_dispatch_cycle(session_factory, config, scanner))
        return 0

    if args.command == "work":
        if parse_resume is None:
            print("The work command needs --parser module:attribute", file=sys.stderr)
            return 2
        from resume_import.pipeline import run_worker_cycle
        result = run_worker_cycle(
            session_factory,
            parse_resume,
            config,
            concurrency=args.concurrency,
            timeout_ms=args.timeout_ms,
            trigger="cli",
        )
        _print(result.to_dict())
        return 0

    db = session_factory()
    try:
        if args.command == "enqueue":
            from resume_import.imports.enqueue import default_search_text, enqueue_run
            options = {
                key: value
                for key, value in (
                    ("max_emails", args.max_emails),
                    ("mode", args.mode),
                    ("lookback_days", args.lookback_days),
                )
                if value is not None
            }
            run = enqueue_run(
                db,
                args.job_id,
                mailbox=args.mailbox,
                search_text=args.search_text or default_search_text(db, args.job_id),
                options=options,
                requested_by=args.requested_by,
                default_max_emails=config.imports.default_max_emails,
                max_emails_limit=config.imports.max_emails_limit,
            )
            _print({"run_id": run.id, "status": run.status})
        elif args.command == "cancel":
            from resume_import.imports.cancel import cancel_run
            run = cancel_run(db, args.run_id)
            _print({"run_id": run.id, "status": run.status})
        elif args.command == "status":
            from resume_import.imports.summary import get_run_status
            _print(get_run_status(db, args.run_id))
        elif args.command == "summary":
            from resume_import.imports.summary import get_queue_summary
            _print(get_queue_summary(db, recent=args.recent))
        elif args.command == "reap":
            from resume_import.imports.maintenance import fail_stuck_runs, release_stale_claims
            released = release_stale_claims(db, config)
            failed_runs = fail_stuck_runs(db, older_than_hours=args.older_than_hours)
            _print({"claims": released, "failed_runs": failed_runs})
    finally:
        db.close()
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    # Logs go to stderr so command output on stdout stays machine-readable
    setup_logging(config.log_dir, logging.DEBUG if args.verbose else logging.INFO, stream=sys.stderr)

    for warning in validate_config(config):
        logger.warning("Config: %s", warning)

    try:
        return run_command(args, config)
    except ResumeImportError as e:
        logger.error("%s", e)
        _print(e.to_dict())
        return 1


if __name__ == "__main__":
    sys.exit(main())
