"""CLI for the job_sync package."""

from __future__ import annotations

import argparse
import json
import sys

from app.utils.log import configure_logging

from .config import ConfigError, Settings, load_settings
from .pipeline import create_pipeline
from .reconcile import run_reconciliation
from .sources.csv_source import CsvSource
from .sources.gmail_readonly import GmailSource
from .store import JobStore
from .telemetry import read_status_file
from .types import MessageSource, SyncRunResult


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sync job-search emails into a tracked job list")
    parser.add_argument("--env-file", default=".env", help="Path to the .env file with credentials")
    sub = parser.add_subparsers(dest="command", required=True)

    for name, help_text in (
        ("sync", "Incremental run over recent mail"),
        ("backfill", "Historical run from BACKFILL_AFTER_DATE, resumable"),
    ):
        run_parser = sub.add_parser(name, help=help_text)
        run_parser.add_argument("--source", choices=["gmail", "csv"], default="gmail")
        run_parser.add_argument("--csv-path")
        run_parser.add_argument(
            "--no-interactive-auth",
            action="store_true",
            help="Disable browser/console OAuth fallback and require existing Gmail token",
        )
        run_parser.add_argument("--reconcile", action="store_true", help="Run reconciliation sweeps after the run")

    sub.add_parser("reconcile", help="Run reconciliation sweeps over the stored jobs")
    sub.add_parser("status", help="Print the last run status and job counts")
    return parser


def _build_source(args: argparse.Namespace, settings: Settings) -> MessageSource:
    if args.source == "csv":
        if not args.csv_path:
            raise SystemExit("--csv-path is required with --source csv")
        return CsvSource.from_path(args.csv_path)
    return GmailSource.from_files(
        settings.gmail_credentials_path,
        settings.gmail_token_path,
        allow_interactive_auth=not args.no_interactive_auth,
    )


def _print_summary(result: SyncRunResult) -> None:
    print("Summary")
    print(
        f"fetched={result.fetched} skipped_existing={result.skipped_existing} "
        f"prefiltered_out={result.prefiltered_out} classified={result.classified} "
        f"classification_failed={result.classification_failed} skipped_other={result.skipped_other}"
    )
    print(
        f"jobs_created={result.jobs_created} jobs_updated={result.jobs_updated} "
        f"store_errors={result.store_errors} batches={result.batches}"
    )
    if result.halted_reason:
        print(f"halted={result.halted_reason} (run again to resume)")


def _run_sync(args: argparse.Namespace, settings: Settings) -> int:
    source = _build_source(args, settings)
    if args.source == "gmail":
        print("Gmail run started. This can take several minutes depending on mailbox size and rate limits.")
    else:
        print("Run started.")

    store = JobStore(settings.database_path)
    result = create_pipeline(settings, source, store=store).run(args.command)
    print(f"Run ID: {result.run_id}")
    _print_summary(result)

    if args.reconcile:
        report = run_reconciliation(store, ghost_after_days=settings.ghost_after_days)
        print(f"reconcile: {json.dumps(report.to_dict(), sort_keys=True)}")
    return 0


def _run_reconcile(settings: Settings) -> int:
    report = run_reconciliation(JobStore(settings.database_path), ghost_after_days=settings.ghost_after_days)
    for key, value in report.to_dict().items():
        print(f"{key}={value}")
    return 0


def _run_status(settings: Settings) -> int:
    print(json.dumps(read_status_file(settings.sync_status_path), indent=2, sort_keys=True))
    counts = JobStore(settings.database_path).status_counts()
    print("Jobs by status")
    for status_name, count in counts.items():
        print(f"- {status_name}: {count}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    needs_credentials = args.command in {"sync", "backfill"}
    try:
        settings = load_settings(args.env_file, require_credentials=needs_credentials)
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2
    configure_logging(settings.log_level, settings.log_dir)

    if args.command == "reconcile":
        return _run_reconcile(settings)
    if args.command == "status":
        return _run_status(settings)
    return _run_sync(args, settings)


if __name__ == "__main__":
    raise SystemExit(main())
