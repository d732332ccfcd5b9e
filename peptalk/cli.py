"""PepTalk research pipeline command line.

Usage:
    # One peptide
    peptalk process bpc-157 "BPC-157" "Body Protection Compound 157" --dry-run

    # Skip the language-model compliance review (pattern and citation checks still run)
    peptalk process tb-500 "TB-500" "Thymosin beta-4" --skip-compliance

    # Re-run a peptide that already has a published version
    peptalk process bpc-157 "BPC-157" --force

    # Batch from CSV or YAML, high priority only
    peptalk batch peptides.csv --report=reports/batch.json

    # Every non-completed priority, plus completed ones
    peptalk batch peptides.yaml --all-priorities --include-completed

Exit codes: 0 success, 1 a run failed, 2 configuration error, 130 interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Load .env before importing settings
from dotenv import load_dotenv

load_dotenv()

import structlog

from peptalk.core.config import Settings
from peptalk.core.exceptions import ConfigurationError
from peptalk.core.logging import configure_logging
from peptalk.modules.llm.cost_tracker import CostTracker
from peptalk.modules.pipeline.batch import BatchRunner, load_batch_list, select_entries
from peptalk.modules.pipeline.factory import open_pipeline
from peptalk.modules.pipeline.schemas import PeptideRequest, RunOptions, RunReport

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="peptalk", description="PepTalk research page pipeline")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("--log-level", default=None, help="Log level (default from LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Research and publish one peptide")
    process.add_argument("peptide_id", help="Stable peptide id, e.g. bpc-157")
    process.add_argument("name", help="Canonical peptide name")
    process.add_argument("aliases", nargs="*", help="Alternative names")
    process.add_argument("--dry-run", action="store_true", help="Run every stage but write nothing")
    process.add_argument(
        "--skip-compliance",
        action="store_true",
        help="Skip the language-model compliance review",
    )
    process.add_argument("--force", action="store_true", help="Re-run even if already published")

    batch = sub.add_parser("batch", help="Process a CSV or YAML list of peptides")
    batch.add_argument("listfile", type=Path, help="Batch list (.csv, .yaml, .yml)")
    batch.add_argument("--report", type=Path, default=None, help="Report path (.json or .md)")
    batch.add_argument("--all-priorities", action="store_true", help="Include medium and low priority")
    batch.add_argument("--include-completed", action="store_true", help="Include completed peptides")
    batch.add_argument("--dry-run", action="store_true")
    batch.add_argument("--skip-compliance", action="store_true")
    batch.add_argument("--force", action="store_true")
    batch.add_argument("--delay", type=float, default=None, help="Seconds between peptides")
    return parser


def _print_report(report: RunReport) -> None:
    print(json.dumps(report.model_dump(mode="json"), indent=2))


async def _process(args: argparse.Namespace, settings: Settings, tracker: CostTracker) -> int:
    config = settings.pipeline_config()
    options = RunOptions(dry_run=args.dry_run, skip_compliance=args.skip_compliance, force=args.force)
    missing = config.missing_credentials(dry_run=options.dry_run, skip_compliance=options.skip_compliance)
    if missing:
        raise ConfigurationError(f"missing configuration: {', '.join(missing)}")

    request = PeptideRequest(peptide_id=args.peptide_id, name=args.name, aliases=args.aliases)
    async with open_pipeline(config, cost_tracker=tracker) as pipeline:
        report = await pipeline.run(request, options)

    _print_report(report)
    return EXIT_OK if report.success else EXIT_FAILURE


async def _batch(args: argparse.Namespace, settings: Settings, tracker: CostTracker) -> int:
    config = settings.pipeline_config()
    options = RunOptions(dry_run=args.dry_run, skip_compliance=args.skip_compliance, force=args.force)
    batch_config = settings.batch_config()
    if args.delay is not None:
        batch_config = batch_config.model_copy(update={"delay_seconds": args.delay})

    # validate everything before the first external call
    entries = load_batch_list(args.listfile)
    missing = config.missing_credentials(dry_run=options.dry_run, skip_compliance=options.skip_compliance)
    if missing:
        raise ConfigurationError(f"missing configuration: {', '.join(missing)}")

    selected = select_entries(
        entries,
        priorities=batch_config.priorities,
        all_priorities=args.all_priorities,
        include_completed=args.include_completed,
    )
    if not selected:
        logger.warning("batch_nothing_selected", entries=len(entries))
        return EXIT_OK

    async with open_pipeline(config, cost_tracker=tracker) as pipeline:
        report = await BatchRunner(pipeline, batch_config).run(
            selected, options, report_path=args.report
        )

    print(json.dumps(report.totals(), indent=2))
    return EXIT_OK if report.ok else EXIT_FAILURE


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings()
    except Exception as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(
        json_logs=args.json_logs or settings.json_logs,
        level=args.log_level or settings.log_level,
    )
    tracker = CostTracker()
    handler = _process if args.command == "process" else _batch

    try:
        code = asyncio.run(handler(args, settings, tracker))
    except ConfigurationError as e:
        logger.error("configuration_error", error=str(e))
        return EXIT_CONFIG
    except KeyboardInterrupt:
        logger.warning("interrupted")
        return EXIT_INTERRUPTED

    if tracker.records:
        print(tracker.summary_text(), file=sys.stderr)
    return code


if __name__ == "__main__":
    sys.exit(main())
