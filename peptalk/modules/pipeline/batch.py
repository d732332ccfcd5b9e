"""Batch mode: run a list of peptides one at a time.

List files are CSV (``id,name,aliases,priority,notes`` with ``|``-separated
aliases) or YAML (a top-level ``peptides:`` list of mappings with the same
keys). The whole list is validated before the first peptide runs.
"""

from __future__ import annotations

import asyncio
import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from peptalk.core.config import BatchConfig
from peptalk.core.exceptions import ConfigurationError
from peptalk.modules.pipeline.orchestrator import PeptidePipeline
from peptalk.modules.pipeline.schemas import BatchEntry, BatchReport, RunOptions, RunReport

logger = structlog.get_logger()

ALIAS_SEPARATOR = "|"


def _split_aliases(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(a).strip() for a in value if str(a).strip()]
    return [a.strip() for a in str(value).split(ALIAS_SEPARATOR) if a.strip()]


def _raw_rows(path: Path) -> list[dict[str, Any]]:
    suffix = path.suffix.lower()
    text = path.read_text(encoding="utf-8")

    if suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"invalid YAML in {path}: {e}") from e
        rows = data.get("peptides") if isinstance(data, dict) else None
        if not isinstance(rows, list):
            raise ConfigurationError(f"{path}: expected a top-level 'peptides' list")
        if not all(isinstance(row, dict) for row in rows):
            raise ConfigurationError(f"{path}: every peptide entry must be a mapping")
        return rows

    if suffix == ".csv":
        reader = csv.DictReader(text.splitlines())
        if not reader.fieldnames or not {"id", "name"} <= {f.strip() for f in reader.fieldnames}:
            raise ConfigurationError(f"{path}: CSV header must include 'id' and 'name'")
        return [{(k or "").strip(): v for k, v in row.items()} for row in reader]

    raise ConfigurationError(f"unsupported batch list format: {path.suffix or path.name}")


def load_batch_list(path: str | Path) -> list[BatchEntry]:
    """Parse and validate a batch list. Any bad row invalidates the whole list."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"batch list not found: {path}")

    entries: list[BatchEntry] = []
    seen: set[str] = set()
    for line_no, row in enumerate(_raw_rows(path), start=1):
        try:
            entry = BatchEntry(
                peptide_id=str(row.get("id") or row.get("peptide_id") or ""),
                name=str(row.get("name") or ""),
                aliases=_split_aliases(row.get("aliases")),
                priority=row.get("priority"),
                notes=str(row.get("notes") or ""),
            )
        except ValidationError as e:
            problems = "; ".join(f"{'.'.join(map(str, err['loc']))}: {err['msg']}" for err in e.errors())
            raise ConfigurationError(f"{path} entry {line_no}: {problems}") from e
        if entry.peptide_id in seen:
            raise ConfigurationError(f"{path} entry {line_no}: duplicate id {entry.peptide_id!r}")
        seen.add(entry.peptide_id)
        entries.append(entry)

    logger.info("batch_list_loaded", path=str(path), entries=len(entries))
    return entries


def select_entries(
    entries: list[BatchEntry],
    *,
    priorities: tuple[str, ...] = ("high",),
    all_priorities: bool = False,
    include_completed: bool = False,
) -> list[BatchEntry]:
    """Filter by priority, keeping input order."""
    selected = []
    for entry in entries:
        if entry.priority == "completed":
            if include_completed:
                selected.append(entry)
        elif all_priorities or entry.priority in priorities:
            selected.append(entry)
    return selected


class BatchRunner:
    def __init__(self, pipeline: PeptidePipeline, config: BatchConfig | None = None) -> None:
        self.pipeline = pipeline
        self.config = config or BatchConfig()

    async def run(
        self,
        entries: list[BatchEntry],
        options: RunOptions | None = None,
        *,
        report_path: str | Path | None = None,
    ) -> BatchReport:
        options = options or RunOptions()
        report = BatchReport(selected=len(entries))
        logger.info("batch_started", peptides=len(entries), delay_s=self.config.delay_seconds)

        try:
            for i, entry in enumerate(entries):
                if i > 0 and self.config.delay_seconds > 0:
                    await asyncio.sleep(self.config.delay_seconds)

                logger.info("batch_peptide", position=i + 1, total=len(entries), peptide=entry.peptide_id)
                result = await self.pipeline.run(entry.to_request(), options)
                report.results.append(result)

                if not result.success and not self.config.continue_on_error:
                    logger.warning("batch_halted", peptide=entry.peptide_id, stage=result.failed_stage)
                    break
        except (KeyboardInterrupt, asyncio.CancelledError):
            report.interrupted = True
            logger.warning("batch_interrupted", processed=len(report.results), selected=len(entries))
            raise
        finally:
            report.finished_at = datetime.now(timezone.utc)
            if report_path:
                write_report(report, report_path)

        logger.info("batch_finished", **report.totals())
        return report


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def _row(result: RunReport) -> dict[str, Any]:
    if result.skipped:
        status = "skipped"
    else:
        status = "success" if result.success else "failed"
    return {
        "peptide_id": result.peptide_id,
        "name": result.name,
        "status": status,
        "grade": result.grade,
        "version": result.version,
        "evidence": result.evidence_count,
        "failed_stage": result.failed_stage,
        "error": result.reason if not result.success else None,
        "cost_usd": result.cost_usd,
        "duration_ms": result.duration_ms,
    }


def render_markdown(report: BatchReport) -> str:
    totals = report.totals()
    lines = [
        "# Batch Report",
        "",
        f"- Started: {report.started_at.isoformat()}",
        f"- Finished: {report.finished_at.isoformat() if report.finished_at else '-'}",
        f"- Interrupted: {'yes' if report.interrupted else 'no'}",
        f"- Processed: {totals['processed']} of {totals['selected']}",
        f"- Succeeded: {totals['succeeded']}, skipped: {totals['skipped']}, failed: {totals['failed']}",
        f"- Cost: ${totals['cost_usd']:.4f}",
        "",
        "| Peptide | Status | Grade | Version | Evidence | Error |",
        "|---|---|---|---|---|---|",
    ]
    for result in report.results:
        row = _row(result)
        error = f"{row['failed_stage']}: {row['error']}" if row["error"] else ""
        lines.append(
            f"| {row['peptide_id']} | {row['status']} | {row['grade'] or '-'} | "
            f"{row['version'] or '-'} | {row['evidence']} | {error.replace('|', '/')} |"
        )
    return "\n".join(lines) + "\n"


def write_report(report: BatchReport, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() == ".md":
        path.write_text(render_markdown(report), encoding="utf-8")
    else:
        data = {
            "started_at": report.started_at.isoformat(),
            "finished_at": report.finished_at.isoformat() if report.finished_at else None,
            "interrupted": report.interrupted,
            "totals": report.totals(),
            "peptides": [_row(r) for r in report.results],
            "runs": [r.model_dump(mode="json") for r in report.results],
        }
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    logger.info("batch_report_written", path=str(path))
    return path
