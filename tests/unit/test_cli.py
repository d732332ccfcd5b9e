"""Unit tests for the command line entry point and its exit codes."""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from peptalk import cli
from peptalk.modules.pipeline.orchestrator import PeptidePipeline
from peptalk.modules.pipeline.schemas import RunReport

CREDENTIALS = {
    "PUBMED_EMAIL": "research@example.test",
    "ANTHROPIC_API_KEY": "test-anthropic",
    "OPENAI_API_KEY": "test-openai",
    "DATABASE_URL": "sqlite+aiosqlite://",
    "BATCH_DELAY_SECONDS": "0",
}


@pytest.fixture
def env(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)  # no stray .env
    for key in ("PUBMED_EMAIL", "ANTHROPIC_API_KEY", "OPENAI_API_KEY", "GOOGLE_AI_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


@pytest.fixture
def fake_pipeline(env) -> MagicMock:
    """Replace pipeline construction; every run succeeds unless told otherwise."""
    pipeline = MagicMock(spec=PeptidePipeline)
    pipeline.failing = set()

    async def run(request, options=None):
        report = RunReport(peptide_id=request.peptide_id, name=request.name, run_id="r")
        if request.peptide_id in pipeline.failing:
            return report.fail("publish", "upload failed: HTTP 503")
        report.success = True
        report.version = 1
        return report

    pipeline.run = AsyncMock(side_effect=run)

    @asynccontextmanager
    async def open_pipeline(config, *, cost_tracker=None):
        yield pipeline

    env.setattr(cli, "open_pipeline", open_pipeline)
    return pipeline


def _set_credentials(env) -> None:
    for key, value in CREDENTIALS.items():
        env.setenv(key, value)


def test_missing_credentials_exit_2(fake_pipeline) -> None:
    assert cli.main(["process", "bpc-157", "BPC-157"]) == cli.EXIT_CONFIG
    fake_pipeline.run.assert_not_awaited()


def test_process_success_prints_report(env, fake_pipeline, capsys) -> None:
    _set_credentials(env)

    code = cli.main(["process", "bpc-157", "BPC-157", "Body Protection Compound 157", "--force"])

    assert code == cli.EXIT_OK
    request, options = fake_pipeline.run.await_args.args
    assert request.aliases == ["Body Protection Compound 157"]
    assert options.force and not options.dry_run
    assert json.loads(capsys.readouterr().out)["version"] == 1


def test_process_failure_exit_1(env, fake_pipeline) -> None:
    _set_credentials(env)
    fake_pipeline.failing.add("bpc-157")

    assert cli.main(["process", "bpc-157", "BPC-157"]) == cli.EXIT_FAILURE


def test_dry_run_does_not_need_store_settings(env, fake_pipeline) -> None:
    _set_credentials(env)
    env.setenv("DATABASE_URL", "")

    assert cli.main(["process", "bpc-157", "BPC-157", "--dry-run"]) == cli.EXIT_OK
    assert cli.main(["process", "bpc-157", "BPC-157"]) == cli.EXIT_CONFIG


def test_invalid_batch_list_exit_2_before_any_run(env, fake_pipeline, tmp_path: Path) -> None:
    _set_credentials(env)
    listfile = tmp_path / "peptides.csv"
    listfile.write_text("id,name\nbpc-157,BPC-157\nbpc-157,BPC-157\n")

    assert cli.main(["batch", str(listfile)]) == cli.EXIT_CONFIG
    fake_pipeline.run.assert_not_awaited()


def test_batch_with_one_failure_exit_1_and_writes_report(env, fake_pipeline, tmp_path: Path) -> None:
    _set_credentials(env)
    listfile = tmp_path / "peptides.csv"
    listfile.write_text("id,name,priority\nbpc-157,BPC-157,high\ntb-500,TB-500,high\nsemax,Semax,low\n")
    fake_pipeline.failing.add("tb-500")
    report = tmp_path / "out" / "report.json"

    code = cli.main(["batch", str(listfile), "--report", str(report)])

    assert code == cli.EXIT_FAILURE
    assert fake_pipeline.run.await_count == 2
    assert json.loads(report.read_text())["totals"]["failed"] == 1


def test_batch_all_priorities(env, fake_pipeline, tmp_path: Path) -> None:
    _set_credentials(env)
    listfile = tmp_path / "peptides.yaml"
    listfile.write_text(
        "peptides:\n  - {id: bpc-157, name: BPC-157}\n  - {id: semax, name: Semax, priority: low}\n"
    )

    assert cli.main(["batch", str(listfile), "--all-priorities", "--delay", "0"]) == cli.EXIT_OK
    assert fake_pipeline.run.await_count == 2
