from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from peptalk.core.config import settings
from peptalk.core.exceptions import ConfigurationError
from peptalk.core.security import require_internal_secret
from peptalk.modules.pipeline.batch import BatchRunner, load_batch_list, select_entries
from peptalk.modules.pipeline.factory import open_pipeline
from peptalk.modules.pipeline.orchestrator import PeptidePipeline
from peptalk.modules.pipeline.schemas import BatchRequest, ProcessRequest, RunOptions, RunReport

router = APIRouter(
    prefix="/pipeline",
    tags=["pipeline"],
    dependencies=[Depends(require_internal_secret)],
)


async def get_pipeline() -> AsyncGenerator[PeptidePipeline, None]:
    async with open_pipeline(settings.pipeline_config()) as pipeline:
        yield pipeline


def _check_credentials(options: RunOptions) -> None:
    missing = settings.pipeline_config().missing_credentials(
        dry_run=options.dry_run, skip_compliance=options.skip_compliance
    )
    if missing:
        raise HTTPException(status_code=503, detail=f"Missing configuration: {', '.join(missing)}")


@router.post("/process", response_model=RunReport)
async def process_peptide(
    data: ProcessRequest,
    pipeline: PeptidePipeline = Depends(get_pipeline),
) -> RunReport:
    options = RunOptions(dry_run=data.dry_run, skip_compliance=data.skip_compliance, force=data.force)
    _check_credentials(options)
    return await pipeline.run(data, options)


@router.post("/batch")
async def process_batch(
    data: BatchRequest,
    pipeline: PeptidePipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    options = RunOptions(dry_run=data.dry_run, skip_compliance=data.skip_compliance, force=data.force)
    _check_credentials(options)

    entries = data.entries
    if data.list_path:
        try:
            entries = load_batch_list(data.list_path)
        except ConfigurationError as e:
            raise HTTPException(status_code=422, detail=str(e))
    if not entries:
        raise HTTPException(status_code=422, detail="No peptides given")

    batch_config = settings.batch_config()
    selected = select_entries(
        entries,
        priorities=batch_config.priorities,
        all_priorities=data.all_priorities,
        include_completed=data.include_completed,
    )
    report = await BatchRunner(pipeline, batch_config).run(selected, options)
    return {
        "totals": report.totals(),
        "runs": [r.model_dump(mode="json") for r in report.results],
    }
