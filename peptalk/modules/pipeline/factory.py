"""Wire a ``PeptidePipeline`` from a ``PipelineConfig``."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from peptalk.core.config import PipelineConfig
from peptalk.core.exceptions import ConfigurationError
from peptalk.modules.compliance.validator import ComplianceValidator
from peptalk.modules.llm.cost_tracker import CostTracker
from peptalk.modules.pipeline.orchestrator import PeptidePipeline
from peptalk.modules.publisher.documents import (
    DocumentStore,
    InternalApiDocumentStore,
    LocalDocumentStore,
)
from peptalk.modules.publisher.publisher import Publisher
from peptalk.modules.publisher.renderer import get_renderer
from peptalk.modules.publisher.store import InternalApiPageStore, PageStore, SqlPageStore
from peptalk.modules.sources.clinicaltrials import ClinicalTrialsClient
from peptalk.modules.sources.pubmed import PubMedClient
from peptalk.modules.synthesis.synthesizer import Synthesizer

logger = structlog.get_logger()


def _page_store(config: PipelineConfig) -> tuple[PageStore | None, AsyncEngine | None]:
    if config.publish_backend == "internal_api":
        if not config.internal_api_url:
            return None, None
        store = InternalApiPageStore(
            config.internal_api_url, config.internal_api_secret, config.publisher.retry
        )
        return store, None
    if config.publish_backend == "database":
        if not config.database_url:
            return None, None
        engine = create_async_engine(config.database_url, pool_pre_ping=True)
        sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        return SqlPageStore(sessions), engine
    raise ConfigurationError(f"unknown publish backend: {config.publish_backend}")


def _document_store(config: PipelineConfig) -> DocumentStore:
    if config.document_backend == "internal_api":
        return InternalApiDocumentStore(
            config.internal_api_url, config.internal_api_secret, config.publisher.retry
        )
    if config.document_backend == "local":
        return LocalDocumentStore(config.document_dir or "./documents", config.publisher.public_base_url)
    raise ConfigurationError(f"unknown document backend: {config.document_backend}")


@asynccontextmanager
async def open_pipeline(
    config: PipelineConfig,
    *,
    cost_tracker: CostTracker | None = None,
) -> AsyncIterator[PeptidePipeline]:
    """Build the pipeline and release its database engine on exit."""
    tracker = cost_tracker or CostTracker()
    try:
        renderer = get_renderer(
            config.publisher.document_format, config.publisher.render_timeout_seconds
        )
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    store, engine = _page_store(config)

    pipeline = PeptidePipeline(
        config,
        sources=[PubMedClient(config.pubmed), ClinicalTrialsClient(config.clinicaltrials)],
        synthesizer=Synthesizer(config.synthesis, tracker),
        validator=ComplianceValidator(config.compliance, tracker),
        publisher=Publisher(store, _document_store(config), renderer, config.publisher),
        cost_tracker=tracker,
    )
    logger.debug(
        "pipeline_built",
        publish_backend=config.publish_backend,
        document_backend=config.document_backend,
        document_format=config.publisher.document_format,
    )
    try:
        yield pipeline
    finally:
        if engine is not None:
            await engine.dispose()
