from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from peptalk.core.config import settings
from peptalk.core.logging import configure_logging
from peptalk.modules.pipeline.router import router as pipeline_router
from peptalk.modules.publisher.router import router as internal_router

configure_logging(json_logs=settings.json_logs, level=settings.log_level)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("Starting PepTalk research API")
    yield
    logger.info("Shutting down PepTalk research API")


app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    openapi_url="/api/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(pipeline_router, prefix=settings.api_prefix)
# write surface for the publisher; clients address it without the API prefix
app.include_router(internal_router)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
