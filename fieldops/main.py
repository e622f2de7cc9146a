"""
fieldops: FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from fieldops.bootstrap import configure_logging, shutdown, startup
from fieldops.config.settings import settings
from fieldops.api.sync_routes import router as sync_router, schema_router

configure_logging(settings)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("fieldops starting...")
    app.state.ctx = startup(settings)
    logger.info(f"API ready at http://{settings.api_host}:{settings.api_port}")
    yield
    logger.info("fieldops shutting down...")
    shutdown(app.state.ctx, timeout=settings.http_timeout_seconds + 5)


app = FastAPI(
    title="fieldops",
    description="Field-service client core: schema reconcile, mode resolution, offline sync",
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(schema_router)
app.include_router(sync_router)


@app.get("/health")
def health():
    return {"status": "ok", "version": settings.app_version}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fieldops.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
