"""stackform compiler service - FastAPI application"""
import logging
import os
from contextlib import asynccontextmanager
from fastapi import FastAPI, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from stackform import __version__
from stackform.api import health, releases
from stackform.middleware import CorrelationIdFilter, CorrelationIdMiddleware
from stackform.releases.validator import list_rules


logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] - %(message)s'
)

for _handler in logging.getLogger().handlers:
    _handler.addFilter(CorrelationIdFilter())

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(f"Starting stackform v{__version__}")
    rules = list_rules()
    logger.info(f"Loaded {len(rules)} validation rules: {', '.join(r.rule_id for r in rules)}")

    yield

    logger.info("Shutting down stackform")


app = FastAPI(
    title="stackform",
    description="Deployment descriptor compiler: validate, render and plan releases",
    version=__version__,
    lifespan=lifespan
)

app.add_middleware(CorrelationIdMiddleware)

app.include_router(health.router, prefix="/api/v1", tags=["Health"])
app.include_router(releases.router, prefix="/api/v1", tags=["Releases"])


@app.get("/health")
async def root_health():
    """Root health check (non-versioned for convenience)."""
    return {"status": "ok", "version": __version__}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint.

    Exposes compiler counters:
    - Violations by rule and severity
    - Assemblies by outcome
    - Rendered manifests by kind
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def run() -> None:
    import uvicorn
    uvicorn.run(
        app,
        host=os.getenv("STACKFORM_HOST", "0.0.0.0"),
        port=int(os.getenv("STACKFORM_PORT", "8000")),
    )


if __name__ == "__main__":
    run()
