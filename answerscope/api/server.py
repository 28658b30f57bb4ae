"""FastAPI application exposing the collection service.

Endpoints:
- POST /collections - submit a batch (202 with the batch id)
- GET /collections/{batch_id} - batch progress
- POST /collections/{batch_id}/cancel - stop starting new attempts
- GET /health - credential pool, handoff backlog and storage checks
- GET /metrics - Prometheus metrics in text format

Usage:
    from answerscope.api.server import create_app
    app = create_app(service)
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List

import structlog
from fastapi import FastAPI, HTTPException, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field

from answerscope import __version__
from answerscope.api.checks import HealthChecker, HealthStatus
from answerscope.models.batch import BatchProgress
from answerscope.observability.metrics import get_metrics_content_type, get_metrics_text
from answerscope.orchestration.service import CollectionService
from answerscope.utils.exceptions import BatchNotFoundError

logger = structlog.get_logger()


class CollectionSubmission(BaseModel):
    """Body of POST /collections"""

    brand_id: str = Field(..., min_length=1)
    customer_id: str = Field(..., min_length=1)
    queries: List[str] = Field(..., min_length=1, max_length=1000)
    collector_types: List[str] = Field(..., min_length=1)
    locale: str = "en"
    country: str = "US"


class SubmissionAccepted(BaseModel):
    batch_id: str
    progress: BatchProgress


def create_app(
    service: CollectionService,
    title: str = "answerscope",
    close_service_on_shutdown: bool = False,
) -> FastAPI:
    """Create the API around an existing service.

    Args:
        service: Service every route delegates to
        title: API title
        close_service_on_shutdown: Close the service when the app stops

    Returns:
        Configured FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("api_server_starting", config_version=service.config.version)
        yield
        logger.info("api_server_stopping")
        if close_service_on_shutdown:
            await service.close()

    app = FastAPI(
        title=title,
        version=__version__,
        description="Brand answer collection and scoring",
        lifespan=lifespan,
    )
    checker = HealthChecker(service)

    @app.post(
        "/collections",
        response_model=SubmissionAccepted,
        status_code=status.HTTP_202_ACCEPTED,
        summary="Submit a collection batch",
    )
    async def submit_collection(body: CollectionSubmission) -> SubmissionAccepted:
        try:
            batch_id = await service.submit_collection(
                body.brand_id,
                body.customer_id,
                body.queries,
                body.collector_types,
                locale=body.locale,
                country=body.country,
            )
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
            )
        return SubmissionAccepted(
            batch_id=batch_id, progress=service.get_batch_progress(batch_id)
        )

    @app.get(
        "/collections/{batch_id}",
        response_model=BatchProgress,
        summary="Batch progress",
        responses={404: {"description": "Unknown batch"}},
    )
    async def get_progress(batch_id: str) -> BatchProgress:
        try:
            return service.get_batch_progress(batch_id)
        except BatchNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @app.post(
        "/collections/{batch_id}/cancel",
        response_model=BatchProgress,
        summary="Cancel a batch",
        responses={404: {"description": "Unknown batch"}},
    )
    async def cancel_batch(batch_id: str) -> BatchProgress:
        try:
            return service.cancel_batch(batch_id)
        except BatchNotFoundError as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    @app.get(
        "/health",
        response_model=None,
        summary="Full health check",
        responses={
            200: {"description": "Healthy or degraded"},
            503: {"description": "One or more checks failed"},
        },
    )
    async def health_check() -> Response:
        report = await checker.check_all()
        status_code = (
            status.HTTP_200_OK
            if report.status != HealthStatus.UNHEALTHY
            else status.HTTP_503_SERVICE_UNAVAILABLE
        )
        return JSONResponse(content=report.to_dict(), status_code=status_code)

    @app.get(
        "/metrics",
        response_class=PlainTextResponse,
        summary="Prometheus metrics",
    )
    async def prometheus_metrics() -> Response:
        return Response(
            content=get_metrics_text(),
            media_type=get_metrics_content_type(),
        )

    @app.get("/", response_model=None, summary="API information")
    async def root() -> Dict[str, Any]:
        return {
            "name": title,
            "version": __version__,
            "config_version": service.config.version,
            "endpoints": {
                "collections": "/collections",
                "health": "/health",
                "metrics": "/metrics",
            },
        }

    return app


async def run_server_async(  # pragma: no cover
    service: CollectionService,
    host: str = "0.0.0.0",
    port: int = 8000,
    log_level: str = "info",
) -> None:
    """Serve the API until the process is stopped."""
    import uvicorn

    config = uvicorn.Config(
        create_app(service),
        host=host,
        port=port,
        log_level=log_level,
        access_log=True,
    )
    server = uvicorn.Server(config)

    logger.info("api_server_listening", host=host, port=port)
    await server.serve()
