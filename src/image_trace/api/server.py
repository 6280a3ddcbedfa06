"""
HTTP API Server for image-trace.

Thin FastAPI surface over SearchService. It performs no authentication: the
surrounding application resolves the requester and forwards it in headers:

    X-Account-Id        account id (omit for anonymous)
    X-Plan              anonymous | free | basic | pro
    X-Admin             "true" for admin requesters
    X-Searches-Used     searches used in the current window
    X-Searches-Reset-At ISO timestamp of the last allowance reset
    X-Search-Limit      custom per-account search limit
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from image_trace import __version__
from image_trace.config import Settings
from image_trace.container import ApplicationContainer
from image_trace.domain.entities import (
    PlanTier,
    RequesterContext,
    SearchOptions,
    SearchRequest,
    SearchType,
    SecurityLevel,
)
from image_trace.shared.exceptions import (
    AccessDeniedError,
    EntitlementDenied,
    ImageTraceError,
    InvalidParameterError,
    NotFoundError,
    PersistenceError,
    SearchFailedError,
    SearchLimitExceeded,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_API_PORT = 8780


# Pydantic models for API requests / responses
class SearchOptionsModel(BaseModel):
    max_results: int | None = Field(default=None, ge=1)
    minimum_similarity: float | None = Field(default=None, ge=0, le=100)
    security_level: SecurityLevel = SecurityLevel.STANDARD


class SearchRequestModel(BaseModel):
    """Image as base64 (or data URL) in ``image``, or an http(s) ``image_url``."""

    image: str | None = None
    image_url: str | None = None
    search_type: SearchType = SearchType.GENERAL
    options: SearchOptionsModel = Field(default_factory=SearchOptionsModel)


class DeleteRequestModel(BaseModel):
    search_ids: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    providers: dict[str, bool]
    warnings: list[str]


def _status_for(error: ImageTraceError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, SearchLimitExceeded):
        return 429
    if isinstance(error, (AccessDeniedError, EntitlementDenied)):
        return 403
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, SearchFailedError):
        return 502
    if isinstance(error, PersistenceError):
        return 500
    return 400


async def requester_context(
    x_account_id: str | None = Header(default=None),
    x_plan: PlanTier = Header(default=PlanTier.ANONYMOUS),
    x_admin: bool = Header(default=False),
    x_searches_used: int = Header(default=0),
    x_searches_reset_at: datetime | None = Header(default=None),
    x_search_limit: int | None = Header(default=None),
) -> RequesterContext:
    """Build the requester from forwarded headers."""
    if x_account_id is None and x_plan != PlanTier.ANONYMOUS:
        raise InvalidParameterError("X-Plan", x_plan.value, "anonymous when no X-Account-Id is given")
    return RequesterContext(
        account_id=x_account_id,
        plan=x_plan,
        is_admin=x_admin,
        searches_used=x_searches_used,
        searches_reset_at=x_searches_reset_at,
        custom_search_limit=x_search_limit,
    )


def create_api_server(container: ApplicationContainer | None = None) -> FastAPI:
    """
    Create the FastAPI server.

    Args:
        container: Pre-configured container (tests). When None, one is built
                   from environment settings at startup.

    Returns:
        Configured FastAPI instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        if app.state.container is None:
            settings = Settings.from_env()
            logger.info(f"Initializing image-trace with {settings!r}")
            c = ApplicationContainer()
            c.config.from_dict(settings.to_container_config())
            app.state.container = c

        report = app.state.container.registry().validate()
        for warning in report["warnings"]:
            logger.warning(f"Configuration: {warning}")
        logger.info("image-trace API initialized")

        yield

        logger.info("image-trace API shutting down")
        await app.state.container.registry().close()

    app = FastAPI(
        title="image-trace API",
        description="Multi-provider reverse image search with encrypted audit records.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.container = container

    @app.exception_handler(ImageTraceError)
    async def handle_image_trace_error(request: Request, exc: ImageTraceError) -> JSONResponse:
        body: dict[str, Any] = exc.to_dict()
        if isinstance(exc, PersistenceError) and exc.partial_response is not None:
            body["partial_response"] = exc.partial_response.to_dict()
        return JSONResponse(status_code=_status_for(exc), content=body)

    def service(request: Request):
        return request.app.state.container.search_service()

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Health check endpoint."""
        svc = service(request)
        stats = await svc.provider_stats()
        report = svc.validate()
        available = {pid: s["available"] for pid, s in stats.items()}
        return HealthResponse(
            status="healthy" if any(available.values()) else "degraded",
            version=__version__,
            providers=available,
            warnings=report["warnings"],
        )

    @app.get("/providers")
    async def list_providers(request: Request) -> dict[str, Any]:
        """Provider availability, quota and metadata."""
        return await service(request).provider_stats()

    @app.post("/searches")
    async def create_search(
        body: SearchRequestModel,
        request: Request,
        requester: RequesterContext = Depends(requester_context),
    ) -> dict[str, Any]:
        """Run a reverse image search."""
        search_request = SearchRequest(
            requester=requester,
            image_bytes=body.image,
            image_reference=body.image_url,
            search_type=body.search_type,
            options=SearchOptions(
                max_results=body.options.max_results,
                minimum_similarity=body.options.minimum_similarity,
                security_level=body.options.security_level,
            ),
        )
        response = await service(request).search(search_request)
        return response.to_dict()

    @app.post("/searches/{search_id}/retry")
    async def retry_search(
        search_id: str,
        request: Request,
        requester: RequesterContext = Depends(requester_context),
    ) -> dict[str, Any]:
        """Re-run a failed search from its stored image."""
        response = await service(request).retry(search_id, requester)
        return response.to_dict()

    @app.get("/searches/{search_id}/export")
    async def export_search(
        search_id: str,
        request: Request,
        requester: RequesterContext = Depends(requester_context),
    ) -> dict[str, Any]:
        """Full, decrypted result set of a search (owner or admin)."""
        return await service(request).export(search_id, requester)

    @app.get("/searches")
    async def search_history(
        request: Request,
        limit: int = Query(default=50, ge=1, le=500),
        requester: RequesterContext = Depends(requester_context),
    ) -> dict[str, Any]:
        """The requester's past searches, newest first."""
        items = await service(request).history(requester, limit=limit)
        return {"searches": items, "count": len(items)}

    @app.delete("/searches")
    async def delete_searches(
        body: DeleteRequestModel,
        request: Request,
        requester: RequesterContext = Depends(requester_context),
    ) -> dict[str, Any]:
        """Delete searches (premium plans and admins)."""
        deleted = await service(request).delete(body.search_ids, requester)
        return {"deleted": deleted}

    return app


def run_api_server(host: str = "127.0.0.1", port: int = DEFAULT_API_PORT) -> None:
    """
    Run the HTTP API server.

    Args:
        host: Host to bind to (default: 127.0.0.1 for local only)
        port: Port to bind to (default: 8780)
    """
    import uvicorn

    logger.info(f"Starting image-trace API on {host}:{port}")
    uvicorn.run(create_api_server(), host=host, port=port, log_level="info")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="image-trace HTTP API Server")
    parser.add_argument("--host", default=os.environ.get("IMAGE_TRACE_HOST", "127.0.0.1"), help="Host to bind to")
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.environ.get("IMAGE_TRACE_PORT", str(DEFAULT_API_PORT))),
        help="Port to bind to",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    run_api_server(host=args.host, port=args.port)
