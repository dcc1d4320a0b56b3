"""
API routes for the ChartFleet status API.

Read-only views of deployments and their rollout progress, plus a hook to
queue an immediate reconcile.
"""

import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict

from fastapi import APIRouter, FastAPI, HTTPException, Request, Response

from chartfleet import __version__, conditions
from chartfleet.api.models import (
    DeploymentDetailResponse,
    DeploymentListResponse,
    DeploymentSummary,
    ReconcileResponse,
    ReleaseSummary,
    StatusResponse,
)
from chartfleet.errors import NotFoundError, StoreIOError
from chartfleet.logging_config import API_LOGGER
from chartfleet.models.chart_deployment import READY_CONDITION, ChartDeployment
from chartfleet.models.meta import ObjectKey
from chartfleet.utils.log_sanitizer import sanitize_for_log

if TYPE_CHECKING:
    from chartfleet.manager import ChartFleetManager

logger = logging.getLogger(__name__)
access_logger = logging.getLogger(API_LOGGER)


def create_routes(manager: "ChartFleetManager") -> APIRouter:
    """
    Create API routes with manager instance.

    Args:
        manager: ChartFleetManager instance

    Returns:
        Configured APIRouter
    """
    router = APIRouter()

    async def load_deployment(namespace: str, name: str) -> ChartDeployment:
        key = ObjectKey(namespace=namespace, name=name)
        try:
            return await manager.store.get(ChartDeployment, key)
        except NotFoundError:
            raise HTTPException(status_code=404, detail=f"ChartDeployment {key} not found")
        except StoreIOError as e:
            logger.error(f"Failed to read ChartDeployment {sanitize_for_log(key)}: {e}")
            raise HTTPException(status_code=502, detail=str(e))

    @router.get("/health")
    async def health_check() -> Dict[str, str]:
        """Health check endpoint."""
        return {"status": "healthy", "service": "chartfleet"}

    @router.get("/status", response_model=StatusResponse)
    async def get_status() -> StatusResponse:
        """Get manager status."""
        status = manager.get_status()
        return StatusResponse(
            status="running" if status["running"] else "stopped",
            version=__version__,
            store_backend=status["store_backend"],
            uptime_seconds=status.get("uptime_seconds"),
            start_time=status.get("start_time"),
            controller=status["controller"],
        )

    @router.get("/deployments", response_model=DeploymentListResponse)
    async def list_deployments() -> DeploymentListResponse:
        """List ChartDeployments with their rollout progress."""
        try:
            deployments = await manager.store.list(ChartDeployment)
        except StoreIOError as e:
            logger.error(f"Failed to list ChartDeployments: {e}")
            raise HTTPException(status_code=502, detail=str(e))

        return DeploymentListResponse(
            deployments=[DeploymentSummary.from_deployment(d) for d in deployments]
        )

    @router.get("/deployments/{namespace}/{name}", response_model=DeploymentDetailResponse)
    async def get_deployment(namespace: str, name: str) -> DeploymentDetailResponse:
        """Get one ChartDeployment with its conditions and releases."""
        deployment = await load_deployment(namespace, name)
        try:
            releases = await manager.reconciler.registry.list_owned(deployment)
        except StoreIOError as e:
            logger.error(f"Failed to list releases of {deployment.namespaced_name}: {e}")
            raise HTTPException(status_code=502, detail=str(e))

        release_summaries = []
        for release in releases:
            ready = conditions.get(release, READY_CONDITION)
            release_summaries.append(
                ReleaseSummary(
                    name=release.metadata.name,
                    cluster=release.cluster_key,
                    generation=release.metadata.generation,
                    observed_generation=release.status.observed_generation,
                    ready=ready.status if ready is not None else None,
                )
            )

        return DeploymentDetailResponse(
            deployment=DeploymentSummary.from_deployment(deployment),
            conditions=deployment.status.conditions,
            releases=release_summaries,
        )

    @router.post("/deployments/{namespace}/{name}/reconcile", response_model=ReconcileResponse)
    async def reconcile_deployment(namespace: str, name: str) -> ReconcileResponse:
        """Queue an immediate reconcile of a ChartDeployment."""
        deployment = await load_deployment(namespace, name)
        manager.controller.enqueue(deployment.key)
        logger.info(f"Reconcile requested for {sanitize_for_log(deployment.key)}")
        return ReconcileResponse(queued=True, key=str(deployment.key))

    return router


def create_app(manager: "ChartFleetManager") -> FastAPI:
    """Build the FastAPI application serving the status API."""
    app = FastAPI(title="ChartFleet API", version=__version__)

    @app.middleware("http")
    async def log_access(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Any:
        started = time.monotonic()
        response = await call_next(request)
        duration_ms = int((time.monotonic() - started) * 1000)
        access_logger.info(
            f"{request.method} {sanitize_for_log(request.url.path)} "
            f"{response.status_code} {duration_ms}ms",
            extra={"duration_ms": duration_ms},
        )
        return response

    app.include_router(create_routes(manager))
    return app
