"""
Health Probes - Liveness and readiness endpoints for the operator pod.

Serves ``GET /healthz`` and ``GET /readyz`` over a small FastAPI app run by
uvicorn inside the operator's event loop.
"""

import logging
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)

SERVICE_NAME = "secret-sync-operator"


class ProbeResponse(BaseModel):
    """Body returned by both probe endpoints."""

    status: str
    service: str = SERVICE_NAME
    checks: Dict[str, bool] = {}


class HealthServer:
    """
    HTTP server for Kubernetes liveness and readiness probes.

    The process is live while the event loop serves requests. It is ready
    once the controller is running, its initial pod list has completed and
    at least one secret provider is registered.
    """

    def __init__(
        self,
        controller: Any,
        registry: Any,
        host: str = "0.0.0.0",
        port: int = 8081,
    ):
        self.controller = controller
        self.registry = registry
        self.host = host
        self.port = port
        self.server: Optional[uvicorn.Server] = None

        self.app = FastAPI(
            title="Secret Sync Operator",
            description="Health probes for the secret sync operator",
            version="0.1.0",
        )
        self._setup_routes()

    def liveness(self) -> ProbeResponse:
        return ProbeResponse(status="ok")

    def readiness(self) -> tuple[bool, ProbeResponse]:
        """Evaluate readiness checks."""
        checks = {
            "controller": bool(self.controller and self.controller.running),
            "synced": bool(self.controller and self.controller.synced),
            "providers": bool(self.registry and self.registry.list()),
        }
        ready = all(checks.values())
        return ready, ProbeResponse(
            status="ok" if ready else "unavailable", checks=checks
        )

    def _setup_routes(self) -> None:
        @self.app.get("/healthz", response_model=ProbeResponse)
        async def healthz():
            """Liveness probe."""
            return self.liveness()

        @self.app.get("/readyz", response_model=ProbeResponse)
        async def readyz():
            """Readiness probe."""
            ready, body = self.readiness()
            return JSONResponse(
                status_code=200 if ready else 503, content=body.model_dump()
            )

    async def start(self) -> None:
        """Serve probes until stopped."""
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting health probe server on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Ask the server to exit."""
        logger.info("Stopping health probe server")
        if self.server:
            self.server.should_exit = True
