"""Control API for runtime management using FastAPI."""
from typing import Optional
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel
import logging
import time

logger = logging.getLogger(__name__)


class TogglesRequest(BaseModel):
    """Request to change runtime toggles; omitted fields are left as they are."""
    coordinator_metrics_enabled: Optional[bool] = None
    task_resource_track_enabled: Optional[bool] = None


class LogLevelRequest(BaseModel):
    """Request to change log level."""
    level: str


class ControlAPI:
    """FastAPI-based control API for runtime management."""

    def __init__(self, engine):
        """
        Initialize control API.

        Args:
            engine: Reference to the metrics engine
        """
        self.engine = engine
        self.app = FastAPI(title="Operation Metrics Control API")

        # Setup routes
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes."""

        @self.app.get("/healthz")
        async def healthz():
            """Health check endpoint."""
            return {"status": "healthy", "timestamp": time.time()}

        @self.app.get("/status")
        async def status():
            """Get current engine status."""
            try:
                return self.engine.status()
            except Exception as e:
                logger.error(f"Error getting status: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.get("/control/toggles")
        async def get_toggles():
            """Current toggle values."""
            return self.engine.toggles.as_dict()

        @self.app.post("/control/toggles")
        async def set_toggles(request: TogglesRequest):
            """Flip runtime toggles."""
            toggles = self.engine.toggles

            if request.coordinator_metrics_enabled is not None:
                toggles.coordinator_metrics_enabled = request.coordinator_metrics_enabled
            if request.task_resource_track_enabled is not None:
                toggles.task_resource_track_enabled = request.task_resource_track_enabled

            logger.info(f"Toggles updated: {toggles.as_dict()}")

            return {
                "status": "toggles_updated",
                "toggles": toggles.as_dict(),
                "timestamp": time.time()
            }

        @self.app.post("/control/loglevel")
        async def set_log_level(request: LogLevelRequest):
            """Change log level at runtime."""
            level = request.level.upper()

            if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
                raise HTTPException(
                    status_code=400,
                    detail=f"Invalid log level: {level}"
                )

            logging.getLogger().setLevel(getattr(logging, level))
            logger.info(f"Log level changed to: {level}")

            return {
                "status": "log_level_changed",
                "level": level,
                "timestamp": time.time()
            }

    def run(self, host: str = "0.0.0.0", port: int = 8081):
        """Run the API server."""
        import uvicorn
        uvicorn.run(self.app, host=host, port=port, log_level="info")
