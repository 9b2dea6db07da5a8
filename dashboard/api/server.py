from __future__ import annotations

import logging
import threading
from datetime import tzinfo

from fastapi import FastAPI

from station.capture import Camera, CameraFactory, CameraUnavailableError, Frame

from .client import EggApiHttpClient
from .schemas import RGBColor
from ..workflows.analyze import AnalysisSession, ClassificationClient
from ..workflows.calibration import ACCEPTABLE_DEVIATION, CalibrationSession
from ..web import register_ui


logger = logging.getLogger(__name__)


class CameraManager:
    """Holds the calibration camera between view entry and view exit.

    Only one handle is open at a time. ``close`` is safe to call repeatedly
    and runs on application shutdown so the device lock is never leaked.
    """

    def __init__(self, factory: CameraFactory | None) -> None:
        self._factory = factory
        self._camera: Camera | None = None
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self._factory is not None

    @property
    def is_open(self) -> bool:
        with self._lock:
            return self._camera is not None

    def open(self) -> None:
        with self._lock:
            if self._camera is not None:
                return
            if self._factory is None:
                raise CameraUnavailableError("No camera is configured for this dashboard")
            self._camera = self._factory()
        logger.info("Calibration camera acquired")

    def capture(self) -> Frame:
        with self._lock:
            if self._camera is None:
                raise CameraUnavailableError("Camera is not open; enter the calibration view first")
            return self._camera.capture()

    def close(self) -> None:
        with self._lock:
            camera, self._camera = self._camera, None
        if camera is None:
            return
        camera.release()
        logger.info("Calibration camera released")


def create_app(
    client: EggApiHttpClient | ClassificationClient | None = None,
    camera_factory: CameraFactory | None = None,
    analysis_concurrency: int = 1,
    acceptable_deviation: float = ACCEPTABLE_DEVIATION,
    reference_color: tuple[int, int, int] = (255, 255, 255),
    display_tz: tzinfo | None = None,
) -> FastAPI:
    backend = client or EggApiHttpClient()

    app = FastAPI(title="Egg Viability Dashboard")
    r, g, b = reference_color
    app.state.client = backend
    app.state.analysis = AnalysisSession(backend, concurrency=analysis_concurrency)
    app.state.calibration = CalibrationSession(
        backend,
        reference=RGBColor(r=r, g=g, b=b),
        threshold=acceptable_deviation,
    )
    app.state.camera = CameraManager(camera_factory)
    app.state.display_tz = display_tz

    logger.info(
        "Dashboard initialised backend=%s concurrency=%d acceptable_deviation=%.1f",
        getattr(backend, "base_url", backend.__class__.__name__),
        analysis_concurrency,
        acceptable_deviation,
    )

    @app.get("/health", response_model=dict[str, str])
    def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @app.on_event("shutdown")
    async def _release_camera() -> None:
        app.state.camera.close()

    register_ui(app)

    return app


__all__ = ["CameraManager", "create_app"]
