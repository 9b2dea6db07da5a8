"""Dashboard configuration.

Settings come from three layers, later ones winning:
- defaults below
- ``config/dashboard.json`` (optional)
- ``EGGVIEW_*`` environment variables (``.env`` is loaded by ``main``)

CLI flags in ``dashboard.api.main`` override the result.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .client import DEFAULT_BASE_URL

logger = logging.getLogger(__name__)


@dataclass
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 3000


@dataclass
class BackendSettings:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 20.0
    classify_path: str = "/api/eggs/process/"
    records_path: str = "/api/eggs/"
    calibration_path: str = "/calibration/process/"


@dataclass
class AnalysisSettings:
    concurrency: int = 1


@dataclass
class CalibrationSettings:
    acceptable_deviation: float = 15.0
    reference_color: tuple[int, int, int] = (255, 255, 255)


@dataclass
class CameraSettings:
    kind: str = "opencv"
    source: str = "0"
    backend: str | None = None
    resolution: tuple[int, int] | None = None
    warmup_frames: int = 2


@dataclass
class DashboardConfig:
    server: ServerSettings = field(default_factory=ServerSettings)
    backend: BackendSettings = field(default_factory=BackendSettings)
    analysis: AnalysisSettings = field(default_factory=AnalysisSettings)
    calibration: CalibrationSettings = field(default_factory=CalibrationSettings)
    camera: CameraSettings = field(default_factory=CameraSettings)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DashboardConfig":
        config = cls()
        _update(config.server, data.get("server"))
        _update(config.backend, data.get("backend"))
        _update(config.analysis, data.get("analysis"))
        _update(config.calibration, data.get("calibration"))
        _update(config.camera, data.get("camera"))

        config.server.port = int(config.server.port)
        config.backend.timeout = float(config.backend.timeout)
        config.analysis.concurrency = max(1, int(config.analysis.concurrency))
        config.calibration.acceptable_deviation = float(config.calibration.acceptable_deviation)
        config.calibration.reference_color = _rgb(config.calibration.reference_color)
        if config.camera.resolution is not None:
            width, height = config.camera.resolution
            config.camera.resolution = (int(width), int(height))
        config.camera.source = str(config.camera.source)
        return config


def _update(target: Any, values: Any) -> None:
    if not isinstance(values, Mapping):
        return
    for key, value in values.items():
        if hasattr(target, key):
            setattr(target, key, value)
        else:
            logger.warning("Ignoring unknown setting %s.%s", type(target).__name__, key)


def _rgb(value: Any) -> tuple[int, int, int]:
    try:
        r, g, b = (int(channel) for channel in value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"reference_color must be three integers, got {value!r}") from exc
    for channel in (r, g, b):
        if not 0 <= channel <= 255:
            raise ValueError(f"reference_color channels must be within 0-255, got {value!r}")
    return (r, g, b)


def apply_env_overrides(config: DashboardConfig, environ: Mapping[str, str] | None = None) -> DashboardConfig:
    env = os.environ if environ is None else environ
    if env.get("EGGVIEW_BACKEND_URL"):
        config.backend.base_url = env["EGGVIEW_BACKEND_URL"]
    if env.get("EGGVIEW_BACKEND_TIMEOUT"):
        config.backend.timeout = float(env["EGGVIEW_BACKEND_TIMEOUT"])
    if env.get("EGGVIEW_HOST"):
        config.server.host = env["EGGVIEW_HOST"]
    if env.get("EGGVIEW_PORT"):
        config.server.port = int(env["EGGVIEW_PORT"])
    return config


def load_config(path: Path | str | None, environ: Mapping[str, str] | None = None) -> DashboardConfig:
    """Load settings from ``path`` (if it exists) and the environment.

    Raises:
        ValueError: the file holds invalid JSON or invalid values.
    """
    data: dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        if config_path.exists():
            try:
                data = json.loads(config_path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in {config_path}: {exc}") from exc
            if not isinstance(data, dict):
                raise ValueError(f"{config_path} must contain a JSON object")
            logger.info("Loaded dashboard configuration from %s", config_path)
        else:
            logger.info("No configuration file at %s; using defaults", config_path)
    return apply_env_overrides(DashboardConfig.from_dict(data), environ)


__all__ = [
    "AnalysisSettings",
    "BackendSettings",
    "CalibrationSettings",
    "CameraSettings",
    "DashboardConfig",
    "ServerSettings",
    "apply_env_overrides",
    "load_config",
]
