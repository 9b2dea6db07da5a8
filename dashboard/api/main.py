from __future__ import annotations

import argparse
import functools
import logging
import sys

import uvicorn
from dotenv import load_dotenv

from station.capture import build_camera

from .client import EggApiHttpClient
from .config import DashboardConfig, load_config
from .server import create_app

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Most settings live in config/dashboard.json; flags are quick overrides.
    """
    parser = argparse.ArgumentParser(
        description="Run the egg viability dashboard",
        epilog="Configuration is loaded from config/dashboard.json and EGGVIEW_* "
               "environment variables. CLI arguments override both.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default="config/dashboard.json",
        help="Path to JSON configuration file (default: config/dashboard.json)",
    )
    parser.add_argument("--host", type=str, default=None, help="Override server host")
    parser.add_argument("--port", type=int, default=None, help="Override server port")
    parser.add_argument(
        "--backend-url",
        type=str,
        default=None,
        help="Override the inference backend base URL",
    )
    parser.add_argument(
        "--camera",
        choices=["stub", "opencv", "none"],
        default=None,
        help="Override the calibration camera backend",
    )
    return parser


def build_client(cfg: DashboardConfig) -> EggApiHttpClient:
    return EggApiHttpClient(
        base_url=cfg.backend.base_url,
        timeout=cfg.backend.timeout,
        classify_path=cfg.backend.classify_path,
        records_path=cfg.backend.records_path,
        calibration_path=cfg.backend.calibration_path,
    )


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s"
        )
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ValueError as exc:
        logger.error("Failed to load configuration: %s", exc)
        sys.exit(1)

    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port
    if args.backend_url:
        cfg.backend.base_url = args.backend_url
    if args.camera:
        cfg.camera.kind = args.camera

    logger.info("Server configuration: %s:%s", cfg.server.host, cfg.server.port)
    logger.info("Inference backend: %s", cfg.backend.base_url)
    logger.info("Calibration camera: %s source=%s", cfg.camera.kind, cfg.camera.source)

    camera_factory = None
    if cfg.camera.kind != "none":
        # Opened lazily when the calibration view is entered.
        camera_factory = functools.partial(
            build_camera,
            cfg.camera.kind,
            cfg.camera.source,
            cfg.camera.resolution,
            cfg.camera.backend,
            cfg.camera.warmup_frames,
        )

    app = create_app(
        build_client(cfg),
        camera_factory=camera_factory,
        analysis_concurrency=cfg.analysis.concurrency,
        acceptable_deviation=cfg.calibration.acceptable_deviation,
        reference_color=cfg.calibration.reference_color,
    )

    try:
        uvicorn.run(app, host=cfg.server.host, port=cfg.server.port, log_level="info")
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received during shutdown")


if __name__ == "__main__":
    main()
