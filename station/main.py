from __future__ import annotations

import argparse
import asyncio
import functools
import mimetypes
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from dashboard.api.client import BackendError, EggApiHttpClient
from dashboard.api.config import load_config
from dashboard.api.main import build_client
from dashboard.api.schemas import RGBColor
from dashboard.stats.aggregation import PERIODS, build_report, filter_period
from dashboard.workflows.analyze import AnalysisSession, ImageUpload, STATUS_ANALYZED
from dashboard.workflows.calibration import CalibrationError, CalibrationSession
from station.capture import CameraUnavailableError, build_camera, camera_session


def parse_resolution(value: str | None) -> tuple[int, int] | None:
    if value is None:
        return None
    parts = value.lower().split("x")
    if len(parts) != 2:
        raise argparse.ArgumentTypeError("resolution must be WIDTHxHEIGHT")
    try:
        return int(parts[0]), int(parts[1])
    except ValueError as exc:
        raise argparse.ArgumentTypeError("resolution must be numeric") from exc


def parse_rgb(value: str) -> RGBColor:
    parts = [part.strip() for part in value.split(",")]
    if len(parts) != 3:
        raise argparse.ArgumentTypeError("reference must be R,G,B")
    try:
        r, g, b = (int(part) for part in parts)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("reference channels must be integers") from exc
    if not all(0 <= channel <= 255 for channel in (r, g, b)):
        raise argparse.ArgumentTypeError("reference channels must be within 0-255")
    return RGBColor(r=r, g=g, b=b)


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"{value!r} is not an integer") from exc
    if number < 1:
        raise argparse.ArgumentTypeError("value must be at least 1")
    return number


def load_uploads(paths: Sequence[Path]) -> list[ImageUpload]:
    uploads: list[ImageUpload] = []
    for path in paths:
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        uploads.append(ImageUpload(filename=path.name, data=path.read_bytes(), content_type=content_type))
    return uploads


def run_analyze(client: EggApiHttpClient, paths: Sequence[Path], concurrency: int) -> int:
    missing = [path for path in paths if not path.is_file()]
    for path in missing:
        print(f"[station] File not found: {path}")
    uploads = load_uploads([path for path in paths if path.is_file()])
    if not uploads:
        print("[station] No images to analyze")
        return 1 if missing else 0

    session = AnalysisSession(client, concurrency=concurrency)
    batch = asyncio.run(session.analyze(uploads))
    for outcome in batch.outcomes:
        if outcome.status != STATUS_ANALYZED:
            print(f"[station] {outcome.message}")
            continue
        for result in outcome.results:
            label = "Viable" if result.viable else "Not viable"
            print(f"[station] {result.filename}: {label} ({result.confidence:.1f}%) id={result.id}")
    return 1 if batch.failures or missing else 0


def run_calibrate(
    client: EggApiHttpClient,
    args: argparse.Namespace,
    reference: RGBColor,
    threshold: float,
) -> int:
    session = CalibrationSession(client, reference=reference, threshold=threshold)
    factory = functools.partial(
        build_camera,
        args.camera,
        args.camera_source,
        args.camera_resolution,
        args.camera_backend,
        args.camera_warmup,
    )
    try:
        with camera_session(factory) as camera:
            session.capture(camera)
    except CameraUnavailableError as exc:
        print(f"[station] Could not access the camera: {exc}")
        return 1

    try:
        report = session.submit()
    except (CalibrationError, BackendError) as exc:
        print(f"[station] There was an error processing the image: {exc}")
        return 1

    detected = report.response.detected_color
    print(f"[station] Expected  R:{reference.r} G:{reference.g} B:{reference.b}")
    print(f"[station] Detected  R:{detected.r} G:{detected.g} B:{detected.b}")
    verdict = "good fit" if report.acceptable else "adjustment needed"
    print(f"[station] Deviation {report.response.deviation:.2f} ({verdict}); backend status {report.status}")
    if report.needs_adjustment:
        print("[station] Significant deviation; adjust lighting or white balance")
    return 0


def run_stats(client: EggApiHttpClient, period: str) -> int:
    try:
        records = client.list_records()
    except BackendError as exc:
        print(f"[station] Could not load records: {exc}")
        records = []

    report = build_report(filter_period(records, period))
    summary = report.summary
    print(
        f"[station] total={summary.total} viable={summary.viable} "
        f"no_viable={summary.no_viable} viability={summary.viability_rate}% "
        f"avg_confidence={summary.average_confidence:.2f}"
    )
    for day in report.daily:
        print(f"[station] day {day.date}: viable={day.viable} no_viable={day.no_viable} total={day.total}")
    for month in report.monthly:
        print(f"[station] month {month.month} {month.year}: processed={month.processed} viable={month.viable}")
    for bucket in report.confidence:
        print(f"[station] confidence {bucket.range}: {bucket.count} ({bucket.percentage}%)")
    for bucket in report.errors:
        print(f"[station] error {bucket.type}: {bucket.count} ({bucket.percentage}%)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspection station client for the egg viability backend"
    )
    parser.add_argument("--config", default="config/dashboard.json", help="JSON configuration file")
    parser.add_argument("--backend-url", default=None, help="override the backend base URL")
    parser.add_argument("--timeout", type=float, default=None, help="backend timeout in seconds")
    commands = parser.add_subparsers(dest="command", required=True)

    analyze = commands.add_parser("analyze", help="classify one or more images")
    analyze.add_argument("files", nargs="*", type=Path, help="image files to submit")
    analyze.add_argument(
        "--concurrency",
        type=positive_int,
        default=None,
        help="uploads in flight at once (default from config, normally 1)",
    )

    calibrate = commands.add_parser("calibrate", help="capture a still and check colour calibration")
    calibrate.add_argument("--reference", type=parse_rgb, default=None, help="expected colour R,G,B")
    calibrate.add_argument("--camera", choices=["stub", "opencv"], default="opencv", help="camera backend")
    calibrate.add_argument(
        "--camera-source",
        default="0",
        help="camera index or URL (OpenCV) or sample image path (stub)",
    )
    calibrate.add_argument(
        "--camera-resolution",
        type=parse_resolution,
        default=None,
        help="force camera resolution WIDTHxHEIGHT (OpenCV only)",
    )
    calibrate.add_argument("--camera-backend", default=None, help="preferred OpenCV backend (e.g. dshow, v4l2)")
    calibrate.add_argument("--camera-warmup", type=int, default=2, help="frames to discard after opening")

    stats = commands.add_parser("stats", help="summarise stored classification records")
    stats.add_argument("--period", choices=list(PERIODS), default="all", help="trailing window")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    try:
        cfg = load_config(args.config)
    except ValueError as exc:
        print(f"[station] Invalid configuration: {exc}")
        return 2
    if args.backend_url:
        cfg.backend.base_url = args.backend_url
    if args.timeout is not None:
        cfg.backend.timeout = args.timeout

    client = build_client(cfg)

    if args.command == "analyze":
        concurrency = args.concurrency if args.concurrency is not None else cfg.analysis.concurrency
        return run_analyze(client, args.files, concurrency)
    if args.command == "calibrate":
        r, g, b = cfg.calibration.reference_color
        reference = args.reference or RGBColor(r=r, g=g, b=b)
        return run_calibrate(client, args, reference, cfg.calibration.acceptable_deviation)
    return run_stats(client, args.period)


if __name__ == "__main__":
    raise SystemExit(main())
