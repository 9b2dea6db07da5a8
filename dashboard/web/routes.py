from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, Response

from station.capture import CameraUnavailableError, Frame

from ..api.client import BackendError
from ..api.schemas import RGBColor
from ..stats.aggregation import PERIODS, build_report, filter_period
from ..workflows.analyze import AnalysisResult, AnalysisSession, ImageUpload
from ..workflows.calibration import CalibrationError, CalibrationSession


logger = logging.getLogger(__name__)

router = APIRouter(tags=["ui"])

INDEX_HTML = Path(__file__).parent / "templates" / "index.html"


@router.get("/ui", response_class=HTMLResponse)
async def ui_root() -> HTMLResponse:
    if not INDEX_HTML.exists():
        raise HTTPException(status_code=500, detail="UI template missing")
    return HTMLResponse(INDEX_HTML.read_text(encoding="utf-8"))


@router.get("/ui/state")
async def ui_state(request: Request) -> dict[str, Any]:
    analysis: AnalysisSession = request.app.state.analysis
    calibration: CalibrationSession = request.app.state.calibration
    camera = request.app.state.camera
    client = request.app.state.client
    return {
        "backend_url": getattr(client, "base_url", None),
        "analysis": {
            "results": len(analysis.results),
            "concurrency": analysis.concurrency,
            "no_detections": analysis.last_no_detections,
        },
        "calibration": {
            "reference_color": calibration.reference.model_dump(),
            "acceptable_deviation": calibration.threshold,
            "frame_captured": calibration.frame is not None,
            "camera": {"available": camera.available, "open": camera.is_open},
        },
    }


@router.post("/ui/analyze")
async def analyze_images(
    request: Request,
    files: Optional[List[UploadFile]] = File(default=None),
) -> dict[str, Any]:
    analysis: AnalysisSession = request.app.state.analysis
    uploads: list[ImageUpload] = []
    for upload in files or []:
        uploads.append(
            ImageUpload(
                filename=upload.filename or "upload",
                data=await upload.read(),
                content_type=upload.content_type or "application/octet-stream",
            )
        )

    batch = await analysis.analyze(uploads)
    return {
        "outcomes": [
            {
                "filename": outcome.filename,
                "status": outcome.status,
                "detections": len(outcome.results),
                "message": outcome.message,
            }
            for outcome in batch.outcomes
        ],
        "no_detections": batch.no_detections,
        "results": [_serialize_result(result) for result in analysis.results],
    }


@router.get("/ui/analyze/results")
async def list_results(request: Request) -> List[dict[str, Any]]:
    analysis: AnalysisSession = request.app.state.analysis
    return [_serialize_result(result) for result in analysis.results]


@router.delete("/ui/analyze/results")
async def clear_results(request: Request) -> dict[str, int]:
    analysis: AnalysisSession = request.app.state.analysis
    analysis.clear()
    return {"results": 0}


@router.get("/ui/analyze/results.csv")
async def export_results(request: Request) -> Response:
    analysis: AnalysisSession = request.app.state.analysis
    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return Response(
        content=analysis.export_csv(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="egg_analysis_{stamp}.csv"'},
    )


@router.post("/ui/calibration/camera")
async def open_camera(request: Request) -> dict[str, Any]:
    camera = request.app.state.camera
    try:
        await asyncio.to_thread(camera.open)
    except CameraUnavailableError as exc:
        raise HTTPException(status_code=503, detail=f"Could not access the camera: {exc}") from exc
    return {"camera": {"open": True}}


@router.delete("/ui/calibration/camera")
async def close_camera(request: Request) -> dict[str, Any]:
    await asyncio.to_thread(request.app.state.camera.close)
    return {"camera": {"open": False}}


@router.post("/ui/calibration/reference")
async def update_reference(payload: RGBColor, request: Request) -> dict[str, Any]:
    calibration: CalibrationSession = request.app.state.calibration
    calibration.set_reference(payload)
    return {"reference_color": calibration.reference.model_dump()}


@router.post("/ui/calibration/capture")
async def capture_frame(request: Request) -> dict[str, Any]:
    calibration: CalibrationSession = request.app.state.calibration
    camera = request.app.state.camera
    if not camera.is_open:
        raise HTTPException(status_code=409, detail="Camera is not open")
    try:
        frame = await asyncio.to_thread(calibration.capture, camera)
    except CameraUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return {"frame": {"bytes": len(frame.data), "content_type": frame.content_type}}


@router.post("/ui/calibration/submit")
async def submit_calibration(
    request: Request,
    file: Optional[UploadFile] = File(default=None),
) -> dict[str, Any]:
    calibration: CalibrationSession = request.app.state.calibration
    if file is not None:
        encoding = (file.content_type or "image/jpeg").split("/")[-1]
        calibration.use_frame(Frame(data=await file.read(), encoding=encoding))
    try:
        report = await asyncio.to_thread(calibration.submit)
    except CalibrationError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except BackendError as exc:
        logger.warning("Calibration request failed: %s", exc)
        raise HTTPException(
            status_code=502, detail=f"There was an error processing the image: {exc}"
        ) from exc
    return report.to_dict()


@router.get("/ui/statistics")
async def statistics(request: Request, period: str = "all") -> dict[str, Any]:
    if period not in PERIODS:
        raise HTTPException(
            status_code=400,
            detail=f"period must be one of {', '.join(PERIODS)}",
        )
    client = request.app.state.client
    notice: str | None = None
    try:
        records = await asyncio.to_thread(client.list_records)
    except BackendError as exc:
        logger.warning("Failed to fetch classification records: %s", exc)
        records = []
        notice = f"Could not load records: {exc}"

    selected = filter_period(records, period)
    report = build_report(selected, request.app.state.display_tz)
    payload = report.to_dict()
    payload["period"] = period
    payload["notice"] = notice
    return payload


def _serialize_result(result: AnalysisResult) -> dict[str, Any]:
    return {
        "id": result.id,
        "filename": result.filename,
        "result": result.result,
        "confidence": round(result.confidence, 1),
        "timestamp": result.timestamp.isoformat(),
        "image_url": result.image_url,
    }


__all__ = ["router"]
