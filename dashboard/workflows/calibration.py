from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from station.capture import Camera, Frame

from ..api.schemas import CalibrationResponse, RGBColor


logger = logging.getLogger(__name__)

# Deviation below this is shown as a good fit; the backend status stays authoritative.
ACCEPTABLE_DEVIATION = 15.0
# Deviation at which the fit score reaches zero.
FIT_SCALE = 50.0
NEEDS_ADJUSTMENT_STATUS = "needs_adjustment"


class CalibrationError(RuntimeError):
    pass


class CalibrationClient(Protocol):
    def calibrate(
        self,
        image: bytes,
        reference: RGBColor,
        filename: str = ...,
        content_type: str = ...,
    ) -> CalibrationResponse:
        ...


@dataclass(frozen=True)
class CalibrationReport:
    response: CalibrationResponse
    acceptable: bool
    fit_score: float

    @property
    def status(self) -> str:
        return self.response.status

    @property
    def needs_adjustment(self) -> bool:
        return self.response.status == NEEDS_ADJUSTMENT_STATUS

    def to_dict(self) -> dict[str, object]:
        return {
            "reference_color": self.response.reference_color.model_dump(),
            "detected_color": self.response.detected_color.model_dump(),
            "deviation": self.response.deviation,
            "status": self.response.status,
            "image_url": self.response.image_url,
            "timestamp": self.response.timestamp.isoformat(),
            "acceptable": self.acceptable,
            "needs_adjustment": self.needs_adjustment,
            "fit_score": self.fit_score,
        }


def fit_score(deviation: float, scale: float = FIT_SCALE) -> float:
    score = (1 - deviation / scale) * 100
    return round(max(0.0, min(100.0, score)), 1)


def build_report(
    response: CalibrationResponse, threshold: float = ACCEPTABLE_DEVIATION
) -> CalibrationReport:
    return CalibrationReport(
        response=response,
        acceptable=response.deviation < threshold,
        fit_score=fit_score(response.deviation),
    )


class CalibrationSession:
    """State of one calibration view: reference colour, last still, last result."""

    def __init__(
        self,
        client: CalibrationClient,
        reference: RGBColor | None = None,
        threshold: float = ACCEPTABLE_DEVIATION,
    ) -> None:
        self._client = client
        self.reference = reference or RGBColor(r=255, g=255, b=255)
        self.threshold = threshold
        self.frame: Frame | None = None
        self.report: CalibrationReport | None = None

    def set_reference(self, color: RGBColor) -> None:
        self.reference = color

    def capture(self, camera: Camera) -> Frame:
        self.frame = camera.capture()
        logger.info("Captured calibration frame (%d bytes)", len(self.frame.data))
        return self.frame

    def use_frame(self, frame: Frame) -> None:
        self.frame = frame

    def submit(self) -> CalibrationReport:
        if self.frame is None:
            raise CalibrationError("Capture an image before submitting it for calibration.")
        response = self._client.calibrate(
            self.frame.data,
            self.reference,
            filename=self.frame.filename,
            content_type=self.frame.content_type,
        )
        self.report = build_report(response, self.threshold)
        logger.info(
            "Calibration deviation=%.2f status=%s acceptable=%s",
            response.deviation,
            response.status,
            self.report.acceptable,
        )
        return self.report


__all__ = [
    "ACCEPTABLE_DEVIATION",
    "CalibrationError",
    "CalibrationReport",
    "CalibrationSession",
    "build_report",
    "fit_score",
]
