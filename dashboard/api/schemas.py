from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class RGBColor(BaseModel):
    r: int = Field(..., ge=0, le=255)
    g: int = Field(..., ge=0, le=255)
    b: int = Field(..., ge=0, le=255)

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.r, self.g, self.b)


class EggRecord(BaseModel):
    """One stored classification as returned by the records listing."""

    id: str
    viability: bool
    confidence: float = Field(..., description="Backend certainty in [0, 1]")
    analyzed_at: datetime
    image_url: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)


class EggDetection(EggRecord):
    """One detection returned by the classification endpoint for an image."""

    cracks: bool | None = None
    deformities: bool | None = None
    defects: str | None = None
    colorometry: str | None = None
    position: str | None = None


class CalibrationResponse(BaseModel):
    reference_color: RGBColor
    detected_color: RGBColor
    deviation: float
    status: str
    image_url: str | None = None
    timestamp: datetime


__all__ = [
    "RGBColor",
    "EggRecord",
    "EggDetection",
    "CalibrationResponse",
]
