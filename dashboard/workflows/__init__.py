from __future__ import annotations

from .analyze import AnalysisSession, ImageUpload
from .calibration import CalibrationSession

__all__ = ["AnalysisSession", "CalibrationSession", "ImageUpload"]
