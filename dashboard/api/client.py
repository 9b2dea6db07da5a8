from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List

import requests
from pydantic import ValidationError

from .schemas import CalibrationResponse, EggDetection, EggRecord, RGBColor


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000"


class BackendError(RuntimeError):
    """Raised when the inference backend cannot be reached or answers badly."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class EggApiHttpClient:
    base_url: str = DEFAULT_BASE_URL
    timeout: float = 20.0
    classify_path: str = "/api/eggs/process/"
    records_path: str = "/api/eggs/"
    calibration_path: str = "/calibration/process/"
    session: requests.Session = field(default_factory=requests.Session)

    def process_image(
        self, filename: str, data: bytes, content_type: str = "image/jpeg"
    ) -> List[EggDetection]:
        payload = self._request(
            "POST",
            self.classify_path,
            files={"file": (filename, data, content_type)},
        )
        if not isinstance(payload, list):
            raise BackendError("Classification response was not a list")
        return [self._parse(EggDetection, item) for item in payload]

    def list_records(self) -> List[EggRecord]:
        payload = self._request("GET", self.records_path)
        if not isinstance(payload, list):
            raise BackendError("Records response was not a list")
        return [self._parse(EggRecord, item) for item in payload]

    def calibrate(
        self,
        image: bytes,
        reference: RGBColor,
        filename: str = "calibration.jpg",
        content_type: str = "image/jpeg",
    ) -> CalibrationResponse:
        payload = self._request(
            "POST",
            self.calibration_path,
            files={"file": (filename, image, content_type)},
            data={
                "expected_r": str(reference.r),
                "expected_g": str(reference.g),
                "expected_b": str(reference.b),
            },
        )
        if not isinstance(payload, dict):
            raise BackendError("Calibration response was not an object")
        return self._parse(CalibrationResponse, payload)

    def url_for(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        url = self.url_for(path)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as exc:
            raise BackendError(f"Timed out waiting for {url}") from exc
        except requests.RequestException as exc:
            raise BackendError(f"Failed to reach backend at {url}: {exc}") from exc

        if not response.ok:
            logger.warning("Backend %s %s returned %s", method, url, response.status_code)
            raise BackendError(
                f"Backend answered {response.status_code} {response.reason or ''}".strip(),
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(f"Invalid JSON from {url}") from exc

    @staticmethod
    def _parse(model: Any, item: Any) -> Any:
        try:
            return model.model_validate(item)
        except ValidationError as exc:
            raise BackendError(f"Unexpected {model.__name__} payload: {exc}") from exc


__all__ = ["BackendError", "EggApiHttpClient", "DEFAULT_BASE_URL"]
