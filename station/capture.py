from __future__ import annotations

import base64
import contextlib
import logging
import pathlib
from dataclasses import dataclass
from typing import Callable, Iterator, Protocol


logger = logging.getLogger(__name__)


class CameraUnavailableError(RuntimeError):
    """The camera device is missing, busy, or access was refused."""


@dataclass
class Frame:
    """A single still captured from a camera."""

    data: bytes
    encoding: str = "jpeg"

    @property
    def content_type(self) -> str:
        encoding = "jpeg" if self.encoding == "jpg" else self.encoding
        return f"image/{encoding}"

    @property
    def filename(self) -> str:
        return f"calibration.{self.encoding}"


class Camera(Protocol):
    def capture(self) -> Frame: ...

    def release(self) -> None: ...


CameraFactory = Callable[[], Camera]


class StubCamera:
    """Stand-in camera serving a sample image or a tiny embedded JPEG."""

    _PLACEHOLDER = base64.b64decode(
        b"/9j/4AAQSkZJRgABAQEASABIAAD/2wBDABALDA4MChAODQ4SEhQfJCQfIiEhJycnKysyKysvPz8/Pz9FSkNFRkdMT01QUFVVWFhZWl5dXl5mZmZmaWlp/2wBDARESEhMfJCYfJiZkKykpZGRkZGRkZGRkZGRkZGRkZGRkZGRkZGRkZGRkZGRkZGRkZGRkZGRkZGRkZGRkZGRk/8AAEQgAAgACAwEiAAIRAQMRAf/EABQAAQAAAAAAAAAAAAAAAAAAAAX/xAAUEAEAAAAAAAAAAAAAAAAAAAAA/8QAFQEBAQAAAAAAAAAAAAAAAAAAAwT/xAAUEQEAAAAAAAAAAAAAAAAAAAAA/9oADAMBAAIRAxEAPwCfAAf/2Q=="
    )

    def __init__(self, sample_path: pathlib.Path | None = None) -> None:
        self._sample_path = sample_path
        self.released = False

    def capture(self) -> Frame:
        if self.released:
            raise CameraUnavailableError("Camera has been released")
        if self._sample_path and self._sample_path.exists():
            encoding = self._sample_path.suffix.lstrip(".").lower() or "jpeg"
            return Frame(data=self._sample_path.read_bytes(), encoding=encoding)
        return Frame(data=self._PLACEHOLDER)

    def release(self) -> None:
        self.released = True


class OpenCVCamera:
    """Grab stills from a USB/RTSP source through OpenCV."""

    _BACKENDS = {
        "any": "CAP_ANY",
        "auto": "CAP_ANY",
        "dshow": "CAP_DSHOW",
        "msmf": "CAP_MSMF",
        "v4l2": "CAP_V4L2",
        "avfoundation": "CAP_AVFOUNDATION",
    }

    def __init__(
        self,
        source: int | str = 0,
        *,
        resolution: tuple[int, int] | None = None,
        backend: str | int | None = None,
        warmup_frames: int = 2,
    ) -> None:
        try:
            import cv2  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise CameraUnavailableError("opencv-python is required for the OpenCV camera") from exc

        self._cv2 = cv2
        self._cap = cv2.VideoCapture(source, self._backend_id(backend))
        if not self._cap.isOpened():
            self._cap.release()
            self._cap = None
            raise CameraUnavailableError(f"Unable to open camera source {source!r}")
        if resolution:
            width, height = resolution
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, float(width))
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, float(height))
        for _ in range(max(0, warmup_frames)):
            ok, _ = self._cap.read()
            if not ok:
                break

    def _backend_id(self, backend: str | int | None) -> int:
        if backend is None:
            return self._cv2.CAP_ANY
        if isinstance(backend, int):
            return backend
        attr = self._BACKENDS.get(backend.strip().lower())
        if attr is None:
            raise ValueError(f"Unknown OpenCV backend alias: {backend!r}")
        return getattr(self._cv2, attr, self._cv2.CAP_ANY)

    def capture(self) -> Frame:
        if self._cap is None:
            raise CameraUnavailableError("Camera has been released")
        ok, image = self._cap.read()
        if not ok or image is None:
            raise CameraUnavailableError("Failed to read a frame from the camera")
        success, buffer = self._cv2.imencode(".jpg", image)
        if not success:
            raise RuntimeError("OpenCV failed to encode the frame as JPEG")
        return Frame(data=buffer.tobytes(), encoding="jpeg")

    def release(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None


def build_camera(
    kind: str,
    source: str = "0",
    resolution: tuple[int, int] | None = None,
    backend: str | int | None = None,
    warmup_frames: int = 2,
) -> Camera:
    if kind == "opencv":
        try:
            converted: int | str = int(source)
        except ValueError:
            converted = source
        return OpenCVCamera(
            converted, resolution=resolution, backend=backend, warmup_frames=warmup_frames
        )
    if kind == "stub":
        sample = pathlib.Path(source) if source else None
        return StubCamera(sample_path=sample if sample and sample.is_file() else None)
    raise ValueError(f"Unknown camera kind: {kind!r}")


@contextlib.contextmanager
def camera_session(factory: CameraFactory) -> Iterator[Camera]:
    """Open a camera for the duration of the block and always release it."""
    camera = factory()
    logger.info("Camera acquired (%s)", camera.__class__.__name__)
    try:
        yield camera
    finally:
        camera.release()
        logger.info("Camera released (%s)", camera.__class__.__name__)


__all__ = [
    "Camera",
    "CameraFactory",
    "CameraUnavailableError",
    "Frame",
    "OpenCVCamera",
    "StubCamera",
    "build_camera",
    "camera_session",
]
