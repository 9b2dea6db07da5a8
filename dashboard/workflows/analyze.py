from __future__ import annotations

import asyncio
import csv
import io
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Protocol, Sequence

from PIL import Image, UnidentifiedImageError

from ..api.client import BackendError
from ..api.schemas import EggDetection


logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 1

STATUS_ANALYZED = "analyzed"
STATUS_NO_DETECTIONS = "no_detections"
STATUS_FAILED = "failed"


class ClassificationClient(Protocol):
    def process_image(self, filename: str, data: bytes, content_type: str = ...) -> List[EggDetection]:
        ...


@dataclass(frozen=True)
class ImageUpload:
    filename: str
    data: bytes
    content_type: str = "image/jpeg"


@dataclass(frozen=True)
class AnalysisResult:
    id: str
    filename: str
    result: str
    confidence: float
    timestamp: datetime
    image_url: str | None = None

    @property
    def viable(self) -> bool:
        return self.result == "viable"

    @classmethod
    def from_detection(cls, filename: str, detection: EggDetection) -> "AnalysisResult":
        return cls(
            id=detection.id,
            filename=filename,
            result="viable" if detection.viability else "no-viable",
            confidence=detection.confidence * 100,
            timestamp=detection.analyzed_at,
            image_url=detection.image_url,
        )


@dataclass
class FileOutcome:
    filename: str
    status: str
    results: List[AnalysisResult] = field(default_factory=list)
    message: str | None = None


@dataclass
class AnalysisBatch:
    outcomes: List[FileOutcome] = field(default_factory=list)

    @property
    def no_detections(self) -> str | None:
        """Name of the last file for which the backend found no eggs."""
        names = [o.filename for o in self.outcomes if o.status == STATUS_NO_DETECTIONS]
        return names[-1] if names else None

    @property
    def failures(self) -> List[FileOutcome]:
        return [o for o in self.outcomes if o.status == STATUS_FAILED]


def is_image(upload: ImageUpload) -> bool:
    if upload.content_type and not upload.content_type.startswith("image/"):
        return False
    try:
        with Image.open(io.BytesIO(upload.data)) as image:
            image.verify()
    except (Image.DecompressionBombError, UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return False
    return True


class AnalysisSession:
    """Per-view result list fed by a bounded upload queue.

    At most ``concurrency`` uploads are in flight at once. The default of one
    means each file is sent only after the previous response arrived.
    Results are appended in submission order whatever the limit.
    """

    def __init__(self, client: ClassificationClient, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._client = client
        self._concurrency = concurrency
        self._results: List[AnalysisResult] = []
        self._lock = asyncio.Lock()
        self.last_no_detections: str | None = None

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def results(self) -> List[AnalysisResult]:
        return list(self._results)

    def clear(self) -> None:
        self._results.clear()
        self.last_no_detections = None

    async def analyze(self, uploads: Sequence[ImageUpload]) -> AnalysisBatch:
        if not uploads:
            return AnalysisBatch()

        # One batch at a time per session; a second request waits for the first.
        async with self._lock:
            self.last_no_detections = None
            outcomes = await self._drain(list(uploads))
            batch = AnalysisBatch(outcomes=outcomes)
            for outcome in outcomes:
                self._results.extend(outcome.results)
            self.last_no_detections = batch.no_detections
            logger.info(
                "Analyzed %d file(s): results=%d no_detections=%d failed=%d",
                len(outcomes),
                sum(len(o.results) for o in outcomes),
                sum(1 for o in outcomes if o.status == STATUS_NO_DETECTIONS),
                len(batch.failures),
            )
            return batch

    async def _drain(self, uploads: List[ImageUpload]) -> List[FileOutcome]:
        queue: asyncio.Queue[tuple[int, ImageUpload]] = asyncio.Queue()
        for index, upload in enumerate(uploads):
            queue.put_nowait((index, upload))
        outcomes: List[FileOutcome | None] = [None] * len(uploads)

        async def worker() -> None:
            while True:
                try:
                    index, upload = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                outcomes[index] = await self._process(upload)
                queue.task_done()

        workers = min(self._concurrency, len(uploads))
        await asyncio.gather(*(worker() for _ in range(workers)))
        return [outcome for outcome in outcomes if outcome is not None]

    async def _process(self, upload: ImageUpload) -> FileOutcome:
        if not is_image(upload):
            return FileOutcome(
                filename=upload.filename,
                status=STATUS_FAILED,
                message=f'"{upload.filename}" is not a supported image',
            )
        try:
            detections = await asyncio.to_thread(
                self._client.process_image, upload.filename, upload.data, upload.content_type
            )
        except BackendError as exc:
            logger.warning("Could not process %s: %s", upload.filename, exc)
            return FileOutcome(
                filename=upload.filename,
                status=STATUS_FAILED,
                message=f'Could not process the image "{upload.filename}": {exc}',
            )
        except Exception as exc:
            logger.exception("Unexpected error while processing %s", upload.filename)
            return FileOutcome(
                filename=upload.filename,
                status=STATUS_FAILED,
                message=f'Could not process the image "{upload.filename}": {exc}',
            )

        if not detections:
            return FileOutcome(
                filename=upload.filename,
                status=STATUS_NO_DETECTIONS,
                message=(
                    f'No eggs were detected in "{upload.filename}". '
                    "Make sure the image is sharp and the egg is centred."
                ),
            )
        return FileOutcome(
            filename=upload.filename,
            status=STATUS_ANALYZED,
            results=[AnalysisResult.from_detection(upload.filename, d) for d in detections],
        )

    def export_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["ID", "File", "Result", "Confidence (%)", "Analyzed at"])
        for result in self._results:
            writer.writerow(
                [
                    result.id,
                    result.filename,
                    "Viable" if result.viable else "Not viable",
                    f"{result.confidence:.1f}",
                    result.timestamp.isoformat(),
                ]
            )
        return buffer.getvalue()


__all__ = [
    "AnalysisBatch",
    "AnalysisResult",
    "AnalysisSession",
    "FileOutcome",
    "ImageUpload",
    "STATUS_ANALYZED",
    "STATUS_FAILED",
    "STATUS_NO_DETECTIONS",
    "is_image",
]
