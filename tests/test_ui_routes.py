import io
import unittest
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from PIL import Image

from dashboard.api.client import BackendError
from dashboard.api.schemas import CalibrationResponse, EggDetection, EggRecord, RGBColor
from dashboard.api.server import create_app
from station.capture import StubCamera


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), (250, 245, 235)).save(buffer, format="PNG")
    return buffer.getvalue()


class _FakeBackend:
    base_url = "http://backend.test"

    def __init__(self) -> None:
        self.process_calls: list[str] = []
        self.calibrate_calls: list[RGBColor] = []
        self.detections: dict[str, list[EggDetection]] = {}
        self.records: list[EggRecord] | Exception = []
        self.deviation = 6.5

    def process_image(self, filename, data, content_type="image/jpeg"):
        self.process_calls.append(filename)
        return self.detections.get(filename, [])

    def list_records(self):
        if isinstance(self.records, Exception):
            raise self.records
        return self.records

    def calibrate(self, image, reference, filename="calibration.jpg", content_type="image/jpeg"):
        self.calibrate_calls.append(reference)
        return CalibrationResponse(
            reference_color=reference,
            detected_color=RGBColor(r=248, g=244, b=240),
            deviation=self.deviation,
            status="ok" if self.deviation < 15 else "needs_adjustment",
            image_url="http://backend.test/cal.jpg",
            timestamp=datetime(2024, 1, 2, tzinfo=timezone.utc),
        )


class UiRoutesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.backend = _FakeBackend()
        self.cameras: list[StubCamera] = []

        def factory() -> StubCamera:
            camera = StubCamera()
            self.cameras.append(camera)
            return camera

        self.app = create_app(client=self.backend, camera_factory=factory, display_tz=timezone.utc)

    def test_index_and_state(self) -> None:
        with TestClient(self.app) as client:
            page = client.get("/ui")
            self.assertEqual(page.status_code, 200)
            self.assertIn("Egg Viability", page.text)
            self.assertEqual(client.get("/ui/static/app.js").status_code, 404)

            state = client.get("/ui/state").json()
            self.assertEqual(state["backend_url"], "http://backend.test")
            self.assertEqual(state["analysis"]["concurrency"], 1)
            self.assertEqual(state["calibration"]["reference_color"], {"r": 255, "g": 255, "b": 255})
            self.assertEqual(state["calibration"]["camera"], {"available": True, "open": False})

    def test_analyze_accumulates_results_and_exports(self) -> None:
        self.backend.detections["egg.png"] = [
            EggDetection(
                id="e1",
                viability=True,
                confidence=0.97,
                analyzed_at=datetime(2024, 1, 1, 9, tzinfo=timezone.utc),
                image_url="http://backend.test/e1.jpg",
            )
        ]
        files = [
            ("files", ("egg.png", _png_bytes(), "image/png")),
            ("files", ("nothing.png", _png_bytes(), "image/png")),
        ]

        with TestClient(self.app) as client:
            response = client.post("/ui/analyze", files=files)
            self.assertEqual(response.status_code, 200)
            payload = response.json()
            self.assertEqual(
                [(o["filename"], o["status"]) for o in payload["outcomes"]],
                [("egg.png", "analyzed"), ("nothing.png", "no_detections")],
            )
            self.assertEqual(payload["no_detections"], "nothing.png")
            self.assertEqual(payload["results"][0]["confidence"], 97.0)
            self.assertEqual(self.backend.process_calls, ["egg.png", "nothing.png"])

            listed = client.get("/ui/analyze/results").json()
            self.assertEqual([r["id"] for r in listed], ["e1"])

            export = client.get("/ui/analyze/results.csv")
            self.assertEqual(export.status_code, 200)
            self.assertTrue(export.headers["content-type"].startswith("text/csv"))
            self.assertIn("attachment", export.headers["content-disposition"])
            self.assertIn("e1,egg.png,Viable,97.0", export.text)

            cleared = client.delete("/ui/analyze/results")
            self.assertEqual(cleared.status_code, 200)
            self.assertEqual(client.get("/ui/analyze/results").json(), [])

    def test_analyze_without_files_makes_no_backend_call(self) -> None:
        with TestClient(self.app) as client:
            response = client.post("/ui/analyze")
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json()["outcomes"], [])
        self.assertEqual(self.backend.process_calls, [])

    def test_calibration_camera_lifecycle(self) -> None:
        with TestClient(self.app) as client:
            early = client.post("/ui/calibration/capture")
            self.assertEqual(early.status_code, 409)

            opened = client.post("/ui/calibration/camera")
            self.assertEqual(opened.status_code, 200)
            self.assertEqual(len(self.cameras), 1)

            reference = client.post("/ui/calibration/reference", json={"r": 250, "g": 250, "b": 245})
            self.assertEqual(reference.status_code, 200)
            self.assertEqual(reference.json(), {"reference_color": {"r": 250, "g": 250, "b": 245}})
            state = client.get("/ui/state").json()
            self.assertEqual(state["calibration"]["reference_color"], {"r": 250, "g": 250, "b": 245})

            captured = client.post("/ui/calibration/capture")
            self.assertEqual(captured.status_code, 200)
            self.assertGreater(captured.json()["frame"]["bytes"], 0)

            submitted = client.post("/ui/calibration/submit")
            self.assertEqual(submitted.status_code, 200)
            result = submitted.json()
            self.assertTrue(result["acceptable"])
            self.assertEqual(result["status"], "ok")
            self.assertEqual(self.backend.calibrate_calls[0].as_tuple(), (250, 250, 245))

            closed = client.delete("/ui/calibration/camera")
            self.assertEqual(closed.status_code, 200)
            self.assertTrue(self.cameras[0].released)

    def test_shutdown_releases_open_camera(self) -> None:
        with TestClient(self.app) as client:
            client.post("/ui/calibration/camera")
            self.assertFalse(self.cameras[0].released)
        self.assertTrue(self.cameras[0].released)

    def test_calibration_submit_with_upload_and_errors(self) -> None:
        with TestClient(self.app) as client:
            missing = client.post("/ui/calibration/submit")
            self.assertEqual(missing.status_code, 409)

            invalid = client.post("/ui/calibration/reference", json={"r": 300, "g": 0, "b": 0})
            self.assertEqual(invalid.status_code, 422)

            self.backend.deviation = 21.0
            uploaded = client.post(
                "/ui/calibration/submit",
                files={"file": ("frame.png", _png_bytes(), "image/png")},
            )
            self.assertEqual(uploaded.status_code, 200)
            body = uploaded.json()
            self.assertFalse(body["acceptable"])
            self.assertTrue(body["needs_adjustment"])

    def test_camera_unavailable(self) -> None:
        app = create_app(client=self.backend)
        with TestClient(app) as client:
            response = client.post("/ui/calibration/camera")
            self.assertEqual(response.status_code, 503)

    def test_statistics_report(self) -> None:
        now = datetime.now(timezone.utc)
        self.backend.records = [
            EggRecord(id="1", viability=True, confidence=0.95, analyzed_at=now - timedelta(days=1)),
            EggRecord(id="2", viability=False, confidence=0.55, analyzed_at=now - timedelta(days=1)),
            EggRecord(id="3", viability=False, confidence=0.92, analyzed_at=now - timedelta(days=100)),
        ]

        with TestClient(self.app) as client:
            everything = client.get("/ui/statistics").json()
            self.assertEqual(everything["summary"]["total"], 3)
            self.assertEqual(everything["period"], "all")
            self.assertIsNone(everything["notice"])
            self.assertEqual(
                {e["type"]: e["count"] for e in everything["errors"]},
                {"likely false positive": 1, "unknown": 1},
            )

            week = client.get("/ui/statistics", params={"period": "7d"}).json()
            self.assertEqual(week["summary"]["total"], 2)
            self.assertEqual(len(week["daily"]), 1)
            self.assertEqual(week["daily"][0]["total"], 2)

            invalid = client.get("/ui/statistics", params={"period": "2w"})
            self.assertEqual(invalid.status_code, 400)

    def test_statistics_with_backend_down(self) -> None:
        self.backend.records = BackendError("Failed to reach backend")

        with TestClient(self.app) as client:
            payload = client.get("/ui/statistics").json()

        self.assertEqual(payload["summary"]["total"], 0)
        self.assertEqual(payload["daily"], [])
        self.assertEqual(payload["confidence"], [])
        self.assertIn("Could not load records", payload["notice"])


if __name__ == "__main__":
    unittest.main()
