import unittest
from unittest.mock import Mock

import requests

from dashboard.api.client import BackendError, EggApiHttpClient
from dashboard.api.schemas import RGBColor


def _response(payload, status_code: int = 200, reason: str = "OK") -> Mock:
    response = Mock()
    response.ok = 200 <= status_code < 400
    response.status_code = status_code
    response.reason = reason
    response.json.return_value = payload
    return response


class EggApiHttpClientTests(unittest.TestCase):
    def setUp(self) -> None:
        self.session = Mock(spec=requests.Session)
        self.client = EggApiHttpClient(base_url="http://backend:8000/", timeout=5.0, session=self.session)

    def test_process_image_posts_multipart_file(self) -> None:
        self.session.request.return_value = _response(
            [
                {
                    "id": 12,
                    "viability": True,
                    "confidence": 0.93,
                    "image_url": "http://backend:8000/media/12.jpg",
                    "analyzed_at": "2024-01-01T10:00:00Z",
                    "cracks": False,
                    "deformities": False,
                    "defects": "none",
                    "colorometry": "white",
                    "position": "center",
                }
            ]
        )

        detections = self.client.process_image("egg.jpg", b"jpeg-bytes", "image/jpeg")

        self.session.request.assert_called_once_with(
            "POST",
            "http://backend:8000/api/eggs/process/",
            timeout=5.0,
            files={"file": ("egg.jpg", b"jpeg-bytes", "image/jpeg")},
        )
        self.assertEqual(len(detections), 1)
        self.assertEqual(detections[0].id, "12")
        self.assertTrue(detections[0].viability)
        self.assertEqual(detections[0].position, "center")
        self.assertEqual(detections[0].analyzed_at.year, 2024)

    def test_process_image_accepts_empty_list(self) -> None:
        self.session.request.return_value = _response([])

        self.assertEqual(self.client.process_image("empty.jpg", b"x"), [])

    def test_list_records(self) -> None:
        self.session.request.return_value = _response(
            [{"id": "a", "viability": False, "confidence": 0.4, "analyzed_at": "2024-02-03T04:05:06"}]
        )

        records = self.client.list_records()

        self.session.request.assert_called_once_with("GET", "http://backend:8000/api/eggs/", timeout=5.0)
        self.assertFalse(records[0].viability)
        self.assertIsNone(records[0].image_url)

    def test_calibrate_sends_expected_channels(self) -> None:
        self.session.request.return_value = _response(
            {
                "reference_color": {"r": 255, "g": 255, "b": 255},
                "detected_color": {"r": 250, "g": 248, "b": 240},
                "deviation": 8.4,
                "status": "ok",
                "image_url": "http://backend:8000/media/cal.jpg",
                "timestamp": "2024-03-01T12:00:00Z",
            }
        )

        result = self.client.calibrate(b"frame", RGBColor(r=255, g=254, b=253))

        _, kwargs = self.session.request.call_args
        self.assertEqual(kwargs["data"], {"expected_r": "255", "expected_g": "254", "expected_b": "253"})
        self.assertEqual(kwargs["files"], {"file": ("calibration.jpg", b"frame", "image/jpeg")})
        self.assertEqual(result.detected_color.as_tuple(), (250, 248, 240))
        self.assertAlmostEqual(result.deviation, 8.4)

    def test_non_success_status_raises(self) -> None:
        self.session.request.return_value = _response({"detail": "boom"}, status_code=500, reason="Server Error")

        with self.assertRaises(BackendError) as ctx:
            self.client.list_records()
        self.assertEqual(ctx.exception.status_code, 500)

    def test_transport_failure_raises(self) -> None:
        self.session.request.side_effect = requests.ConnectionError("refused")

        with self.assertRaises(BackendError):
            self.client.process_image("egg.jpg", b"x")

    def test_timeout_raises(self) -> None:
        self.session.request.side_effect = requests.Timeout()

        with self.assertRaises(BackendError) as ctx:
            self.client.list_records()
        self.assertIn("Timed out", str(ctx.exception))

    def test_invalid_json_raises(self) -> None:
        response = _response(None)
        response.json.side_effect = ValueError("not json")
        self.session.request.return_value = response

        with self.assertRaises(BackendError):
            self.client.list_records()

    def test_unexpected_payload_shape_raises(self) -> None:
        self.session.request.return_value = _response({"id": 1})

        with self.assertRaises(BackendError):
            self.client.process_image("egg.jpg", b"x")

        self.session.request.return_value = _response([{"id": 1, "viability": True}])
        with self.assertRaises(BackendError):
            self.client.list_records()


if __name__ == "__main__":
    unittest.main()
