"""Tests for the tool workflows and their error handling."""
# pylint: disable=missing-function-docstring

import io
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch
from urllib import error

from ideogram_mcp import server
from ideogram_mcp.config import Settings
from ideogram_mcp.core import FalQueueClient, GenerationFailedError

GENERATE_FAILURE = "Failed to generate image with fal-ai/ideogram/v3."


class FakeResponse(io.BytesIO):
    def __init__(self, body=b"", status=200):
        super().__init__(body)
        self.status = status


def _generate(fal, **params):
    return server._wrap_tool(  # pylint: disable=protected-access
        lambda: server.run_generate(fal, params), GENERATE_FAILURE
    )


class WorkflowTestCase(unittest.TestCase):

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()  # pylint: disable=consider-using-with
        self.images_dir = Path(self.tmp.name) / "images"
        self.fal = FalQueueClient(Settings(api_key="test-key", images_dir=self.images_dir), sleep=lambda _: None)

    def tearDown(self):
        self.tmp.cleanup()


class NotConfiguredTests(WorkflowTestCase):

    @patch("ideogram_mcp.assets.request.urlopen")
    @patch("ideogram_mcp.core._http_get_json")
    @patch("ideogram_mcp.core._http_post_json")
    def test_every_operation_short_circuits(self, mock_post, mock_get, mock_open):
        fal = FalQueueClient(Settings(api_key=None, images_dir=self.images_dir))
        calls = [
            lambda: server.run_generate(fal, {"prompt": "a red circle", "image_size": "square", "num_images": 1}),
            lambda: server.run_generate_queue(fal, {"prompt": "a red circle"}),
            lambda: server.run_queue_status(fal, "req-1"),
            lambda: server.run_queue_result(fal, "req-1"),
        ]
        for call in calls:
            out = server._wrap_tool(call, "Failed.")  # pylint: disable=protected-access
            self.assertFalse(out["success"])
            self.assertIn("FAL_KEY", out["error"])

        mock_post.assert_not_called()
        mock_get.assert_not_called()
        mock_open.assert_not_called()
        self.assertFalse(self.images_dir.exists())


class GenerateTests(WorkflowTestCase):

    @patch("ideogram_mcp.core._http_get_json")
    @patch("ideogram_mcp.core._http_post_json")
    def test_conflicting_style_makes_no_network_call(self, mock_post, mock_get):
        out = _generate(self.fal, prompt="x", style="REALISTIC", style_codes=["A1B2C3D4"])

        self.assertFalse(out["success"])
        self.assertIn("Cannot use both 'style' and 'style_codes'", out["error"])
        mock_post.assert_not_called()
        mock_get.assert_not_called()

    @patch("ideogram_mcp.core._http_post_json")
    def test_invalid_arguments_reported(self, mock_post):
        out = _generate(self.fal, prompt="x", num_images=9)
        self.assertFalse(out["success"])
        self.assertIn("num_images", out["error"])
        mock_post.assert_not_called()

    @patch("ideogram_mcp.core._http_post_json")
    def test_backend_failure_reported(self, mock_post):
        mock_post.side_effect = GenerationFailedError("API error 401: Unauthorized")
        out = _generate(self.fal, prompt="x")
        self.assertFalse(out["success"])
        self.assertTrue(out["error"].startswith(GENERATE_FAILURE))
        self.assertIn("401", out["error"])

    @patch("ideogram_mcp.assets.request.urlopen")
    @patch("ideogram_mcp.core._http_get_json")
    @patch("ideogram_mcp.core._http_post_json")
    def test_second_download_failure_is_partial(self, mock_post, mock_get, mock_open):
        mock_post.return_value = {"request_id": "req-1"}
        mock_get.side_effect = [
            {"status": "IN_PROGRESS", "logs": [{"message": "rendering", "timestamp": "t"}]},
            {"status": "COMPLETED"},
            {
                "images": [
                    {"url": "https://cdn/ok.png", "content_type": "image/png", "file_size": 4},
                    {"url": "https://cdn/missing.png"},
                ],
                "seed": 1234,
            },
        ]

        def fake_urlopen(req):
            if req.full_url.endswith("missing.png"):
                raise error.HTTPError(req.full_url, 403, "Forbidden", {}, None)
            return FakeResponse(b"data")

        mock_open.side_effect = fake_urlopen
        progress = []

        out = server.run_generate(self.fal, {"prompt": "a red circle", "num_images": 2}, on_log=progress.append)

        self.assertTrue(out["success"])
        self.assertEqual([p.message for p in progress], ["rendering"])
        self.assertEqual(out["seed"], 1234)
        self.assertEqual(out["request_id"], "req-1")
        first, second = out["images"]
        self.assertEqual(Path(first["local_path"]).read_bytes(), b"data")
        self.assertTrue(first["filename"].startswith("ideogram_v3_a_red_circle_1234_1_"))
        self.assertIsNone(second["local_path"])
        self.assertIn("403", second["error"])

        text = out["message"]
        self.assertIn("Successfully generated 2 image(s)", text)
        self.assertIn("https://cdn/missing.png", text)
        self.assertIn("https://cdn/ok.png", text)
        self.assertIn("1 of 2 image(s) could not be downloaded", text)
        self.assertIn("Seed: 1234", text)
        self.assertIn("Request ID: req-1", text)


class QueueTests(WorkflowTestCase):

    @patch("ideogram_mcp.core._http_post_json")
    def test_generate_queue_returns_handle(self, mock_post):
        mock_post.return_value = {"request_id": "req-7", "status_url": "su", "response_url": "ru"}

        out = server.run_generate_queue(self.fal, {"prompt": "x"}, webhook_url="https://hook.example")

        self.assertTrue(out["success"])
        self.assertEqual(out["request_id"], "req-7")
        self.assertIn("Webhook URL: https://hook.example", out["message"])
        self.assertNotIn("images", out)

    @patch("ideogram_mcp.core._http_get_json")
    def test_queue_status_formats_logs(self, mock_get):
        mock_get.return_value = {
            "status": "COMPLETED",
            "response_url": "https://queue.fal.run/fal-ai/ideogram/requests/req-7",
            "logs": [{"message": "done", "timestamp": "2024-01-01T00:00:00Z"}],
        }

        out = server.run_queue_status(self.fal, "req-7")

        self.assertEqual(out["status"], "COMPLETED")
        self.assertIn("Response URL: https://queue.fal.run/fal-ai/ideogram/requests/req-7", out["message"])
        self.assertIn("[2024-01-01T00:00:00Z] done", out["message"])
        self.assertTrue(mock_get.call_args[0][0].endswith("/status?logs=1"))

    def test_queue_status_requires_request_id(self):
        out = server._wrap_tool(  # pylint: disable=protected-access
            lambda: server.run_queue_status(self.fal, "  "), "Failed to check queue status."
        )
        self.assertFalse(out["success"])
        self.assertIn("request_id", out["error"])

    @patch("ideogram_mcp.assets.request.urlopen")
    @patch("ideogram_mcp.core._http_get_json")
    def test_queue_result_twice_same_payload(self, mock_get, mock_open):
        mock_get.return_value = {"images": [{"url": "https://cdn/a.webp", "content_type": "image/webp"}], "seed": 3}
        mock_open.side_effect = lambda req: FakeResponse(b"img")

        first = server.run_queue_result(self.fal, "req-7")
        second = server.run_queue_result(self.fal, "req-7")

        def strip(out):
            return [(i["url"], i["content_type"], i["file_size"]) for i in out["images"]]

        self.assertEqual(strip(first), strip(second))
        self.assertEqual(first["seed"], second["seed"])
        self.assertTrue(first["images"][0]["filename"].startswith("ideogram_v3_queue_result_req7_3_1_"))
        self.assertTrue(first["images"][0]["filename"].endswith(".webp"))
        self.assertIn("Queue Result for Request ID: req-7", first["message"])

    @patch("ideogram_mcp.assets.request.urlopen")
    @patch("ideogram_mcp.core._http_get_json")
    def test_queue_result_with_malformed_fields_fails_cleanly(self, mock_get, mock_open):
        bad_results = (
            {"images": [{"url": "https://cdn/a.png"}], "seed": "123"},
            {"images": [{"url": "https://cdn/a.png", "content_type": 5}]},
        )
        for payload in bad_results:
            with self.subTest(payload=payload):
                mock_get.return_value = payload
                out = server._wrap_tool(  # pylint: disable=protected-access
                    lambda: server.run_queue_result(self.fal, "req-7"), "Failed to get queue result."
                )
                self.assertFalse(out["success"])
                self.assertIn("Unexpected response from backend", out["error"])
        mock_open.assert_not_called()

    @patch("ideogram_mcp.core._http_get_json")
    def test_queue_result_before_completion_fails(self, mock_get):
        mock_get.side_effect = GenerationFailedError("API error 400: Request is still in progress")
        out = server._wrap_tool(  # pylint: disable=protected-access
            lambda: server.run_queue_result(self.fal, "req-7"), "Failed to get queue result."
        )
        self.assertFalse(out["success"])
        self.assertIn("still in progress", out["error"])


if __name__ == "__main__":
    unittest.main()
