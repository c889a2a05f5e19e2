import json
import unittest

import httpx

from videogen.models.generation_job import JobStatus
from videogen.services.providers.base import ProviderError, ProviderNotConfiguredError
from videogen.services.providers.heygen import HeyGenClient
from videogen.services.providers.nanobanana import NanoBananaClient
from videogen.services.providers.veo import VeoClient


def transport(payload=None, status_code=200, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


class TestVeoOperationStatus(unittest.IsolatedAsyncioTestCase):
    def client(self, payload, status_code=200, seen=None):
        return VeoClient(
            api_key="veo-key",
            base_url="https://veo.test/v1beta",
            transport=transport(payload, status_code, seen),
        )

    async def test_running_operation(self):
        seen = []
        status = await self.client({"name": "op-1"}, seen=seen).operation_status("models/veo/operations/op-1")
        self.assertEqual(status.state, JobStatus.PROCESSING)
        self.assertEqual(str(seen[0].url), "https://veo.test/v1beta/models/veo/operations/op-1")
        self.assertEqual(seen[0].headers["x-goog-api-key"], "veo-key")

    async def test_done_with_video(self):
        payload = {
            "done": True,
            "response": {"generateVideoResponse": {"generatedSamples": [{"video": {"uri": "https://files.test/v.mp4"}}]}},
        }
        status = await self.client(payload).operation_status("op-1")
        self.assertTrue(status.completed)
        self.assertEqual(status.output_url, "https://files.test/v.mp4")

    async def test_done_with_error_is_failure(self):
        status = await self.client({"done": True, "error": {"code": 3, "message": "bad prompt"}}).operation_status("op-1")
        self.assertTrue(status.failed)
        self.assertIn("bad prompt", status.error)

    async def test_filtered_output_is_failure(self):
        payload = {"done": True, "response": {"generateVideoResponse": {"raiMediaFilteredReasons": ["Blocked by safety filter"]}}}
        status = await self.client(payload).operation_status("op-1")
        self.assertTrue(status.failed)
        self.assertEqual(status.error, "Blocked by safety filter")

    async def test_http_error_keeps_status_code(self):
        with self.assertRaises(ProviderError) as ctx:
            await self.client({"error": "quota"}, status_code=429).operation_status("op-1")
        self.assertEqual(ctx.exception.status_code, 429)

    async def test_missing_key_is_not_configured(self):
        client = VeoClient(api_key="", base_url="https://veo.test", transport=transport({}))
        with self.assertRaises(ProviderNotConfiguredError):
            await client.operation_status("op-1")

    async def test_generate_sends_resolution(self):
        seen = []
        name = await self.client({"name": "models/veo/operations/op-9"}, seen=seen).generate(
            model="veo-3.1-generate-preview",
            prompt="A lighthouse at dusk",
            duration_s=8,
            aspect_ratio="16:9",
            resolution="720p",
        )
        self.assertEqual(name, "models/veo/operations/op-9")
        body = json.loads(seen[0].content)
        self.assertEqual(str(seen[0].url), "https://veo.test/v1beta/models/veo-3.1-generate-preview:predictLongRunning")
        self.assertEqual(body["parameters"]["resolution"], "720p")
        self.assertNotIn("generateAudio", body["parameters"])


class TestHeyGenVideoStatus(unittest.IsolatedAsyncioTestCase):
    async def test_completed_video(self):
        payload = {
            "data": {
                "status": "completed",
                "video_url": "https://heygen.test/v.mp4",
                "thumbnail_url": "https://heygen.test/t.jpg",
                "duration": 12.6,
            }
        }
        client = HeyGenClient(api_key="hg", base_url="https://api.heygen.test", transport=transport(payload))
        status = await client.video_status("vid-1")
        self.assertTrue(status.completed)
        self.assertEqual(status.duration_seconds, 13)
        self.assertEqual(status.thumbnail_url, "https://heygen.test/t.jpg")

    async def test_waiting_maps_to_pending(self):
        client = HeyGenClient(api_key="hg", base_url="https://api.heygen.test", transport=transport({"data": {"status": "waiting"}}))
        self.assertEqual((await client.video_status("vid-1")).state, JobStatus.PENDING)

    async def test_failed_video_carries_message(self):
        payload = {"data": {"status": "failed", "error": {"message": "avatar not found"}}}
        client = HeyGenClient(api_key="hg", base_url="https://api.heygen.test", transport=transport(payload))
        status = await client.video_status("vid-1")
        self.assertTrue(status.failed)
        self.assertEqual(status.error, "avatar not found")

    async def test_completed_without_url_is_failure(self):
        payload = {"data": {"status": "completed", "video_url": ""}}
        client = HeyGenClient(api_key="hg", base_url="https://api.heygen.test", transport=transport(payload))
        status = await client.video_status("vid-1")
        self.assertTrue(status.failed)
        self.assertIsNone(status.output_url)
        self.assertEqual(status.error, "HeyGen finished without returning a video")


class TestNanoBananaTaskStatus(unittest.IsolatedAsyncioTestCase):
    def client(self, payload):
        return NanoBananaClient(
            api_key="nb",
            base_url="https://nb.test",
            status_url="https://nb.test/api/v1/jobs",
            transport=transport(payload),
        )

    async def test_completed_with_images(self):
        payload = {"data": {"status": "COMPLETED", "imageUrls": ["https://nb.test/1.png", "https://nb.test/2.png"]}}
        status = await self.client(payload).task_status("task-1")
        self.assertTrue(status.completed)
        self.assertEqual(len(status.output_urls), 2)

    async def test_completed_without_images_is_failure(self):
        status = await self.client({"data": {"status": "COMPLETED", "imageUrls": []}}).task_status("task-1")
        self.assertTrue(status.failed)


if __name__ == "__main__":
    unittest.main()
