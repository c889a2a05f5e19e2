import unittest
from unittest import mock

import httpx
import openai
from fastapi.testclient import TestClient

from support import (
    FakeArtifacts,
    FakeProviders,
    FakeStorage,
    balance_of,
    make_job,
    memory_session_factory,
    provider_failure,
    seed_balance,
    seed_plan,
    transactions_of,
)

import main
from videogen.api.deps import (
    get_artifact_persister,
    get_object_storage,
    get_provider_registry,
    get_speech,
    get_task_runner,
)
from videogen.core.database import get_db
from videogen.core.security import CurrentUser, get_current_user
from videogen.core.settings import settings
from videogen.models.generation_job import GenerationJob, JobKind, JobStatus
from videogen.models.profile import Profile
from videogen.models.worker_task import WorkerTask
from videogen.services import task_queue
from videogen.services.credits import consume_credits
from videogen.services.providers.base import ProviderError
from videogen.services.task_queue import RunSummary

VEO_REQUEST = {"title": "Coffee ad", "prompt": "A barista pouring latte art", "duration": 8}

class APITestCase(unittest.TestCase):
    user_id = "user-1"

    def setUp(self):
        sessionmaker = memory_session_factory()
        self.db = sessionmaker()
        self.providers = FakeProviders()
        self.artifacts = FakeArtifacts()
        self.runner_calls = []

        async def runner(limit: int = 20):
            self.runner_calls.append(limit)
            return RunSummary(claimed=1, done=1)

        def override_db():
            db = sessionmaker()
            try:
                yield db
            finally:
                db.close()

        app = main.app
        app.dependency_overrides[get_db] = override_db
        app.dependency_overrides[get_current_user] = lambda: CurrentUser(id=self.user_id, email="maker@test.dev", role="user")
        app.dependency_overrides[get_provider_registry] = lambda: self.providers
        app.dependency_overrides[get_artifact_persister] = lambda: self.artifacts
        app.dependency_overrides[get_task_runner] = lambda: runner
        self.client = TestClient(app)

    def tearDown(self):
        main.app.dependency_overrides.clear()
        self.db.close()

    def jobs(self):
        self.db.expire_all()
        return self.db.query(GenerationJob).all()

class TestVeoGenerate(APITestCase):
    def test_short_balance_is_rejected_without_a_job(self):
        seed_plan(self.db, self.user_id, "creator")
        seed_balance(self.db, self.user_id, 10)

        resp = self.client.post("/api/veo/generate", json=VEO_REQUEST)

        self.assertEqual(resp.status_code, 403)
        body = resp.json()
        self.assertEqual(body["code"], "INSUFFICIENT_CREDITS")
        self.assertTrue(body["error"].startswith("Insufficient credits. Need 16, have 10."))
        self.assertEqual(self.jobs(), [])
        self.assertEqual(self.providers.veo.calls, [])
        self.assertEqual(balance_of(self.db, self.user_id), 10)

    def test_dispatch_failure_refunds_and_fails_job(self):
        seed_plan(self.db, self.user_id, "creator")
        seed_balance(self.db, self.user_id, 20)
        self.providers.veo.error = provider_failure()

        resp = self.client.post("/api/veo/generate", json=VEO_REQUEST)

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json(), {"error": "Veo API error 500: boom"})
        self.assertEqual(balance_of(self.db, self.user_id), 20)
        self.assertEqual([t.amount for t in transactions_of(self.db, self.user_id)], [-16, 16])
        [job] = self.jobs()
        self.assertEqual(JobStatus(job.status), JobStatus.FAILED)
        self.assertIsNotNone(job.refunded_at)
        self.assertEqual(self.runner_calls, [])

    def test_provider_rate_limit_maps_to_429(self):
        seed_plan(self.db, self.user_id, "creator")
        seed_balance(self.db, self.user_id, 20)
        self.providers.veo.error = ProviderError("Google Veo API error 429: RESOURCE_EXHAUSTED", status_code=429)

        resp = self.client.post("/api/veo/generate", json=VEO_REQUEST)

        self.assertEqual(resp.status_code, 429)
        self.assertEqual(resp.json()["code"], "PROVIDER_RATE_LIMITED")
        self.assertEqual(balance_of(self.db, self.user_id), 20)

    def test_successful_dispatch_charges_and_queues_reconcile(self):
        seed_plan(self.db, self.user_id, "creator")
        seed_balance(self.db, self.user_id, 20)

        resp = self.client.post("/api/veo/generate", json={**VEO_REQUEST, "style": "cinematic"})

        self.assertEqual(resp.status_code, 200)
        job = resp.json()["job"]
        self.assertEqual(job["status"], "pending")
        self.assertEqual(job["provider"], "google_veo")
        self.assertEqual(job["credits_used"], 16)
        self.assertEqual(job["operation_handle"], "models/veo/operations/op-1")
        self.assertEqual(balance_of(self.db, self.user_id), 4)

        name, kwargs = self.providers.veo.calls[0]
        self.assertEqual(name, "generate")
        self.assertEqual(kwargs["prompt"], "A barista pouring latte art\n\nStyle: cinematic")
        self.assertEqual(kwargs["resolution"], "1080p")

        task = self.db.query(WorkerTask).one()
        self.assertEqual(task.kind, task_queue.RECONCILE_JOB)
        self.assertEqual(task.payload, {"job_id": job["id"]})
        self.assertEqual(self.runner_calls, [20])

    def test_free_plan_needs_upgrade(self):
        seed_balance(self.db, self.user_id, 50)
        resp = self.client.post("/api/veo/generate", json=VEO_REQUEST)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["code"], "PLAN_REQUIRED")
        self.assertEqual(balance_of(self.db, self.user_id), 50)

    def test_invalid_duration_uses_error_envelope(self):
        resp = self.client.post("/api/veo/generate", json={**VEO_REQUEST, "duration": 5})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Invalid duration. Must be 4, 6, or 8 seconds."})

class TestMultiSegment(APITestCase):
    def request(self, **overrides):
        body = {
            "title": "Product tour",
            "template_id": "tpl-unboxing",
            "segments": [
                {"prompt": "Hands open the box", "duration": 8, "image_mode": "start_frame", "label": "Open"},
                {"prompt": "Product on a marble table", "duration": 4},
            ],
            "product_images": [{"base64": "aGVsbG8=", "mime_type": "image/png"}],
        }
        body.update(overrides)
        return self.client.post("/api/veo/multi-generate", json=body)

    def test_plan_without_batch_creation_is_rejected(self):
        seed_plan(self.db, self.user_id, "starter")
        seed_balance(self.db, self.user_id, 100)
        resp = self.request()
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["code"], "PLAN_REQUIRED")
        self.assertEqual(self.jobs(), [])
        self.assertEqual(balance_of(self.db, self.user_id), 100)

    def test_debits_upfront_and_queues_segments(self):
        seed_plan(self.db, self.user_id, "creator")
        seed_balance(self.db, self.user_id, 100)

        resp = self.request()

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["job"]["status"], "processing")
        self.assertEqual(body["job"]["mode"], "template_multi")
        self.assertEqual(body["job"]["credits_used"], 24)
        self.assertEqual(body["total_segments"], 2)
        self.assertEqual(body["completed_segments"], 0)
        self.assertEqual(balance_of(self.db, self.user_id), 76)
        self.assertEqual(self.providers.veo.calls, [])

        task = self.db.query(WorkerTask).one()
        self.assertEqual(task.kind, task_queue.GENERATE_SEGMENTS)
        self.assertEqual(task.payload["job_id"], body["job"]["id"])
        self.assertEqual(task.payload["product_images"], [{"base64": "aGVsbG8=", "mime_type": "image/png"}])
        self.assertEqual(self.runner_calls, [20])

        [job] = self.jobs()
        self.assertNotIn("product_images", job.params)
        self.assertEqual(job.params["resolution"], "1080p")

        resp = self.client.get(f"/api/veo/multi/{job.id}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["current_segment_label"], "Clip 0/2")

    def test_short_balance_creates_nothing(self):
        seed_plan(self.db, self.user_id, "creator")
        seed_balance(self.db, self.user_id, 10)
        resp = self.request()
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["code"], "INSUFFICIENT_CREDITS")
        self.assertEqual(self.jobs(), [])
        self.assertEqual(self.db.query(WorkerTask).count(), 0)

    def test_segment_validation_uses_error_envelope(self):
        resp = self.request(segments=[{"prompt": "Too long", "duration": 5}])
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Each segment must have a valid duration (4, 6, or 8)"})

        resp = self.request(segments=[])
        self.assertEqual(resp.json(), {"error": "Segments array is required (1-500)"})

    def test_status_of_single_clip_job_is_not_found(self):
        job = make_job(self.db, user_id=self.user_id)
        resp = self.client.get(f"/api/veo/multi/{job.id}")
        self.assertEqual(resp.status_code, 404)


class FakeSpeech:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def synthesize(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return b"ID3-mp3-bytes"


class TestVoiceover(APITestCase):
    def setUp(self):
        super().setUp()
        self.speech = FakeSpeech()
        self.storage = FakeStorage()
        main.app.dependency_overrides[get_speech] = lambda: self.speech
        main.app.dependency_overrides[get_object_storage] = lambda: self.storage

    def test_voices_are_listed(self):
        resp = self.client.get("/api/tts/voices")
        self.assertEqual(resp.status_code, 200)
        voices = resp.json()["voices"]
        self.assertEqual(len(voices), 11)
        self.assertEqual(voices[0]["id"], "alloy")

    def test_generate_charges_one_credit_and_stores_mp3(self):
        seed_balance(self.db, self.user_id, 5)
        script = " ".join(["word"] * 150)

        resp = self.client.post("/api/tts/generate", json={"script": script, "voice": "nova", "speed": 2.0})

        self.assertEqual(resp.status_code, 200)
        voiceover = resp.json()["voiceover"]
        self.assertEqual(voiceover["credits_used"], 1)
        self.assertEqual(voiceover["duration_seconds"], 30)
        self.assertEqual(voiceover["audio_url"], f"https://cdn.test/voiceovers/user-1/{voiceover['id']}.mp3")
        self.assertEqual(self.storage.uploads, [("voiceovers", f"user-1/{voiceover['id']}.mp3", 13)])
        self.assertEqual(self.speech.calls[0]["voice"], "nova")
        self.assertEqual(balance_of(self.db, self.user_id), 4)
        [debit] = transactions_of(self.db, self.user_id)
        self.assertEqual(debit.resource_type, "voiceover")
        self.assertEqual(debit.resource_id, voiceover["id"])

    def test_synthesis_failure_refunds(self):
        seed_balance(self.db, self.user_id, 5)
        self.speech.error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.test/v1/audio/speech"))

        resp = self.client.post("/api/tts/generate", json={"script": "Hello there", "voice": "onyx"})

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(balance_of(self.db, self.user_id), 5)
        self.assertEqual([t.amount for t in transactions_of(self.db, self.user_id)], [-1, 1])

    def test_empty_balance_is_rejected(self):
        resp = self.client.post("/api/tts/generate", json={"script": "Hello there", "voice": "onyx"})
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(
            resp.json(),
            {
                "error": "Need 1 credit for voiceover generation. You have 0 credits.",
                "code": "INSUFFICIENT_CREDITS",
            },
        )
        self.assertEqual(self.speech.calls, [])

    def test_unknown_voice_is_rejected(self):
        resp = self.client.post("/api/tts/generate", json={"script": "Hello", "voice": "robot"})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Invalid voice selection"})


class TestCancel(APITestCase):
    def charged_job(self, status):
        seed_balance(self.db, self.user_id, 20)
        job = make_job(self.db, user_id=self.user_id, status=status)
        consume_credits(self.db, user_id=self.user_id, amount=16, resource_type="veo_video", resource_id=job.id)
        return job

    def test_cancel_processing_job_refunds(self):
        job = self.charged_job(JobStatus.PROCESSING)
        resp = self.client.post("/api/veo/cancel", json={"video_id": job.id})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["job"]["status"], "failed")
        self.assertEqual(balance_of(self.db, self.user_id), 20)

    def test_cancel_terminal_job_is_rejected(self):
        job = self.charged_job(JobStatus.COMPLETED)
        resp = self.client.post("/api/veo/cancel", json={"video_id": job.id})
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Only pending or processing jobs can be cancelled"})
        self.assertEqual(balance_of(self.db, self.user_id), 4)

    def test_other_users_job_is_not_found(self):
        seed_balance(self.db, "someone-else", 20)
        job = make_job(self.db, user_id="someone-else")
        resp = self.client.post("/api/veo/cancel", json={"video_id": job.id})
        self.assertEqual(resp.status_code, 404)

class TestOtherEndpoints(APITestCase):
    def test_balance_and_transactions(self):
        seed_balance(self.db, self.user_id, 7)
        consume_credits(self.db, user_id=self.user_id, amount=2, resource_type="ai_music", resource_id="m-1")

        balance = self.client.get("/api/credits/balance").json()
        self.assertEqual(balance["credits_remaining"], 5)

        items = self.client.get("/api/credits/transactions").json()["items"]
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["amount"], -2)
        self.assertEqual(items[0]["type"], "consumption")

    def test_image_generation_charges_per_image(self):
        seed_balance(self.db, self.user_id, 10)
        resp = self.client.post("/api/images/generate", json={"prompt": "A red bicycle", "resolution": "2K", "num_images": 2})
        self.assertEqual(resp.status_code, 200)
        job = resp.json()["job"]
        self.assertEqual(job["kind"], JobKind.IMAGE.value)
        self.assertEqual(job["credits_used"], 4)
        self.assertEqual(balance_of(self.db, self.user_id), 6)

    def test_delete_requires_terminal_job(self):
        job = make_job(self.db, user_id=self.user_id, mode="avatar", credits=0, handle="heygen-video-1")
        resp = self.client.delete(f"/api/videos/{job.id}")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json(), {"error": "Cancel the video first before deleting it."})

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "healthy"})
        self.assertEqual(self.client.get("/api/health").json(), {"status": "healthy"})

    def test_unknown_route_uses_envelope(self):
        resp = self.client.get("/api/does-not-exist")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json(), {"error": "Not Found"})

class TestInternalTasks(APITestCase):
    def test_missing_secret_configuration(self):
        with mock.patch.object(settings, "worker_secret", None):
            resp = self.client.post("/api/internal/tasks/run")
        self.assertEqual(resp.status_code, 503)

    def test_wrong_secret(self):
        with mock.patch.object(settings, "worker_secret", "s3cret"):
            resp = self.client.post("/api/internal/tasks/run", headers={"x-worker-secret": "guess"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(self.runner_calls, [])

    def test_runs_tasks_with_secret(self):
        with mock.patch.object(settings, "worker_secret", "s3cret"):
            resp = self.client.post("/api/internal/tasks/run?limit=5", headers={"x-worker-secret": "s3cret"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"claimed": 1, "done": 1, "rescheduled": 0, "retried": 0, "dead": 0})
        self.assertEqual(self.runner_calls, [5])

class TestAdmin(APITestCase):
    def test_non_admin_is_forbidden(self):
        resp = self.client.get("/api/admin/stats")
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.json()["error"], "Admin access required")

    def test_grant_adds_credits_and_shows_in_stats(self):
        main.app.dependency_overrides[get_current_user] = lambda: CurrentUser(id="admin-1", email="ops@test.dev", role="admin")
        self.db.add(Profile(id="user-2", email="someone@test.dev", role="user"))
        self.db.commit()
        seed_balance(self.db, "user-2", 3)

        resp = self.client.post("/api/admin/credits/grant", json={"user_id": "user-2", "amount": 7, "reason": "Support"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["credits_remaining"], 10)
        self.assertEqual(transactions_of(self.db, "user-2")[-1].amount, 7)
        stats = self.client.get("/api/admin/stats").json()
        self.assertEqual(stats["users"], 1)
        self.assertEqual(stats["dead_tasks"], 0)

    def test_grant_for_unknown_user_is_not_found(self):
        main.app.dependency_overrides[get_current_user] = lambda: CurrentUser(id="admin-1", email="ops@test.dev", role="admin")
        resp = self.client.post("/api/admin/credits/grant", json={"user_id": "ghost", "amount": 5})
        self.assertEqual(resp.status_code, 404)

if __name__ == "__main__":
    unittest.main()
