import unittest

from support import make_job, memory_session_factory, seed_plan

from videogen.core.errors import APIError
from videogen.models.generation_job import JobStatus
from videogen.services import plans
from videogen.services.quotas import (
    record_ai_usage,
    require_ai_quota,
    require_batch_creation,
    require_veo_access,
    require_video_quota,
    user_plan,
)


class TestPlans(unittest.TestCase):
    def test_inactive_subscription_falls_back_to_free(self):
        self.assertEqual(plans.effective_plan("creator", "active"), "creator")
        self.assertEqual(plans.effective_plan("creator", "past_due"), "free")
        self.assertEqual(plans.effective_plan("pro", "active"), "starter")
        self.assertEqual(plans.effective_plan("platinum", "active"), "free")

    def test_veo_needs_creator_or_above(self):
        self.assertFalse(plans.can_use_veo("free"))
        self.assertFalse(plans.can_use_veo("starter"))
        self.assertTrue(plans.can_use_veo("creator"))
        self.assertTrue(plans.can_use_veo("enterprise"))

    def test_free_limits(self):
        self.assertTrue(plans.can_generate_video("free", 4))
        self.assertFalse(plans.can_generate_video("free", 5))
        self.assertTrue(plans.can_generate_video("starter", 500))
        self.assertEqual(plans.monthly_credits("creator"), 50)

    def test_unknown_price_is_free(self):
        self.assertEqual(plans.plan_from_price_id(None), "free")
        self.assertEqual(plans.plan_from_price_id("price_unknown"), "free")

    def test_batch_creation_and_resolution_follow_plan_limits(self):
        self.assertFalse(plans.can_batch_create("starter"))
        self.assertTrue(plans.can_batch_create("creator"))
        self.assertEqual(plans.max_veo_resolution("free"), "720p")
        self.assertEqual(plans.max_veo_resolution("starter"), "1080p")
        self.assertEqual(plans.max_veo_resolution("enterprise"), "1080p")


class TestQuotas(unittest.TestCase):
    def setUp(self):
        self.db = memory_session_factory()()

    def tearDown(self):
        self.db.close()

    def test_user_without_subscription_is_free(self):
        self.assertEqual(user_plan(self.db, "u1"), "free")
        with self.assertRaises(APIError) as ctx:
            require_veo_access(self.db, "u1")
        self.assertEqual(ctx.exception.code, "PLAN_REQUIRED")

    def test_failed_avatar_videos_do_not_count(self):
        for _ in range(4):
            make_job(self.db, user_id="u1", mode="avatar", credits=0)
        make_job(self.db, user_id="u1", mode="avatar", credits=0, status=JobStatus.FAILED)
        self.assertEqual(require_video_quota(self.db, "u1"), "free")

        make_job(self.db, user_id="u1", mode="avatar", credits=0)
        with self.assertRaises(APIError) as ctx:
            require_video_quota(self.db, "u1")
        self.assertEqual(ctx.exception.code, "LIMIT_REACHED")

    def test_ai_limit_applies_to_free_only(self):
        for _ in range(10):
            record_ai_usage(self.db, "u1", "generate")
        with self.assertRaises(APIError):
            require_ai_quota(self.db, "u1")

        seed_plan(self.db, "u1", "starter")
        self.assertEqual(require_ai_quota(self.db, "u1"), "starter")

    def test_batch_creation_needs_creator(self):
        seed_plan(self.db, "u1", "starter")
        with self.assertRaises(APIError) as ctx:
            require_batch_creation(self.db, "u1")
        self.assertEqual(ctx.exception.code, "PLAN_REQUIRED")

        seed_plan(self.db, "u2", "creator")
        self.assertEqual(require_batch_creation(self.db, "u2"), "creator")


if __name__ == "__main__":
    unittest.main()
