import unittest

from videogen.services.cache import ProviderCatalog, TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache(unittest.TestCase):
    def test_expiry_keeps_stale_value(self):
        clock = FakeClock()
        cache = TTLCache(ttl_s=60, clock=clock)
        cache.set("k", "v")
        self.assertEqual(cache.get("k"), "v")
        clock.now += 61
        self.assertIsNone(cache.get("k"))
        self.assertEqual(cache.get_stale("k"), "v")

    def test_eviction_bounds_size(self):
        cache = TTLCache(max_items=2, ttl_s=60, clock=FakeClock())
        for key in ("a", "b", "c"):
            cache.set(key, key)
        self.assertEqual(len(cache), 2)
        self.assertIsNone(cache.get("a"))


class TestProviderCatalog(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.catalog = ProviderCatalog(ttl_s=3600, clock=self.clock)
        self.fetches = 0
        self.fail = False

    async def fetch(self):
        self.fetches += 1
        if self.fail:
            raise RuntimeError("HeyGen unavailable")
        return [{"avatar_id": f"a{self.fetches}"}]

    async def test_cached_until_ttl(self):
        first = await self.catalog.avatars(self.fetch)
        second = await self.catalog.avatars(self.fetch)
        self.assertEqual(first, second)
        self.assertEqual(self.fetches, 1)

        self.clock.now += 3601
        refreshed = await self.catalog.avatars(self.fetch)
        self.assertEqual(refreshed, [{"avatar_id": "a2"}])

    async def test_failed_refresh_serves_stale(self):
        await self.catalog.voices(self.fetch)
        self.clock.now += 3601
        self.fail = True
        self.assertEqual(await self.catalog.voices(self.fetch), [{"avatar_id": "a1"}])

    async def test_failure_without_cache_raises(self):
        self.fail = True
        with self.assertRaises(RuntimeError):
            await self.catalog.avatars(self.fetch)

    async def test_invalidate_forces_refetch(self):
        await self.catalog.avatars(self.fetch)
        self.catalog.invalidate()
        await self.catalog.avatars(self.fetch)
        self.assertEqual(self.fetches, 2)


if __name__ == "__main__":
    unittest.main()
