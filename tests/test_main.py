import asyncio
import unittest
from unittest import mock
from apscheduler.triggers.cron import CronTrigger
from ytstrm import server
from ytstrm.config import settings
from ytstrm.main import SyncService
from ytstrm.models import CollectionEntry

class BlockingMaterializer:
    def __init__(self):
        self.calls = []
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def materialize_new(self, collection):
        self.calls.append(collection.dir)
        self.started.set()
        await self.release.wait()
        return 4

def collection(dir, schedule=None):
    return CollectionEntry.model_validate({"url": f"https://yt/{dir}", "dir": dir, "schedule": schedule})

class TestSyncService(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.saved = (settings.PER_COLLECTION_SCHEDULES, settings.CRON_SCHEDULE, settings.SCHEDULER_TIMEZONE)
        settings.CRON_SCHEDULE = "5 */2 * * *"
        settings.SCHEDULER_TIMEZONE = "UTC"
        server.sync_runs.clear()
        self.service = SyncService()

    async def asyncTearDown(self):
        await self.service.upstream.close()

    def tearDown(self):
        settings.PER_COLLECTION_SCHEDULES, settings.CRON_SCHEDULE, settings.SCHEDULER_TIMEZONE = self.saved
        server.sync_runs.clear()

    def jobs(self):
        return {job.id: job for job in self.service.scheduler.get_jobs()}

    def trigger(self, crontab):
        return str(CronTrigger.from_crontab(crontab, timezone="UTC"))

    async def test_overlapping_sync_of_same_collection_is_skipped(self):
        materializer = BlockingMaterializer()
        self.service.materializer = materializer
        show = collection("show")

        first = asyncio.create_task(self.service.sync_collection(show))
        await materializer.started.wait()

        # returns right away while the first run holds the lock
        await asyncio.wait_for(self.service.sync_collection(show), timeout=1)
        self.assertEqual(materializer.calls, ["show"])
        self.assertNotIn("show", server.sync_runs)

        materializer.release.set()
        await first

        self.assertEqual(materializer.calls, ["show"])
        self.assertEqual(server.sync_runs["show"]["added"], 4)
        self.assertEqual(server.sync_runs["show"]["url"], "https://yt/show")

    async def test_other_collections_are_not_blocked(self):
        materializer = BlockingMaterializer()
        self.service.materializer = materializer

        first = asyncio.create_task(self.service.sync_collection(collection("one")))
        await materializer.started.wait()
        second = asyncio.create_task(self.service.sync_collection(collection("two")))
        await asyncio.sleep(0)
        materializer.release.set()
        await asyncio.gather(first, second)

        self.assertEqual(materializer.calls, ["one", "two"])
        self.assertEqual(sorted(server.sync_runs), ["one", "two"])

    async def test_materializer_error_is_recorded_as_zero(self):
        self.service.materializer = mock.AsyncMock()
        self.service.materializer.materialize_new.side_effect = RuntimeError("boom")

        await self.service.sync_collection(collection("show"))

        self.assertEqual(server.sync_runs["show"]["added"], 0)

    def test_single_schedule_for_all_collections(self):
        settings.PER_COLLECTION_SCHEDULES = False

        self.service.setup_schedule()

        jobs = self.jobs()
        self.assertEqual(list(jobs), ["sync-all"])
        self.assertEqual(str(jobs["sync-all"].trigger), self.trigger("5 */2 * * *"))

    def test_per_collection_schedules(self):
        settings.PER_COLLECTION_SCHEDULES = True
        entries = [
            collection("a", "0 * * * *"),
            collection("b"),
            collection("broken", "not a crontab"),
        ]

        with mock.patch.object(self.service, "collections", return_value=entries):
            self.service.setup_schedule()

        jobs = self.jobs()
        self.assertEqual(sorted(jobs), ["sync-a", "sync-b"])
        self.assertEqual(str(jobs["sync-a"].trigger), self.trigger("0 * * * *"))
        self.assertEqual(str(jobs["sync-b"].trigger), self.trigger("5 */2 * * *"))
        self.assertEqual(jobs["sync-a"].args, (entries[0],))
        self.assertEqual(jobs["sync-a"].max_instances, 1)

if __name__ == '__main__':
    unittest.main()
