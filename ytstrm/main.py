import asyncio
import logging
import signal
import sys
import time
import uvicorn
from typing import Dict, List
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .config import settings, load_collections
from .cache import ResolutionCache
from .clients.ytdlp_client import YtDlpClient
from .clients.upstream_client import UpstreamClient
from .errors import ConfigError
from .library import LibraryMaterializer
from .models import CollectionEntry
from .resolver import StreamResolver
from .sync import PlaylistSynchronizer
from . import server

# Setup logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
# Silence noisy libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("apscheduler").setLevel(logging.WARNING)

logger = logging.getLogger("main")

class SyncService:
    def __init__(self):
        self.ytdlp = YtDlpClient()
        self.upstream = UpstreamClient()
        self.cache = ResolutionCache(settings.CACHE_TTL_SECONDS)
        self.resolver = StreamResolver(self.ytdlp, self.upstream, self.cache)
        self.synchronizer = PlaylistSynchronizer(self.ytdlp, window_size=settings.SYNC_WINDOW_SIZE)
        self.materializer = LibraryMaterializer(self.synchronizer, self.resolver, self.upstream)
        self.scheduler = AsyncIOScheduler(timezone=settings.SCHEDULER_TIMEZONE)
        self._locks: Dict[str, asyncio.Lock] = {}

        # Link resolver and upstream client to server module
        server.resolver = self.resolver
        server.upstream = self.upstream

    def collections(self) -> List[CollectionEntry]:
        try:
            return load_collections(settings.COLLECTIONS_PATH)
        except ConfigError as e:
            logger.error(f"Could not load collections: {e}")
            return []

    async def sync_collection(self, collection: CollectionEntry):
        lock = self._locks.setdefault(collection.dir, asyncio.Lock())
        if lock.locked():
            logger.info(f"Sync for {collection.dir} still running, skipping this trigger")
            return

        async with lock:
            logger.info(f"Running sync for {collection.url}")
            try:
                added = await self.materializer.materialize_new(collection)
            except Exception as e:
                logger.error(f"Error syncing {collection.url}: {e}", exc_info=True)
                added = 0

            server.sync_runs[collection.dir] = {
                "url": collection.url,
                "finished_at": time.time(),
                "added": added,
            }

    async def run_all(self):
        # Re-read on every run so edits to the collections file apply without a restart
        for collection in self.collections():
            await self.sync_collection(collection)

    def setup_schedule(self):
        if not settings.PER_COLLECTION_SCHEDULES:
            logger.info(f"Setting up cron to check for new videos: {settings.CRON_SCHEDULE}")
            self.scheduler.add_job(
                self.run_all,
                CronTrigger.from_crontab(settings.CRON_SCHEDULE, timezone=settings.SCHEDULER_TIMEZONE),
                id="sync-all",
                max_instances=1,
                coalesce=True,
            )
            return

        for collection in self.collections():
            schedule = collection.schedule or settings.CRON_SCHEDULE
            logger.info(f"Setting up cron for {collection.url} schedule {schedule}")
            try:
                trigger = CronTrigger.from_crontab(schedule, timezone=settings.SCHEDULER_TIMEZONE)
            except ValueError as e:
                logger.error(f"Invalid schedule '{schedule}' for {collection.url}: {e}")
                continue
            self.scheduler.add_job(
                self.sync_collection,
                trigger,
                args=[collection],
                id=f"sync-{collection.dir}",
                max_instances=1,
                coalesce=True,
            )

    async def start(self):
        self.setup_schedule()
        self.scheduler.start()

        tasks = []
        if settings.RUN_CRON_AT_START:
            logger.info("Executing sync at start")
            tasks.append(asyncio.create_task(self.run_all()))

        config = uvicorn.Config(server.app, host=settings.HTTP_SERVER_HOST, port=settings.HTTP_SERVER_PORT, log_level="warning")
        tasks.append(asyncio.create_task(uvicorn.Server(config).serve()))
        logger.info(f"Server listening on {settings.HTTP_SERVER_HOST}:{settings.HTTP_SERVER_PORT}")

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            pass
        finally:
            self.scheduler.shutdown(wait=False)
            await self.upstream.close()

def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)

if __name__ == "__main__":
    signal.signal(signal.SIGTERM, handle_sigterm)
    service = SyncService()
    try:
        asyncio.run(service.start())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
