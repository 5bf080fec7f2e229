"""
Integration service that wires the tracker together.

This builds the complete client-side pipeline from configuration:
1. Durable local storage and the entry store on top of it
2. Optional remote mirror (Firestore) and the recording workflow
3. Reactive monthly dashboard
4. Session lifecycle: hydrate from the mirror, watch storage for other sessions
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from skincare.config import AppConfig, get_config
from skincare.services.aggregation import MonthlyDashboard
from skincare.services.base import configure_logging, logger
from skincare.services.entry_store import EntryStore
from skincare.services.local_storage import JsonFileStorage, KeyValueStorage
from skincare.services.recorder import EvaluationRecorder, NotificationCenter
from skincare.services.remote_mirror import RemoteMirror


def build_remote_mirror(config: AppConfig) -> RemoteMirror | None:
    """Firestore mirror when enabled in configuration, otherwise none."""
    if not config.remote.enabled:
        return None

    from adapters.firestore.mirror import FirestoreMirror

    return FirestoreMirror(config.remote)


class SkinCareTracker:
    """
    Main service exposing the presentation boundary.

    ``store``, ``recorder`` and ``dashboard`` are everything a UI needs; the
    tracker only owns their construction and the session lifecycle.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        storage: KeyValueStorage | None = None,
        mirror: RemoteMirror | None = None,
    ) -> None:
        self.config = config or get_config()
        configure_logging(self.config.logging.level, self.config.logging.format)
        self.logger = logger.bind(component="skin_care_tracker")

        self.storage = storage if storage is not None else JsonFileStorage(self.config.storage.path)
        self.mirror = mirror if mirror is not None else build_remote_mirror(self.config)

        self.store = EntryStore(
            self.storage,
            storage_key=self.config.storage.key,
            tz=self.config.tracker.zone,
        )
        self.notifications = NotificationCenter(
            ttl_seconds=self.config.tracker.notification_ttl_seconds
        )
        self.recorder = EvaluationRecorder(self.store, self.mirror, self.notifications)
        self.dashboard = MonthlyDashboard(self.store)

        self._stop = asyncio.Event()
        self._watch_task: asyncio.Task[None] | None = None

        self.logger.info(
            "tracker_initialized",
            entries=len(self.store),
            remote_mirror=type(self.mirror).__name__ if self.mirror else None,
        )

    @property
    def is_running(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    @asynccontextmanager
    async def session(self) -> AsyncIterator["SkinCareTracker"]:
        """
        Hydrate from the mirror and watch storage for the duration of the block.

        In-flight mirror calls are not cancelled on exit; they complete on their own.
        """
        self.logger.info("tracker_session_started")
        self._stop.clear()

        added = await self.recorder.hydrate()
        if added:
            self.logger.info("tracker_hydrated", added=added)

        watch = getattr(self.storage, "watch", None)
        if watch is not None:
            self._watch_task = asyncio.create_task(
                watch(self.config.storage.watch_interval_seconds, self._stop),
                name="storage-watch",
            )

        try:
            yield self
        finally:
            self._stop.set()
            if self._watch_task is not None:
                await self._watch_task
                self._watch_task = None
            self.logger.info("tracker_session_ended")

    def close(self) -> None:
        self.dashboard.close()
        self.store.close()
        close_mirror = getattr(self.mirror, "close", None)
        if close_mirror is not None:
            close_mirror()
