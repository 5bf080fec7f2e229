"""
Recording workflow: local write first, remote mirror second.

This is the pipeline behind the evaluation form:
1. Validate the submitted form (rejected forms never touch the store)
2. Add the entry to the local store (source of truth)
3. Mirror it once to the remote collection and annotate the local record
4. Report the outcome through the notification center

Deletion runs the other way round: the remote delete must succeed before the
local entry is removed.
"""

import asyncio
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Literal

from pydantic import BaseModel

from skincare.domain.models import (
    CreateEvaluationInput,
    EvaluationEntry,
    EvaluationStatus,
    MirrorState,
    RemoteDocument,
)
from skincare.services.base import Result, logger
from skincare.services.entry_store import EntryStore
from skincare.services.remote_mirror import RemoteMirror

NotificationLevel = Literal["success", "error", "info"]


class EntryValidationError(ValueError):
    """The submitted form is missing required data."""


@dataclass
class Notification:
    """A transient, dismissable message for the presentation layer."""

    level: NotificationLevel
    text: str
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    entry_id: str | None = None
    dismissed: bool = False


class NotificationCenter:
    """Keeps recent notifications and tells listeners about new ones."""

    def __init__(
        self,
        ttl_seconds: float = 2.5,
        max_history: int = 100,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self.history: deque[Notification] = deque(maxlen=max_history)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._listeners: list[Callable[[Notification], None]] = []
        self.logger = logger.bind(component="notification_center")

    def notify(
        self, level: NotificationLevel, text: str, entry_id: str | None = None
    ) -> Notification:
        notification = Notification(
            level=level, text=text, created_at=self._clock(), entry_id=entry_id
        )
        self.history.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as e:
                self.logger.exception("notification_listener_failed", error=str(e))
        return notification

    def active(self) -> list[Notification]:
        """Notifications younger than the TTL, oldest first."""
        now = self._clock()
        return [n for n in self.history if not n.dismissed and now - n.created_at < self.ttl]

    def dismiss(self, notification: Notification) -> None:
        notification.dismissed = True

    def subscribe(self, listener: Callable[[Notification], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def errors(self) -> list[Notification]:
        return [n for n in self.history if n.level == "error"]


class EvaluationForm(BaseModel):
    """What the caregiver submits from the evaluation form."""

    evaluator_name: str = ""
    status_adpro: EvaluationStatus = EvaluationStatus.DONE
    status_vaseline: EvaluationStatus = EvaluationStatus.DONE
    note: str = ""


class EvaluationRecorder:
    """
    Two-phase recording of evaluations.

    Phase 1 writes to the local store and always sticks. Phase 2 mirrors the
    entry to the remote collection exactly once; its outcome is annotated on
    the local record as ``MirrorState`` and is never retried.
    """

    def __init__(
        self,
        store: EntryStore,
        mirror: RemoteMirror | None = None,
        notifications: NotificationCenter | None = None,
    ) -> None:
        self.store = store
        self.mirror = mirror
        self.notifications = notifications or NotificationCenter()
        self.logger = logger.bind(component="evaluation_recorder")
        self._pending_creates: dict[str, asyncio.Task[Result[str, Exception]]] = {}
        self._deleting_id: str | None = None

    @property
    def deleting_id(self) -> str | None:
        return self._deleting_id

    def is_mirror_pending(self, entry_id: str) -> bool:
        return entry_id in self._pending_creates

    async def submit(self, form: EvaluationForm) -> Result[EvaluationEntry, Exception]:
        """Validate, store locally, then mirror. Never raises."""
        if not form.evaluator_name.strip():
            error = EntryValidationError("Evaluator name is required")
            self.logger.info("submission_rejected", reason=str(error))
            self.notifications.notify("error", "Please enter the evaluator name")
            return Result.err(error)

        entry = self.store.add(
            CreateEvaluationInput(
                evaluator_name=form.evaluator_name,
                status_adpro=form.status_adpro,
                status_vaseline=form.status_vaseline,
                note=form.note,
            )
        )

        if self.mirror is None:
            self.notifications.notify("info", "Saved locally", entry_id=entry.id)
            return Result.ok(entry)

        task = asyncio.create_task(self.mirror.create(entry), name=f"mirror-create-{entry.id}")
        self._pending_creates[entry.id] = task
        try:
            result = await task
        except Exception as e:
            self.logger.exception("unexpected_mirror_create_error", entry_id=entry.id, error=str(e))
            result = Result.err(e)
        finally:
            self._pending_creates.pop(entry.id, None)

        if result.is_ok():
            remote_id = result.unwrap()
            self.store.update(entry.id, remote_id=remote_id, mirror_state=MirrorState.MIRRORED)
            self.notifications.notify(
                "success", "Saved and mirrored to the remote database", entry_id=entry.id
            )
        else:
            self.logger.warning(
                "mirror_write_failed", entry_id=entry.id, error=str(result.unwrap_err())
            )
            self.store.update(entry.id, mirror_state=MirrorState.FAILED)
            self.notifications.notify(
                "error", "Remote save failed (saved locally)", entry_id=entry.id
            )

        return Result.ok(self.store.get(entry.id) or entry)

    async def delete(self, entry_id: str) -> Result[None, Exception]:
        """
        Delete remotely first, then locally. A failed remote delete leaves the
        local entry in place.
        """
        if self._deleting_id is not None:
            self.logger.info("delete_ignored_busy", entry_id=entry_id, busy_with=self._deleting_id)
            return Result.err(RuntimeError(f"Delete of {self._deleting_id} still in progress"))

        self._deleting_id = entry_id
        try:
            return await self._delete(entry_id)
        finally:
            self._deleting_id = None

    async def _delete(self, entry_id: str) -> Result[None, Exception]:
        pending = self._pending_creates.get(entry_id)
        if pending is not None:
            # Sequence after the outstanding create so the real remote id is used
            self.logger.info("delete_waiting_for_mirror_create", entry_id=entry_id)
            try:
                await asyncio.shield(pending)
            except Exception:
                # Already reported by submit; the entry is left in its current state
                self.logger.debug("pending_mirror_create_errored", entry_id=entry_id)
            await asyncio.sleep(0)

        entry = self.store.get(entry_id)
        if entry is None:
            self.logger.info("delete_skipped_missing", entry_id=entry_id)
            return Result.ok(None)

        if self.mirror is not None:
            document_id = entry.remote_id or entry.id
            result = await self._mirror_delete(self.mirror, document_id)
            if result.is_err():
                self.logger.warning(
                    "remote_delete_failed",
                    entry_id=entry_id,
                    document_id=document_id,
                    error=str(result.unwrap_err()),
                )
                self.notifications.notify("error", "Failed to delete the record", entry_id)
                return Result.err(result.unwrap_err())

        self.store.remove(entry_id)
        self.notifications.notify("success", "Record deleted", entry_id=entry_id)
        return Result.ok(None)

    async def _mirror_delete(
        self, mirror: RemoteMirror, document_id: str
    ) -> Result[None, Exception]:
        try:
            return await mirror.delete(document_id)
        except Exception as e:
            self.logger.exception(
                "unexpected_mirror_delete_error", document_id=document_id, error=str(e)
            )
            return Result.err(e)

    async def hydrate(self) -> int:
        """
        Pull existing remote documents into the local store. Documents already
        known locally (by id or remote id) are skipped. Returns the number added.
        """
        if self.mirror is None:
            return 0

        try:
            result = await self.mirror.list_all()
        except Exception as e:
            self.logger.exception("unexpected_mirror_list_error", error=str(e))
            result = Result.err(e)
        if result.is_err():
            self.logger.error("hydrate_failed", error=str(result.unwrap_err()))
            return 0

        known = {entry.id for entry in self.store.entries} | {
            entry.remote_id for entry in self.store.entries if entry.remote_id
        }
        new_documents = [doc for doc in result.unwrap() if doc.remote_id not in known]

        # Oldest first, so the newest ends up at the front of the store
        for document in sorted(new_documents, key=_document_sort_key):
            self.store.add(_input_from_document(document))

        self.logger.info(
            "hydrate_completed", added=len(new_documents), remote_total=len(result.unwrap())
        )
        return len(new_documents)


def _document_sort_key(document: RemoteDocument) -> str:
    return document.created_at


def _input_from_document(document: RemoteDocument) -> CreateEvaluationInput:
    return CreateEvaluationInput(
        id=document.remote_id,
        created_at=document.created_at,
        evaluator_name=document.evaluator_name,
        status_adpro=document.status_adpro,
        status_vaseline=document.status_vaseline,
        note=document.note,
        remote_id=document.remote_id,
        mirror_state=MirrorState.MIRRORED,
    )
