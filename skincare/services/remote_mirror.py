"""
Remote mirror contract and an in-process implementation.

The remote mirror is an opaque document collection used for off-device
backup. Only three operations are used: list every document, create one and
get its identifier back, delete one by identifier.
"""

import asyncio
import random
import uuid
from typing import Protocol

from skincare.domain.models import EvaluationEntry, RemoteDocument
from skincare.services.base import Result, logger


class RemoteMirrorError(Exception):
    """A remote call failed (network, auth or server error)."""


class RemoteMirror(Protocol):
    """
    Protocol for the remote document collection.

    Why Protocol over ABC: Structural typing, easier mocking, less coupling.
    Design: async-first, failures come back as Result values, never raised.
    """

    async def list_all(self) -> Result[list[RemoteDocument], Exception]: ...

    async def create(self, entry: EvaluationEntry) -> Result[str, Exception]: ...

    async def delete(self, document_id: str) -> Result[None, Exception]: ...


def mirror_payload(entry: EvaluationEntry) -> dict[str, str]:
    """Fields sent to the mirror; id, monthKey and mirror state stay local."""
    return {
        "evaluatorName": entry.evaluator_name,
        "statusAdpro": entry.status_adpro.value,
        "statusVaseline": entry.status_vaseline.value,
        "note": entry.note,
        "createdAt": entry.created_at,
    }


class SimulatedRemoteMirror:
    """
    Simulated document collection kept in memory.

    Has a configurable failure rate and latency to exercise the degraded,
    local-only paths. ``fail_next`` forces the next N calls to fail.
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        latency_seconds: tuple[float, float] = (0.0, 0.0),
        name: str = "simulated-mirror",
    ) -> None:
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError("failure_rate must be between 0 and 1")
        self.failure_rate = failure_rate
        self.latency_seconds = latency_seconds
        self.documents: dict[str, RemoteDocument] = {}
        self.fail_next = 0
        self.calls: list[tuple[str, str | None]] = []
        self.logger = logger.bind(component="remote_mirror", mirror=name)

    async def _simulate_call(self, operation: str) -> None:
        low, high = self.latency_seconds
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))
        else:
            await asyncio.sleep(0)

        if self.fail_next > 0:
            self.fail_next -= 1
            raise RemoteMirrorError(f"Simulated {operation} failure")
        if self.failure_rate and random.random() < self.failure_rate:
            raise ConnectionError(f"Failed to reach remote mirror during {operation}")

    async def list_all(self) -> Result[list[RemoteDocument], Exception]:
        self.calls.append(("list_all", None))
        try:
            await self._simulate_call("list_all")
            documents = list(self.documents.values())
            self.logger.info("mirror_documents_listed", count=len(documents))
            return Result.ok(documents)
        except Exception as e:
            self.logger.error("mirror_list_failed", error=str(e))
            return Result.err(e)

    async def create(self, entry: EvaluationEntry) -> Result[str, Exception]:
        self.calls.append(("create", entry.id))
        try:
            await self._simulate_call("create")
            document_id = uuid.uuid4().hex[:20]
            self.documents[document_id] = RemoteDocument.model_validate(
                {"remoteId": document_id, **mirror_payload(entry)}
            )
            self.logger.info("mirror_document_created", document_id=document_id)
            return Result.ok(document_id)
        except Exception as e:
            self.logger.error("mirror_create_failed", entry_id=entry.id, error=str(e))
            return Result.err(e)

    async def delete(self, document_id: str) -> Result[None, Exception]:
        self.calls.append(("delete", document_id))
        try:
            await self._simulate_call("delete")
            # Deleting a missing document succeeds, as in Firestore
            self.documents.pop(document_id, None)
            self.logger.info("mirror_document_deleted", document_id=document_id)
            return Result.ok(None)
        except Exception as e:
            self.logger.error("mirror_delete_failed", document_id=document_id, error=str(e))
            return Result.err(e)
