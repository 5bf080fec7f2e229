"""
Tests for the tracker wiring and session lifecycle.
"""

import asyncio
from pathlib import Path

import pytest

from skincare.config import AppConfig, RemoteMirrorConfig, StorageConfig, TrackerConfig
from skincare.domain.models import EvaluationStatus, MirrorState, RemoteDocument
from skincare.services.local_storage import JsonFileStorage, MemoryStorage
from skincare.services.recorder import EvaluationForm
from skincare.services.remote_mirror import SimulatedRemoteMirror
from skincare.services.tracker import SkinCareTracker, build_remote_mirror


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        storage=StorageConfig(path=str(tmp_path / "tracker.json"), watch_interval_seconds=0.01),
        tracker=TrackerConfig(timezone="UTC"),
    )


def test_build_remote_mirror_disabled(config: AppConfig) -> None:
    assert build_remote_mirror(config) is None


def test_build_remote_mirror_firestore() -> None:
    from adapters.firestore.mirror import FirestoreMirror

    config = AppConfig(remote=RemoteMirrorConfig(enabled=True, project_id="demo", api_key="k"))

    mirror = build_remote_mirror(config)

    assert isinstance(mirror, FirestoreMirror)
    mirror.close()


def test_default_storage_is_json_file(config: AppConfig) -> None:
    tracker = SkinCareTracker(config)

    assert isinstance(tracker.storage, JsonFileStorage)
    assert tracker.mirror is None
    assert tracker.dashboard.selected_month is None
    tracker.close()


@pytest.mark.asyncio
async def test_session_hydrates_from_mirror(config: AppConfig) -> None:
    mirror = SimulatedRemoteMirror()
    mirror.documents["r1"] = RemoteDocument(
        remote_id="r1",
        created_at="2024-05-02T00:00:00.000Z",
        evaluator_name="Ito",
        status_adpro=EvaluationStatus.DONE,
        status_vaseline=EvaluationStatus.NOT_APPLICABLE,
    )
    tracker = SkinCareTracker(config, storage=MemoryStorage(), mirror=mirror)

    async with tracker.session():
        assert tracker.is_running
        assert [e.id for e in tracker.store.entries] == ["r1"]
        assert tracker.dashboard.selected_month == "2024-05"

    assert not tracker.is_running
    tracker.close()


@pytest.mark.asyncio
async def test_submit_through_tracker_updates_dashboard(config: AppConfig) -> None:
    tracker = SkinCareTracker(config, storage=MemoryStorage(), mirror=SimulatedRemoteMirror())

    async with tracker.session():
        entry = (await tracker.recorder.submit(EvaluationForm(evaluator_name="Sato"))).unwrap()

    assert entry.mirror_state is MirrorState.MIRRORED
    assert tracker.dashboard.summary.entry_count == 1
    assert tracker.dashboard.summary.target_count == 2
    tracker.close()


@pytest.mark.asyncio
async def test_session_adopts_writes_from_other_session(config: AppConfig) -> None:
    backing: dict[str, str] = {}
    watching = SkinCareTracker(config, storage=MemoryStorage(backing))
    other = SkinCareTracker(config, storage=MemoryStorage(backing))

    async with watching.session():
        entry = (await other.recorder.submit(EvaluationForm(evaluator_name="Sato"))).unwrap()
        for _ in range(50):
            if watching.store.get(entry.id) is not None:
                break
            await asyncio.sleep(0.01)

        assert watching.store.get(entry.id) == entry
        assert watching.dashboard.monthly_entries == (entry,)

    watching.close()
    other.close()


@pytest.mark.asyncio
async def test_session_survives_mirror_outage(config: AppConfig) -> None:
    mirror = SimulatedRemoteMirror()
    mirror.fail_next = 1
    tracker = SkinCareTracker(config, storage=MemoryStorage(), mirror=mirror)

    async with tracker.session():
        assert len(tracker.store) == 0

    tracker.close()
