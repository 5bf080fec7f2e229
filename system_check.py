"""
Complete system check exercising the full tracker pipeline.

This script checks:
1. Configuration loading and validation
2. Local recording with a simulated remote mirror
3. Degraded mode when the mirror fails
4. Cross-session storage adoption
5. Monthly dashboard aggregation

Run with: uv run python system_check.py
"""

import asyncio
import tempfile
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from skincare.config import AppConfig, StorageConfig, TrackerConfig, get_config, validate_config
from skincare.domain.body_metrics import BodyMeasurement
from skincare.domain.models import CreateEvaluationInput, EvaluationStatus
from skincare.services.aggregation import format_month, status_breakdown
from skincare.services.entry_store import EntryStore
from skincare.services.local_storage import JsonFileStorage
from skincare.services.recorder import EvaluationForm
from skincare.services.remote_mirror import SimulatedRemoteMirror
from skincare.services.tracker import SkinCareTracker

console = Console()

STATUS_LABELS = {
    EvaluationStatus.DONE: "できている",
    EvaluationStatus.NOT_DONE: "できていない",
    EvaluationStatus.NOT_APPLICABLE: "該当なし",
}


def _config_for(path: Path) -> AppConfig:
    return AppConfig(
        storage=StorageConfig(path=str(path), watch_interval_seconds=0.1),
        tracker=TrackerConfig(timezone="Asia/Tokyo"),
    )


async def check_configuration() -> bool:
    """Check configuration loading."""

    console.print("\n🔧 Checking Configuration...", style="bold blue")

    try:
        validate_config()
        config = get_config()
        console.print(f"✅ Storage key: {config.storage.key}", style="green")
        console.print(f"✅ Time zone: {config.tracker.timezone}", style="green")
        return True
    except Exception as e:
        console.print(f"❌ Configuration check failed: {e}", style="red")
        return False


async def check_recording(workdir: Path) -> bool:
    """Record entries through a healthy mirror."""

    console.print("\n📝 Checking Recording...", style="bold blue")

    mirror = SimulatedRemoteMirror(latency_seconds=(0.01, 0.05))
    tracker = SkinCareTracker(_config_for(workdir / "recording.json"), mirror=mirror)

    async with tracker.session():
        forms = [
            EvaluationForm(evaluator_name=" 佐藤 ", status_vaseline=EvaluationStatus.NOT_APPLICABLE),
            EvaluationForm(evaluator_name="鈴木", status_adpro=EvaluationStatus.NOT_DONE, note="赤み"),
            EvaluationForm(evaluator_name="佐藤"),
        ]
        results = await asyncio.gather(*(tracker.recorder.submit(form) for form in forms))

    ok = all(result.is_ok() for result in results)
    mirrored = [entry for entry in tracker.store.entries if entry.remote_id]
    console.print(f"Stored entries: {len(tracker.store)}, mirrored: {len(mirrored)}")
    console.print(f"Evaluators: {', '.join(tracker.store.list_evaluator_names())}")
    tracker.close()

    if ok and len(mirrored) == len(forms):
        console.print("✅ Recording working", style="green")
        return True
    console.print("❌ Recording check failed", style="red")
    return False


async def check_degraded_mode(workdir: Path) -> bool:
    """A failing mirror must leave the local entry intact."""

    console.print("\n🛡️  Checking Degraded Mode...", style="bold blue")

    mirror = SimulatedRemoteMirror(failure_rate=1.0)
    tracker = SkinCareTracker(_config_for(workdir / "degraded.json"), mirror=mirror)

    result = await tracker.recorder.submit(EvaluationForm(evaluator_name="高橋"))
    entry = result.unwrap()
    errors = tracker.notifications.errors()
    tracker.close()

    console.print(f"Entry kept locally: {entry.id} ({entry.mirror_state.value})")
    if entry.remote_id is None and len(errors) == 1:
        console.print("✅ Local-only fallback working", style="green")
        return True
    console.print("❌ Degraded mode check failed", style="red")
    return False


async def check_cross_session(workdir: Path) -> bool:
    """A second session writing the same file is picked up by the first."""

    console.print("\n🔁 Checking Cross-Session Adoption...", style="bold blue")

    path = workdir / "shared.json"
    tracker = SkinCareTracker(_config_for(path))
    other = EntryStore(JsonFileStorage(path), tz=tracker.config.tracker.zone)

    async with tracker.session():
        other.add(
            CreateEvaluationInput(
                evaluator_name="伊藤",
                status_adpro=EvaluationStatus.DONE,
                status_vaseline=EvaluationStatus.DONE,
            )
        )
        await asyncio.sleep(0.3)

    adopted = len(tracker.store) == 1
    tracker.close()
    if adopted:
        console.print("✅ Other session's write adopted", style="green")
        return True
    console.print("❌ Cross-session check failed", style="red")
    return False


async def check_dashboard(workdir: Path) -> bool:
    """Render the monthly summary for hand-entered history."""

    console.print("\n📊 Checking Dashboard...", style="bold blue")

    tracker = SkinCareTracker(_config_for(workdir / "dashboard.json"))
    history = [
        ("2024-04-10T01:00:00.000Z", EvaluationStatus.DONE, EvaluationStatus.DONE),
        ("2024-05-02T01:00:00.000Z", EvaluationStatus.NOT_DONE, EvaluationStatus.DONE),
        ("2024-05-20T01:00:00.000Z", EvaluationStatus.DONE, EvaluationStatus.NOT_APPLICABLE),
    ]
    for created_at, adpro, vaseline in history:
        tracker.store.add(
            CreateEvaluationInput(
                evaluator_name="山本",
                status_adpro=adpro,
                status_vaseline=vaseline,
                created_at=created_at,
            )
        )

    dashboard = tracker.dashboard
    dashboard.select(dashboard.month_keys[0])
    summary = dashboard.summary

    table = Table(title=f"月次サマリー {format_month(dashboard.selected_month or '')}")
    table.add_column("Item", style="cyan")
    for status in EvaluationStatus:
        table.add_column(STATUS_LABELS[status], justify="right")
    table.add_row("アドプロテープ", *(str(summary.adpro.get(s)) for s in EvaluationStatus))
    table.add_row("ワセリン", *(str(summary.vaseline.get(s)) for s in EvaluationStatus))
    table.add_row("合計", *(str(summary.total.get(s)) for s in EvaluationStatus), style="bold")
    console.print(table)
    console.print(f"対象件数: {summary.target_count}  記録数: {summary.entry_count}")
    console.print(
        "Pie (adpro): "
        + ", ".join(f"{STATUS_LABELS[s]}={n}" for s, n in status_breakdown(summary.adpro))
    )

    bmi = BodyMeasurement(height_cm=160, weight_kg=45)
    console.print(f"BMI check: {bmi.formatted_bmi()} target={bmi.is_evaluation_target}")
    tracker.close()

    if dashboard.month_keys == ["2024-05", "2024-04"] and summary.target_count == 3:
        console.print("✅ Dashboard aggregation working", style="green")
        return True
    console.print("❌ Dashboard check failed", style="red")
    return False


async def run_all_checks() -> None:
    """Run all system checks."""

    console.print(Panel("🧴 Skin-Care Tracker - System Checks", style="bold blue"))

    with tempfile.TemporaryDirectory() as tmp:
        workdir = Path(tmp)
        checks = [
            ("Configuration", check_configuration),
            ("Recording", lambda fn=check_recording: fn(workdir)),
            ("Degraded Mode", lambda fn=check_degraded_mode: fn(workdir)),
            ("Cross-Session", lambda fn=check_cross_session: fn(workdir)),
            ("Dashboard", lambda fn=check_dashboard: fn(workdir)),
        ]

        results = []
        for check_name, check in checks:
            console.print(f"\n{'=' * 60}")
            try:
                results.append((check_name, await check()))
            except KeyboardInterrupt:
                console.print("\n⏹️  Checks interrupted by user", style="yellow")
                break
            except Exception as e:
                console.print(f"❌ {check_name} failed with exception: {e}", style="red")
                results.append((check_name, False))

    console.print(f"\n{'=' * 60}")
    console.print(Panel("📋 Check Results Summary", style="bold"))

    summary_table = Table()
    summary_table.add_column("Check", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for check_name, result in results:
        if result:
            summary_table.add_row(check_name, "✅ PASSED")
            passed += 1
        else:
            summary_table.add_row(check_name, "❌ FAILED")

    console.print(summary_table)
    console.print(f"\n🎯 Results: {passed}/{len(results)} checks passed")


if __name__ == "__main__":
    asyncio.run(run_all_checks())
