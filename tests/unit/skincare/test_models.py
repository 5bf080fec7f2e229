"""
Tests for domain models and body metrics.

Covers:
- Month key derivation (property-based)
- Status enumeration closure
- Entry immutability and camelCase serialization
- Partial updates refusing identity fields
- BMI computation and the evaluation-target flag
"""

from datetime import UTC, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest
from hypothesis import given
from hypothesis import strategies as st
from pydantic import ValidationError

from skincare.domain.body_metrics import BodyMeasurement
from skincare.domain.models import (
    EntryUpdate,
    EvaluationEntry,
    EvaluationStatus,
    MirrorState,
    format_month_key,
    isoformat_utc,
    parse_timestamp,
)


def _entry(**overrides: object) -> EvaluationEntry:
    data: dict[str, object] = {
        "id": "e1",
        "created_at": "2024-05-10T03:00:00.000Z",
        "month_key": "2024-05",
        "evaluator_name": "Sato",
        "status_adpro": EvaluationStatus.DONE,
        "status_vaseline": EvaluationStatus.NOT_APPLICABLE,
    }
    data.update(overrides)
    return EvaluationEntry(**data)  # type: ignore[arg-type]


class TestMonthKey:
    @given(
        moment=st.datetimes(
            min_value=datetime(1970, 1, 2),
            max_value=datetime(9998, 12, 30),
            timezones=st.just(UTC),
        )
    )
    def test_month_key_is_zero_padded_year_month(self, moment: datetime) -> None:
        key = format_month_key(moment, UTC)
        year, month = key.split("-")
        assert year == str(moment.year)
        assert month == f"{moment.month:02d}"
        assert len(month) == 2

    @given(
        moment=st.datetimes(
            min_value=datetime(1970, 1, 2),
            max_value=datetime(9998, 12, 30),
            timezones=st.just(UTC),
        )
    )
    def test_iso_round_trip_keeps_month(self, moment: datetime) -> None:
        text = isoformat_utc(moment)
        assert text.endswith("Z")
        assert format_month_key(parse_timestamp(text), UTC) == format_month_key(moment, UTC)

    def test_month_key_uses_given_zone(self) -> None:
        # 2024-04-30 20:00 UTC is already May in Tokyo
        moment = datetime(2024, 4, 30, 20, 0, tzinfo=UTC)
        assert format_month_key(moment, UTC) == "2024-04"
        assert format_month_key(moment, ZoneInfo("Asia/Tokyo")) == "2024-05"

    def test_naive_timestamp_is_read_as_utc(self) -> None:
        assert parse_timestamp("2024-05-01T00:00:00").tzinfo == UTC

    def test_offset_timestamp_is_preserved(self) -> None:
        parsed = parse_timestamp("2024-05-01T09:00:00+09:00")
        assert parsed.utcoffset() == timedelta(hours=9)
        assert parsed.astimezone(timezone.utc).hour == 0


class TestEvaluationEntry:
    @given(status=st.sampled_from(list(EvaluationStatus)))
    def test_any_status_value_round_trips(self, status: EvaluationStatus) -> None:
        entry = _entry(status_adpro=status.value, status_vaseline=status.value)
        assert entry.status_adpro is status
        assert entry.status_vaseline is status

    @given(value=st.text(min_size=1).filter(lambda s: s not in {"done", "not_done", "not_applicable"}))
    def test_unknown_status_is_rejected(self, value: str) -> None:
        with pytest.raises(ValidationError):
            _entry(status_adpro=value)

    def test_entry_is_immutable(self) -> None:
        entry = _entry()
        with pytest.raises(ValidationError, match="frozen"):
            entry.note = "changed"  # type: ignore[misc]

    def test_serializes_with_camel_case_aliases(self) -> None:
        data = _entry(remote_id="abc").model_dump(mode="json", by_alias=True)
        assert data == {
            "id": "e1",
            "createdAt": "2024-05-10T03:00:00.000Z",
            "monthKey": "2024-05",
            "evaluatorName": "Sato",
            "statusAdpro": "done",
            "statusVaseline": "not_applicable",
            "note": "",
            "remoteId": "abc",
            "mirrorState": "pending",
        }

    def test_month_key_must_be_year_month(self) -> None:
        with pytest.raises(ValidationError):
            _entry(month_key="2024-5")

    def test_actionable_items_counts_non_applicable_out(self) -> None:
        assert _entry().actionable_items == 1
        assert _entry(status_vaseline=EvaluationStatus.NOT_DONE).actionable_items == 2
        assert (
            _entry(
                status_adpro=EvaluationStatus.NOT_APPLICABLE,
                status_vaseline=EvaluationStatus.NOT_APPLICABLE,
            ).actionable_items
            == 0
        )


class TestEntryUpdate:
    def test_only_set_fields_are_dumped(self) -> None:
        update = EntryUpdate(remote_id="doc-1", mirror_state=MirrorState.MIRRORED)
        assert update.model_dump(exclude_unset=True) == {
            "remote_id": "doc-1",
            "mirror_state": MirrorState.MIRRORED,
        }

    def test_identity_fields_are_not_updatable(self) -> None:
        with pytest.raises(ValidationError):
            EntryUpdate(created_at="2020-01-01T00:00:00Z")  # type: ignore[call-arg]
        with pytest.raises(ValidationError):
            EntryUpdate(month_key="2020-01")  # type: ignore[call-arg]

    def test_text_fields_are_trimmed(self) -> None:
        update = EntryUpdate(note="  memo  ", evaluator_name=" Ito ")
        assert update.note == "memo"
        assert update.evaluator_name == "Ito"


class TestBodyMeasurement:
    def test_bmi_rounded_to_one_decimal(self) -> None:
        measurement = BodyMeasurement(height_cm=160, weight_kg=50)
        assert measurement.bmi == 19.5
        assert measurement.formatted_bmi() == "19.5"
        assert measurement.is_evaluation_target is False

    def test_underweight_is_evaluation_target(self) -> None:
        measurement = BodyMeasurement(height_cm=160, weight_kg=45)
        assert measurement.bmi == 17.6
        assert measurement.is_evaluation_target is True

    def test_threshold_is_inclusive(self) -> None:
        # 18.5 exactly: 47.36 / 1.6^2 = 18.5
        measurement = BodyMeasurement(height_cm=160, weight_kg=47.36)
        assert measurement.bmi == 18.5
        assert measurement.is_evaluation_target is True

    @pytest.mark.parametrize(
        "height, weight",
        [(None, 50), (160, None), (0, 50), (160, 0), (-170, 60)],
    )
    def test_missing_or_invalid_input_gives_no_bmi(
        self, height: float | None, weight: float | None
    ) -> None:
        measurement = BodyMeasurement(height_cm=height, weight_kg=weight)
        assert measurement.bmi is None
        assert measurement.formatted_bmi() == "--"
        assert measurement.is_evaluation_target is False
