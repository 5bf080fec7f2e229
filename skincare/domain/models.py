"""
Domain models for skin-care evaluation records.

These models represent the core business concepts and are framework-agnostic.
They use Pydantic for validation; persisted JSON keeps the camelCase field
names so stored collections stay readable by other clients of the same key.
"""

from datetime import UTC, datetime
from enum import Enum
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class EvaluationStatus(str, Enum):
    """Outcome recorded for a single checklist item."""

    DONE = "done"
    NOT_DONE = "not_done"
    NOT_APPLICABLE = "not_applicable"


class ChecklistItem(str, Enum):
    """The two care tasks tracked on every evaluation."""

    ADPRO = "adpro"
    VASELINE = "vaseline"


class MirrorState(str, Enum):
    """Replication state of an entry against the remote mirror."""

    PENDING = "pending"
    MIRRORED = "mirrored"
    FAILED = "failed"


def format_month_key(timestamp: datetime, tz: ZoneInfo | None = None) -> str:
    """Calendar-month bucket ``YYYY-MM`` of a timestamp in the given zone."""
    local = timestamp.astimezone(tz) if tz is not None else timestamp
    return f"{local.year}-{local.month:02d}"


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def isoformat_utc(timestamp: datetime) -> str:
    """Millisecond ISO-8601 in UTC with a ``Z`` suffix."""
    utc = timestamp.astimezone(UTC)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EvaluationEntry(_CamelModel):
    """One recorded assessment."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )  # Immutable; changes go through EntryStore.update

    id: str = Field(min_length=1)
    created_at: str
    month_key: str = Field(pattern=r"^\d{4}-\d{2}$")
    evaluator_name: str = ""
    status_adpro: EvaluationStatus
    status_vaseline: EvaluationStatus
    note: str = ""
    remote_id: str | None = None
    mirror_state: MirrorState = MirrorState.PENDING

    def status_for(self, item: ChecklistItem) -> EvaluationStatus:
        if item is ChecklistItem.ADPRO:
            return self.status_adpro
        return self.status_vaseline

    @property
    def actionable_items(self) -> int:
        """Number of checklist items (0-2) that are not ``not_applicable``."""
        return sum(
            1
            for status in (self.status_adpro, self.status_vaseline)
            if status is not EvaluationStatus.NOT_APPLICABLE
        )


class CreateEvaluationInput(_CamelModel):
    """Input accepted by ``EntryStore.add``; identity fields are optional."""

    evaluator_name: str = ""
    status_adpro: EvaluationStatus
    status_vaseline: EvaluationStatus
    note: str = ""
    id: str | None = None
    created_at: str | None = None
    remote_id: str | None = None
    mirror_state: MirrorState = MirrorState.PENDING


class EntryUpdate(_CamelModel):
    """
    Partial update of an entry.

    Identity fields (id, createdAt, monthKey) are not updatable, so the month
    bucket always matches the creation timestamp.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    evaluator_name: str | None = None
    status_adpro: EvaluationStatus | None = None
    status_vaseline: EvaluationStatus | None = None
    note: str | None = None
    remote_id: str | None = None
    mirror_state: MirrorState | None = None

    @field_validator("evaluator_name", "note")
    @classmethod
    def strip_text(cls, v: str | None) -> str | None:
        return v.strip() if v is not None else v


class RemoteDocument(_CamelModel):
    """A mirrored record as returned by the remote document collection."""

    remote_id: str
    created_at: str
    evaluator_name: str = ""
    status_adpro: EvaluationStatus
    status_vaseline: EvaluationStatus
    note: str = ""


class StatusCounts(BaseModel):
    """Number of entries per status for one checklist item."""

    done: int = 0
    not_done: int = 0
    not_applicable: int = 0

    def add(self, status: EvaluationStatus) -> None:
        setattr(self, status.value, getattr(self, status.value) + 1)

    def get(self, status: EvaluationStatus) -> int:
        return getattr(self, status.value)

    def __add__(self, other: "StatusCounts") -> "StatusCounts":
        return StatusCounts(
            done=self.done + other.done,
            not_done=self.not_done + other.not_done,
            not_applicable=self.not_applicable + other.not_applicable,
        )


class MonthlyTally(BaseModel):
    """Aggregated counts for one calendar month."""

    adpro: StatusCounts
    vaseline: StatusCounts
    total: StatusCounts
    target_count: int = Field(ge=0, description="(entry, item) pairs not marked not_applicable")
    entry_count: int = Field(ge=0)


class MonthGroup(BaseModel):
    """Entries sharing a month key, in canonical store order."""

    model_config = ConfigDict(frozen=True)

    month_key: str
    entries: tuple[EvaluationEntry, ...]
