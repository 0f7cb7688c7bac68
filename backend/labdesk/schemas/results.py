"""Result rows, samples and release schemas.

ResultRow is the one mutable record in the core; it is a slotted dataclass
holding a shared, read-only reference to its TestDefinition. Everything that
leaves the core (samples, validation outcomes, released snapshots) is a
frozen pydantic model.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from labdesk.schemas.catalog import ReferenceRange, TestDefinition


class Flag(str, Enum):
    """Interpretation of a result value."""

    NORMAL = "normal"
    ABNORMAL_HIGH = "high"
    ABNORMAL_LOW = "low"
    CRITICAL = "critical"
    UNKNOWN = "unknown"

    @property
    def badge(self) -> str:
        """Single-letter badge shown in result tables."""
        return _FLAG_BADGES[self]


_FLAG_BADGES: dict[Flag, str] = {
    Flag.NORMAL: "N",
    Flag.ABNORMAL_HIGH: "H",
    Flag.ABNORMAL_LOW: "L",
    Flag.CRITICAL: "C",
    Flag.UNKNOWN: "?",
}


@dataclass(slots=True, eq=False)
class ResultRow:
    """One test's working result on an order.

    Attributes:
        id: Row identifier, unique within the order.
        definition: Shared catalog definition (never mutated).
        raw_value: Text as entered (or formatted by the derived pass).
        unit: Currently selected display unit.
        value_si: Parsed value in the test's canonical unit, or None.
        reference_range: Patient-specific range in canonical units.
        ref_range_text: Reference range rendered in the display unit.
        flag: Computed interpretation; only the engine writes it.
        prior_value: Previous result as text (read-only, for trends).
        prior_value_si: Previous result in canonical units.
        dirty: True after an edit until an explicit save includes the row.
    """

    id: str
    definition: TestDefinition
    raw_value: str
    unit: str
    value_si: float | None
    reference_range: ReferenceRange
    ref_range_text: str
    flag: Flag = Flag.UNKNOWN
    prior_value: str | None = None
    prior_value_si: float | None = None
    dirty: bool = False

    @property
    def test_id(self) -> str:
        return self.definition.id

    @property
    def is_derived(self) -> bool:
        return self.definition.derived is not None

    @property
    def delta_pct(self) -> int | None:
        """Percent change from the prior value, rounded to an integer."""
        if self.value_si is None or self.prior_value_si is None or self.prior_value_si == 0:
            return None
        return round((self.value_si - self.prior_value_si) / self.prior_value_si * 100)


class ResultEntry(BaseModel):
    """Initial result supplied when an order is loaded."""

    test_id: str
    value: str = ""
    unit: str | None = None
    prior_value: str | None = None


class RowView(BaseModel):
    """Read-only projection of a ResultRow for presentation."""

    id: str
    test_id: str
    display_name: str
    loinc: str
    value: str
    unit: str
    units: list[str]
    value_si: float | None
    flag: Flag
    badge: str
    ref_range_text: str
    prior_value: str | None
    delta_pct: int | None
    is_derived: bool
    dirty: bool

    @classmethod
    def from_row(cls, row: ResultRow) -> "RowView":
        return cls(
            id=row.id,
            test_id=row.test_id,
            display_name=row.definition.display_name,
            loinc=row.definition.loinc,
            value=row.raw_value,
            unit=row.unit,
            units=row.definition.unit_codes,
            value_si=row.value_si,
            flag=row.flag,
            badge=row.flag.badge,
            ref_range_text=row.ref_range_text,
            prior_value=row.prior_value,
            delta_pct=row.delta_pct,
            is_derived=row.is_derived,
            dirty=row.dirty,
        )


# === Sample collection ===

SampleStatus = Literal["pending", "collected"]

# Specimen type used when the order does not say otherwise
DEFAULT_SPECIMEN_TYPE = "Serum"


class Sample(BaseModel):
    """A collected specimen and the tests it serves."""

    model_config = ConfigDict(frozen=True)

    sample_id: str = Field(min_length=1)
    order_id: str
    specimen_type: str
    collected_by: str
    collected_at: datetime
    test_ids: frozenset[str] = Field(min_length=1)
    status: Literal["collected"] = "collected"


class TestSampleStatus(BaseModel):
    """Collection status of one test on the order."""

    __test__ = False  # not a pytest class

    test_id: str
    status: SampleStatus
    sample_id: str | None = None


# === Validation and release ===


class ValidationResult(BaseModel):
    """Outcome of a release-readiness check."""

    model_config = ConfigDict(frozen=True)

    status: Literal["ready_to_release", "blocked_critical"]
    critical_count: int = 0
    critical_test_ids: tuple[str, ...] = ()
    unsaved_count: int = 0

    @property
    def ready(self) -> bool:
        return self.status == "ready_to_release"


class ReleasedResult(BaseModel):
    """One finalized result inside a released snapshot."""

    model_config = ConfigDict(frozen=True)

    test_id: str
    display_name: str
    loinc: str
    value: str
    unit: str
    value_si: float | None
    flag: Flag
    ref_range_text: str
    sample_id: str | None = None


class ReleasedSnapshot(BaseModel):
    """Immutable record handed to external persistence after release."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    released_at: datetime
    results: tuple[ReleasedResult, ...]
    unsaved_count: int = 0
