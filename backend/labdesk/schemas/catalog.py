"""Pydantic schemas for the laboratory test catalog.

All catalog models are frozen: the catalog is built once per process and
shared by reference across every order session.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Sex = Literal["M", "F", "other"]
BandSex = Literal["M", "F", "any"]
TestKind = Literal["numeric", "calculated"]

# Upper age bound used by bands that apply to every adult/child
MAX_AGE_YEARS = 200


class UnitDefinition(BaseModel):
    """A display unit and its factor to the test's canonical unit.

    canonical_value = display_value * factor
    """

    model_config = ConfigDict(frozen=True)

    code: str = Field(min_length=1)
    factor: float = Field(gt=0)
    decimals: int = Field(default=1, ge=0, le=6)


class ReferenceBand(BaseModel):
    """Demographic reference interval in canonical units.

    Age matching is half-open: min_age <= age < max_age.
    """

    model_config = ConfigDict(frozen=True)

    sex: BandSex = "any"
    min_age: float = Field(default=0, ge=0)
    max_age: float = MAX_AGE_YEARS
    low: float | None = None
    high: float | None = None

    @property
    def age_span(self) -> float:
        return self.max_age - self.min_age

    def matches(self, age: float, sex: Sex) -> bool:
        sex_match = self.sex == "any" or self.sex == sex
        return sex_match and self.min_age <= age < self.max_age


class CriticalRange(BaseModel):
    """Critical threshold(s); either bound may be absent (one-sided)."""

    model_config = ConfigDict(frozen=True)

    low: float | None = None
    high: float | None = None


class DerivedFormula(BaseModel):
    """Reference to a named formula and the test ids it reads."""

    model_config = ConfigDict(frozen=True)

    formula: str
    inputs: tuple[str, ...] = Field(min_length=1)


class TestDefinition(BaseModel):
    """Immutable definition of a single laboratory test."""

    __test__ = False  # not a pytest class

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    display_name: str
    loinc: str = ""
    kind: TestKind = "numeric"
    canonical_unit: str
    units: tuple[UnitDefinition, ...] = Field(min_length=1)
    reference_bands: tuple[ReferenceBand, ...] = ()
    critical_ranges: tuple[CriticalRange, ...] = ()
    panels: tuple[str, ...] = ()
    synonyms: tuple[str, ...] = ()
    derived: DerivedFormula | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _check_units(self) -> "TestDefinition":
        codes = [u.code for u in self.units]
        if len(codes) != len(set(codes)):
            raise ValueError(f"{self.id}: duplicate unit codes {codes}")
        canonical = self.unit(self.canonical_unit)
        if canonical is None:
            raise ValueError(f"{self.id}: canonical unit '{self.canonical_unit}' is not registered")
        if canonical.factor != 1:
            raise ValueError(f"{self.id}: canonical unit must have factor 1, got {canonical.factor}")
        if self.kind == "calculated" and self.derived is None:
            raise ValueError(f"{self.id}: calculated tests need a derived formula")
        return self

    def unit(self, code: str) -> UnitDefinition | None:
        """Return the unit definition for a code, or None."""
        for unit in self.units:
            if unit.code == code:
                return unit
        return None

    @property
    def unit_codes(self) -> list[str]:
        return [u.code for u in self.units]


class Panel(BaseModel):
    """Ordered group of tests."""

    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    test_ids: tuple[str, ...] = ()


class ReferenceRange(BaseModel):
    """Reference range resolved for a specific patient, in canonical units.

    Both bounds absent means no band applied: the range is unknown and
    flagging degrades to Unknown rather than Normal.
    """

    model_config = ConfigDict(frozen=True)

    low: float | None = None
    high: float | None = None
    text: str = "—"

    @property
    def is_known(self) -> bool:
        return self.low is not None or self.high is not None


class PatientContext(BaseModel):
    """Demographics used for every reference-range lookup on an order."""

    model_config = ConfigDict(frozen=True)

    age: float = Field(ge=0, le=MAX_AGE_YEARS)
    sex: Sex
