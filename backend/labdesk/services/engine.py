"""Flag and conversion engine.

Pure computation over the catalog: unit conversion, flag classification and
derived-value recomputation. Nothing here keeps state between calls; the
result ledger owns the rows and calls in here for every value it stores.

Boundary semantics:
    value <= critical.low or value >= critical.high -> CRITICAL (inclusive)
    value < low                                     -> ABNORMAL_LOW
    value > high                                    -> ABNORMAL_HIGH
    otherwise                                       -> NORMAL
Missing values and unknown reference ranges give UNKNOWN, never NORMAL.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable, Sequence

from labdesk.errors import UnitMismatchError
from labdesk.schemas.catalog import (
    CriticalRange,
    PatientContext,
    ReferenceRange,
    TestDefinition,
    UnitDefinition,
)
from labdesk.schemas.results import Flag, ResultRow
from labdesk.services.catalog import TestCatalog, format_range_text
from labdesk.services.formulas import FORMULAS

logger = logging.getLogger(__name__)

# Qualifiers analyzers put in front of out-of-range results ("<0.01", ">500")
_QUALIFIERS = re.compile(r"[<>≤≥]")
_LEADING_QUALIFIER = re.compile(r"^\s*([<>≤≥])")


def parse_numeric(text: str | None) -> float | None:
    """Parse entered text into a number, ignoring comparison qualifiers.

    Returns None for blank, non-numeric, NaN or infinite input.
    """
    if text is None:
        return None
    cleaned = _QUALIFIERS.sub("", text).strip()
    if not cleaned:
        return None
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def leading_qualifier(text: str | None) -> str:
    """Return the comparison qualifier at the start of text, or "" if there is none."""
    match = _LEADING_QUALIFIER.match(text or "")
    return match.group(1) if match else ""


def compute_flag(
    value_si: float | None,
    reference_range: ReferenceRange,
    critical_ranges: Iterable[CriticalRange],
) -> Flag:
    """Classify a canonical value against its reference and critical ranges.

    Critical thresholds are checked first and win even when they are
    inconsistent with the reference range.

    Args:
        value_si: Value in the test's canonical unit, or None.
        reference_range: Patient-specific range in canonical units.
        critical_ranges: One- or two-sided critical thresholds.

    Returns:
        The interpretation flag.
    """
    if value_si is None or isinstance(value_si, bool) or not isinstance(value_si, (int, float)):
        return Flag.UNKNOWN
    if math.isnan(value_si):
        return Flag.UNKNOWN

    for crit in critical_ranges:
        if crit.high is not None and value_si >= crit.high:
            return Flag.CRITICAL
        if crit.low is not None and value_si <= crit.low:
            return Flag.CRITICAL

    if not reference_range.is_known:
        return Flag.UNKNOWN
    if reference_range.high is not None and value_si > reference_range.high:
        return Flag.ABNORMAL_HIGH
    if reference_range.low is not None and value_si < reference_range.low:
        return Flag.ABNORMAL_LOW
    return Flag.NORMAL


class InterpretationEngine:
    """Unit conversion, flagging and derived values for one catalog."""

    def __init__(self, catalog: TestCatalog):
        self.catalog = catalog

    # ── Units ─────────────────────────────────────────────────────────────

    def _unit(self, definition: TestDefinition, code: str) -> UnitDefinition:
        unit = definition.unit(code)
        if unit is None:
            raise UnitMismatchError(definition.id, code)
        return unit

    def convert(self, value: float, from_unit: str, to_unit: str, test_id: str) -> float:
        """Convert a value between two registered units of a test.

        Raises:
            NotFoundError: If the test is not in the catalog.
            UnitMismatchError: If either unit is not registered for the test.
        """
        definition = self.catalog.lookup(test_id)
        source = self._unit(definition, from_unit)
        target = self._unit(definition, to_unit)
        if source.code == target.code:
            return value
        return value * source.factor / target.factor

    def to_canonical(self, value: float, unit: str, definition: TestDefinition) -> float:
        return value * self._unit(definition, unit).factor

    def from_canonical(self, value_si: float, unit: str, definition: TestDefinition) -> float:
        return value_si / self._unit(definition, unit).factor

    # ── Display ───────────────────────────────────────────────────────────

    def format_value(self, value: float, definition: TestDefinition, unit: str) -> str:
        """Format a display-unit value with the unit's decimals."""
        return f"{value:.{self._unit(definition, unit).decimals}f}"

    def format_reference_range(
        self,
        reference_range: ReferenceRange,
        definition: TestDefinition,
        unit: str,
    ) -> str:
        """Render a canonical reference range in a display unit."""
        unit_def = self._unit(definition, unit)
        low = None if reference_range.low is None else reference_range.low / unit_def.factor
        high = None if reference_range.high is None else reference_range.high / unit_def.factor
        return format_range_text(low, high, unit_def.decimals)

    # ── Flags ─────────────────────────────────────────────────────────────

    def reference_range_for(self, definition: TestDefinition, patient: PatientContext) -> ReferenceRange:
        return self.catalog.reference_range(definition.id, patient.age, patient.sex)

    def flag_row(self, row: ResultRow) -> Flag:
        return compute_flag(row.value_si, row.reference_range, row.definition.critical_ranges)

    # ── Derived values ────────────────────────────────────────────────────

    def recalculate_derived(self, rows: Sequence[ResultRow], patient: PatientContext) -> list[ResultRow]:
        """Recompute every derived row from its sibling rows.

        Rows whose inputs are all present get the formula value (formatted in
        the row's unit) and a fresh flag; the rest are blanked with UNKNOWN.
        Dirty state is left alone.

        Returns:
            The derived rows that were visited.
        """
        values = {row.test_id: row.value_si for row in rows if row.value_si is not None}
        visited: list[ResultRow] = []

        for row in rows:
            derived = row.definition.derived
            if derived is None:
                continue
            visited.append(row)

            computed: float | None = None
            if all(test_id in values for test_id in derived.inputs):
                inputs = {test_id: values[test_id] for test_id in derived.inputs}
                computed = FORMULAS[derived.formula](inputs, patient)
            else:
                missing = [t for t in derived.inputs if t not in values]
                logger.debug("Derived test %s blocked, missing inputs: %s", row.test_id, missing)

            if computed is None or not math.isfinite(computed):
                row.value_si = None
                row.raw_value = ""
                row.flag = Flag.UNKNOWN
                continue

            row.value_si = computed
            row.raw_value = self.format_value(
                self.from_canonical(computed, row.unit, row.definition),
                row.definition,
                row.unit,
            )
            row.flag = self.flag_row(row)

        return visited
