"""Result ledger: the per-order working set of result rows.

Owns add/update/remove/save for one order. Classification is delegated to
the InterpretationEngine; the ledger never sets a flag on its own. At most one
row exists per test id.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable

from labdesk.errors import DuplicateTestError, NotFoundError, UnitMismatchError
from labdesk.schemas.catalog import PatientContext, TestDefinition
from labdesk.schemas.results import Flag, ResultEntry, ResultRow
from labdesk.services.catalog import ALL_PANEL_ID, TestCatalog
from labdesk.services.engine import InterpretationEngine, leading_qualifier, parse_numeric

logger = logging.getLogger(__name__)


def _new_row_id(test_id: str) -> str:
    return f"row-{test_id}-{uuid.uuid4().hex[:8]}"


class ResultLedger:
    """Mutable row set for a single order.

    Example:
        ledger = ResultLedger(catalog, PatientContext(age=34, sex="F"))
        row = ledger.add_test("potassium")
        ledger.update_value(row.id, "4.2")
        ledger.update_unit(row.id, "mg/dL")   # value_si and flag unchanged
    """

    def __init__(
        self,
        catalog: TestCatalog,
        patient: PatientContext,
        engine: InterpretationEngine | None = None,
    ):
        self.catalog = catalog
        self.patient = patient
        self.engine = engine or InterpretationEngine(catalog)
        self._rows: list[ResultRow] = []

    # ── Row construction ──────────────────────────────────────────────────

    def _build_row(
        self,
        definition: TestDefinition,
        *,
        row_id: str | None = None,
        unit: str | None = None,
        raw_value: str = "",
        prior_value: str | None = None,
    ) -> ResultRow:
        unit = unit or definition.canonical_unit
        if definition.unit(unit) is None:
            raise UnitMismatchError(definition.id, unit)

        reference_range = self.engine.reference_range_for(definition, self.patient)
        numeric = parse_numeric(raw_value)
        prior_numeric = parse_numeric(prior_value)

        row = ResultRow(
            id=row_id or _new_row_id(definition.id),
            definition=definition,
            raw_value=raw_value,
            unit=unit,
            value_si=None if numeric is None else self.engine.to_canonical(numeric, unit, definition),
            reference_range=reference_range,
            ref_range_text=self.engine.format_reference_range(reference_range, definition, unit),
            prior_value=prior_value,
            prior_value_si=(
                None if prior_numeric is None else self.engine.to_canonical(prior_numeric, unit, definition)
            ),
        )
        row.flag = self.engine.flag_row(row)
        return row

    def load(self, entries: Iterable[ResultEntry]) -> list[ResultRow]:
        """Populate the ledger on order load and run the derived pass.

        Entries for unknown tests, unregistered units, or tests already on
        the order are skipped with a warning. Loaded rows start clean.
        """
        for entry in entries:
            if entry.test_id not in self.catalog:
                logger.warning("Skipping result for unknown test '%s'", entry.test_id)
                continue
            if self.row_for_test(entry.test_id) is not None:
                logger.warning("Skipping duplicate result for test '%s'", entry.test_id)
                continue
            definition = self.catalog.lookup(entry.test_id)
            if entry.unit is not None and definition.unit(entry.unit) is None:
                logger.warning("Skipping result for '%s' in unregistered unit '%s'", entry.test_id, entry.unit)
                continue
            self._rows.append(
                self._build_row(
                    definition,
                    unit=entry.unit,
                    raw_value=entry.value,
                    prior_value=entry.prior_value,
                )
            )
        self.recalculate_derived()
        return self.rows

    # ── Projections ───────────────────────────────────────────────────────

    @property
    def rows(self) -> list[ResultRow]:
        return list(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def get(self, row_id: str) -> ResultRow:
        """Return a row by id.

        Raises:
            NotFoundError: If no such row exists on the order.
        """
        for row in self._rows:
            if row.id == row_id:
                return row
        raise NotFoundError(f"Row '{row_id}' not found")

    def row_for_test(self, test_id: str) -> ResultRow | None:
        for row in self._rows:
            if row.test_id == test_id:
                return row
        return None

    def rows_by_panel(self, panel_id: str) -> list[ResultRow]:
        """Rows belonging to a panel, in ledger order ("all" returns every row)."""
        if panel_id == ALL_PANEL_ID:
            return self.rows
        self.catalog.panel(panel_id)
        return [row for row in self._rows if panel_id in row.definition.panels]

    def panel_test_counts(self) -> dict[str, int]:
        counts = {ALL_PANEL_ID: len(self._rows)}
        for panel in self.catalog.panels:
            counts[panel.id] = len(self.rows_by_panel(panel.id))
        return counts

    def available_tests(self, panel_id: str) -> list[TestDefinition]:
        """Catalog tests in a panel that are not yet on the order."""
        existing = {row.test_id for row in self._rows}
        return [d for d in self.catalog.tests_by_panel(panel_id) if d.id not in existing]

    def search_available_tests(self, query: str) -> list[TestDefinition]:
        existing = {row.test_id for row in self._rows}
        return [d for d in self.catalog.search(query) if d.id not in existing]

    @property
    def critical_rows(self) -> list[ResultRow]:
        return [row for row in self._rows if row.flag == Flag.CRITICAL]

    @property
    def has_critical_values(self) -> bool:
        return any(row.flag == Flag.CRITICAL for row in self._rows)

    @property
    def dirty_rows(self) -> list[ResultRow]:
        return [row for row in self._rows if row.dirty]

    # ── Commands ──────────────────────────────────────────────────────────

    def add_test(self, test_id: str) -> ResultRow:
        """Add a blank row for a test.

        Raises:
            NotFoundError: If the test is not in the catalog.
            DuplicateTestError: If the order already has a row for the test.
        """
        definition = self.catalog.lookup(test_id)
        if self.row_for_test(test_id) is not None:
            raise DuplicateTestError(test_id)
        row = self._build_row(definition)
        self._rows.append(row)
        logger.debug("Added test %s as %s", test_id, row.id)
        return row

    def update_value(self, row_id: str, raw_text: str) -> ResultRow:
        """Store entered text, converting it to canonical units and re-flagging.

        Non-numeric text is kept as entered with value_si None and UNKNOWN.
        """
        row = self.get(row_id)
        numeric = parse_numeric(raw_text)
        row.raw_value = raw_text
        row.value_si = None if numeric is None else self.engine.to_canonical(numeric, row.unit, row.definition)
        row.flag = self.engine.flag_row(row)
        row.dirty = True
        return row

    def update_unit(self, row_id: str, new_unit: str) -> ResultRow:
        """Switch a row's display unit.

        The canonical value and flag do not change; the displayed value and
        reference range text are re-expressed in the new unit. A leading
        qualifier such as "<" or ">" is kept on the displayed values.

        Raises:
            UnitMismatchError: If the unit is not registered for the test.
        """
        row = self.get(row_id)
        ref_text = self.engine.format_reference_range(row.reference_range, row.definition, new_unit)
        if row.value_si is not None:
            row.raw_value = leading_qualifier(row.raw_value) + self.engine.format_value(
                self.engine.from_canonical(row.value_si, new_unit, row.definition),
                row.definition,
                new_unit,
            )
        if row.prior_value_si is not None:
            row.prior_value = leading_qualifier(row.prior_value) + self.engine.format_value(
                self.engine.from_canonical(row.prior_value_si, new_unit, row.definition),
                row.definition,
                new_unit,
            )
        row.unit = new_unit
        row.ref_range_text = ref_text
        row.dirty = True
        return row

    def remove_test(self, row_id: str) -> None:
        """Delete a row; unknown ids are ignored."""
        self._rows = [row for row in self._rows if row.id != row_id]

    def recalculate_derived(self) -> list[ResultRow]:
        return self.engine.recalculate_derived(self._rows, self.patient)

    def save(self, row_ids: Iterable[str]) -> list[ResultRow]:
        """Clear the dirty flag on the listed rows only.

        Raises:
            NotFoundError: If any id is not on the order (nothing is cleared).
        """
        rows = [self.get(row_id) for row_id in row_ids]
        for row in rows:
            row.dirty = False
        return rows

    def mark_all_saved(self) -> int:
        """Clear dirty on every row without touching values.

        Returns:
            Number of rows that were dirty.
        """
        count = 0
        for row in self._rows:
            if row.dirty:
                count += 1
                row.dirty = False
        return count
