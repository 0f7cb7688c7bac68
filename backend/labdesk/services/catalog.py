"""Laboratory test catalog: lookup, panel grouping and reference ranges.

The catalog is an immutable reference table built once per process (from the
bundled dataset in catalog_data, or from a JSON file named by CATALOG_PATH)
and passed by reference into every order session.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path
from types import MappingProxyType

from labdesk.config import settings
from labdesk.errors import NotFoundError
from labdesk.schemas.catalog import (
    CriticalRange,
    Panel,
    ReferenceBand,
    ReferenceRange,
    Sex,
    TestDefinition,
)
from labdesk.services import catalog_data
from labdesk.services.formulas import FORMULAS

logger = logging.getLogger(__name__)

# Pseudo-panel id selecting every test in catalog order
ALL_PANEL_ID = "all"


def format_range_text(low: float | None, high: float | None, decimals: int) -> str:
    """Render a reference interval for display.

    Returns "low - high", "< high", "> low", or "—" when both bounds are absent.
    """
    if low is not None and high is not None:
        return f"{low:.{decimals}f} - {high:.{decimals}f}"
    if high is not None:
        return f"< {high:.{decimals}f}"
    if low is not None:
        return f"> {low:.{decimals}f}"
    return "—"


def select_band(bands: Iterable[ReferenceBand], age: float, sex: Sex) -> ReferenceBand | None:
    """Pick the reference band for a patient.

    The narrowest matching band wins: sex-specific before "any", then the
    smallest age span. Without a match, the widest sex-neutral band is used
    as a general fallback. Returns None when neither exists.
    """
    bands = list(bands)
    matching = [b for b in bands if b.matches(age, sex)]
    if matching:
        return min(matching, key=lambda b: (b.sex == "any", b.age_span))

    general = [b for b in bands if b.sex == "any"]
    if general:
        return max(general, key=lambda b: b.age_span)
    return None


class TestCatalog:
    """Read-only collection of test definitions and panels.

    Example:
        catalog = TestCatalog.from_data(TEST_DEFINITIONS, PANELS)
        troponin = catalog.lookup("troponin_i")
        rng = catalog.reference_range("troponin_i", age=34, sex="F")
    """

    __test__ = False  # not a pytest class

    def __init__(
        self,
        definitions: Iterable[TestDefinition],
        panels: Iterable[Panel],
        version: str = "",
    ):
        """Build and validate a catalog.

        Raises:
            ValueError: On duplicate ids, unresolved panel members or formula
                inputs, or unknown formula names.
        """
        by_id: dict[str, TestDefinition] = {}
        for definition in definitions:
            if definition.id in by_id:
                raise ValueError(f"Duplicate test id '{definition.id}'")
            by_id[definition.id] = definition

        panel_map: dict[str, Panel] = {}
        for panel in panels:
            if panel.id == ALL_PANEL_ID or panel.id in panel_map:
                raise ValueError(f"Invalid or duplicate panel id '{panel.id}'")
            missing = [t for t in panel.test_ids if t not in by_id]
            if missing:
                raise ValueError(f"Panel '{panel.id}' references unknown tests: {missing}")
            panel_map[panel.id] = panel

        for definition in by_id.values():
            unknown_panels = [p for p in definition.panels if p not in panel_map]
            if unknown_panels:
                raise ValueError(f"{definition.id}: unknown panels {unknown_panels}")
            if definition.derived is None:
                continue
            if definition.derived.formula not in FORMULAS:
                raise ValueError(f"{definition.id}: unknown formula '{definition.derived.formula}'")
            missing = [t for t in definition.derived.inputs if t not in by_id]
            if missing:
                raise ValueError(f"{definition.id}: formula inputs not in catalog: {missing}")

        self._definitions: Mapping[str, TestDefinition] = MappingProxyType(by_id)
        self._panels: tuple[Panel, ...] = tuple(panel_map.values())
        self._panel_map: Mapping[str, Panel] = MappingProxyType(panel_map)
        self.version = version

    @classmethod
    def from_data(
        cls,
        tests: Mapping[str, dict],
        panels: Iterable[dict],
        version: str = "",
    ) -> TestCatalog:
        """Build a catalog from the plain-dict table format used by catalog_data.

        Panel membership comes from each test's "panels" list, in table order.
        """
        definitions = [TestDefinition.model_validate({"id": test_id, **entry}) for test_id, entry in tests.items()]
        panel_models = []
        for panel in panels:
            members = tuple(d.id for d in definitions if panel["id"] in d.panels)
            panel_models.append(Panel(id=panel["id"], label=panel["label"], test_ids=members))
        return cls(definitions, panel_models, version=version)

    @classmethod
    def from_json_file(cls, path: Path) -> TestCatalog:
        """Load a catalog from a JSON file with "version", "panels" and "tests" keys."""
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls.from_data(data["tests"], data["panels"], version=data.get("version", ""))

    # ── Lookups ───────────────────────────────────────────────────────────

    @property
    def definitions(self) -> Mapping[str, TestDefinition]:
        return self._definitions

    @property
    def panels(self) -> tuple[Panel, ...]:
        return self._panels

    def __contains__(self, test_id: object) -> bool:
        return test_id in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def lookup(self, test_id: str) -> TestDefinition:
        """Return the definition for a test id.

        Raises:
            NotFoundError: If the test is not in the catalog.
        """
        definition = self._definitions.get(test_id)
        if definition is None:
            raise NotFoundError(f"Test '{test_id}' not found in catalog")
        return definition

    def panel(self, panel_id: str) -> Panel:
        panel = self._panel_map.get(panel_id)
        if panel is None:
            raise NotFoundError(f"Panel '{panel_id}' not found in catalog")
        return panel

    def tests_by_panel(self, panel_id: str) -> list[TestDefinition]:
        """Return a panel's tests in catalog order ("all" returns every test)."""
        if panel_id == ALL_PANEL_ID:
            return list(self._definitions.values())
        return [self._definitions[t] for t in self.panel(panel_id).test_ids]

    def search(self, query: str) -> list[TestDefinition]:
        """Case-insensitive match on display name, LOINC code or synonyms."""
        q = query.lower().strip()
        if not q:
            return list(self._definitions.values())
        return [
            d
            for d in self._definitions.values()
            if q in d.display_name.lower()
            or (d.loinc and q in d.loinc.lower())
            or any(q in s.lower() for s in d.synonyms)
        ]

    def reference_range(self, test_id: str, age: float, sex: Sex) -> ReferenceRange:
        """Resolve the reference range (canonical units) for a patient.

        Returns an unknown range when no band applies.
        """
        definition = self.lookup(test_id)
        band = select_band(definition.reference_bands, age, sex)
        if band is None:
            return ReferenceRange()
        canonical = definition.unit(definition.canonical_unit)
        return ReferenceRange(
            low=band.low,
            high=band.high,
            text=format_range_text(band.low, band.high, canonical.decimals),
        )

    def critical_ranges(self, test_id: str) -> list[CriticalRange]:
        return list(self.lookup(test_id).critical_ranges)


_default_catalog: TestCatalog | None = None


def get_catalog() -> TestCatalog:
    """Return the process-wide catalog, building it on first use."""
    global _default_catalog
    if _default_catalog is None:
        if settings.catalog_path is not None:
            _default_catalog = TestCatalog.from_json_file(settings.catalog_path)
            logger.info("Loaded test catalog from %s", settings.catalog_path)
        else:
            _default_catalog = TestCatalog.from_data(
                catalog_data.TEST_DEFINITIONS,
                catalog_data.PANELS,
                version=catalog_data.CATALOG_VERSION,
            )
        logger.info(
            "Test catalog v%s ready: %d tests, %d panels",
            _default_catalog.version,
            len(_default_catalog),
            len(_default_catalog.panels),
        )
    return _default_catalog
