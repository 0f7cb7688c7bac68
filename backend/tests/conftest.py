"""Pytest configuration and shared fixtures.

This module provides centralized test fixtures for:
- The bundled test catalog and a default patient
- A manual, virtual-clock scheduler for debounce tests
- A scripted diagnostics provider standing in for OpenAI
- HTTP client for API testing
"""

import asyncio
import itertools
from collections.abc import Callable

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from labdesk.main import app
from labdesk.schemas import OrderContext, PatientContext
from labdesk.schemas.diagnostics import (
    DiagnosticsReport,
    DiagnosticsSummary,
    PerTestDiagnostics,
)
from labdesk.services import catalog_data
from labdesk.services.catalog import TestCatalog
from labdesk.services.engine import InterpretationEngine
from labdesk.services.ledger import ResultLedger
from labdesk.services.session import SessionRegistry, get_registry


# =============================================================================
# Catalog Fixtures
# =============================================================================


@pytest.fixture
def catalog() -> TestCatalog:
    """The bundled catalog."""
    return TestCatalog.from_data(
        catalog_data.TEST_DEFINITIONS,
        catalog_data.PANELS,
        version=catalog_data.CATALOG_VERSION,
    )


@pytest.fixture
def patient() -> PatientContext:
    """34-year-old female patient."""
    return PatientContext(age=34, sex="F")


@pytest.fixture
def engine(catalog: TestCatalog) -> InterpretationEngine:
    return InterpretationEngine(catalog)


@pytest.fixture
def ledger(catalog: TestCatalog, patient: PatientContext) -> ResultLedger:
    """Empty ledger for the default patient."""
    return ResultLedger(catalog, patient)


@pytest.fixture
def order(patient: PatientContext) -> OrderContext:
    return OrderContext(
        order_id="ORD-1001",
        patient=patient,
        mrn="MRN-445566",
        physician="Dr. Rao",
        panels=("cardiac", "cmp"),
    )


# =============================================================================
# Scheduling and Provider Doubles
# =============================================================================


class ManualScheduler:
    """Scheduler driven by an explicit virtual clock.

    Callbacks run only from advance(), in due-time order, with `now` set to
    their due time.
    """

    def __init__(self):
        self.now = 0.0
        self._seq = itertools.count()
        self._timers: list[dict] = []

    def schedule(self, callback: Callable[[], None], delay: float) -> dict:
        handle = {
            "when": self.now + delay,
            "seq": next(self._seq),
            "callback": callback,
            "cancelled": False,
        }
        self._timers.append(handle)
        return handle

    def cancel(self, handle: dict) -> None:
        handle["cancelled"] = True

    @property
    def pending(self) -> list[dict]:
        return [t for t in self._timers if not t["cancelled"]]

    def advance(self, seconds: float) -> list[float]:
        """Move the clock forward and fire due callbacks.

        Returns:
            The virtual times at which callbacks fired.
        """
        target = self.now + seconds
        fired: list[float] = []
        while True:
            due = [t for t in self.pending if t["when"] <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: (t["when"], t["seq"]))
            self._timers.remove(timer)
            self.now = max(self.now, timer["when"])
            fired.append(self.now)
            timer["callback"]()
        self.now = target
        return fired


def make_report(
    status: str = "attention",
    per_test: list[PerTestDiagnostics] | None = None,
    narrative: str = "Results reviewed.",
) -> DiagnosticsReport:
    """Build a small diagnostics report."""
    return DiagnosticsReport(
        summary=DiagnosticsSummary(status=status, reasons=["Reviewed by assistant"]),
        per_test=per_test or [],
        narrative_draft=narrative,
        block_release=status == "block",
    )


class FakeProvider:
    """Scripted analysis provider recording every call.

    Set `gate` to an asyncio.Event to hold calls until the test releases them.
    """

    def __init__(self, report: DiagnosticsReport | None = None, error: Exception | None = None):
        self.report = report or make_report()
        self.error = error
        self.gate: asyncio.Event | None = None
        self.calls: list[dict] = []

    async def analyze(self, **kwargs) -> DiagnosticsReport:
        self.calls.append(kwargs)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.report


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def report_factory() -> Callable[..., DiagnosticsReport]:
    return make_report


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


@pytest.fixture
def registry(catalog: TestCatalog, provider: FakeProvider, scheduler: ManualScheduler) -> SessionRegistry:
    """Registry wired to the fake provider and the manual scheduler."""
    return SessionRegistry(
        catalog,
        provider_factory=lambda: provider,
        scheduler_factory=lambda: scheduler,
        sample_id_factory=_sequential_sample_ids(),
    )


def _sequential_sample_ids() -> Callable[[], str]:
    counter = itertools.count(100001)
    return lambda: f"S-{next(counter)}"


@pytest_asyncio.fixture
async def client(registry: SessionRegistry):
    """Async test client for the FastAPI app.

    Overrides the app's get_registry dependency so API tests share the
    registry fixture.
    """
    app.dependency_overrides[get_registry] = lambda: registry

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.pop(get_registry, None)
    registry.close_all()
