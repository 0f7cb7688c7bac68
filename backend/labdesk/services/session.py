"""Order sessions: one ledger, tracker, coordinator and gate per open order.

The session is the command surface the API drives. Every ledger mutation
is followed by a coordinator notification so the diagnostics assistant sees
each new row set.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime

from labdesk.errors import NotFoundError
from labdesk.schemas.diagnostics import AnalysisResponse, OrderContext
from labdesk.schemas.results import (
    DEFAULT_SPECIMEN_TYPE,
    ReleasedSnapshot,
    ResultEntry,
    ResultRow,
    Sample,
    ValidationResult,
)
from labdesk.services.catalog import TestCatalog
from labdesk.services.diagnostics import DiagnosticsCoordinator, DiagnosticsProvider
from labdesk.services.ledger import ResultLedger
from labdesk.services.release import ReleaseGate
from labdesk.services.samples import SampleTracker
from labdesk.services.scheduler import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)


class OrderSession:
    """Working state for one open order."""

    def __init__(
        self,
        order: OrderContext,
        ledger: ResultLedger,
        tracker: SampleTracker,
        coordinator: DiagnosticsCoordinator,
        gate: ReleaseGate,
        specimen_type: str = DEFAULT_SPECIMEN_TYPE,
    ):
        self.order = order
        self.ledger = ledger
        self.tracker = tracker
        self.coordinator = coordinator
        self.gate = gate
        self.specimen_type = specimen_type
        self.released: ReleasedSnapshot | None = None

    @classmethod
    def open(
        cls,
        catalog: TestCatalog,
        order: OrderContext,
        entries: Iterable[ResultEntry],
        provider: DiagnosticsProvider,
        scheduler: Scheduler | None = None,
        *,
        specimen_type: str = DEFAULT_SPECIMEN_TYPE,
        quiet_period: float | None = None,
        timeout: float | None = None,
        sample_id_factory: Callable[[], str] | None = None,
    ) -> OrderSession:
        """Load an order and schedule its first analysis."""
        ledger = ResultLedger(catalog, order.patient)
        ledger.load(entries)

        tracker = SampleTracker(order.order_id, id_factory=sample_id_factory)
        for row in ledger.rows:
            tracker.track(row.test_id)

        coordinator = DiagnosticsCoordinator(
            provider,
            scheduler or AsyncioScheduler(),
            order,
            quiet_period=quiet_period,
            timeout=timeout,
            specimen_type=specimen_type,
        )
        session = cls(order, ledger, tracker, coordinator, ReleaseGate(), specimen_type=specimen_type)
        logger.info("Opened order %s with %d results", order.order_id, len(ledger))
        session._notify()
        return session

    @property
    def order_id(self) -> str:
        return self.order.order_id

    @property
    def rows(self) -> list[ResultRow]:
        return self.ledger.rows

    def _notify(self) -> None:
        self.coordinator.notify(self.ledger.rows)

    # ── Ledger commands ───────────────────────────────────────────────────

    def add_test(self, test_id: str) -> ResultRow:
        row = self.ledger.add_test(test_id)
        self.tracker.track(test_id)
        self._notify()
        return row

    def update_value(self, row_id: str, raw_text: str) -> ResultRow:
        row = self.ledger.update_value(row_id, raw_text)
        self._notify()
        return row

    def update_unit(self, row_id: str, unit: str) -> ResultRow:
        row = self.ledger.update_unit(row_id, unit)
        self._notify()
        return row

    def remove_test(self, row_id: str) -> None:
        try:
            test_id = self.ledger.get(row_id).test_id
        except NotFoundError:
            return
        self.ledger.remove_test(row_id)
        self.tracker.untrack(test_id)
        self._notify()

    def recalculate_derived(self) -> list[ResultRow]:
        rows = self.ledger.recalculate_derived()
        self._notify()
        return rows

    def save(self, row_ids: Sequence[str]) -> list[ResultRow]:
        return self.ledger.save(row_ids)

    def mark_all_saved(self) -> int:
        return self.ledger.mark_all_saved()

    # ── Samples ───────────────────────────────────────────────────────────

    def collect_sample(
        self,
        test_ids: Sequence[str],
        collected_by: str,
        specimen_type: str | None = None,
        collected_at: datetime | None = None,
    ) -> Sample:
        """Collect a sample for tests on this order.

        Raises:
            ValueError: If no tests are given or a test is not on the order.
            AlreadyCollectedError: If a test already belongs to a sample.
        """
        missing = [t for t in test_ids if self.ledger.row_for_test(t) is None]
        if missing:
            raise ValueError(f"Tests not on order {self.order_id}: {missing}")
        return self.tracker.collect_sample(
            test_ids,
            specimen_type=specimen_type or self.specimen_type,
            collected_by=collected_by,
            collected_at=collected_at,
        )

    # ── Diagnostics and release ───────────────────────────────────────────

    async def analyze(self) -> AnalysisResponse | None:
        return await self.coordinator.analyze(self.ledger.rows)

    def validate(self) -> ValidationResult:
        return self.gate.validate(self.ledger.rows)

    def release(self) -> ReleasedSnapshot:
        self.released = self.gate.release(self.ledger.rows, self.order_id, tracker=self.tracker)
        return self.released

    def close(self) -> None:
        self.coordinator.cancel()


class SessionRegistry:
    """Open order sessions keyed by order id.

    The provider is built on first use, so the API can serve catalog and
    ledger requests without OpenAI credentials.
    """

    def __init__(
        self,
        catalog: TestCatalog,
        provider_factory: Callable[[], DiagnosticsProvider],
        scheduler_factory: Callable[[], Scheduler] = AsyncioScheduler,
        **session_options,
    ):
        self.catalog = catalog
        self._provider_factory = provider_factory
        self._provider: DiagnosticsProvider | None = None
        self._scheduler_factory = scheduler_factory
        self._session_options = session_options
        self._sessions: dict[str, OrderSession] = {}

    @property
    def provider(self) -> DiagnosticsProvider:
        if self._provider is None:
            self._provider = self._provider_factory()
        return self._provider

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._sessions

    def open(
        self,
        order: OrderContext,
        entries: Iterable[ResultEntry] = (),
        **options,
    ) -> OrderSession:
        """Open an order, replacing any session already open under its id.

        Keyword options override the registry's session defaults.
        """
        existing = self._sessions.pop(order.order_id, None)
        if existing is not None:
            existing.close()
        session = OrderSession.open(
            self.catalog,
            order,
            entries,
            _LazyProvider(self),
            self._scheduler_factory(),
            **{**self._session_options, **options},
        )
        self._sessions[order.order_id] = session
        return session

    def get(self, order_id: str) -> OrderSession:
        session = self._sessions.get(order_id)
        if session is None:
            raise NotFoundError(f"Order '{order_id}' is not open")
        return session

    def close(self, order_id: str) -> None:
        session = self._sessions.pop(order_id, None)
        if session is None:
            raise NotFoundError(f"Order '{order_id}' is not open")
        session.close()
        logger.info("Closed order %s", order_id)

    def close_all(self) -> None:
        for session in self._sessions.values():
            session.close()
        self._sessions.clear()

    async def aclose(self) -> None:
        """Close every session and the provider's client, if one was built."""
        self.close_all()
        close = getattr(self._provider, "close", None)
        if close is not None:
            await close()
        self._provider = None


class _LazyProvider:
    """Defers building the registry's provider until an analysis runs."""

    def __init__(self, registry: SessionRegistry):
        self._registry = registry

    async def analyze(self, **kwargs):
        return await self._registry.provider.analyze(**kwargs)


_registry: SessionRegistry | None = None


def get_registry() -> SessionRegistry:
    """Return the process-wide session registry (FastAPI dependency)."""
    global _registry
    if _registry is None:
        from labdesk.services.catalog import get_catalog
        from labdesk.services.diagnostics_provider import OpenAIDiagnosticsProvider

        _registry = SessionRegistry(get_catalog(), OpenAIDiagnosticsProvider)
    return _registry
