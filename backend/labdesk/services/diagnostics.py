"""Diagnostics assistant coordinator.

Decides when to ask the analysis provider about an order and which answer
to keep. Every change to the row signature restarts a quiet-period timer;
only when edits stop for the whole window is one analysis started. At most
one provider call runs at a time, a newer call supersedes an older one, and
any response whose signature no longer matches the rows is dropped.

Provider failures never propagate. They are stored as an AnalysisFailedError
and logged; the next signature change simply tries again.
"""

from __future__ import annotations

import asyncio
import dataclasses
import hashlib
import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime, timezone
from typing import Any, Protocol

from labdesk.config import settings
from labdesk.errors import AnalysisFailedError
from labdesk.schemas.catalog import PatientContext, TestDefinition
from labdesk.schemas.diagnostics import (
    AnalysisResponse,
    DiagnosticsReport,
    OrderContext,
    PerTestDiagnostics,
)
from labdesk.schemas.results import DEFAULT_SPECIMEN_TYPE, ResultRow
from labdesk.services.scheduler import Scheduler

logger = logging.getLogger(__name__)


class DiagnosticsProvider(Protocol):
    """Anything that can turn an order snapshot into a DiagnosticsReport."""

    async def analyze(
        self,
        *,
        order_id: str,
        patient: PatientContext,
        physician: str,
        panels: Sequence[str],
        rows: Sequence[ResultRow],
        definitions: Mapping[str, TestDefinition],
        mrn: str = "",
        specimen_type: str = DEFAULT_SPECIMEN_TYPE,
    ) -> DiagnosticsReport: ...


def compute_signature(rows: Sequence[ResultRow]) -> str:
    """Fingerprint the (test id, canonical value) pairs of a row set.

    Row order does not matter; units, display text and dirty state are not
    part of the signature.
    """
    pairs = sorted(
        f"{row.test_id}:{'' if row.value_si is None else repr(float(row.value_si))}"
        for row in rows
    )
    return hashlib.sha256("|".join(pairs).encode("utf-8")).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiagnosticsCoordinator:
    """Debounced, cancellable driver for one order's analysis calls.

    Example:
        coordinator = DiagnosticsCoordinator(provider, AsyncioScheduler(), order)
        coordinator.notify(ledger.rows)     # after each edit
        ...
        note = coordinator.test_diagnostics("troponin_i")
    """

    def __init__(
        self,
        provider: DiagnosticsProvider,
        scheduler: Scheduler,
        order: OrderContext,
        quiet_period: float | None = None,
        timeout: float | None = None,
        clock: Callable[[], datetime] | None = None,
        specimen_type: str = DEFAULT_SPECIMEN_TYPE,
    ):
        self.provider = provider
        self.scheduler = scheduler
        self.order = order
        self.quiet_period = settings.analysis_quiet_period_seconds if quiet_period is None else quiet_period
        self.timeout = settings.analysis_timeout_seconds if timeout is None else timeout
        self._clock = clock or _utcnow
        self.specimen_type = specimen_type

        self._signature: str | None = None
        self._pending: Any = None
        self._task: asyncio.Task | None = None
        # Bumped whenever in-flight work is superseded or cancelled
        self._generation = 0
        self._is_analyzing = False
        self._response: AnalysisResponse | None = None
        self._error: AnalysisFailedError | None = None

    # ── State ─────────────────────────────────────────────────────────────

    @property
    def signature(self) -> str | None:
        return self._signature

    @property
    def response(self) -> AnalysisResponse | None:
        return self._response

    @property
    def error(self) -> AnalysisFailedError | None:
        return self._error

    @property
    def is_analyzing(self) -> bool:
        return self._is_analyzing

    @property
    def has_pending(self) -> bool:
        return self._pending is not None

    def test_diagnostics(self, test_id: str) -> PerTestDiagnostics | None:
        if self._response is None:
            return None
        return self._response.for_test(test_id)

    def clear(self) -> None:
        """Drop the stored response and error."""
        self._response = None
        self._error = None

    # ── Scheduling ────────────────────────────────────────────────────────

    def notify(self, rows: Sequence[ResultRow]) -> bool:
        """Report the current row set after an edit.

        Reschedules the analysis when the signature changed.

        Returns:
            True if an analysis was (re)scheduled.
        """
        signature = compute_signature(rows)
        if signature == self._signature:
            return False
        self._signature = signature
        self._cancel_pending()

        snapshot = [dataclasses.replace(row) for row in rows]
        self._pending = self.scheduler.schedule(
            lambda: self._on_quiet(snapshot, signature),
            self.quiet_period,
        )
        logger.debug("Analysis for order %s scheduled in %.2fs", self.order.order_id, self.quiet_period)
        return True

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self.scheduler.cancel(self._pending)
            self._pending = None
            logger.debug("Pending analysis for order %s cancelled", self.order.order_id)

    def _on_quiet(self, rows: list[ResultRow], signature: str) -> None:
        self._pending = None
        self._start(rows, signature)

    def _start(self, rows: list[ResultRow], signature: str) -> asyncio.Task | None:
        self._supersede()
        if not any(row.value_si is not None for row in rows):
            logger.debug("No numeric results on order %s, skipping analysis", self.order.order_id)
            return None
        generation = self._generation
        self._is_analyzing = True
        self._task = asyncio.get_running_loop().create_task(self._run(rows, signature, generation))
        return self._task

    def _supersede(self) -> None:
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info("Superseded in-flight analysis for order %s", self.order.order_id)
        self._task = None
        self._is_analyzing = False

    async def _run(self, rows: list[ResultRow], signature: str, generation: int) -> None:
        order = self.order
        self._error = None
        logger.info("Analyzing order %s (%d rows)", order.order_id, len(rows))
        try:
            report = await asyncio.wait_for(
                self.provider.analyze(
                    order_id=order.order_id,
                    patient=order.patient,
                    physician=order.physician,
                    panels=order.panels,
                    rows=rows,
                    definitions={row.test_id: row.definition for row in rows},
                    mrn=order.mrn,
                    specimen_type=self.specimen_type,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            self._fail(f"Analysis timed out after {self.timeout:g}s", signature)
        except Exception as e:
            self._fail(f"Analysis failed: {e}", signature)
        else:
            if signature != self._signature:
                logger.info("Discarding stale analysis for order %s", order.order_id)
            else:
                self._response = AnalysisResponse(
                    signature=signature,
                    generated_at=self._clock(),
                    report=report,
                )
                logger.info(
                    "Analysis for order %s complete: status=%s, %d per-test notes",
                    order.order_id,
                    report.summary.status,
                    len(report.per_test),
                )
        finally:
            if generation == self._generation:
                self._is_analyzing = False

    def _fail(self, message: str, signature: str) -> None:
        if signature != self._signature:
            logger.info("Ignoring failure of stale analysis for order %s", self.order.order_id)
            return
        logger.warning("Diagnostics for order %s unavailable: %s", self.order.order_id, message)
        self._error = AnalysisFailedError(message, signature=signature)

    # ── Explicit control ──────────────────────────────────────────────────

    async def analyze(self, rows: Sequence[ResultRow]) -> AnalysisResponse | None:
        """Run an analysis now, skipping the quiet period.

        Cancels any scheduled call and supersedes any running one.

        Returns:
            The stored response if this call produced one, else None.
        """
        self._cancel_pending()
        signature = compute_signature(rows)
        self._signature = signature
        task = self._start([dataclasses.replace(row) for row in rows], signature)
        if task is None:
            return None
        await asyncio.wait({task})
        if self._response is not None and self._response.signature == signature:
            return self._response
        return None

    def cancel(self) -> None:
        """Drop scheduled and in-flight work. Stored results are kept."""
        self._cancel_pending()
        self._supersede()

    async def wait_idle(self) -> None:
        """Wait for the in-flight analysis, if any, to finish."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
