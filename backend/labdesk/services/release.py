"""Release gate: the last check before results leave the workstation."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime, timezone

from labdesk.errors import CriticalUnacknowledgedError
from labdesk.schemas.results import (
    Flag,
    ReleasedResult,
    ReleasedSnapshot,
    ResultRow,
    ValidationResult,
)
from labdesk.services.samples import SampleTracker

logger = logging.getLogger(__name__)


class ReleaseGate:
    """Blocks release while any result is critical.

    Unsaved edits do not block; they are counted on the snapshot instead.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def validate(self, rows: Sequence[ResultRow]) -> ValidationResult:
        critical = [row.test_id for row in rows if row.flag == Flag.CRITICAL]
        unsaved = sum(1 for row in rows if row.dirty)
        if critical:
            return ValidationResult(
                status="blocked_critical",
                critical_count=len(critical),
                critical_test_ids=tuple(critical),
                unsaved_count=unsaved,
            )
        return ValidationResult(status="ready_to_release", unsaved_count=unsaved)

    def release(
        self,
        rows: Sequence[ResultRow],
        order_id: str,
        tracker: SampleTracker | None = None,
    ) -> ReleasedSnapshot:
        """Freeze the rows into a snapshot.

        Raises:
            CriticalUnacknowledgedError: If any row is flagged critical.
        """
        validation = self.validate(rows)
        if not validation.ready:
            logger.warning(
                "Release of order %s blocked by %d critical value(s)",
                order_id,
                validation.critical_count,
            )
            raise CriticalUnacknowledgedError(list(validation.critical_test_ids))

        results = []
        for row in rows:
            sample = tracker.sample_for_test(row.test_id) if tracker is not None else None
            results.append(
                ReleasedResult(
                    test_id=row.test_id,
                    display_name=row.definition.display_name,
                    loinc=row.definition.loinc,
                    value=row.raw_value,
                    unit=row.unit,
                    value_si=row.value_si,
                    flag=row.flag,
                    ref_range_text=row.ref_range_text,
                    sample_id=sample.sample_id if sample is not None else None,
                )
            )

        snapshot = ReleasedSnapshot(
            order_id=order_id,
            released_at=self._clock(),
            results=tuple(results),
            unsaved_count=validation.unsaved_count,
        )
        logger.info(
            "Released order %s: %d results (%d unsaved)",
            order_id,
            len(results),
            validation.unsaved_count,
        )
        return snapshot
