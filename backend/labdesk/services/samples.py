"""Sample collection tracker.

Each test on an order is either pending or collected; collection is terminal.
A sample groups the tests drawn together and gets an `S-` plus six digit id.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from labdesk.errors import AlreadyCollectedError, NotFoundError
from labdesk.schemas.results import Sample, TestSampleStatus

logger = logging.getLogger(__name__)


def random_sample_id() -> str:
    return f"S-{random.randint(100000, 999999)}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SampleTracker:
    """Correlates specimens with the tests they serve on one order."""

    def __init__(
        self,
        order_id: str,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.order_id = order_id
        self._id_factory = id_factory or random_sample_id
        self._clock = clock or _utcnow
        # test id -> sample id, None while pending
        self._assignments: dict[str, str | None] = {}
        self._samples: dict[str, Sample] = {}

    def track(self, test_id: str) -> None:
        """Start tracking a test as pending; already tracked tests are left alone."""
        self._assignments.setdefault(test_id, None)

    def untrack(self, test_id: str) -> None:
        """Stop tracking a pending test. Collected tests stay on their sample."""
        if self._assignments.get(test_id) is None:
            self._assignments.pop(test_id, None)

    @property
    def samples(self) -> list[Sample]:
        return list(self._samples.values())

    def get_sample(self, sample_id: str) -> Sample:
        sample = self._samples.get(sample_id)
        if sample is None:
            raise NotFoundError(f"Sample '{sample_id}' not found")
        return sample

    def status_for(self, test_id: str) -> TestSampleStatus:
        sample_id = self._assignments.get(test_id)
        if sample_id is None:
            return TestSampleStatus(test_id=test_id, status="pending")
        return TestSampleStatus(test_id=test_id, status="collected", sample_id=sample_id)

    def statuses(self, test_ids: Iterable[str] | None = None) -> list[TestSampleStatus]:
        if test_ids is None:
            test_ids = self._assignments
        return [self.status_for(test_id) for test_id in test_ids]

    @property
    def all_tests_collected(self) -> bool:
        return bool(self._assignments) and all(s is not None for s in self._assignments.values())

    @property
    def has_collected_tests(self) -> bool:
        return any(s is not None for s in self._assignments.values())

    def sample_for_test(self, test_id: str) -> Sample | None:
        sample_id = self._assignments.get(test_id)
        if sample_id is None:
            return None
        return self._samples[sample_id]

    def existing_sample_for_tests(self, test_ids: Iterable[str]) -> Sample | None:
        """Return the sample whose test set is exactly the given tests.

        Returns None when any test is still pending, the tests are split
        across samples, or the sample also serves other tests.
        """
        requested = frozenset(test_ids)
        if not requested:
            return None
        sample = self.sample_for_test(next(iter(requested)))
        if sample is None or sample.test_ids != requested:
            return None
        return sample

    def _next_sample_id(self) -> str:
        sample_id = self._id_factory()
        while sample_id in self._samples:
            sample_id = self._id_factory()
        return sample_id

    def collect_sample(
        self,
        test_ids: Iterable[str],
        specimen_type: str,
        collected_by: str,
        collected_at: datetime | None = None,
    ) -> Sample:
        """Record a specimen draw for a set of tests.

        Args:
            test_ids: Tests served by the specimen. Untracked ids are tracked.
            specimen_type: e.g. "Serum", "Whole blood (EDTA)".
            collected_by: Name of the phlebotomist.
            collected_at: Collection time, defaults to now (UTC).

        Returns:
            The new sample.

        Raises:
            ValueError: If no test ids are given.
            AlreadyCollectedError: If any test already belongs to a sample.
        """
        requested = list(dict.fromkeys(test_ids))
        if not requested:
            raise ValueError("At least one test is required to collect a sample")

        collected = {
            test_id: sample_id
            for test_id in requested
            if (sample_id := self._assignments.get(test_id)) is not None
        }
        if collected:
            raise AlreadyCollectedError(collected)

        sample = Sample(
            sample_id=self._next_sample_id(),
            order_id=self.order_id,
            specimen_type=specimen_type,
            collected_by=collected_by,
            collected_at=collected_at or self._clock(),
            test_ids=frozenset(requested),
        )
        self._samples[sample.sample_id] = sample
        for test_id in requested:
            self._assignments[test_id] = sample.sample_id

        logger.info(
            "Collected sample %s for order %s (%d tests)",
            sample.sample_id,
            self.order_id,
            len(requested),
        )
        return sample
