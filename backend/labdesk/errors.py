"""Domain errors raised by the result interpretation core.

Routes translate these into HTTP status codes; services raise them before
mutating any state so a failed command leaves nothing half-applied.
"""


class LabDeskError(Exception):
    """Base class for all lab result workflow errors."""

    pass


class NotFoundError(LabDeskError, LookupError):
    """Raised when a test, panel, row, sample or order does not exist."""

    pass


class DuplicateTestError(LabDeskError, ValueError):
    """Raised when a test is added to an order that already has a row for it."""

    def __init__(self, test_id: str):
        super().__init__(f"Test '{test_id}' is already on this order")
        self.test_id = test_id


class UnitMismatchError(LabDeskError, ValueError):
    """Raised when no conversion factor is registered for a test/unit pair."""

    def __init__(self, test_id: str, unit: str):
        super().__init__(f"Unit '{unit}' is not registered for test '{test_id}'")
        self.test_id = test_id
        self.unit = unit


class AlreadyCollectedError(LabDeskError):
    """Raised when a test already belongs to a collected sample."""

    def __init__(self, collected: dict[str, str]):
        listing = ", ".join(f"{test_id} ({sample_id})" for test_id, sample_id in sorted(collected.items()))
        super().__init__(f"Already collected: {listing}")
        self.collected = collected


class CriticalUnacknowledgedError(LabDeskError):
    """Raised when release is attempted while critical values are present."""

    def __init__(self, critical_test_ids: list[str]):
        super().__init__(
            f"{len(critical_test_ids)} critical value(s) must be acknowledged before release: "
            + ", ".join(critical_test_ids)
        )
        self.critical_test_ids = critical_test_ids


class AnalysisFailedError(LabDeskError):
    """Wraps a failure from the external analysis provider.

    Captured as coordinator state rather than raised to callers.
    """

    def __init__(self, message: str, signature: str | None = None):
        super().__init__(message)
        self.signature = signature
