"""Order API routes.

Open an order, edit its results, collect samples, ask the diagnostics
assistant and release. Each response carries the full order projection so
the results page can re-render from a single payload.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from labdesk.errors import (
    AlreadyCollectedError,
    CriticalUnacknowledgedError,
    DuplicateTestError,
    LabDeskError,
    NotFoundError,
    UnitMismatchError,
)
from labdesk.schemas.diagnostics import OrderContext
from labdesk.schemas.orders import (
    AddTestRequest,
    CollectSampleRequest,
    DiagnosticsState,
    OrderCreate,
    OrderView,
    SaveRequest,
    SaveResponse,
    UpdateUnitRequest,
    UpdateValueRequest,
)
from labdesk.schemas.results import ReleasedSnapshot, RowView, Sample, ValidationResult
from labdesk.services.session import OrderSession, SessionRegistry, get_registry

router = APIRouter(prefix="/orders", tags=["orders"])

_STATUS_BY_ERROR: list[tuple[type[Exception], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (DuplicateTestError, status.HTTP_409_CONFLICT),
    (AlreadyCollectedError, status.HTTP_409_CONFLICT),
    (CriticalUnacknowledgedError, status.HTTP_409_CONFLICT),
    (UnitMismatchError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ValueError, status.HTTP_422_UNPROCESSABLE_ENTITY),
]


def _http_error(exc: Exception) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    raise exc


def _session(registry: SessionRegistry, order_id: str) -> OrderSession:
    try:
        return registry.get(order_id)
    except NotFoundError as e:
        raise _http_error(e) from e


def _diagnostics_state(session: OrderSession) -> DiagnosticsState:
    coordinator = session.coordinator
    return DiagnosticsState(
        is_analyzing=coordinator.is_analyzing,
        pending=coordinator.has_pending,
        error=str(coordinator.error) if coordinator.error is not None else None,
        response=coordinator.response,
    )


def _view(session: OrderSession) -> OrderView:
    ledger = session.ledger
    return OrderView(
        order_id=session.order_id,
        patient=session.order.patient,
        physician=session.order.physician,
        rows=[RowView.from_row(row) for row in ledger.rows],
        panel_counts=ledger.panel_test_counts(),
        dirty_count=len(ledger.dirty_rows),
        has_critical_values=ledger.has_critical_values,
        samples=session.tracker.samples,
        sample_statuses=session.tracker.statuses(row.test_id for row in ledger.rows),
        all_tests_collected=session.tracker.all_tests_collected,
        diagnostics=_diagnostics_state(session),
    )


@router.post("", response_model=OrderView, status_code=status.HTTP_201_CREATED)
async def open_order(
    body: OrderCreate,
    registry: SessionRegistry = Depends(get_registry),
) -> OrderView:
    """Open an order with its initial results and schedule the first analysis."""
    order = OrderContext(
        order_id=body.order_id,
        patient=body.patient,
        mrn=body.mrn,
        physician=body.physician,
        panels=tuple(body.panels),
    )
    options = {"specimen_type": body.specimen_type} if body.specimen_type else {}
    session = registry.open(order, body.entries, **options)
    return _view(session)


@router.get("/{order_id}", response_model=OrderView)
async def get_order(order_id: str, registry: SessionRegistry = Depends(get_registry)) -> OrderView:
    """Get the current projection of an open order.

    Raises:
        HTTPException: 404 if the order is not open.
    """
    return _view(_session(registry, order_id))


@router.delete("/{order_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_order(order_id: str, registry: SessionRegistry = Depends(get_registry)) -> None:
    """Close an order and cancel its background analysis."""
    try:
        registry.close(order_id)
    except NotFoundError as e:
        raise _http_error(e) from e


@router.post("/{order_id}/tests", response_model=OrderView, status_code=status.HTTP_201_CREATED)
async def add_test(
    order_id: str,
    body: AddTestRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> OrderView:
    """Add a blank result row for a catalog test.

    Raises:
        HTTPException: 404 for unknown tests, 409 if the test is already on the order.
    """
    session = _session(registry, order_id)
    try:
        session.add_test(body.test_id)
    except LabDeskError as e:
        raise _http_error(e) from e
    return _view(session)


@router.patch("/{order_id}/rows/{row_id}/value", response_model=OrderView)
async def update_value(
    order_id: str,
    row_id: str,
    body: UpdateValueRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> OrderView:
    """Enter or change a result value in the row's current unit."""
    session = _session(registry, order_id)
    try:
        session.update_value(row_id, body.value)
    except LabDeskError as e:
        raise _http_error(e) from e
    return _view(session)


@router.patch("/{order_id}/rows/{row_id}/unit", response_model=OrderView)
async def update_unit(
    order_id: str,
    row_id: str,
    body: UpdateUnitRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> OrderView:
    """Switch a row's display unit.

    Raises:
        HTTPException: 422 if the unit is not registered for the test.
    """
    session = _session(registry, order_id)
    try:
        session.update_unit(row_id, body.unit)
    except LabDeskError as e:
        raise _http_error(e) from e
    return _view(session)


@router.delete("/{order_id}/rows/{row_id}", response_model=OrderView)
async def remove_test(
    order_id: str,
    row_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> OrderView:
    """Remove a row. Unknown row ids are ignored."""
    session = _session(registry, order_id)
    session.remove_test(row_id)
    return _view(session)


@router.post("/{order_id}/recalculate", response_model=OrderView)
async def recalculate(order_id: str, registry: SessionRegistry = Depends(get_registry)) -> OrderView:
    """Recompute derived tests (eGFR, anion gap, CK-MB index)."""
    session = _session(registry, order_id)
    session.recalculate_derived()
    return _view(session)


@router.post("/{order_id}/save", response_model=SaveResponse)
async def save(
    order_id: str,
    body: SaveRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> SaveResponse:
    """Mark rows as saved (all rows when no ids are given)."""
    session = _session(registry, order_id)
    if body.row_ids is None:
        return SaveResponse(saved=session.mark_all_saved())
    try:
        return SaveResponse(saved=len(session.save(body.row_ids)))
    except LabDeskError as e:
        raise _http_error(e) from e


@router.post("/{order_id}/samples", response_model=Sample, status_code=status.HTTP_201_CREATED)
async def collect_sample(
    order_id: str,
    body: CollectSampleRequest,
    registry: SessionRegistry = Depends(get_registry),
) -> Sample:
    """Record a specimen draw for a set of tests on the order.

    Raises:
        HTTPException: 409 if a test is already collected, 422 if a test
            is not on the order.
    """
    session = _session(registry, order_id)
    try:
        return session.collect_sample(
            body.test_ids,
            collected_by=body.collected_by,
            specimen_type=body.specimen_type,
        )
    except (LabDeskError, ValueError) as e:
        raise _http_error(e) from e


@router.post("/{order_id}/analyze", response_model=DiagnosticsState)
async def analyze(order_id: str, registry: SessionRegistry = Depends(get_registry)) -> DiagnosticsState:
    """Run the diagnostics assistant now, without waiting for the quiet period.

    Provider failures are reported in the error field, not as HTTP errors.
    """
    session = _session(registry, order_id)
    await session.analyze()
    return _diagnostics_state(session)


@router.get("/{order_id}/validation", response_model=ValidationResult)
async def validate(order_id: str, registry: SessionRegistry = Depends(get_registry)) -> ValidationResult:
    """Check whether the order can be released."""
    return _session(registry, order_id).validate()


@router.post("/{order_id}/release", response_model=ReleasedSnapshot)
async def release(order_id: str, registry: SessionRegistry = Depends(get_registry)) -> ReleasedSnapshot:
    """Release the order's results.

    Raises:
        HTTPException: 409 while any result is critical.
    """
    session = _session(registry, order_id)
    try:
        return session.release()
    except CriticalUnacknowledgedError as e:
        raise _http_error(e) from e
