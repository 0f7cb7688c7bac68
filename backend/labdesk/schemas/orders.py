"""Request and response bodies for the order API."""

from __future__ import annotations

from pydantic import BaseModel, Field

from labdesk.schemas.catalog import PatientContext
from labdesk.schemas.diagnostics import AnalysisResponse
from labdesk.schemas.results import ResultEntry, RowView, Sample, TestSampleStatus


class OrderCreate(BaseModel):
    """Open an order with its initial results."""

    order_id: str = Field(min_length=1)
    patient: PatientContext
    mrn: str = ""
    physician: str = ""
    panels: list[str] = Field(default_factory=list)
    specimen_type: str | None = None
    entries: list[ResultEntry] = Field(default_factory=list)


class AddTestRequest(BaseModel):
    test_id: str


class UpdateValueRequest(BaseModel):
    value: str


class UpdateUnitRequest(BaseModel):
    unit: str


class SaveRequest(BaseModel):
    """Rows to save; omit row_ids to save every row."""

    row_ids: list[str] | None = None


class SaveResponse(BaseModel):
    saved: int


class CollectSampleRequest(BaseModel):
    test_ids: list[str] = Field(min_length=1)
    collected_by: str = Field(min_length=1)
    specimen_type: str | None = None


class DiagnosticsState(BaseModel):
    """Current state of the diagnostics assistant for an order."""

    is_analyzing: bool
    pending: bool
    error: str | None = None
    response: AnalysisResponse | None = None


class OrderView(BaseModel):
    """Everything the results page shows for an open order."""

    order_id: str
    patient: PatientContext
    physician: str
    rows: list[RowView]
    panel_counts: dict[str, int]
    dirty_count: int
    has_critical_values: bool
    samples: list[Sample]
    sample_statuses: list[TestSampleStatus]
    all_tests_collected: bool
    diagnostics: DiagnosticsState
