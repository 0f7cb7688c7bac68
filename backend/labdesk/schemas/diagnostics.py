"""Diagnostics assistant schemas.

DiagnosticsReport is the structured output the analysis provider returns.
The LLM fills it in; nothing in the core trusts it for flagging or release,
it only drives suggestions shown next to the result table.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from labdesk.schemas.catalog import PatientContext

DiagnosticStatus = Literal["ok", "attention", "block"]
ActionType = Literal[
    "repeat_run",
    "recollect",
    "alert_physician",
    "reflex_order",
    "convert_units",
    "compute_egfr",
]


class DiagnosticsSummary(BaseModel):
    """Overall assessment of the order."""

    status: DiagnosticStatus
    reasons: list[str] = Field(default_factory=list)


class TestAction(BaseModel):
    """Workflow step suggested for a single test."""

    __test__ = False  # not a pytest class

    type: ActionType
    detail: str


class PerTestDiagnostics(BaseModel):
    """Per-test note produced by the analysis provider."""

    test_id: str
    flags: list[str] = Field(default_factory=list)
    delta_pct: float | None = None
    is_critical: bool
    policy_ref: str | None = None
    issues: list[str] = Field(default_factory=list)
    actions: list[TestAction] = Field(default_factory=list)
    badge: Literal["H", "L", "C", "N"]
    highlight: Literal["none", "yellow", "red"]
    tooltip: str | None = None


class DerivedValueNote(BaseModel):
    """Derived value as computed (or blocked) by the provider."""

    name: str
    value: float | None = None
    unit: str
    status: Literal["computed", "blocked"]
    reason_if_blocked: str | None = None


class ReflexSuggestion(BaseModel):
    test_id: str
    reason: str


class CriticalAlert(BaseModel):
    test_id: str
    value: float
    policy_ref: str
    recommended_action: str


class ChecklistItem(BaseModel):
    item: str
    status: Literal["ok", "needs_attention", "pending"]


class DiagnosticsReport(BaseModel):
    """Structured diagnostics output for one order snapshot."""

    summary: DiagnosticsSummary
    per_test: list[PerTestDiagnostics] = Field(default_factory=list)
    derived: list[DerivedValueNote] = Field(default_factory=list)
    reflex_suggestions: list[ReflexSuggestion] = Field(default_factory=list)
    critical_alerts: list[CriticalAlert] = Field(default_factory=list)
    narrative_draft: str
    comments_draft: str | None = None
    validation_checklist: list[ChecklistItem] = Field(default_factory=list)
    block_release: bool


class AnalysisResponse(BaseModel):
    """A stored report together with the row signature that triggered it."""

    model_config = ConfigDict(frozen=True)

    signature: str
    generated_at: datetime
    report: DiagnosticsReport

    @property
    def narrative(self) -> str:
        return self.report.narrative_draft

    def for_test(self, test_id: str) -> PerTestDiagnostics | None:
        for note in self.report.per_test:
            if note.test_id == test_id:
                return note
        return None


class OrderContext(BaseModel):
    """Order-level facts passed to the analysis provider."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    patient: PatientContext
    mrn: str = ""
    physician: str = ""
    panels: tuple[str, ...] = ()
