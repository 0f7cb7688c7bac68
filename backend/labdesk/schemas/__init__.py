"""Pydantic schemas."""

from labdesk.schemas.catalog import (
    CriticalRange,
    DerivedFormula,
    Panel,
    PatientContext,
    ReferenceBand,
    ReferenceRange,
    TestDefinition,
    UnitDefinition,
)
from labdesk.schemas.diagnostics import (
    AnalysisResponse,
    DiagnosticsReport,
    DiagnosticsSummary,
    OrderContext,
    PerTestDiagnostics,
)
from labdesk.schemas.results import (
    Flag,
    ReleasedResult,
    ReleasedSnapshot,
    ResultEntry,
    ResultRow,
    RowView,
    Sample,
    TestSampleStatus,
    ValidationResult,
)

__all__ = [
    # Catalog schemas
    "CriticalRange",
    "DerivedFormula",
    "Panel",
    "PatientContext",
    "ReferenceBand",
    "ReferenceRange",
    "TestDefinition",
    "UnitDefinition",
    # Diagnostics schemas
    "AnalysisResponse",
    "DiagnosticsReport",
    "DiagnosticsSummary",
    "OrderContext",
    "PerTestDiagnostics",
    # Result schemas
    "Flag",
    "ReleasedResult",
    "ReleasedSnapshot",
    "ResultEntry",
    "ResultRow",
    "RowView",
    "Sample",
    "TestSampleStatus",
    "ValidationResult",
]
