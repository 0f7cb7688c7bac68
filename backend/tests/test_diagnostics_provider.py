"""Tests for the OpenAI diagnostics provider.

Uses a mocked AsyncOpenAI client to avoid real API calls.
"""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from openai.lib._pydantic import to_strict_json_schema

from labdesk.schemas import DiagnosticsReport, PatientContext
from labdesk.schemas.diagnostics import DiagnosticsSummary
from labdesk.services.diagnostics_provider import (
    DEFAULT_MODEL,
    DIAGNOSTICS_SYSTEM_PROMPT,
    OpenAIDiagnosticsProvider,
    build_analysis_payload,
)
from labdesk.services.ledger import ResultLedger


def create_mock_report() -> DiagnosticsReport:
    return DiagnosticsReport(
        summary=DiagnosticsSummary(status="block", reasons=["Critical troponin I"]),
        narrative_draft="Troponin I markedly elevated; notify physician.",
        block_release=True,
    )


def create_mock_openai_client(report: DiagnosticsReport | None = None) -> AsyncMock:
    """Create a mock AsyncOpenAI client that returns a structured response."""
    mock_client = AsyncMock()

    if report is None:
        report = create_mock_report()

    mock_response = MagicMock()
    mock_response.output_parsed = report
    mock_response.output_text = report.model_dump_json()

    mock_client.responses.parse = AsyncMock(return_value=mock_response)

    return mock_client


@pytest.fixture
def troponin_ledger(ledger: ResultLedger) -> ResultLedger:
    ledger.update_value(ledger.add_test("troponin_i").id, "0.85")
    ledger.add_test("ck_mb")
    return ledger


async def _analyze(provider: OpenAIDiagnosticsProvider, ledger: ResultLedger) -> DiagnosticsReport:
    return await provider.analyze(
        order_id="ORD-1001",
        patient=ledger.patient,
        physician="Dr. Rao",
        panels=["cardiac"],
        rows=ledger.rows,
        definitions=ledger.catalog.definitions,
    )


class TestBuildAnalysisPayload:
    """Tests for the order snapshot sent to the model."""

    def test_payload(self, troponin_ledger: ResultLedger):
        payload = build_analysis_payload(
            order_id="ORD-1001",
            patient=PatientContext(age=34, sex="F"),
            physician="Dr. Rao",
            panels=["cardiac"],
            rows=troponin_ledger.rows,
            definitions=troponin_ledger.catalog.definitions,
            mrn="MRN-445566",
        )

        assert payload["patient"] == {"mrn": "MRN-445566", "age": 34, "sex": "F"}
        assert payload["order"]["order_id"] == "ORD-1001"
        assert payload["order"]["specimen"] == {"type": "Serum"}
        troponin, ck_mb = payload["order"]["tests"]
        assert troponin["test_id"] == "troponin_i"
        assert troponin["loinc"] == "10839-9"
        assert troponin["value_si"] == pytest.approx(0.85)
        assert troponin["flag"] == "critical"
        assert troponin["ref_range"] == {"low": None, "high": 0.04, "text": "< 0.04"}
        assert ck_mb["value_si"] is None
        assert ck_mb["flag"] == "unknown"

    def test_payload_is_json_serializable(self, troponin_ledger: ResultLedger):
        payload = build_analysis_payload(
            order_id="ORD-1001",
            patient=troponin_ledger.patient,
            physician="",
            panels=[],
            rows=troponin_ledger.rows,
            definitions={},
        )
        assert json.loads(json.dumps(payload)) == payload


class TestOpenAIDiagnosticsProvider:
    """Tests for the provider's OpenAI calls."""

    def test_requires_api_key(self):
        with patch("labdesk.services.diagnostics_provider.settings") as mock_settings:
            mock_settings.openai_api_key = ""
            with pytest.raises(ValueError, match="OPENAI_API_KEY"):
                OpenAIDiagnosticsProvider()

    def test_default_model(self):
        provider = OpenAIDiagnosticsProvider(client=create_mock_openai_client())
        assert provider._model == DEFAULT_MODEL

    @pytest.mark.asyncio
    async def test_analyze(self, troponin_ledger: ResultLedger):
        mock_client = create_mock_openai_client()
        provider = OpenAIDiagnosticsProvider(client=mock_client, model="gpt-test")

        report = await _analyze(provider, troponin_ledger)

        assert report.summary.status == "block"
        assert report.block_release is True

        call_kwargs = mock_client.responses.parse.call_args.kwargs
        assert call_kwargs["model"] == "gpt-test"
        assert call_kwargs["text_format"] is DiagnosticsReport
        system, user = call_kwargs["input"]
        assert system == {"role": "system", "content": DIAGNOSTICS_SYSTEM_PROMPT}
        assert '"order_id": "ORD-1001"' in user["content"]

    @pytest.mark.asyncio
    async def test_fallback_to_output_text(self, troponin_ledger: ResultLedger):
        mock_client = create_mock_openai_client()
        mock_client.responses.parse.return_value.output_parsed = None
        provider = OpenAIDiagnosticsProvider(client=mock_client)

        report = await _analyze(provider, troponin_ledger)

        assert report == create_mock_report()

    @pytest.mark.asyncio
    async def test_unparseable_response(self, troponin_ledger: ResultLedger):
        mock_client = create_mock_openai_client()
        mock_client.responses.parse.return_value.output_parsed = None
        mock_client.responses.parse.return_value.output_text = None
        provider = OpenAIDiagnosticsProvider(client=mock_client)

        with pytest.raises(RuntimeError, match="could not be parsed"):
            await _analyze(provider, troponin_ledger)

    @pytest.mark.asyncio
    async def test_close(self):
        mock_client = create_mock_openai_client()
        provider = OpenAIDiagnosticsProvider(client=mock_client)
        await provider.close()
        mock_client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sends_mrn_and_specimen(self, troponin_ledger: ResultLedger):
        mock_client = create_mock_openai_client()
        provider = OpenAIDiagnosticsProvider(client=mock_client)

        await provider.analyze(
            order_id="ORD-1001",
            patient=troponin_ledger.patient,
            physician="Dr. Rao",
            panels=["cardiac"],
            rows=troponin_ledger.rows,
            definitions=troponin_ledger.catalog.definitions,
            mrn="MRN-445566",
            specimen_type="Plasma",
        )

        _, user = mock_client.responses.parse.call_args.kwargs["input"]
        payload = json.loads(user["content"].split("\n\n", 1)[1])
        assert payload["patient"]["mrn"] == "MRN-445566"
        assert payload["order"]["specimen"] == {"type": "Plasma"}


def _schema_keys(schema, key: str) -> list:
    """Collect every occurrence of key in a nested JSON schema."""
    found = []
    if isinstance(schema, dict):
        if key in schema:
            found.append(schema[key])
        for value in schema.values():
            found.extend(_schema_keys(value, key))
    elif isinstance(schema, list):
        for value in schema:
            found.extend(_schema_keys(value, key))
    return found


class TestStructuredOutputSchema:
    """The report model must be accepted by OpenAI structured outputs."""

    def test_strict_schema_has_no_defaults(self):
        schema = to_strict_json_schema(DiagnosticsReport)
        assert _schema_keys(schema, "default") == []

    def test_report_fields_are_required(self):
        with pytest.raises(ValueError):
            DiagnosticsReport(summary=DiagnosticsSummary(status="ok"))
