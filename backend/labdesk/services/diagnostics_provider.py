"""OpenAI-backed analysis provider for the diagnostics assistant.

Sends an order snapshot to the OpenAI Responses API and parses the answer
straight into a DiagnosticsReport using Pydantic structured outputs. The
report only feeds suggestions; flags and the release gate are computed by
the core and never taken from the model.
"""

import json
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

from openai import AsyncOpenAI

from labdesk.config import settings
from labdesk.schemas.catalog import PatientContext, TestDefinition
from labdesk.schemas.diagnostics import DiagnosticsReport
from labdesk.schemas.results import DEFAULT_SPECIMEN_TYPE, ResultRow

logger = logging.getLogger(__name__)

# Default model for diagnostics reports
DEFAULT_MODEL = "gpt-5-mini"

DIAGNOSTICS_SYSTEM_PROMPT = (
    "You are a laboratory co-pilot for technicians and pathologists reviewing "
    "results before release. You assist with interpretation and workflow; you do "
    "not diagnose and you never release results.\n"
    "\n"
    "Work through the order in this order:\n"
    "1. Units and mapping: point out results whose unit or LOINC code looks wrong "
    "and say when a conversion is needed.\n"
    "2. Reference ranges: use the patient-specific range supplied with each test. "
    "If a range is missing, say so instead of inventing one.\n"
    "3. Delta checks: compare against the prior value when one is given, report "
    "the percent change and list plausible causes (true change, pre-analytic, "
    "instrument).\n"
    "4. Critical values: the supplied flag is authoritative. For every critical "
    "result propose the physician alert workflow and mark it for documentation.\n"
    "5. Derived values: comment on derived results such as eGFR, anion gap or "
    "CK-MB index; if one is blank, name the missing input.\n"
    "6. Reflex testing: suggest follow-up tests only where standard policy calls "
    "for them (e.g. repeat high-sensitivity troponin at 1-3 hours).\n"
    "7. Narrative and comments: draft short, standardized interpretive text with "
    "assay caveats and no definitive diagnoses.\n"
    "8. Checklist: list what a human must confirm before release.\n"
    "\n"
    "Rules:\n"
    "- Use only the values in the payload; never fabricate results\n"
    "- Set block_release when any result is critical or a unit cannot be trusted\n"
    "- Badges: H high, L low, C critical, N otherwise\n"
    "- Be concise and action-oriented"
)


def _row_payload(row: ResultRow, definition: TestDefinition) -> dict[str, Any]:
    rng = row.reference_range
    return {
        "test_id": row.test_id,
        "name": definition.display_name,
        "loinc": definition.loinc,
        "value": row.raw_value,
        "unit": row.unit,
        "value_si": row.value_si,
        "canonical_unit": definition.canonical_unit,
        "ref_range": {"low": rng.low, "high": rng.high, "text": row.ref_range_text},
        "flag": row.flag.value,
        "prior_value_si": row.prior_value_si,
        "delta_pct": row.delta_pct,
        "derived": definition.derived.formula if definition.derived else None,
        "status": "prelim",
    }


def build_analysis_payload(
    *,
    order_id: str,
    patient: PatientContext,
    physician: str,
    panels: Sequence[str],
    rows: Sequence[ResultRow],
    definitions: Mapping[str, TestDefinition],
    mrn: str = "",
    specimen_type: str = DEFAULT_SPECIMEN_TYPE,
) -> dict[str, Any]:
    """Build the JSON document describing an order for the model."""
    return {
        "context": {"user_role": "tech"},
        "patient": {"mrn": mrn, "age": patient.age, "sex": patient.sex},
        "order": {
            "order_id": order_id,
            "physician": physician,
            "specimen": {"type": specimen_type},
            "panels": list(panels),
            "tests": [_row_payload(row, definitions.get(row.test_id, row.definition)) for row in rows],
        },
    }


class OpenAIDiagnosticsProvider:
    """Diagnostics provider using the OpenAI Responses API.

    Example:
        provider = OpenAIDiagnosticsProvider()
        report = await provider.analyze(
            order_id="ORD-1001",
            patient=PatientContext(age=34, sex="F"),
            physician="Dr. Rao",
            panels=["cardiac"],
            rows=ledger.rows,
            definitions=catalog.definitions,
        )
        print(report.summary.status, report.narrative_draft)
    """

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str | None = None,
        max_output_tokens: int | None = None,
    ):
        """Initialize the provider.

        Args:
            client: Optional pre-configured AsyncOpenAI client (for testing).
                   If not provided, creates one from settings.
            model: Model to use. Defaults to settings.diagnostics_model.
            max_output_tokens: Response token cap. Defaults to settings.

        Raises:
            ValueError: If no client provided and OPENAI_API_KEY is not configured.
        """
        if client is not None:
            self._client = client
        else:
            if not settings.openai_api_key:
                raise ValueError(
                    "OPENAI_API_KEY environment variable is required. "
                    "Set it in your .env file or environment."
                )
            self._client = AsyncOpenAI(api_key=settings.openai_api_key)

        self._model = model or settings.diagnostics_model or DEFAULT_MODEL
        self._max_output_tokens = max_output_tokens or settings.diagnostics_max_output_tokens

    async def close(self) -> None:
        """Close the OpenAI client connection."""
        await self._client.close()

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
    ) -> DiagnosticsReport:
        """Ask the model for a diagnostics report on an order snapshot.

        Raises:
            RuntimeError: If the response has neither parsed nor raw output.
        """
        payload = build_analysis_payload(
            order_id=order_id,
            patient=patient,
            physician=physician,
            panels=panels,
            rows=rows,
            definitions=definitions,
            mrn=mrn,
            specimen_type=specimen_type,
        )
        input_messages = [
            {"role": "system", "content": DIAGNOSTICS_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": "Analyze the following lab results:\n\n" + json.dumps(payload, indent=2),
            },
        ]

        start = time.perf_counter()
        response = await self._client.responses.parse(
            model=self._model,
            input=input_messages,
            text_format=DiagnosticsReport,
            max_output_tokens=self._max_output_tokens,
        )
        elapsed_ms = (time.perf_counter() - start) * 1000

        report = response.output_parsed
        if report is None:
            # Fallback: try to parse from raw output if structured parsing failed
            logger.warning("Structured parsing returned None, attempting fallback")
            raw_output = getattr(response, "output_text", None)
            if raw_output:
                report = DiagnosticsReport.model_validate_json(raw_output)
            else:
                raise RuntimeError(
                    "LLM response could not be parsed. "
                    "Neither structured output nor raw text was available."
                )

        logger.info(
            "Diagnostics for order %s: model=%s, tests=%d, status=%s (%.0f ms)",
            order_id,
            self._model,
            len(rows),
            report.summary.status,
            elapsed_ms,
        )
        return report
