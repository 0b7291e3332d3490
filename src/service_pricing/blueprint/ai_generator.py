"""
AI-assisted blueprint generation via the OpenAI Responses API.

The snapshot is sent as JSON together with a structured-output schema; the
response text is parsed once at the boundary (see ai_schema) and mapped onto
the shared Blueprint contract.
"""
import json
import logging
from typing import Any, Optional

from openai import OpenAI, OpenAIError

from ..errors import BlueprintGenerationError
from ..workbook.mapping import WorkbookMapping
from ..workbook.snapshot import WorkbookSnapshot
from .ai_schema import SCHEMA_ERA_FLEXIBLE, build_response_schema, parse_ai_blueprint
from .models import Blueprint

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4.1"

SYSTEM_PROMPT = (
    "You are a meticulous financial operations assistant extracting pricing services from "
    "accounting workbooks. Always ground every field in the spreadsheet data. Never invent "
    "placeholder titles or blank price bands."
)

INSTRUCTIONS = """You are analyzing an Excel pricing workbook. Extract the COMPLETE pricing structure from the best sheet.

1. Choose the sheet.
   - Prefer interactive calculator sheets: select/quantity columns, formulas in unit price and line total columns,
     names like 'Calculator', 'Invoice', 'Quote'.
   - Avoid static reference sheets ('Cost Breakdown', 'Price List', 'Reference').
   - Prefer the sheet with the most service rows.

2. Discover the column structure and return the column LETTERS in metadata.columnMapping:
   select, quantity, tier, service, billing, unitPrice, lineTotal, type (null when absent).
   Also return metadata.headerRow, metadata.dataStartRow and metadata.dataEndRow.
   Scan every row for the last service row; do not stop early.

3. Extract every service row between dataStartRow and dataEndRow:
   - name (concrete, never blank), tier, billing cadence label, source row number.
   - chargeType: 'one-time' for Project, Session, As Needed, One-time, Setup, Onboarding, Implementation;
     'recurring' only for Monthly, Quarterly, Annual, Retainer, Ongoing.
   - Skip blank rows, section headers without a service name, and totals rows.
   - Use resolved values, not formulas.

4. Client segments and prices.
   - Rate columns look like 'Solo_Low', 'Small_High': segment before the underscore, price point after.
   - Expand segments: 'Solo' -> 'Solo/Startup', 'Small' -> 'Small Business', 'Mid' -> 'Mid-Market'.
   - Return numeric values; empty, dash or N/A become null.

5. In metadata.notes state which sheet you analyzed and why, the number of services extracted and
   which sections (base services, maintenance, add-ons) were included.

Here is the workbook snapshot:"""


class AIBlueprintGenerator:
    """
    Blueprint generation strategy backed by a structured-output model call.

    The client is injectable: any object exposing responses.create(**payload)
    and returning an object with output_text.
    """

    def __init__(
        self,
        client: Any = None,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.1,
        timeout: Optional[float] = None,
        schema_era: str = SCHEMA_ERA_FLEXIBLE,
        system_prompt: str = SYSTEM_PROMPT,
    ):
        self.client = client
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.timeout = timeout
        self.schema_era = schema_era
        self.system_prompt = system_prompt

    @property
    def name(self) -> str:
        return self.model

    def _get_client(self):
        if self.client is not None:
            return self.client
        if not self.api_key:
            raise BlueprintGenerationError(
                "OPENAI_API_KEY is not configured. Set the environment variable to enable AI blueprint generation."
            )
        self.client = OpenAI(api_key=self.api_key, timeout=self.timeout)
        return self.client

    def build_payload(self, snapshot: WorkbookSnapshot) -> dict:
        return {
            "model": self.model,
            "temperature": self.temperature,
            "input": [
                {
                    "role": "system",
                    "content": [{"type": "input_text", "text": self.system_prompt}],
                },
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": INSTRUCTIONS},
                        {"type": "input_text", "text": json.dumps(snapshot.to_dict())},
                    ],
                },
            ],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": "pricing_blueprint",
                    "schema": build_response_schema(self.schema_era),
                    "strict": False,
                }
            },
        }

    def generate(
        self,
        snapshot: WorkbookSnapshot,
        mapping: Optional[WorkbookMapping] = None,
        workbook_filename: Optional[str] = None,
    ) -> Blueprint:
        """
        Request and parse a blueprint. Every failure surfaces as
        BlueprintGenerationError so callers can fall back.
        """
        client = self._get_client()
        logger.info(
            "Requesting AI blueprint (model=%s, era=%s, sheets=%d)",
            self.model, self.schema_era, len(snapshot.sheets),
        )
        try:
            return self._generate(client, snapshot, workbook_filename)
        except BlueprintGenerationError:
            raise
        except OpenAIError as e:
            raise BlueprintGenerationError(f"AI blueprint request failed: {e}") from e
        except Exception as e:
            raise BlueprintGenerationError(f"AI blueprint generation failed: {e}") from e

    def _generate(self, client, snapshot: WorkbookSnapshot, workbook_filename: Optional[str]) -> Blueprint:
        response = client.responses.create(**self.build_payload(snapshot))
        serialized = (getattr(response, "output_text", None) or "").strip()
        if not serialized:
            raise BlueprintGenerationError("AI blueprint generation failed: empty response payload")

        parsed = parse_ai_blueprint(serialized)
        blueprint = parsed.to_blueprint(
            generated_by=self.model,
            workbook_filename=workbook_filename or snapshot.workbook_filename,
        )
        logger.info("AI blueprint produced %d services", len(blueprint.services))
        return blueprint
