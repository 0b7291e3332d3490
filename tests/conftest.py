"""
Shared fixtures: a small calculator workbook laid out like the default
mapping, in-memory stores and a stand-in for the OpenAI client.
"""
import io
import os
import sys
from pathlib import Path
from types import SimpleNamespace

import pytest
from openpyxl import Workbook
from openpyxl.worksheet.datavalidation import DataValidation

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from service_pricing.config.settings import Settings
from service_pricing.services.pricing_service import PricingService
from service_pricing.services.store import InMemorySettingsStore, InMemoryWorkbookStore

HEADERS = {
    "A": "Select", "B": "Qty", "C": "Maint", "D": "Tier", "E": "Service", "F": "Billing",
    "G": "Solo_Low", "H": "Solo_High", "I": "Solo_Maint",
    "J": "Small_Low", "K": "Small_High", "L": "Small_Maint",
    "M": "Mid_Low", "N": "Mid_High", "O": "Mid_Maint",
    "R": "Unit Price", "S": "Line Total", "T": "Type", "U": "Maintenance Total",
}

# (select, qty, maintenance, tier, service, billing, solo, small, mid, type)
SERVICE_ROWS = [
    (True, 1, False, "Essentials", "Bookkeeping", "Monthly",
     (100, 200, 20), (150, 250, 25), (200, 300, 30), "Monthly"),
    (False, 1, False, "Essentials", "Payroll Setup", "One-time",
     (300, 500, None), (400, 600, None), (500, 700, None), "One-time/Non-monthly"),
    (False, 2, False, "Growth", "Tax Planning", "Quarterly",
     (50, 150, 10), (80, 160, 12), (100, 200, 15), "Monthly"),
]


def _unit_price_formula(row: int) -> str:
    def tier(low: str, high: str) -> str:
        return f'IF($E$4="Low",{low}{row},IF($E$4="High",{high}{row},({low}{row}+{high}{row})/2))'

    return (
        f'=IF($D$4="Solo/Startup",{tier("G", "H")},'
        f'IF($D$4="Small Business",{tier("J", "K")},{tier("M", "N")}))'
    )


def _maintenance_formula(row: int) -> str:
    return (
        f'=IF(AND(A{row},C{row}),'
        f'IF($D$4="Solo/Startup",I{row},IF($D$4="Small Business",L{row},O{row}))*B{row},0)'
    )


def build_calculator_workbook(rows=SERVICE_ROWS, with_quote_sheet=True) -> bytes:
    wb = Workbook()
    sheet = wb.active
    sheet.title = "Calculator"
    sheet["A1"] = "Service Pricing Calculator"
    sheet["D3"] = "Client Size"
    sheet["E3"] = "Price Point"
    sheet["D4"] = "Small Business"
    sheet["E4"] = "Midpoint"

    validation = DataValidation(type="list", formula1='"Low,Midpoint,High"', allow_blank=True)
    sheet.add_data_validation(validation)
    validation.add("E4")

    for column, label in HEADERS.items():
        sheet[f"{column}9"] = label

    for offset, (select, qty, maint, tier, service, billing, solo, small, mid, type_label) in enumerate(rows):
        row = 10 + offset
        sheet[f"A{row}"] = select
        sheet[f"B{row}"] = qty
        sheet[f"C{row}"] = maint
        sheet[f"D{row}"] = tier
        sheet[f"E{row}"] = service
        sheet[f"F{row}"] = billing
        for columns, band in (("GHI", solo), ("JKL", small), ("MNO", mid)):
            for column, value in zip(columns, band):
                if value is not None:
                    sheet[f"{column}{row}"] = value
        sheet[f"R{row}"] = _unit_price_formula(row)
        sheet[f"S{row}"] = f"=IF(A{row},R{row}*B{row},0)"
        sheet[f"T{row}"] = type_label
        sheet[f"U{row}"] = _maintenance_formula(row)

    last = 9 + max(len(rows), 1)
    sheet["A32"] = "Monthly Subtotal"
    sheet["B32"] = f'=SUMIF(T10:T{last},"Monthly",S10:S{last})'
    sheet["A33"] = "One-time Subtotal"
    sheet["B33"] = f'=SUMIF(T10:T{last},"One-time/Non-monthly",S10:S{last})'
    sheet["A34"] = "Maintenance Subtotal"
    sheet["B34"] = f"=SUM(U10:U{last})"
    sheet["A35"] = "Grand Total"
    sheet["B35"] = "=B32+B33+B34"
    sheet["A36"] = "Ongoing Monthly"
    sheet["B36"] = "=B32+B34"

    if with_quote_sheet:
        quote = wb.create_sheet("Quote Builder")
        quote["A5"] = "Client Name"
        quote["A6"] = "Company"
        quote["A7"] = "Prepared By"
        quote["D5"] = "Client Size"
        quote["D6"] = "Price Point"
        quote["D7"] = "Email"
        quote["A9"] = "Notes"

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


@pytest.fixture(scope="session")
def workbook_bytes():
    """Calculator workbook matching the default mapping."""
    return build_calculator_workbook()


@pytest.fixture
def make_workbook():
    """Factory for workbook variants."""
    return build_calculator_workbook


@pytest.fixture
def config(tmp_path):
    """Settings with AI disabled and data kept under tmp_path."""
    return Settings(data_dir=Path(tmp_path), openai_api_key=None)


@pytest.fixture
def service(config):
    return PricingService(InMemoryWorkbookStore(), InMemorySettingsStore(), config=config)


class FakeResponses:
    """Records responses.create payloads and replays a canned output."""

    def __init__(self, output_text=None, error=None):
        self.output_text = output_text
        self.error = error
        self.calls = []

    def create(self, **payload):
        self.calls.append(payload)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(output_text=self.output_text)


class FakeOpenAIClient:
    def __init__(self, output_text=None, error=None):
        self.responses = FakeResponses(output_text=output_text, error=error)


@pytest.fixture
def fake_openai():
    """Factory: fake_openai(output_text=..., error=...) → client."""
    return FakeOpenAIClient
