"""
Label classification shared by the extraction strategies and the catalog.

Charge type is derived in one place. Precedence:
1. An explicit charge type (AI output, stored blueprint)
2. A workbook type label ('Monthly' vs 'One-time/Non-monthly')
3. Billing cadence keywords
4. The caller's fallback
"""
import re
from typing import Optional

from .models import CHARGE_ONE_TIME, CHARGE_RECURRING, CHARGE_TYPES

RECURRING_KEYWORDS = ("month", "quarter", "annual", "year", "retainer", "ongoing", "recurring")

SEGMENT_ALIASES = {
    "solo": "Solo/Startup",
    "startup": "Solo/Startup",
    "small": "Small Business",
    "mid": "Mid-Market",
}

TYPE_MONTHLY = "Monthly"
TYPE_ONE_TIME = "One-time/Non-monthly"


def normalize_segment(name: Optional[str]) -> Optional[str]:
    """Expand abbreviated segment names ('Solo' → 'Solo/Startup'); others pass through trimmed."""
    if name is None:
        return None
    trimmed = name.strip()
    if not trimmed:
        return None
    return SEGMENT_ALIASES.get(trimmed.lower(), trimmed)


def segment_key(segment: Optional[str]) -> Optional[str]:
    """Map a segment label to its mapping key (soloStartup/smallBusiness/midMarket)."""
    if not segment:
        return None
    lowered = segment.lower()
    if "solo" in lowered or "startup" in lowered:
        return "soloStartup"
    if "small" in lowered:
        return "smallBusiness"
    if "mid" in lowered:
        return "midMarket"
    return None


def title_case(value: str) -> str:
    return " ".join(part[:1].upper() + part[1:] for part in value.split())


def normalize_billing(value: Optional[str]) -> str:
    """Normalize a billing cadence label. Blank means Recurring."""
    if not value or not value.strip():
        return "Recurring"
    normalized = value.strip()
    lower = normalized.lower()
    if "one" in lower:
        return "One-Time"
    if "annual" in lower or "year" in lower:
        return "Annual"
    if "quarter" in lower:
        return "Quarterly"
    if "hour" in lower:
        return "Hourly"
    if "project" in lower:
        return "Project"
    return title_case(normalized)


def charge_type_from_label(type_label: Optional[str]) -> Optional[str]:
    if not type_label or not type_label.strip():
        return None
    lower = type_label.lower()
    if "non-monthly" in lower or "one-time" in lower or "one time" in lower:
        return CHARGE_ONE_TIME
    if re.search(r"monthly", lower):
        return CHARGE_RECURRING
    return None


def charge_type_from_billing(billing: Optional[str]) -> Optional[str]:
    if not billing or not billing.strip():
        return None
    lower = billing.lower()
    if any(keyword in lower for keyword in RECURRING_KEYWORDS):
        return CHARGE_RECURRING
    return CHARGE_ONE_TIME


def resolve_charge_type(
    explicit: Optional[str] = None,
    type_label: Optional[str] = None,
    billing: Optional[str] = None,
    fallback: str = CHARGE_RECURRING,
) -> str:
    if explicit and explicit.strip().lower() in CHARGE_TYPES:
        return explicit.strip().lower()
    return charge_type_from_label(type_label) or charge_type_from_billing(billing) or fallback


def type_label_for(charge_type: str) -> str:
    return TYPE_MONTHLY if charge_type == CHARGE_RECURRING else TYPE_ONE_TIME


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
