"""
Rate-band resolution.

Lookup order for a unit price:
1. Segment band: exact name, then case-insensitive
2. Patches merged onto the band (administrator custom rates, then per-call overrides)
3. Price point: exact name, then case-insensitive
4. 'Midpoint' synthesized as (low + high) / 2 when both exist
A miss returns None; callers price the line at 0 and record a warning.
"""
from typing import Optional

from ..blueprint.classify import segment_key
from ..blueprint.models import RateBand
from ..workbook.values import parse_number

MIDPOINT = "midpoint"


def _find_key(keys, wanted: str) -> Optional[str]:
    if wanted in keys:
        return wanted
    lowered = wanted.lower()
    for key in keys:
        if key.lower() == lowered:
            return key
    return None


def find_segment_band(rate_bands: Optional[dict], segment: str) -> Optional[RateBand]:
    if not rate_bands or not segment:
        return None
    key = _find_key(list(rate_bands), segment)
    return rate_bands[key] if key is not None else None


def find_segment_patch(patches: Optional[dict], segment: str) -> Optional[dict]:
    """
    Patch for a segment, addressed by label ('Small Business') or mapping key
    ('smallBusiness').
    """
    if not patches or not segment:
        return None
    key = _find_key(list(patches), segment)
    if key is None:
        wanted = segment_key(segment)
        key = next((k for k in patches if wanted and (k == wanted or segment_key(k) == wanted)), None)
    return patches[key] if key is not None else None


def merge_band(band: Optional[RateBand], patch: Optional[dict]) -> Optional[RateBand]:
    """Overlay numeric points of patch onto band; a point name matches case-insensitively."""
    if not patch:
        return dict(band) if band is not None else None
    merged = dict(band or {})
    for point, value in patch.items():
        number = None if isinstance(value, bool) else parse_number(value)
        if number is None:
            continue
        key = _find_key(list(merged), str(point)) or str(point)
        merged[key] = number
    return merged


def _point_value(band: RateBand, name: str) -> Optional[float]:
    key = _find_key(list(band), name)
    if key is None:
        return None
    value = band[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def resolve_price_point(band: Optional[RateBand], price_tier: str) -> Optional[float]:
    if not band or not price_tier:
        return None
    price = _point_value(band, price_tier)
    if price is None and price_tier.lower() == MIDPOINT:
        low = _point_value(band, "low")
        high = _point_value(band, "high")
        if low is not None and high is not None:
            price = (low + high) / 2
    return price


def resolve_unit_price(
    rate_bands: Optional[dict],
    segment: str,
    price_tier: str,
    *patches: Optional[dict],
) -> tuple[Optional[float], Optional[RateBand]]:
    """
    Resolve (unit price, effective band) for a segment and price tier.

    patches are segment → band maps applied in order (later wins).
    """
    band = find_segment_band(rate_bands, segment)
    for patch in patches:
        band = merge_band(band, find_segment_patch(patch, segment))
    return resolve_price_point(band, price_tier), band
