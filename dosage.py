"""Dosage unit helpers shared by the medication schema and reminder texts."""
from typing import Dict, Union

DOSAGE_UNIT_ALIASES: Dict[str, str] = {
    "g": "g",
    "mg": "mg",
    "ml": "ml",
    "tablet": "tablets",
    "tablets": "tablets",
    "tablette": "tablets",
    "tabletten": "tablets",
}


def normalize_dosage_unit(unit: str) -> str:
    normalized = str(unit or "").strip().lower()
    if not normalized:
        return unit
    return DOSAGE_UNIT_ALIASES.get(normalized, normalized)


def format_dosage(amount: Union[int, float], unit: str) -> str:
    """Render e.g. 1.0 + "Tablet" as "1 tablets"."""
    if isinstance(amount, float) and amount.is_integer():
        amount = int(amount)
    return f"{amount} {normalize_dosage_unit(unit)}".strip()
