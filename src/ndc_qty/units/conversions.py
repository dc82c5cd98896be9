# src/ndc_qty/units/conversions.py
"""
Unit synonyms and liquid volume conversions.

Every liquid measure is normalized to mL, the canonical liquid unit.
"""
from __future__ import annotations

import math
from typing import Dict, Optional

from ndc_qty.data_models import DoseUnit

# Volume of one unit in mL
LIQUID_CONVERSIONS: Dict[str, float] = {
    "ml": 1.0,
    "milliliter": 1.0,
    "milliliters": 1.0,
    "millilitre": 1.0,
    "millilitres": 1.0,
    "teaspoon": 5.0,
    "teaspoons": 5.0,
    "tsp": 5.0,
    "tablespoon": 15.0,
    "tablespoons": 15.0,
    "tbsp": 15.0,
    "oz": 30.0,
    "ounce": 30.0,
    "ounces": 30.0,
}

UNIT_SYNONYMS: Dict[str, DoseUnit] = {
    "tablet": DoseUnit.TABLET,
    "tablets": DoseUnit.TABLET,
    "tab": DoseUnit.TABLET,
    "tabs": DoseUnit.TABLET,
    "capsule": DoseUnit.CAPSULE,
    "capsules": DoseUnit.CAPSULE,
    "cap": DoseUnit.CAPSULE,
    "caps": DoseUnit.CAPSULE,
    "puff": DoseUnit.ACTUATION,
    "puffs": DoseUnit.ACTUATION,
    "actuation": DoseUnit.ACTUATION,
    "actuations": DoseUnit.ACTUATION,
    "inhalation": DoseUnit.ACTUATION,
    "inhalations": DoseUnit.ACTUATION,
    "spray": DoseUnit.ACTUATION,
    "sprays": DoseUnit.ACTUATION,
    "unit": DoseUnit.UNIT,
    "units": DoseUnit.UNIT,
    "iu": DoseUnit.UNIT,
}
UNIT_SYNONYMS.update({name: DoseUnit.MILLILITER for name in LIQUID_CONVERSIONS})


def normalize_unit(token: Optional[str]) -> Optional[DoseUnit]:
    """Maps a unit word ("tabs", "tsp", "puffs", "mL") to its canonical unit."""
    if not token:
        return None
    cleaned = token.strip().lower().rstrip(".")
    for unit in DoseUnit:
        if cleaned == unit.value.lower():
            return unit
    return UNIT_SYNONYMS.get(cleaned)


def is_liquid_unit(token: str) -> bool:
    return token.strip().lower() in LIQUID_CONVERSIONS


def convert_to_ml(value: float, token: str) -> float:
    factor = LIQUID_CONVERSIONS.get(token.strip().lower())
    if factor is None:
        raise ValueError(f"Unknown liquid unit: {token}")
    return value * factor


def round_liquid_volume(volume_ml: float) -> int:
    """
    Round up to a whole mL; from 5 mL on, round up again to a multiple of 5
    so a partial bottle is never short. Rounding a rounded value is a no-op.
    """
    whole = math.ceil(volume_ml - 1e-9)
    if whole >= 5:
        return int(math.ceil(whole / 5) * 5)
    return int(whole)
