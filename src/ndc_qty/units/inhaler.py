# src/ndc_qty/units/inhaler.py
from __future__ import annotations

import math
from typing import Dict, Optional

DEFAULT_ACTUATIONS_PER_CANISTER = 200

# Labeled actuations per canister, keyed by a name keyword
ACTUATION_COUNTS: Dict[str, int] = {
    # short-acting beta agonists
    "albuterol": 200,
    "proventil": 200,
    "ventolin": 200,
    "proair": 200,
    "levalbuterol": 200,
    "xopenex": 200,
    # inhaled corticosteroids
    "fluticasone": 120,
    "flovent": 120,
    "qvar": 120,
    "pulmicort": 120,
    "budesonide": 120,
    # combinations
    "advair": 120,
    "symbicort": 120,
    "dulera": 120,
    "breo": 60,
    # anticholinergics
    "atrovent": 200,
    "ipratropium": 200,
    "spiriva": 30,
    "tiotropium": 30,
}


def actuations_per_canister(drug_name: Optional[str]) -> int:
    if not drug_name:
        return DEFAULT_ACTUATIONS_PER_CANISTER

    name = drug_name.strip().lower()
    if name in ACTUATION_COUNTS:
        return ACTUATION_COUNTS[name]

    # longest keyword first so "levalbuterol" wins over "albuterol"
    for keyword in sorted(ACTUATION_COUNTS, key=len, reverse=True):
        if keyword in name:
            return ACTUATION_COUNTS[keyword]

    return DEFAULT_ACTUATIONS_PER_CANISTER


def canisters_needed(total_actuations: float, per_canister: int) -> int:
    if total_actuations <= 0 or per_canister <= 0:
        return 0
    return math.ceil(total_actuations / per_canister - 1e-9)
