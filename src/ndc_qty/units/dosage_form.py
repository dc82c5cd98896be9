# src/ndc_qty/units/dosage_form.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple

from ndc_qty.data_models import DosageForm, DoseUnit

INHALER_KEYWORDS = (
    "hfa",
    "inhaler",
    "aerosol",
    "inhalation",
    "mdi",
    "diskus",
    "ellipta",
    "turbuhaler",
    "handihaler",
    "respimat",
)

INSULIN_KEYWORDS = (
    "insulin",
    "humalog",
    "novolog",
    "lantus",
    "levemir",
    "tresiba",
    "basaglar",
    "toujeo",
    "apidra",
    "fiasp",
    "humulin",
    "novolin",
    "admelog",
    "lyumjev",
    "semglee",
)

INHALER_REGISTRY_FORMS = (
    "AEROSOL",
    "AEROSOL, METERED",
    "AEROSOL, POWDER",
    "SPRAY, METERED",
    "INHALANT",
    "POWDER, METERED",
)

LIQUID_REGISTRY_FORMS = (
    "SOLUTION",
    "SUSPENSION",
    "SYRUP",
    "ELIXIR",
    "LIQUID",
    "SOLUTION/DROPS",
    "SUSPENSION/DROPS",
    "FOR SUSPENSION",
)


@dataclass(frozen=True)
class DosageFormDetection:
    detected: DosageForm
    method: str
    matched_keywords: Tuple[str, ...] = ()


def _matches(name: str, keywords: Iterable[str]) -> Tuple[str, ...]:
    return tuple(keyword for keyword in keywords if keyword in name)


def detect_dosage_form(
    drug_name: Optional[str],
    registry_forms: Iterable[Optional[str]],
    dose_unit: DoseUnit,
) -> DosageFormDetection:
    """
    Classifies the product as inhaler, insulin, liquid or solid.

    Order: dose unit, drug name keywords, registry dosage forms, default solid.
    """
    name = (drug_name or "").strip().lower()

    if dose_unit == DoseUnit.ACTUATION:
        return DosageFormDetection(DosageForm.INHALER, "from_dose_unit")

    if dose_unit == DoseUnit.UNIT:
        insulin = _matches(name, INSULIN_KEYWORDS)
        if insulin:
            return DosageFormDetection(DosageForm.INSULIN, "from_dose_unit_and_drug_name", insulin)

    if dose_unit == DoseUnit.MILLILITER:
        return DosageFormDetection(DosageForm.LIQUID, "from_dose_unit")

    inhaler = _matches(name, INHALER_KEYWORDS)
    if inhaler:
        return DosageFormDetection(DosageForm.INHALER, "from_drug_name", inhaler)

    insulin = _matches(name, INSULIN_KEYWORDS)
    if insulin:
        return DosageFormDetection(DosageForm.INSULIN, "from_drug_name", insulin)

    forms = [form.strip().upper() for form in registry_forms if form]
    if any(form in INHALER_REGISTRY_FORMS for form in forms):
        return DosageFormDetection(DosageForm.INHALER, "from_registry_dosage_form")
    if any(form in LIQUID_REGISTRY_FORMS for form in forms):
        return DosageFormDetection(DosageForm.LIQUID, "from_registry_dosage_form")

    return DosageFormDetection(DosageForm.SOLID, "default")
