# src/ndc_qty/sig/rules.py
"""
Deterministic SIG parsing.

Two stages, tried in order by SigInterpreter:

1. time-based: the text names times of day or meals and lists several
   quantity + unit pairs ("1 tablet in the morning and 2 at bedtime" style).
   The pairs are summed, there is no uniform frequency;
2. frequency-based: one quantity, one unit and one frequency token
   ("2 tabs bid", "5 mL three times daily", "1 cap q8h").
"""
from __future__ import annotations

import re
from typing import List, Optional, Tuple

from ndc_qty.data_models import DoseUnit, ParsedDose, SigInterpretation, UnitConversion
from ndc_qty.units.conversions import (
    LIQUID_CONVERSIONS,
    UNIT_SYNONYMS,
    convert_to_ml,
    is_liquid_unit,
    normalize_unit,
)

NUMBER_WORDS = {
    "half": 0.5,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
}

MAX_FREQUENCY = 10

_NUMBER = (
    r"(?:\d+\s+\d+/\d+|\d+/\d+|\d*\.\d+|\d+|"
    + "|".join(sorted(NUMBER_WORDS, key=len, reverse=True))
    + r")"
)

_UNIT_TOKENS = sorted(set(UNIT_SYNONYMS) | {u.value.lower() for u in DoseUnit}, key=len, reverse=True)
_UNIT = r"(?:" + "|".join(re.escape(token) for token in _UNIT_TOKENS) + r")"

_DOSE_RE = re.compile(rf"(?<![\w/.])(?P<qty>{_NUMBER})\s*(?P<unit>{_UNIT})\b\.?", re.IGNORECASE)

_BARE_DOSE_RE = re.compile(
    rf"\b(?:take|inhale|inject|use|give|apply|instill|administer|chew|dissolve)\s+(?P<qty>{_NUMBER})\b",
    re.IGNORECASE,
)

_TIME_CUE_RE = re.compile(
    r"\b(?:morning|evening|bedtime|night|noon|afternoon|breakfast|lunch|dinner|supper|meals?)\b"
    r"|\b\d{1,2}(?::\d{2})?\s*(?:(?:am|pm)\b|a\.m\.|p\.m\.)",
    re.IGNORECASE,
)

_COUNT = r"(?P<n>\d{1,2}|" + "|".join(w for w in NUMBER_WORDS if w != "half") + r")"

# (pattern, multiplier); a None multiplier means "read it from the n group"
_FREQUENCY_PATTERNS: List[Tuple[re.Pattern, Optional[int]]] = [
    (re.compile(r"\bq\.?\s?i\.?\s?d\b\.?", re.IGNORECASE), 4),
    (re.compile(r"\bt\.?\s?i\.?\s?d\b\.?", re.IGNORECASE), 3),
    (re.compile(r"\bb\.?\s?i\.?\s?d\b\.?", re.IGNORECASE), 2),
    (re.compile(r"\bq\.?\s?d\b\.?", re.IGNORECASE), 1),
    (re.compile(r"\btwice\s+(?:a\s+|per\s+|each\s+)?(?:day|daily)\b", re.IGNORECASE), 2),
    (re.compile(r"\bonce\s+(?:a\s+|per\s+|each\s+)?(?:day|daily)\b", re.IGNORECASE), 1),
    (re.compile(rf"\b{_COUNT}\s*(?:x|times)\s*(?:a\s+|per\s+|each\s+|/\s*)?(?:day|daily|d)\b", re.IGNORECASE), None),
]

_EVERY_N_HOURS_RE = re.compile(r"\b(?:every|q)\s*(?P<hours>\d{1,2})\s*(?:h|hr|hrs|hour|hours)\b", re.IGNORECASE)

_ONCE_A_DAY_RE = re.compile(
    r"\b(?:daily|every\s+day|each\s+day|a\s+day|per\s+day|nightly|at\s+bedtime|q\.?h\.?s\b\.?"
    r"|every\s+(?:morning|evening|night)|in\s+the\s+(?:morning|evening)|at\s+night)\b",
    re.IGNORECASE,
)


def parse_number(text: str) -> Optional[float]:
    """"2", "0.5", "1/2", "1 1/2", "two", "half" -> float."""
    token = text.strip().lower()
    if token in NUMBER_WORDS:
        return float(NUMBER_WORDS[token])
    try:
        parts = token.split()
        if len(parts) == 2:
            whole, frac = parts
            return float(whole) + (parse_number(frac) or 0.0)
        if "/" in token:
            numerator, denominator = token.split("/")
            if float(denominator) == 0:
                return None
            return float(numerator) / float(denominator)
        return float(token)
    except ValueError:
        return None


def _normalize_text(sig: str) -> str:
    return re.sub(r"\s+", " ", sig.strip().lower())


def _to_canonical(quantity: float, token: str) -> Tuple[Optional[DoseUnit], float]:
    unit = normalize_unit(token)
    if unit == DoseUnit.MILLILITER and is_liquid_unit(token):
        return unit, convert_to_ml(quantity, token)
    return unit, quantity


def extract_doses(text: str) -> List[Tuple[float, str]]:
    """Every (quantity, unit token) pair in the text, in order."""
    doses: List[Tuple[float, str]] = []
    for match in _DOSE_RE.finditer(text):
        quantity = parse_number(match.group("qty"))
        if quantity is not None and quantity > 0:
            doses.append((quantity, match.group("unit").lower()))
    return doses


def parse_frequency(text: str) -> Optional[int]:
    """Daily multiplier (1-10) named by the text, or None."""
    for pattern, multiplier in _FREQUENCY_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        if multiplier is not None:
            return multiplier
        raw = match.group("n").lower()
        count = NUMBER_WORDS.get(raw) or int(raw)
        if 1 <= count <= MAX_FREQUENCY:
            return int(count)
        return None

    hours = _EVERY_N_HOURS_RE.search(text)
    if hours:
        interval = int(hours.group("hours"))
        if interval > 0 and 24 % interval == 0 and 24 // interval <= MAX_FREQUENCY:
            return 24 // interval
        return None

    if _ONCE_A_DAY_RE.search(text):
        return 1
    return None


def _conversion(doses: List[Tuple[float, str]], converted_total: float) -> Optional[UnitConversion]:
    converted = [(qty, token) for qty, token in doses if token in LIQUID_CONVERSIONS and LIQUID_CONVERSIONS[token] != 1.0]
    if not converted:
        return None
    tokens = {token for _, token in converted}
    return UnitConversion(
        from_unit=tokens.pop() if len(tokens) == 1 else "mixed",
        to_unit=DoseUnit.MILLILITER.value,
        original=sum(qty for qty, _ in doses),
        converted=converted_total,
    )


def parse_time_based(sig: str, max_per_day: float = 100.0) -> Optional[SigInterpretation]:
    text = _normalize_text(sig)
    if not _TIME_CUE_RE.search(text):
        return None

    doses = extract_doses(text)
    if len(doses) < 2:
        return None

    units = set()
    total = 0.0
    for quantity, token in doses:
        unit, amount = _to_canonical(quantity, token)
        if unit is None:
            return None
        units.add(unit)
        total += amount
    if len(units) != 1:
        return None

    if not 0 < total <= max_per_day:
        return None

    unit = units.pop()
    return SigInterpretation(
        parsed=ParsedDose(unit=unit, per_day=total),
        method="rules",
        sub_method="time_based",
        quantity_per_dose=None,
        frequency=len(doses),
        unit_conversion=_conversion(doses, total),
    )


def parse_frequency_based(
    sig: str,
    unit_override: Optional[DoseUnit] = None,
    max_per_day: float = 100.0,
) -> Optional[SigInterpretation]:
    text = _normalize_text(sig)

    frequency = parse_frequency(text)
    if frequency is None:
        return None

    conversion: Optional[UnitConversion] = None
    unit: Optional[DoseUnit]
    doses = extract_doses(text)
    if doses:
        raw_quantity, token = doses[0]
        unit, quantity = _to_canonical(raw_quantity, token)
        if quantity != raw_quantity:
            conversion = UnitConversion(
                from_unit=token,
                to_unit=DoseUnit.MILLILITER.value,
                original=raw_quantity,
                converted=quantity,
            )
    elif unit_override is not None:
        # "take 2 twice daily" is only usable when the caller names the unit
        bare = _BARE_DOSE_RE.search(text)
        parsed_quantity = parse_number(bare.group("qty")) if bare else None
        if parsed_quantity is None:
            return None
        unit, quantity = unit_override, parsed_quantity
    else:
        return None

    if unit is None or quantity <= 0:
        return None

    per_day = quantity * frequency
    if not 0 < per_day <= max_per_day:
        return None

    return SigInterpretation(
        parsed=ParsedDose(unit=unit, per_day=per_day),
        method="rules",
        sub_method="frequency_based",
        quantity_per_dose=quantity,
        frequency=frequency,
        unit_conversion=conversion,
    )
