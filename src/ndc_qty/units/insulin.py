# src/ndc_qty/units/insulin.py
"""
Insulin concentrations and container (pen / vial) detection.

Container format is resolved by a fixed precedence: drug name keywords,
then package description keywords, then package-size heuristics, then the
pen default. The signals can disagree; disagreement is reported as a note
instead of being resolved silently.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

DEFAULT_CONCENTRATION = 100  # U100
SUPPORTED_CONCENTRATIONS = (100, 200, 500)

PEN = "pen"
VIAL = "vial"
CONTAINER_VOLUME_ML = {PEN: 3.0, VIAL: 10.0}

_CONCENTRATION_RE = re.compile(r"\bu-?(100|200|500)\b", re.IGNORECASE)
_PEN_NAME_RE = re.compile(r"\b(pen|flexpen|kwikpen|solostar|flextouch|tempo pen)\b", re.IGNORECASE)
_VIAL_RE = re.compile(r"\bvials?\b", re.IGNORECASE)
_PEN_DESCRIPTION_RE = re.compile(r"\b(pens?|syringes?|cartridges?|injectors?)\b", re.IGNORECASE)

# Pack sizes in units (U100) or mL
_VIAL_PACK_SIZES = {1000, 10}
_PEN_PACK_SIZES = {300, 1500, 3, 15}


@dataclass(frozen=True)
class ContainerDecision:
    kind: str
    volume_ml: float
    source: str  # "name" | "package description" | "package size" | "default"
    notes: Tuple[str, ...] = ()


def insulin_concentration(drug_name: Optional[str]) -> int:
    """Units per mL parsed from U100/U200/U500 in the name, U100 otherwise."""
    if not drug_name:
        return DEFAULT_CONCENTRATION
    match = _CONCENTRATION_RE.search(drug_name)
    if match:
        return int(match.group(1))
    return DEFAULT_CONCENTRATION


def units_to_volume(units: float, concentration: int = DEFAULT_CONCENTRATION) -> float:
    if units <= 0 or concentration <= 0:
        return 0.0
    return units / concentration


def containers_needed(volume_ml: float, container_volume_ml: float) -> int:
    if volume_ml <= 0 or container_volume_ml <= 0:
        return 0
    return math.ceil(volume_ml / container_volume_ml - 1e-9)


def _single_kind(pen: bool, vial: bool) -> Optional[str]:
    if pen and not vial:
        return PEN
    if vial and not pen:
        return VIAL
    return None


def container_from_name(drug_name: Optional[str]) -> Optional[str]:
    if not drug_name:
        return None
    vial = bool(_VIAL_RE.search(drug_name))
    pen = bool(_PEN_NAME_RE.search(drug_name))
    if vial:
        return VIAL
    return PEN if pen else None


def container_from_descriptions(descriptions: Iterable[Optional[str]]) -> Optional[str]:
    text = " ".join(d for d in descriptions if d)
    if not text:
        return None
    return _single_kind(bool(_PEN_DESCRIPTION_RE.search(text)), bool(_VIAL_RE.search(text)))


def container_from_pack_sizes(pack_sizes: Iterable[float]) -> Optional[str]:
    sizes = {int(size) for size in pack_sizes if size and float(size).is_integer()}
    return _single_kind(bool(sizes & _PEN_PACK_SIZES), bool(sizes & _VIAL_PACK_SIZES))


def detect_container(
    drug_name: Optional[str],
    descriptions: Iterable[Optional[str]] = (),
    pack_sizes: Iterable[float] = (),
) -> ContainerDecision:
    signals: List[Tuple[str, Optional[str]]] = [
        ("name", container_from_name(drug_name)),
        ("package description", container_from_descriptions(descriptions)),
        ("package size", container_from_pack_sizes(pack_sizes)),
    ]

    kind, source = PEN, "default"
    for signal_source, signal_kind in signals:
        if signal_kind is not None:
            kind, source = signal_kind, signal_source
            break

    notes = tuple(
        f"Insulin container format is ambiguous: {signal_source} suggests {signal_kind}, "
        f"using {kind} (from {source})"
        for signal_source, signal_kind in signals
        if signal_kind is not None and signal_kind != kind
    )
    return ContainerDecision(kind=kind, volume_ml=CONTAINER_VOLUME_ML[kind], source=source, notes=notes)
