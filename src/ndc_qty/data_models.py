# src/ndc_qty/data_models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class DoseUnit(str, Enum):
    """Canonical dispensing units. Values are the wire representation."""

    TABLET = "tab"
    CAPSULE = "cap"
    MILLILITER = "mL"
    ACTUATION = "actuation"
    UNIT = "unit"


class DosageForm(str, Enum):
    SOLID = "solid"
    LIQUID = "liquid"
    INHALER = "inhaler"
    INSULIN = "insulin"


@dataclass(frozen=True)
class DrugQuery:
    """
    One compute request.

    identifier may be a drug name (brand or generic) or a package identifier
    (NDC). preferred_package_ids are already normalized, hyphen-free.
    """
    identifier: str
    sig: str
    days_supply: int
    preferred_package_ids: Tuple[str, ...] = ()
    unit_override: Optional[DoseUnit] = None


@dataclass(frozen=True)
class NormalizedDrug:
    canonical_id: Optional[str]  # RxCUI
    display_name: Optional[str]


@dataclass(frozen=True)
class PackageRecord:
    """
    One manufacturer package as reported by the packaging registry.
    The packaging registry is the source of truth for every field here.
    """
    package_id: str  # 11 digits, no hyphens
    pack_size: float
    is_active: bool
    dosage_form: Optional[str] = None
    brand_name: Optional[str] = None
    package_description: Optional[str] = None
    pack_unit: Optional[str] = None  # unit of pack_size as printed ("TABLET", "mL", ...)


@dataclass(frozen=True)
class ResolvedPackage:
    record: PackageRecord

    @property
    def package_id(self) -> str:
        return self.record.package_id


@dataclass(frozen=True)
class UnresolvedPackage:
    """Identifier known to the naming registry that the packaging registry could not confirm."""
    package_id: str


PackageCandidate = Union[ResolvedPackage, UnresolvedPackage]


def is_eligible(candidate: PackageCandidate) -> bool:
    return (
        isinstance(candidate, ResolvedPackage)
        and candidate.record.is_active
        and candidate.record.pack_size > 0
    )


def inactive_ids(candidates: List[PackageCandidate]) -> List[str]:
    ids: List[str] = []
    for candidate in candidates:
        if isinstance(candidate, UnresolvedPackage) or not candidate.record.is_active:
            ids.append(candidate.package_id)
    return ids


@dataclass(frozen=True)
class ParsedDose:
    unit: DoseUnit
    per_day: float

    def __post_init__(self) -> None:
        if not 0 < self.per_day <= 100:
            raise ValueError(f"per_day must be in (0, 100], got {self.per_day}")


@dataclass(frozen=True)
class UnitConversion:
    from_unit: str
    to_unit: str
    original: float
    converted: float


@dataclass(frozen=True)
class SigInterpretation:
    """
    Full outcome of interpreting one SIG.

    `parsed` is the plain result; everything else explains how it was
    obtained (which stage, intermediate quantity and frequency, conversions).
    """
    parsed: Optional[ParsedDose]
    method: str  # "rules" | "fallback" | "failed"
    sub_method: Optional[str] = None  # "time_based" | "frequency_based"
    quantity_per_dose: Optional[float] = None
    frequency: Optional[int] = None
    unit_conversion: Optional[UnitConversion] = None
    confidence: Optional[float] = None

    @classmethod
    def failed(cls) -> "SigInterpretation":
        return cls(parsed=None, method="failed")


@dataclass(frozen=True)
class ComputedQuantity:
    unit: DoseUnit
    per_day: float
    total_quantity: int  # rounded, dispensable
    days_supply: int


@dataclass(frozen=True)
class QuantityCalculation:
    computed: ComputedQuantity
    dosage_form: DosageForm
    raw_total: float
    rounding: str  # "integer" | "liquid" | "canister" | "insulin_container"
    containers: Optional[int] = None
    container_kind: Optional[str] = None  # "pen" | "vial"
    container_volume_ml: Optional[float] = None
    concentration: Optional[int] = None  # units per mL
    actuations_per_container: Optional[int] = None
    notes: Tuple[str, ...] = ()


@dataclass
class PackageOption:
    package_id: str
    pack_size: float
    packs: int
    overfill_ratio: float
    score: float = 0.0
    brand_name: Optional[str] = None
    dosage_form: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ndc": self.package_id,
            "pkg_size": self.pack_size,
            "active": True,  # only active packages are ever scored
            "overfill": self.overfill_ratio,
            "packs": self.packs,
        }
        if self.brand_name:
            payload["brand_name"] = self.brand_name
        if self.dosage_form:
            payload["dosage_form"] = self.dosage_form
        return payload


@dataclass
class PackageSelection:
    chosen: Optional[PackageOption] = None
    alternates: List[PackageOption] = field(default_factory=list)


@dataclass
class ComputeFlags:
    inactive_package_ids: List[str] = field(default_factory=list)
    mismatch: bool = False
    notes: List[str] = field(default_factory=list)


@dataclass
class ComputeResult:
    normalized_drug: NormalizedDrug
    computed: ComputedQuantity
    selection: PackageSelection
    flags: ComputeFlags

    def to_dict(self) -> Dict[str, Any]:
        selection: Dict[str, Any] = {
            "alternates": [option.to_dict() for option in self.selection.alternates],
        }
        if self.selection.chosen is not None:
            selection["chosen"] = self.selection.chosen.to_dict()

        return {
            "rxnorm": {
                "rxcui": self.normalized_drug.canonical_id or "",
                "name": self.normalized_drug.display_name or "",
            },
            "computed": {
                "dose_unit": self.computed.unit.value,
                "per_day": self.computed.per_day,
                "total_qty": self.computed.total_quantity,
                "days_supply": self.computed.days_supply,
            },
            "ndc_selection": selection,
            "flags": {
                "inactive_ndcs": list(self.flags.inactive_package_ids),
                "mismatch": self.flags.mismatch,
                "notes": list(self.flags.notes),
            },
        }
