# src/ndc_qty/quantity/computer.py
from __future__ import annotations

import logging
import math
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence

from ndc_qty.data_models import (
    ComputedQuantity,
    DosageForm,
    DoseUnit,
    PackageCandidate,
    PackageRecord,
    ParsedDose,
    QuantityCalculation,
    ResolvedPackage,
)
from ndc_qty.errors import ValidationError
from ndc_qty.units.conversions import round_liquid_volume
from ndc_qty.units.dosage_form import detect_dosage_form
from ndc_qty.units.inhaler import actuations_per_canister, canisters_needed
from ndc_qty.units.insulin import containers_needed, detect_container, insulin_concentration, units_to_volume

logger = logging.getLogger(__name__)

MAX_DAYS_SUPPLY = 365
MAX_PER_DAY = 100.0
MAX_TOTAL_QUANTITY = 10000


class QuantityComputer:
    """
    per-day dose x days of therapy -> dispensable quantity.

    Rounding depends on the dosage form and never goes below the raw total:
    - solid and generic units: up to the next whole unit;
    - liquid: whole mL, then multiples of 5 mL from 5 mL on;
    - inhaler: whole canisters;
    - insulin: whole pens or vials.
    """

    def __init__(
        self,
        max_days_supply: int = MAX_DAYS_SUPPLY,
        max_per_day: float = MAX_PER_DAY,
        max_total: int = MAX_TOTAL_QUANTITY,
    ) -> None:
        self._max_days_supply = max_days_supply
        self._max_per_day = max_per_day
        self._max_total = max_total

    def compute_with_metadata(
        self,
        parsed: ParsedDose,
        days_supply: int,
        *,
        drug_name: Optional[str] = None,
        packages: Sequence[PackageRecord] = (),
        dosage_form: Optional[DosageForm] = None,
    ) -> QuantityCalculation:
        self._validate(parsed, days_supply)

        raw_total = parsed.per_day * days_supply
        if raw_total > self._max_total:
            raise ValidationError(
                "Computed quantity exceeds maximum",
                detail=f"{raw_total:g} exceeds the limit of {self._max_total}",
            )

        if dosage_form is None:
            dosage_form = detect_dosage_form(
                drug_name, (p.dosage_form for p in packages), parsed.unit
            ).detected

        if dosage_form == DosageForm.INHALER and parsed.unit == DoseUnit.ACTUATION:
            calculation = self._inhaler(parsed, days_supply, raw_total, drug_name)
        elif dosage_form == DosageForm.INSULIN and parsed.unit == DoseUnit.UNIT:
            calculation = self._insulin(parsed, days_supply, raw_total, drug_name, packages)
        elif parsed.unit == DoseUnit.MILLILITER:
            calculation = QuantityCalculation(
                computed=self._computed(parsed, days_supply, round_liquid_volume(raw_total)),
                dosage_form=DosageForm.LIQUID,
                raw_total=raw_total,
                rounding="liquid",
            )
        else:
            calculation = QuantityCalculation(
                computed=self._computed(parsed, days_supply, math.ceil(raw_total - 1e-9)),
                dosage_form=dosage_form,
                raw_total=raw_total,
                rounding="integer",
            )

        total = calculation.computed.total_quantity
        if total > self._max_total:
            raise ValidationError(
                "Computed quantity exceeds maximum",
                detail=f"{total} after {calculation.rounding} rounding exceeds the limit of {self._max_total}",
            )

        logger.info(
            "Quantity computed: form=%s raw=%.2f total=%s rounding=%s",
            calculation.dosage_form.value,
            raw_total,
            total,
            calculation.rounding,
        )
        return calculation

    def compute(
        self,
        parsed: ParsedDose,
        days_supply: int,
        *,
        drug_name: Optional[str] = None,
        packages: Sequence[PackageRecord] = (),
        dosage_form: Optional[DosageForm] = None,
    ) -> ComputedQuantity:
        return self.compute_with_metadata(
            parsed, days_supply, drug_name=drug_name, packages=packages, dosage_form=dosage_form
        ).computed

    def _validate(self, parsed: ParsedDose, days_supply: int) -> None:
        if isinstance(days_supply, bool) or not isinstance(days_supply, int):
            raise ValidationError("days_supply must be an integer")
        if not 1 <= days_supply <= self._max_days_supply:
            raise ValidationError(f"days_supply must be between 1 and {self._max_days_supply}")
        if not isinstance(parsed.unit, DoseUnit):
            raise ValidationError(f"Unsupported dose unit: {parsed.unit!r}")
        if not 0 < parsed.per_day <= self._max_per_day:
            raise ValidationError(f"per_day must be greater than 0 and at most {self._max_per_day:g}")

    @staticmethod
    def _computed(parsed: ParsedDose, days_supply: int, total: int) -> ComputedQuantity:
        return ComputedQuantity(
            unit=parsed.unit,
            per_day=parsed.per_day,
            total_quantity=int(total),
            days_supply=days_supply,
        )

    def _inhaler(
        self, parsed: ParsedDose, days_supply: int, raw_total: float, drug_name: Optional[str]
    ) -> QuantityCalculation:
        per_canister = actuations_per_canister(drug_name)
        canisters = canisters_needed(raw_total, per_canister)
        return QuantityCalculation(
            computed=self._computed(parsed, days_supply, canisters * per_canister),
            dosage_form=DosageForm.INHALER,
            raw_total=raw_total,
            rounding="canister",
            containers=canisters,
            actuations_per_container=per_canister,
        )

    def _insulin(
        self,
        parsed: ParsedDose,
        days_supply: int,
        raw_total: float,
        drug_name: Optional[str],
        packages: Sequence[PackageRecord],
    ) -> QuantityCalculation:
        concentration = insulin_concentration(drug_name)
        volume = units_to_volume(raw_total, concentration)
        decision = detect_container(
            drug_name,
            descriptions=[p.package_description for p in packages],
            pack_sizes=[p.pack_size for p in packages],
        )
        for note in decision.notes:
            logger.warning("%s", note)

        containers = containers_needed(volume, decision.volume_ml)
        total = round(containers * decision.volume_ml * concentration)
        return QuantityCalculation(
            computed=self._computed(parsed, days_supply, total),
            dosage_form=DosageForm.INSULIN,
            raw_total=raw_total,
            rounding="insulin_container",
            containers=containers,
            container_kind=decision.kind,
            container_volume_ml=decision.volume_ml,
            concentration=concentration,
            notes=decision.notes,
        )


def align_pack_sizes(
    candidates: Iterable[PackageCandidate], calculation: QuantityCalculation
) -> List[PackageCandidate]:
    """
    Expresses pack sizes in the dispensing unit of the calculation.

    Insulin quantities are counted in units while the packaging registry
    lists insulin packages in mL, so mL packs are scaled by the concentration.
    Every other form is already comparable and passes through unchanged.
    """
    if calculation.dosage_form != DosageForm.INSULIN or not calculation.concentration:
        return list(candidates)

    aligned: List[PackageCandidate] = []
    for candidate in candidates:
        if isinstance(candidate, ResolvedPackage) and candidate.record.pack_unit == "mL":
            record = replace(candidate.record, pack_size=candidate.record.pack_size * calculation.concentration)
            aligned.append(ResolvedPackage(record))
        else:
            aligned.append(candidate)
    return aligned
