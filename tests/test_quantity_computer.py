# tests/test_quantity_computer.py
import pytest

from ndc_qty.data_models import (
    DosageForm,
    DoseUnit,
    PackageRecord,
    ParsedDose,
    ResolvedPackage,
    UnresolvedPackage,
)
from ndc_qty.errors import ValidationError
from ndc_qty.quantity.computer import QuantityComputer, align_pack_sizes


@pytest.fixture
def computer():
    return QuantityComputer()


def test_solid_total(computer):
    computed = computer.compute(ParsedDose(DoseUnit.TABLET, 2), 30, drug_name="lisinopril")

    assert computed.total_quantity == 60
    assert computed.unit == DoseUnit.TABLET
    assert computed.per_day == 2
    assert computed.days_supply == 30


def test_fractional_solid_rounds_up(computer):
    calculation = computer.compute_with_metadata(ParsedDose(DoseUnit.TABLET, 0.5), 15)

    assert calculation.raw_total == 7.5
    assert calculation.computed.total_quantity == 8
    assert calculation.rounding == "integer"


def test_rounding_never_underfills(computer):
    per_day_values = [0.25, 0.5, 0.75, 1, 1.5, 2, 3, 4.5, 7.5, 10, 12.5]
    units = [DoseUnit.TABLET, DoseUnit.CAPSULE, DoseUnit.MILLILITER, DoseUnit.ACTUATION, DoseUnit.UNIT]
    for unit in units:
        for per_day in per_day_values:
            for days in (1, 7, 10, 14, 28, 30, 90):
                computed = computer.compute(ParsedDose(unit, per_day), days, drug_name="generic")
                assert computed.total_quantity >= per_day * days


def test_liquid_rounds_to_multiple_of_five(computer):
    calculation = computer.compute_with_metadata(ParsedDose(DoseUnit.MILLILITER, 7.5), 10, drug_name="amoxicillin")

    assert calculation.dosage_form == DosageForm.LIQUID
    assert calculation.rounding == "liquid"
    assert calculation.computed.total_quantity == 75

    small = computer.compute(ParsedDose(DoseUnit.MILLILITER, 0.4), 10)
    assert small.total_quantity == 4


def test_inhaler_rounds_to_whole_canisters(computer):
    calculation = computer.compute_with_metadata(ParsedDose(DoseUnit.ACTUATION, 4), 30, drug_name="albuterol HFA")

    assert calculation.raw_total == 120
    assert calculation.dosage_form == DosageForm.INHALER
    assert calculation.containers == 1
    assert calculation.actuations_per_container == 200
    assert calculation.computed.total_quantity == 200


def test_inhaler_uses_product_canister_size(computer):
    calculation = computer.compute_with_metadata(ParsedDose(DoseUnit.ACTUATION, 4), 30, drug_name="Flovent HFA")

    assert calculation.containers == 1
    assert calculation.computed.total_quantity == 120


def test_insulin_pen_default(computer):
    calculation = computer.compute_with_metadata(ParsedDose(DoseUnit.UNIT, 10), 30, drug_name="insulin glargine")

    assert calculation.dosage_form == DosageForm.INSULIN
    assert calculation.concentration == 100
    assert calculation.container_kind == "pen"
    assert calculation.containers == 1
    assert calculation.computed.total_quantity == 300


def test_insulin_vial_from_name(computer):
    calculation = computer.compute_with_metadata(ParsedDose(DoseUnit.UNIT, 20), 30, drug_name="Humulin N vial")

    assert calculation.container_kind == "vial"
    assert calculation.containers == 1
    assert calculation.computed.total_quantity == 1000


def test_insulin_concentrated_pen(computer):
    calculation = computer.compute_with_metadata(
        ParsedDose(DoseUnit.UNIT, 100), 30, drug_name="Humulin R U-500 KwikPen"
    )

    assert calculation.concentration == 500
    assert calculation.containers == 2
    assert calculation.computed.total_quantity == 3000


def test_insulin_container_from_packages_and_ambiguity_note(computer):
    vial_package = PackageRecord(
        package_id="00002821501",
        pack_size=10,
        is_active=True,
        package_description="1 VIAL in 1 CARTON > 10 mL in 1 VIAL",
    )

    from_packages = computer.compute_with_metadata(
        ParsedDose(DoseUnit.UNIT, 10), 30, drug_name="insulin lispro", packages=[vial_package]
    )
    assert from_packages.container_kind == "vial"
    assert from_packages.notes == ()

    conflicting = computer.compute_with_metadata(
        ParsedDose(DoseUnit.UNIT, 10), 30, drug_name="insulin lispro KwikPen", packages=[vial_package]
    )
    assert conflicting.container_kind == "pen"
    assert len(conflicting.notes) == 2


@pytest.mark.parametrize("days", [0, 366, -1])
def test_days_supply_out_of_range(computer, days):
    with pytest.raises(ValidationError):
        computer.compute(ParsedDose(DoseUnit.TABLET, 1), days)


def test_days_supply_must_be_integer(computer):
    with pytest.raises(ValidationError):
        computer.compute(ParsedDose(DoseUnit.TABLET, 1), True)
    with pytest.raises(ValidationError):
        computer.compute(ParsedDose(DoseUnit.TABLET, 1), 30.0)


def test_per_day_bounds_enforced_by_parsed_dose():
    with pytest.raises(ValueError):
        ParsedDose(DoseUnit.TABLET, 0)
    with pytest.raises(ValueError):
        ParsedDose(DoseUnit.TABLET, 101)


def test_raw_total_above_limit_rejected(computer):
    with pytest.raises(ValidationError):
        computer.compute(ParsedDose(DoseUnit.TABLET, 100), 365)


def test_rounded_total_above_limit_rejected(computer):
    # 10000 actuations fit the limit, 84 canisters of 120 do not
    with pytest.raises(ValidationError):
        computer.compute(ParsedDose(DoseUnit.ACTUATION, 100), 100, drug_name="fluticasone HFA")


def test_align_pack_sizes_scales_insulin_ml_packs(computer):
    calculation = computer.compute_with_metadata(ParsedDose(DoseUnit.UNIT, 10), 30, drug_name="insulin glargine")
    pen_box = ResolvedPackage(
        PackageRecord(package_id="00088221905", pack_size=15, is_active=True, pack_unit="mL")
    )
    unresolved = UnresolvedPackage("00088221906")

    aligned = align_pack_sizes([pen_box, unresolved], calculation)

    assert aligned[0].record.pack_size == 1500
    assert aligned[1] is unresolved


def test_align_pack_sizes_leaves_other_forms_alone(computer):
    calculation = computer.compute_with_metadata(ParsedDose(DoseUnit.MILLILITER, 5), 10)
    bottle = ResolvedPackage(PackageRecord(package_id="00093415573", pack_size=100, is_active=True, pack_unit="mL"))

    assert align_pack_sizes([bottle], calculation) == [bottle]
