# tests/test_compute_service.py
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from ndc_qty.compute.service import (
    NOTE_MISMATCH,
    NOTE_NAMING_FAILED,
    NOTE_NO_ACTIVE,
    NOTE_PACKAGING_FAILED,
    NOTE_STALE_DATA,
    ComputeService,
    build_compute_service,
)
from ndc_qty.config import AppConfig, ComputeConfig
from ndc_qty.data_models import DoseUnit, DrugQuery, PackageRecord
from ndc_qty.errors import DependencyError, InternalError, ParseError, RateLimitError, ValidationError
from ndc_qty.registry.base import LookupResult
from ndc_qty.registry.naming_client import ApproximateMatch
from ndc_qty.sig.interpreter import SigInterpreter


def record(package_id, pack_size, is_active=True, **kwargs):
    kwargs.setdefault("dosage_form", "TABLET")
    return PackageRecord(package_id=package_id, pack_size=pack_size, is_active=is_active, **kwargs)


def make_naming(canonical_id="29046", package_ids=(), error=None):
    naming = MagicMock()
    if error is not None:
        naming.lookup_by_name = AsyncMock(side_effect=error)
    else:
        naming.lookup_by_name = AsyncMock(return_value=LookupResult(canonical_id))
    naming.approximate_match = AsyncMock(return_value=LookupResult(None))
    naming.lookup_by_identifier = AsyncMock(return_value=LookupResult(tuple(package_ids)))
    return naming


def make_packaging(records=(), error=None, is_stale=False, by_id=None):
    packaging = MagicMock()
    if error is not None:
        packaging.lookup_by_name = AsyncMock(side_effect=error)
    else:
        packaging.lookup_by_name = AsyncMock(return_value=LookupResult(tuple(records), is_stale=is_stale))
    packaging.approximate_match = AsyncMock(return_value=LookupResult(()))

    by_id = by_id or {}

    async def lookup_by_identifier(package_id):
        return LookupResult(by_id.get(package_id))

    packaging.lookup_by_identifier = AsyncMock(side_effect=lookup_by_identifier)
    return packaging


def make_service(naming, packaging, compute_conf=None, sig_interpreter=None):
    return ComputeService(
        naming_client=naming,
        packaging_client=packaging,
        sig_interpreter=sig_interpreter or SigInterpreter(fallback_enabled=False),
        compute_conf=compute_conf,
    )


def query(identifier="lisinopril", sig="Take 1 tablet by mouth twice daily", days_supply=30, **kwargs):
    return DrugQuery(identifier=identifier, sig=sig, days_supply=days_supply, **kwargs)


@pytest.mark.asyncio
async def test_exact_pack_chosen_over_two_smaller_packs():
    records = [record("00000000060", 60), record("00000000030", 30)]
    service = make_service(
        make_naming(package_ids=["00000000060", "00000000030"]),
        make_packaging(records),
    )

    result = await service.compute(query())

    assert result.normalized_drug.canonical_id == "29046"
    assert result.computed.total_quantity == 60
    assert result.computed.unit == DoseUnit.TABLET
    assert result.selection.chosen.package_id == "00000000060"
    assert result.selection.chosen.packs == 1
    assert [(o.package_id, o.packs) for o in result.selection.alternates] == [("00000000030", 2)]
    assert result.flags.mismatch is False
    assert result.flags.notes == []
    assert result.flags.inactive_package_ids == []


@pytest.mark.asyncio
async def test_time_based_sig_sums_doses():
    records = [record("00000000090", 90)]
    service = make_service(make_naming(package_ids=["00000000090"]), make_packaging(records))

    result = await service.compute(query(sig="1 tablet at 8am and 2 tablets at 8pm"))

    assert result.computed.per_day == 3
    assert result.computed.total_quantity == 90
    assert result.selection.chosen.package_id == "00000000090"


@pytest.mark.asyncio
async def test_only_inactive_packages():
    records = [record("00000000060", 60, is_active=False), record("00000000030", 30, is_active=False)]
    service = make_service(
        make_naming(package_ids=["00000000060", "00000000030"]),
        make_packaging(records),
    )

    result = await service.compute(query())

    assert result.selection.chosen is None
    assert result.selection.alternates == []
    assert sorted(result.flags.inactive_package_ids) == ["00000000030", "00000000060"]
    assert NOTE_NO_ACTIVE in result.flags.notes


@pytest.mark.asyncio
async def test_inhaler_rounds_to_whole_canister():
    inhaler = record(
        "00173068220",
        200,
        dosage_form="AEROSOL, METERED",
        package_description="1 INHALER in 1 CARTON > 200 AEROSOL, METERED in 1 INHALER",
    )
    service = make_service(make_naming(package_ids=["00173068220"]), make_packaging([inhaler]))

    result = await service.compute(query(identifier="albuterol", sig="Inhale 2 puffs twice daily"))

    assert result.computed.unit == DoseUnit.ACTUATION
    assert result.computed.per_day == 4
    assert result.computed.total_quantity == 200
    assert result.selection.chosen.package_id == "00173068220"


@pytest.mark.asyncio
async def test_insulin_ml_packages_compared_in_units():
    pen = record(
        "00088221905",
        3,
        dosage_form="INJECTION, SOLUTION",
        pack_unit="mL",
        package_description="3 mL in 1 PEN",
    )
    service = make_service(make_naming(package_ids=["00088221905"]), make_packaging([pen]))

    result = await service.compute(query(identifier="insulin glargine", sig="Inject 10 units at bedtime"))

    assert result.computed.total_quantity == 300
    assert result.selection.chosen.package_id == "00088221905"
    assert result.selection.chosen.pack_size == 300


@pytest.mark.asyncio
async def test_both_registries_fail_with_retry_hint():
    service = make_service(
        make_naming(error=DependencyError("naming down", retry_after_ms=2000)),
        make_packaging(error=DependencyError("packaging down", retry_after_ms=3000)),
    )

    with pytest.raises(DependencyError) as exc_info:
        await service.compute(query())

    assert exc_info.value.retry_after_ms == 3000

    payload = await service.compute_payload(
        {"drug_input": "lisinopril", "sig": "1 tab bid", "days_supply": 30}
    )
    assert payload["error_code"] == "dependency_failure"
    assert payload["retry_after_ms"] == 3000


@pytest.mark.asyncio
async def test_both_registries_rate_limited():
    service = make_service(
        make_naming(error=RateLimitError("naming quota", retry_after_ms=500)),
        make_packaging(error=RateLimitError("packaging quota", retry_after_ms=750)),
    )

    with pytest.raises(RateLimitError) as exc_info:
        await service.compute(query())

    assert exc_info.value.retry_after_ms == 750
    assert exc_info.value.error_code == "rate_limit_exceeded"


@pytest.mark.asyncio
async def test_mixed_failures_report_dependency_failure():
    service = make_service(
        make_naming(error=RateLimitError("naming quota", retry_after_ms=500)),
        make_packaging(error=DependencyError("packaging down")),
    )

    with pytest.raises(DependencyError) as exc_info:
        await service.compute(query())

    assert exc_info.value.retry_after_ms == 500


@pytest.mark.asyncio
async def test_naming_failure_falls_back_to_packaging_data():
    records = [record("00000000060", 60)]
    service = make_service(make_naming(error=DependencyError("down")), make_packaging(records))

    result = await service.compute(query())

    assert result.selection.chosen.package_id == "00000000060"
    assert result.normalized_drug.canonical_id is None
    assert result.flags.mismatch is False
    assert NOTE_NAMING_FAILED in result.flags.notes


@pytest.mark.asyncio
async def test_packaging_failure_leaves_naming_ids_unresolved():
    packaging = make_packaging(error=DependencyError("down"))
    service = make_service(make_naming(package_ids=["00000000060"]), packaging)

    result = await service.compute(query())

    assert result.selection.chosen is None
    assert result.flags.inactive_package_ids == ["00000000060"]
    assert NOTE_PACKAGING_FAILED in result.flags.notes
    assert NOTE_NO_ACTIVE in result.flags.notes
    packaging.lookup_by_identifier.assert_awaited_once_with("00000000060")


@pytest.mark.asyncio
async def test_mismatch_flag_and_secondary_lookups():
    packaging = make_packaging(
        [record("00000000060", 60)],
        by_id={"00000000030": record("00000000030", 30)},
    )
    service = make_service(
        make_naming(package_ids=["00000000060", "00000000030", "00000000099"]),
        packaging,
    )

    result = await service.compute(query())

    assert result.flags.mismatch is True
    assert NOTE_MISMATCH in result.flags.notes
    # confirmed by the secondary lookup, so it competes normally
    assert [o.package_id for o in result.selection.alternates] == ["00000000030"]
    # never confirmed by the packaging registry
    assert result.flags.inactive_package_ids == ["00000000099"]
    assert packaging.lookup_by_identifier.await_count == 2


@pytest.mark.asyncio
async def test_approximate_match_used_when_exact_name_unknown():
    naming = make_naming(canonical_id=None, package_ids=["00000000060"])
    naming.approximate_match = AsyncMock(
        return_value=LookupResult(ApproximateMatch(canonical_id="29046", name="lisinopril", score=9.5))
    )
    service = make_service(naming, make_packaging([record("00000000060", 60)]))

    result = await service.compute(query(identifier="lisnopril"))

    assert result.normalized_drug.canonical_id == "29046"
    assert result.normalized_drug.display_name == "lisinopril"
    naming.lookup_by_identifier.assert_awaited_once_with("29046")


@pytest.mark.asyncio
async def test_package_identifier_input_skips_name_resolution():
    naming = make_naming()
    packaging = make_packaging(by_id={"68180-514-01": record("68180051401", 60, brand_name="Lisinopril")})
    service = make_service(naming, packaging)

    result = await service.compute(query(identifier="68180-514-01"))

    assert result.selection.chosen.package_id == "68180051401"
    assert result.normalized_drug.display_name == "Lisinopril"
    assert result.normalized_drug.canonical_id is None
    naming.lookup_by_name.assert_not_awaited()
    packaging.lookup_by_name.assert_not_awaited()


@pytest.mark.asyncio
async def test_package_identifier_lookup_failure():
    packaging = make_packaging()
    packaging.lookup_by_identifier = AsyncMock(side_effect=DependencyError("down", retry_after_ms=2000))
    service = make_service(make_naming(), packaging)

    with pytest.raises(DependencyError):
        await service.compute(query(identifier="68180051401"))


@pytest.mark.asyncio
async def test_unparseable_sig_fails_before_registry_calls():
    naming = make_naming()
    packaging = make_packaging()
    service = make_service(naming, packaging)

    with pytest.raises(ParseError):
        await service.compute(query(sig="take as directed"))

    naming.lookup_by_name.assert_not_awaited()
    packaging.lookup_by_name.assert_not_awaited()


@pytest.mark.asyncio
async def test_stale_data_is_flagged():
    service = make_service(
        make_naming(package_ids=["00000000060"]),
        make_packaging([record("00000000060", 60)], is_stale=True),
    )

    result = await service.compute(query())

    assert NOTE_STALE_DATA in result.flags.notes
    assert result.selection.chosen.package_id == "00000000060"


@pytest.mark.asyncio
async def test_unit_override_and_preferred_package():
    records = [record("11111111111", 60), record("22222222222", 60)]
    service = make_service(
        make_naming(package_ids=["11111111111", "22222222222"]),
        make_packaging(records),
    )

    result = await service.compute(
        query(unit_override=DoseUnit.CAPSULE, preferred_package_ids=("22222222222",))
    )

    assert result.computed.unit == DoseUnit.CAPSULE
    assert result.selection.chosen.package_id == "22222222222"


@pytest.mark.asyncio
async def test_invalid_query_rejected():
    service = make_service(make_naming(), make_packaging())

    with pytest.raises(ValidationError):
        await service.compute(query(days_supply=0))


@pytest.mark.asyncio
async def test_total_budget_exceeded_is_dependency_failure():
    async def hang(name):
        await asyncio.sleep(5)

    naming = make_naming()
    naming.lookup_by_name = AsyncMock(side_effect=hang)
    service = make_service(
        naming,
        make_packaging(error=DependencyError("down")),
        compute_conf=ComputeConfig(total_timeout_seconds=0.05),
    )

    with pytest.raises(DependencyError) as exc_info:
        await service.compute(query())

    assert exc_info.value.retry_after_ms == 2000


@pytest.mark.asyncio
async def test_unexpected_error_becomes_internal_error():
    interpreter = MagicMock()
    interpreter.interpret = AsyncMock(side_effect=RuntimeError("boom"))
    service = make_service(make_naming(), make_packaging(), sig_interpreter=interpreter)

    with pytest.raises(InternalError):
        await service.compute(query())

    payload = await service.compute_payload({"drug_input": "lisinopril", "sig": "1 tab bid", "days_supply": 30})
    assert payload == {
        "error": "Internal Server Error",
        "error_code": "internal_error",
        "detail": "An unexpected error occurred",
    }


@pytest.mark.asyncio
async def test_compute_payload_success_shape():
    records = [record("00000000060", 60, brand_name="Lisinopril")]
    service = make_service(make_naming(package_ids=["00000000060"]), make_packaging(records))

    payload = await service.compute_payload(
        {"drug_input": "lisinopril", "sig": "1 tab po bid", "days_supply": 30}
    )

    assert payload["rxnorm"] == {"rxcui": "29046", "name": "lisinopril"}
    assert payload["computed"] == {"dose_unit": "tab", "per_day": 2, "total_qty": 60, "days_supply": 30}
    assert payload["ndc_selection"]["chosen"]["ndc"] == "00000000060"
    assert payload["ndc_selection"]["alternates"] == []
    assert payload["flags"] == {"inactive_ndcs": [], "mismatch": False, "notes": []}


@pytest.mark.asyncio
async def test_compute_payload_validation_error():
    service = make_service(make_naming(), make_packaging())

    payload = await service.compute_payload({"drug_input": "x", "sig": "1 tab bid", "days_supply": 30})

    assert payload["error_code"] == "validation_error"
    assert payload["field_errors"][0]["field"] == "drug_input"


@pytest.mark.asyncio
async def test_compute_payload_parse_error():
    service = make_service(make_naming(), make_packaging())

    payload = await service.compute_payload(
        {"drug_input": "lisinopril", "sig": "take as directed", "days_supply": 30}
    )

    assert payload["error_code"] == "parse_error"


def test_build_compute_service_without_llm_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    service = build_compute_service(AppConfig())

    assert isinstance(service, ComputeService)


@pytest.mark.asyncio
async def test_secondary_lookups_are_capped_and_rest_stay_unresolved():
    naming_ids = [f"{i:011d}" for i in range(1, 61)]
    packaging = make_packaging()
    service = make_service(make_naming(package_ids=naming_ids), packaging)

    result = await service.compute(query())

    # only the first 50 naming-only ids are looked up
    assert packaging.lookup_by_identifier.await_count == 50
    looked_up = [c.args[0] for c in packaging.lookup_by_identifier.await_args_list]
    assert sorted(looked_up) == naming_ids[:50]
    # all 60 surface as unresolved, including the 10 beyond the cap
    assert result.flags.inactive_package_ids == naming_ids
    assert result.selection.chosen is None
    assert NOTE_NO_ACTIVE in result.flags.notes


@pytest.mark.asyncio
async def test_secondary_lookup_cap_follows_config():
    naming_ids = [f"{i:011d}" for i in range(1, 6)]
    packaging = make_packaging()
    service = make_service(
        make_naming(package_ids=naming_ids),
        packaging,
        compute_conf=ComputeConfig(max_secondary_lookups=2),
    )

    result = await service.compute(query())

    assert packaging.lookup_by_identifier.await_count == 2
    assert result.flags.inactive_package_ids == naming_ids
