# tests/test_compute_one_script.py
import json

import pytest

from ndc_qty.scripts import compute_one


def test_build_payload_from_arguments():
    args = compute_one.build_parser().parse_args(
        ["--drug", "lisinopril", "--sig", "1 tab bid", "--days", "30", "--preferred", "68180-514-01", "--unit", "tab"]
    )

    assert compute_one.build_payload(args) == {
        "drug_input": "lisinopril",
        "sig": "1 tab bid",
        "days_supply": 30,
        "preferred_ndcs": ["68180-514-01"],
        "quantity_unit_override": "tab",
    }


def test_build_payload_omits_optional_fields():
    args = compute_one.build_parser().parse_args(["--drug", "metformin", "--sig", "1 tab bid", "--days", "90"])

    assert compute_one.build_payload(args) == {"drug_input": "metformin", "sig": "1 tab bid", "days_supply": 90}


def test_unknown_unit_rejected_by_parser():
    with pytest.raises(SystemExit):
        compute_one.build_parser().parse_args(["--drug", "x", "--sig", "y", "--days", "1", "--unit", "pill"])


@pytest.mark.parametrize(
    "result, exit_code",
    [
        ({"computed": {"total_qty": 60}}, 0),
        ({"error": "Could not parse SIG", "error_code": "parse_error"}, 1),
    ],
)
def test_main_prints_result_and_sets_exit_code(monkeypatch, capsys, result, exit_code):
    seen = {}

    async def fake_run(payload):
        seen["payload"] = payload
        return result

    monkeypatch.setattr(compute_one, "run", fake_run)

    code = compute_one.main(["--drug", "lisinopril", "--sig", "1 tab bid", "--days", "30"])

    assert code == exit_code
    assert json.loads(capsys.readouterr().out) == result
    assert seen["payload"]["drug_input"] == "lisinopril"
