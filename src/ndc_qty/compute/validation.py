# src/ndc_qty/compute/validation.py
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Mapping, Optional

import pydantic
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, StrictInt

from ndc_qty.data_models import DoseUnit, DrugQuery
from ndc_qty.errors import ValidationError
from ndc_qty.registry.identifiers import normalize_package_id

MAX_PREFERRED_IDS = 10


def _package_id(value: str) -> str:
    package_id = normalize_package_id(value)
    if package_id is None:
        raise ValueError("not a valid NDC")
    return package_id


PackageId = Annotated[str, AfterValidator(_package_id)]


class ComputeRequest(BaseModel):
    """Inbound compute request, field names as on the wire."""

    model_config = ConfigDict(str_strip_whitespace=True)

    drug_input: str = Field(min_length=2, max_length=200)
    sig: str = Field(min_length=3, max_length=500)
    # StrictInt: bool and "30" are rejected
    days_supply: StrictInt = Field(ge=1, le=365)
    preferred_ndcs: Optional[List[PackageId]] = Field(default=None, max_length=MAX_PREFERRED_IDS)
    quantity_unit_override: Optional[DoseUnit] = None

    def to_query(self) -> DrugQuery:
        return DrugQuery(
            identifier=self.drug_input,
            sig=self.sig,
            days_supply=self.days_supply,
            preferred_package_ids=tuple(self.preferred_ndcs or ()),
            unit_override=self.quantity_unit_override,
        )


def _field_name(loc: tuple) -> str:
    # ("preferred_ndcs", 1) -> "preferred_ndcs[1]"
    name = ""
    for part in loc:
        if isinstance(part, int):
            name += f"[{part}]"
        else:
            name = f"{name}.{part}" if name else str(part)
    return name or "request"


def field_errors(exc: pydantic.ValidationError) -> List[Dict[str, str]]:
    return [{"field": _field_name(tuple(e["loc"])), "message": e["msg"]} for e in exc.errors()]


def validate_payload(payload: Mapping[str, Any]) -> DrugQuery:
    """
    Raw request dict -> DrugQuery.

    Every field is checked; all problems are reported together in
    ValidationError.field_errors.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Invalid request", detail="request body must be an object")

    try:
        request = ComputeRequest.model_validate(dict(payload))
    except pydantic.ValidationError as exc:
        errors = field_errors(exc)
        raise ValidationError(
            "Invalid request",
            detail="; ".join(f"{e['field']}: {e['message']}" for e in errors),
            field_errors=errors,
        ) from exc
    return request.to_query()


def validate_query(query: DrugQuery) -> DrugQuery:
    """Applies the request rules to an already built DrugQuery."""
    return validate_payload(
        {
            "drug_input": query.identifier,
            "sig": query.sig,
            "days_supply": query.days_supply,
            "preferred_ndcs": list(query.preferred_package_ids),
            "quantity_unit_override": query.unit_override,
        }
    )
