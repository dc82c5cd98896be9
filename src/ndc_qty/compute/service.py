# src/ndc_qty/compute/service.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from ndc_qty.compute.merge import BranchOutcome, gather_outcomes, merge_candidates, registries_disagree
from ndc_qty.compute.validation import validate_payload, validate_query
from ndc_qty.config import AppConfig, ComputeConfig, config
from ndc_qty.data_models import (
    ComputeFlags,
    ComputeResult,
    DrugQuery,
    NormalizedDrug,
    PackageCandidate,
    PackageRecord,
    ResolvedPackage,
    inactive_ids,
    is_eligible,
)
from ndc_qty.errors import DependencyError, InternalError, NdcQtyError, ParseError, RateLimitError, error_to_dict
from ndc_qty.packages.selector import PackageSelector
from ndc_qty.quantity.computer import QuantityComputer, align_pack_sizes
from ndc_qty.registry.identifiers import is_package_identifier, normalize_package_id
from ndc_qty.registry.naming_client import NamingRegistryClient
from ndc_qty.registry.packaging_client import PackagingRegistryClient
from ndc_qty.sig.interpreter import SigInterpreter, build_sig_interpreter

logger = logging.getLogger(__name__)

NOTE_NAMING_FAILED = "RxNorm API call failed - using FDA data only"
NOTE_PACKAGING_FAILED = "FDA API call failed - using RxNorm data only"
NOTE_STALE_DATA = "Registry data served from cache and may be out of date"
NOTE_NO_ACTIVE = "No active NDCs available for this drug"
NOTE_NO_FIT = "No suitable package found matching quantity requirements"
NOTE_MISMATCH = "RxNorm and FDA disagree on the NDCs for this drug"


@dataclass
class NamingBranch:
    canonical_id: Optional[str]
    display_name: Optional[str]
    package_ids: Tuple[str, ...] = ()
    used_stale: bool = False


@dataclass
class PackagingBranch:
    records: Tuple[PackageRecord, ...] = ()
    used_stale: bool = False
    display_name: Optional[str] = None


class ComputeService:
    """
    Compute handler: one DrugQuery -> ComputeResult.

    Pipeline:
    1) SIG -> per-day dose (ParseError when nothing matches);
    2) naming and packaging registries queried concurrently, one failure tolerated;
    3) merge into package candidates;
    4) quantity for the detected dosage form;
    5) package selection and diagnostic flags.
    """

    def __init__(
        self,
        naming_client: NamingRegistryClient,
        packaging_client: PackagingRegistryClient,
        sig_interpreter: SigInterpreter,
        quantity_computer: Optional[QuantityComputer] = None,
        package_selector: Optional[PackageSelector] = None,
        compute_conf: Optional[ComputeConfig] = None,
    ) -> None:
        self._naming = naming_client
        self._packaging = packaging_client
        self._sig_interpreter = sig_interpreter
        self._quantity_computer = quantity_computer or QuantityComputer()
        self._package_selector = package_selector or PackageSelector()
        self._conf = compute_conf or ComputeConfig()

    async def compute(self, query: DrugQuery) -> ComputeResult:
        query = validate_query(query)
        try:
            return await asyncio.wait_for(self._compute(query), timeout=self._conf.total_timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.error("Compute exceeded %.1fs budget", self._conf.total_timeout_seconds)
            raise DependencyError(
                "Upstream registries did not respond in time",
                detail=f"Request exceeded {self._conf.total_timeout_seconds:g}s",
                retry_after_ms=self._conf.dependency_retry_after_ms,
            ) from exc
        except NdcQtyError:
            raise
        except Exception as exc:
            logger.exception("Unexpected error while computing quantity")
            raise InternalError("Internal Server Error", detail="An unexpected error occurred") from exc

    async def compute_payload(self, payload: Mapping[str, Any]) -> Dict[str, Any]:
        """Raw request dict -> result dict or error dict. Never raises."""
        try:
            query = validate_payload(payload)
            result = await self.compute(query)
        except NdcQtyError as exc:
            logger.warning("Compute failed with %s: %s", exc.error_code, exc.message)
            return exc.to_dict()
        except Exception as exc:
            logger.exception("Unexpected error while handling compute payload")
            return error_to_dict(exc)
        return result.to_dict()

    async def _compute(self, query: DrugQuery) -> ComputeResult:
        interpretation = await self._sig_interpreter.interpret(query.sig, query.unit_override)
        if interpretation.parsed is None:
            raise ParseError(
                "Could not parse SIG",
                detail="Please use a standard format such as '1 tablet twice daily'",
            )

        notes: List[str] = []
        naming, packaging = await self._acquire(query, notes)

        merged = await merge_candidates(
            packaging.records if packaging else (),
            naming.package_ids if naming else (),
            self._packaging.lookup_by_identifier,
            max_lookups=self._conf.max_secondary_lookups,
        )
        candidates: List[PackageCandidate] = merged.candidates

        mismatch = False
        if naming is not None and packaging is not None:
            mismatch = registries_disagree([r.package_id for r in packaging.records], naming.package_ids)
            if mismatch:
                logger.warning("Registries disagree on package identifiers for %s", naming.canonical_id)
                notes.append(NOTE_MISMATCH)

        used_stale = merged.used_stale or bool(naming and naming.used_stale) or bool(packaging and packaging.used_stale)
        if used_stale:
            notes.append(NOTE_STALE_DATA)

        display_name = (naming.display_name if naming else None) or (packaging.display_name if packaging else None)
        normalized_drug = NormalizedDrug(
            canonical_id=naming.canonical_id if naming else None,
            display_name=display_name,
        )

        records = [c.record for c in candidates if isinstance(c, ResolvedPackage)]
        calculation = self._quantity_computer.compute_with_metadata(
            interpretation.parsed,
            query.days_supply,
            drug_name=self._drug_name(query, display_name),
            packages=records,
        )
        notes.extend(calculation.notes)

        eligible = align_pack_sizes([c for c in candidates if is_eligible(c)], calculation)
        selection = self._package_selector.select(
            eligible, calculation.computed.total_quantity, query.preferred_package_ids
        )
        if not eligible:
            notes.append(NOTE_NO_ACTIVE)
        elif selection.chosen is None:
            notes.append(NOTE_NO_FIT)

        flags = ComputeFlags(inactive_package_ids=inactive_ids(candidates), mismatch=mismatch, notes=notes)
        logger.info(
            "Compute finished: rxcui=%s candidates=%s inactive=%s chosen=%s",
            normalized_drug.canonical_id,
            len(candidates),
            len(flags.inactive_package_ids),
            selection.chosen.package_id if selection.chosen else None,
        )
        return ComputeResult(
            normalized_drug=normalized_drug,
            computed=calculation.computed,
            selection=selection,
            flags=flags,
        )

    async def _acquire(
        self, query: DrugQuery, notes: List[str]
    ) -> Tuple[Optional[NamingBranch], Optional[PackagingBranch]]:
        if is_package_identifier(query.identifier):
            # an NDC needs no name resolution, the packaging registry answers directly
            (outcome,) = await gather_outcomes(self._packaging_by_identifier(query.identifier))
            if not outcome.ok:
                raise self._acquisition_error([outcome])
            return None, outcome.value

        naming_outcome, packaging_outcome = await gather_outcomes(
            self._naming_branch(query.identifier),
            self._packaging_branch(query.identifier),
        )

        if not naming_outcome.ok and not packaging_outcome.ok:
            raise self._acquisition_error([naming_outcome, packaging_outcome])

        if not naming_outcome.ok:
            logger.warning("Naming registry branch failed: %s", naming_outcome.error)
            notes.append(NOTE_NAMING_FAILED)
        if not packaging_outcome.ok:
            logger.warning("Packaging registry branch failed: %s", packaging_outcome.error)
            notes.append(NOTE_PACKAGING_FAILED)

        return naming_outcome.value, packaging_outcome.value

    async def _naming_branch(self, name: str) -> NamingBranch:
        used_stale = False
        display_name: Optional[str] = name

        by_name = await self._naming.lookup_by_name(name)
        used_stale = used_stale or by_name.is_stale
        canonical_id = by_name.value

        if canonical_id is None:
            approximate = await self._naming.approximate_match(name)
            used_stale = used_stale or approximate.is_stale
            if approximate.value is not None:
                canonical_id = approximate.value.canonical_id
                display_name = approximate.value.name or name

        package_ids: Tuple[str, ...] = ()
        if canonical_id is not None:
            ndcs = await self._naming.lookup_by_identifier(canonical_id)
            used_stale = used_stale or ndcs.is_stale
            package_ids = ndcs.value

        logger.info("Naming branch: rxcui=%s, %s package ids", canonical_id, len(package_ids))
        return NamingBranch(canonical_id, display_name, package_ids, used_stale)

    async def _packaging_branch(self, name: str) -> PackagingBranch:
        by_name = await self._packaging.lookup_by_name(name)
        records, used_stale = by_name.value, by_name.is_stale
        if not records:
            approximate = await self._packaging.approximate_match(name)
            records, used_stale = approximate.value, used_stale or approximate.is_stale

        logger.info("Packaging branch: %s records", len(records))
        return PackagingBranch(records=tuple(records), used_stale=used_stale)

    async def _packaging_by_identifier(self, identifier: str) -> PackagingBranch:
        lookup = await self._packaging.lookup_by_identifier(identifier)
        record = lookup.value
        logger.info("Direct package lookup for %s: %s", normalize_package_id(identifier), "found" if record else "not found")
        return PackagingBranch(
            records=(record,) if record else (),
            used_stale=lookup.is_stale,
            display_name=record.brand_name if record else None,
        )

    @staticmethod
    def _drug_name(query: DrugQuery, display_name: Optional[str]) -> Optional[str]:
        parts: List[str] = []
        if not is_package_identifier(query.identifier):
            parts.append(query.identifier)
        if display_name and display_name not in parts:
            parts.append(display_name)
        return " ".join(parts) or None

    def _acquisition_error(self, outcomes: List[BranchOutcome]) -> NdcQtyError:
        errors = [o.error for o in outcomes if o.error is not None]
        hints = [e.retry_after_ms for e in errors if isinstance(e, NdcQtyError) and e.retry_after_ms]
        retry_after_ms = max(hints) if hints else self._conf.dependency_retry_after_ms

        for error in errors:
            logger.error("Registry lookup failed: %s", error)

        if errors and all(isinstance(e, RateLimitError) for e in errors):
            return RateLimitError(
                "Rate limit exceeded for drug registries",
                detail="Please retry after the suggested delay",
                retry_after_ms=retry_after_ms,
            )
        return DependencyError(
            "Drug registries unavailable",
            detail="No registry lookup succeeded",
            retry_after_ms=retry_after_ms,
        )


def build_compute_service(app_config: AppConfig = config) -> ComputeService:
    return ComputeService(
        naming_client=NamingRegistryClient(app_config.naming_registry),
        packaging_client=PackagingRegistryClient(app_config.packaging_registry),
        sig_interpreter=build_sig_interpreter(app_config),
        quantity_computer=QuantityComputer(max_per_day=app_config.sig.max_per_day),
        package_selector=PackageSelector(app_config.selection),
        compute_conf=app_config.compute,
    )
