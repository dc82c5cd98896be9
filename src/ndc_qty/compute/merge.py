# src/ndc_qty/compute/merge.py
"""
Fan-out helpers and the registry merge rule.

Packaging records are authoritative. Identifiers only the naming registry
knows are looked up one by one in the packaging registry; whatever stays
unconfirmed is kept as UnresolvedPackage so it surfaces as a warning.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Sequence, TypeVar

from ndc_qty.data_models import PackageCandidate, PackageRecord, ResolvedPackage, UnresolvedPackage
from ndc_qty.registry.base import LookupResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class BranchOutcome(Generic[T]):
    """Result or error of one concurrent branch."""
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_outcomes(*aws: Awaitable[Any]) -> List[BranchOutcome]:
    """
    Waits for every awaitable; a failing branch never cancels the others.
    Cancellation of the caller still propagates.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    outcomes: List[BranchOutcome] = []
    for result in results:
        if isinstance(result, Exception):
            outcomes.append(BranchOutcome(error=result))
        elif isinstance(result, BaseException):
            raise result
        else:
            outcomes.append(BranchOutcome(value=result))
    return outcomes


@dataclass
class MergeResult:
    candidates: List[PackageCandidate] = field(default_factory=list)
    used_stale: bool = False
    lookups: int = 0


def registries_disagree(packaging_ids: Sequence[str], naming_ids: Sequence[str]) -> bool:
    return set(packaging_ids) != set(naming_ids)


async def merge_candidates(
    packaging_records: Sequence[PackageRecord],
    naming_ids: Sequence[str],
    resolve: Callable[[str], Awaitable[LookupResult[Optional[PackageRecord]]]],
    max_lookups: int = 50,
) -> MergeResult:
    records: Dict[str, PackageRecord] = {}
    for record in packaging_records:
        records.setdefault(record.package_id, record)

    missing: List[str] = []
    for package_id in naming_ids:
        if package_id not in records and package_id not in missing:
            missing.append(package_id)

    to_lookup = missing[:max_lookups]
    if len(missing) > len(to_lookup):
        logger.warning(
            "Skipping packaging lookup for %s identifiers over the cap of %s",
            len(missing) - len(to_lookup),
            max_lookups,
        )

    semaphore = asyncio.Semaphore(max(1, max_lookups))

    async def bounded(package_id: str) -> LookupResult[Optional[PackageRecord]]:
        async with semaphore:
            return await resolve(package_id)

    outcomes = await gather_outcomes(*(bounded(package_id) for package_id in to_lookup))

    result = MergeResult(
        candidates=[ResolvedPackage(record) for record in records.values()],
        lookups=len(to_lookup),
    )
    resolved: Dict[str, PackageRecord] = {}
    for package_id, outcome in zip(to_lookup, outcomes):
        if not outcome.ok:
            logger.warning("Secondary lookup for %s failed: %s", package_id, outcome.error)
            continue
        lookup = outcome.value
        result.used_stale = result.used_stale or lookup.is_stale
        if lookup.value is not None:
            resolved[package_id] = lookup.value

    for package_id in missing:
        record = resolved.get(package_id)
        if record is not None:
            result.candidates.append(ResolvedPackage(record))
        else:
            result.candidates.append(UnresolvedPackage(package_id))

    logger.info(
        "Merged %s packaging records with %s naming-only identifiers (%s resolved)",
        len(records),
        len(missing),
        len(resolved),
    )
    return result
