# src/ndc_qty/registry/naming_client.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ndc_qty.registry.base import LookupResult, RegistryClient
from ndc_qty.registry.identifiers import normalize_package_id


@dataclass(frozen=True)
class ApproximateMatch:
    canonical_id: str
    name: Optional[str]
    score: float


def _as_list(value: Any) -> List[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _score(candidate: Dict[str, Any]) -> float:
    try:
        return float(candidate.get("score", 0))
    except (TypeError, ValueError):
        return 0.0


class NamingRegistryClient(RegistryClient):
    """
    Client of the naming / crosswalk registry (RxNav REST).

    Maps drug names to canonical concept ids (RxCUI) and concept ids to the
    package identifiers known for them.
    """

    APPROXIMATE_MAX_ENTRIES = 5

    async def lookup_by_name(self, name: str, *, allow_stale: bool = False) -> LookupResult[Optional[str]]:
        async def fetch() -> Optional[str]:
            data = await self._get_json(f"{self._base_url}/rxcui.json", params={"name": name})
            ids = _as_list(((data or {}).get("idGroup") or {}).get("rxnormId"))
            return str(ids[0]) if ids else None

        return await self._cached_lookup("name", name, fetch, None, allow_stale=allow_stale)

    async def approximate_match(
        self, term: str, *, allow_stale: bool = False
    ) -> LookupResult[Optional[ApproximateMatch]]:
        async def fetch() -> Optional[ApproximateMatch]:
            data = await self._get_json(
                f"{self._base_url}/approximateTerm.json",
                params={"term": term, "maxEntries": self.APPROXIMATE_MAX_ENTRIES},
            )
            candidates = [
                c
                for c in _as_list(((data or {}).get("approximateGroup") or {}).get("candidate"))
                if isinstance(c, dict) and c.get("rxcui")
            ]
            if not candidates:
                return None
            # max() keeps the first of equal scores, i.e. the registry's own rank
            best = max(candidates, key=_score)
            return ApproximateMatch(
                canonical_id=str(best["rxcui"]),
                name=best.get("name") or None,
                score=_score(best),
            )

        return await self._cached_lookup("approximate", term, fetch, None, allow_stale=allow_stale)

    async def lookup_by_identifier(
        self, canonical_id: str, *, allow_stale: bool = False
    ) -> LookupResult[Tuple[str, ...]]:
        """Package identifiers (normalized, de-duplicated) listed for a concept id."""

        async def fetch() -> Tuple[str, ...]:
            data = await self._get_json(f"{self._base_url}/rxcui/{canonical_id}/ndcs.json")
            ndc_list = ((data or {}).get("ndcGroup") or {}).get("ndcList") or {}
            seen: Dict[str, None] = {}
            for raw in _as_list(ndc_list.get("ndc")):
                package_id = normalize_package_id(raw)
                if package_id is not None:
                    seen.setdefault(package_id, None)
            return tuple(seen)

        return await self._cached_lookup("ndcs", canonical_id, fetch, (), allow_stale=allow_stale)
