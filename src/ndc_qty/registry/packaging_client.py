# src/ndc_qty/registry/packaging_client.py
from __future__ import annotations

import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ndc_qty.config import RegistryApiConfig
from ndc_qty.data_models import PackageRecord
from ndc_qty.registry.base import LookupResult, RegistryClient
from ndc_qty.registry.identifiers import normalize_package_id, package_identifier_layouts

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 100

# "5 SYRINGE in 1 CARTON" -> count 5, unit "SYRINGE"
_SEGMENT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s+(.+?)\s+in\s+\d", re.IGNORECASE)
_LEADING_COUNT_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)")
_IDENTIFIER_SUFFIX_RE = re.compile(r"\s*\([\d-]+\)\s*$")


def parse_pack_size(description: Optional[str]) -> Tuple[float, Optional[str]]:
    """
    Total dispensable amount in one package and its unit.

    Nested packaging is multiplied out:
    "5 SYRINGE in 1 CARTON > 3 mL in 1 SYRINGE" -> (15.0, "mL").
    Returns (0.0, None) when no count can be read.
    """
    if not description:
        return 0.0, None

    total = 1.0
    found = False
    unit: Optional[str] = None
    for segment in description.split(">"):
        segment = _IDENTIFIER_SUFFIX_RE.sub("", segment)
        match = _SEGMENT_RE.match(segment) or _LEADING_COUNT_RE.match(segment)
        if not match:
            continue
        total *= float(match.group(1))
        found = True
        if match.re is _SEGMENT_RE:
            unit = match.group(2).strip()
    if not found:
        return 0.0, None
    if unit and unit.lower() == "ml":
        unit = "mL"
    return total, unit


def _parse_active_flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return None


def _parse_date(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(str(value).strip(), "%Y%m%d").date()
    except ValueError:
        return None


class PackagingRegistryClient(RegistryClient):
    """
    Client of the authoritative packaging registry (openFDA NDC directory).

    Each product of a search response lists its packages; every package
    becomes one PackageRecord keyed by its normalized identifier.
    """

    def __init__(
        self,
        registry_conf: RegistryApiConfig,
        *,
        today: Callable[[], date] = date.today,
        **kwargs: Any,
    ) -> None:
        super().__init__(registry_conf, **kwargs)
        self._today = today

    def _search_params(self, search: str, limit: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {"search": search, "limit": limit}
        if self._conf.api_key:
            params["api_key"] = self._conf.api_key
        return params

    async def _search(self, search: str, limit: int = SEARCH_LIMIT) -> List[PackageRecord]:
        data = await self._get_json(self._base_url, params=self._search_params(search, limit))
        products = (data or {}).get("results") or []
        return self._records_from_products(products)

    def _is_active(self, product: Dict[str, Any], package: Dict[str, Any]) -> bool:
        for source in (package, product):
            flag = _parse_active_flag(source.get("active"))
            if flag is not None:
                return flag
        end = _parse_date(package.get("marketing_end_date") or product.get("marketing_end_date"))
        if end is not None and end < self._today():
            return False
        return True

    def _records_from_products(self, products: Iterable[Dict[str, Any]]) -> List[PackageRecord]:
        records: Dict[str, PackageRecord] = {}
        for product in products:
            if not isinstance(product, dict):
                continue
            for package in product.get("packaging") or []:
                package_id = normalize_package_id(package.get("package_ndc"))
                if package_id is None or package_id in records:
                    continue
                description = package.get("description")
                pack_size, pack_unit = parse_pack_size(description)
                records[package_id] = PackageRecord(
                    package_id=package_id,
                    pack_size=pack_size,
                    is_active=self._is_active(product, package),
                    dosage_form=product.get("dosage_form"),
                    brand_name=product.get("brand_name") or product.get("generic_name"),
                    package_description=description,
                    pack_unit=pack_unit,
                )
        return list(records.values())

    async def lookup_by_identifier(
        self, package_id: str, *, allow_stale: bool = False
    ) -> LookupResult[Optional[PackageRecord]]:
        normalized = normalize_package_id(package_id)
        if normalized is None:
            logger.info("Not a package identifier, skipping packaging lookup")
            return LookupResult(value=None)

        async def fetch() -> Optional[PackageRecord]:
            # the registry stores 10-digit layouts only; OR every one the id could have
            search = " ".join(
                f'packaging.package_ndc:"{layout}"' for layout in package_identifier_layouts(normalized)
            )
            for record in await self._search(search, limit=5):
                if record.package_id == normalized:
                    return record
            return None

        return await self._cached_lookup("ndc", normalized, fetch, None, allow_stale=allow_stale)

    async def lookup_by_name(
        self, name: str, *, allow_stale: bool = False
    ) -> LookupResult[Tuple[PackageRecord, ...]]:
        term = name.replace('"', "").strip()

        async def fetch() -> Tuple[PackageRecord, ...]:
            # space separated clauses are OR-ed by the registry
            search = f'brand_name:"{term}" generic_name:"{term}"'
            return tuple(await self._search(search))

        return await self._cached_lookup("name", term, fetch, (), allow_stale=allow_stale)

    async def approximate_match(
        self, term: str, *, allow_stale: bool = False
    ) -> LookupResult[Tuple[PackageRecord, ...]]:
        """Prefix search on the brand name; wildcards only work on a single bare word."""
        words = re.findall(r"[a-z0-9]+", term.lower())
        if not words:
            return LookupResult(value=())
        prefix = words[0]

        async def fetch() -> Tuple[PackageRecord, ...]:
            return tuple(await self._search(f"brand_name:{prefix}*"))

        return await self._cached_lookup("approximate", prefix, fetch, (), allow_stale=allow_stale)
