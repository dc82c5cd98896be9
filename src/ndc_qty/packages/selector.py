# src/ndc_qty/packages/selector.py
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from ndc_qty.config import SelectionConfig
from ndc_qty.data_models import PackageCandidate, PackageOption, PackageSelection, is_eligible
from ndc_qty.registry.identifiers import normalize_package_id

logger = logging.getLogger(__name__)

EXACT_MATCH_SCORE = 1000.0
# float slack so that e.g. 110 for 100 counts as exactly 10% overfill
_TOLERANCE = 1e-9


class PackageSelector:
    """
    Ranks (package, pack count) combinations against the required quantity.

    Scoring of one combination:
    - underfill, or overfill above max_overfill -> excluded;
    - exact fill -> 1000;
    - overfill within tolerance -> 1000 * (1 - overfill / max_overfill);
    - minus pack_penalty for every pack beyond the first;
    - plus preferred_bonus when the package is one the caller prefers.
    Options scoring <= 0 are dropped. Ties keep the order of the input pool.
    """

    def __init__(self, selection_conf: Optional[SelectionConfig] = None) -> None:
        self._conf = selection_conf or SelectionConfig()

    def score_option(self, overfill_ratio: float, packs: int, preferred: bool) -> float:
        if overfill_ratio < 0 or overfill_ratio > self._conf.max_overfill + _TOLERANCE:
            return 0.0

        if overfill_ratio == 0:
            score = EXACT_MATCH_SCORE
        else:
            score = EXACT_MATCH_SCORE * (1 - overfill_ratio / self._conf.max_overfill)

        score -= self._conf.pack_penalty * (packs - 1)
        if preferred:
            score += self._conf.preferred_bonus
        return score

    def options(
        self,
        candidates: Iterable[PackageCandidate],
        total_quantity: float,
        preferred_ids: Sequence[str] = (),
    ) -> List[PackageOption]:
        """Every scoring combination, in generation order (unsorted)."""
        if total_quantity <= 0:
            return []

        preferred = {pid for pid in (normalize_package_id(p) for p in preferred_ids) if pid}
        options: List[PackageOption] = []

        for candidate in candidates:
            if not is_eligible(candidate):
                continue
            record = candidate.record
            for packs in range(1, self._conf.max_packs + 1):
                overfill = (record.pack_size * packs - total_quantity) / total_quantity
                # underfill and excess overfill are excluded before any bonus
                if overfill < 0 or overfill > self._conf.max_overfill + _TOLERANCE:
                    continue
                score = self.score_option(overfill, packs, record.package_id in preferred)
                if score <= 0:
                    continue
                options.append(
                    PackageOption(
                        package_id=record.package_id,
                        pack_size=record.pack_size,
                        packs=packs,
                        overfill_ratio=round(overfill, 6),
                        score=score,
                        brand_name=record.brand_name,
                        dosage_form=record.dosage_form,
                    )
                )
        return options

    def select(
        self,
        candidates: Iterable[PackageCandidate],
        total_quantity: float,
        preferred_ids: Sequence[str] = (),
    ) -> PackageSelection:
        options = self.options(candidates, total_quantity, preferred_ids)
        if not options:
            logger.info("No package combination fits quantity %s", total_quantity)
            return PackageSelection()

        # sorted() is stable, equal scores keep pool order
        ranked = sorted(options, key=lambda option: option.score, reverse=True)
        selection = PackageSelection(
            chosen=ranked[0],
            alternates=ranked[1 : 1 + self._conf.max_alternates],
        )
        logger.info(
            "Selected package %s x%s (score=%.1f, %s alternates)",
            selection.chosen.package_id,
            selection.chosen.packs,
            selection.chosen.score,
            len(selection.alternates),
        )
        return selection
