# src/ndc_qty/sig/interpreter.py
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional, Union

from ndc_qty.config import AppConfig, config
from ndc_qty.data_models import DoseUnit, ParsedDose, SigInterpretation
from ndc_qty.llm_client.base import LLMError, SigFallbackClient
from ndc_qty.llm_client.provider_client import ProviderSigFallbackClient
from ndc_qty.sig.rules import parse_frequency_based, parse_time_based
from ndc_qty.units.conversions import normalize_unit

logger = logging.getLogger(__name__)


class SigInterpreter:
    """
    Turns free-text dosing instructions into a per-day dose.

    Responsible for:
    - the deterministic stages (time-based first, then frequency-based);
    - the fallback text service, only when both stages fail and it is enabled;
    - applying the caller's unit override on every path without touching per_day.

    Never guesses: when nothing matches, the result has method "failed".
    """

    def __init__(
        self,
        fallback_client: Optional[SigFallbackClient] = None,
        *,
        fallback_enabled: bool = True,
        min_confidence: float = 0.5,
        max_per_day: float = 100.0,
    ) -> None:
        self._fallback_client = fallback_client
        self._fallback_enabled = fallback_enabled and fallback_client is not None
        self._min_confidence = min_confidence
        self._max_per_day = max_per_day

    @property
    def fallback_enabled(self) -> bool:
        return self._fallback_enabled

    async def interpret(
        self,
        sig: str,
        unit_override: Optional[Union[DoseUnit, str]] = None,
    ) -> SigInterpretation:
        override = self._coerce_unit(unit_override)

        result = parse_time_based(sig, max_per_day=self._max_per_day)
        if result is None:
            result = parse_frequency_based(sig, unit_override=override, max_per_day=self._max_per_day)

        if result is None and self._fallback_enabled:
            result = await self._interpret_with_fallback(sig, override)

        if result is None:
            logger.info("SIG could not be interpreted by any stage")
            return SigInterpretation.failed()

        logger.info("SIG interpreted via %s (%s)", result.method, result.sub_method or "-")
        return self._apply_override(result, override)

    async def parse(
        self,
        sig: str,
        unit_override: Optional[Union[DoseUnit, str]] = None,
    ) -> Optional[ParsedDose]:
        return (await self.interpret(sig, unit_override)).parsed

    async def _interpret_with_fallback(
        self, sig: str, override: Optional[DoseUnit]
    ) -> Optional[SigInterpretation]:
        if self._fallback_client is None:
            return None
        try:
            answer = await self._fallback_client.interpret(sig)
        except LLMError as exc:
            logger.warning("SIG fallback failed: %s", exc)
            return None

        if answer.confidence < self._min_confidence:
            logger.warning("SIG fallback answer rejected, confidence %.2f", answer.confidence)
            return None

        unit = answer.unit or override
        if unit is None:
            logger.warning("SIG fallback answer rejected, unknown unit")
            return None

        per_day = answer.per_day
        if per_day is None or not 0 < per_day <= self._max_per_day:
            logger.warning("SIG fallback answer rejected, per_day out of bounds")
            return None

        return SigInterpretation(
            parsed=ParsedDose(unit=unit, per_day=per_day),
            method="fallback",
            confidence=answer.confidence,
        )

    @staticmethod
    def _coerce_unit(unit: Optional[Union[DoseUnit, str]]) -> Optional[DoseUnit]:
        if unit is None or isinstance(unit, DoseUnit):
            return unit
        normalized = normalize_unit(unit)
        if normalized is None:
            raise ValueError(f"Unknown unit override: {unit!r}")
        return normalized

    @staticmethod
    def _apply_override(result: SigInterpretation, override: Optional[DoseUnit]) -> SigInterpretation:
        if override is None or result.parsed is None or result.parsed.unit == override:
            return result
        return replace(result, parsed=ParsedDose(unit=override, per_day=result.parsed.per_day))


def build_sig_interpreter(app_config: AppConfig = config) -> SigInterpreter:
    """
    Wires the interpreter from configuration. The fallback is switched off
    with a warning when it is enabled but no API key is configured.
    """
    fallback_client: Optional[SigFallbackClient] = None
    if app_config.sig.fallback_enabled:
        try:
            fallback_client = ProviderSigFallbackClient(app_config.llm)
        except LLMError as exc:
            logger.warning("SIG fallback disabled: %s", exc)

    return SigInterpreter(
        fallback_client,
        fallback_enabled=fallback_client is not None,
        min_confidence=app_config.sig.min_confidence,
        max_per_day=app_config.sig.max_per_day,
    )
