# src/ndc_qty/llm_client/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ndc_qty.data_models import DoseUnit


class LLMError(Exception):
    """Base error of the fallback text-service client."""


class LLMRetryableError(LLMError):
    """Transient failure (5xx, 429, timeout) that outlived the retries."""


@dataclass
class FallbackResult:
    """
    Structured answer of the text service, mapped but not judged.
    unit is None when the returned unit is not one of the canonical units.
    """
    unit: Optional[DoseUnit]
    per_day: Optional[float]
    confidence: float
    raw_response: Dict[str, Any] = field(default_factory=dict)


class SigFallbackClient(ABC):
    """
    Last-resort interpreter of dosing instructions.

    Takes the raw SIG text, returns {unit, per_day, confidence}.
    """

    @abstractmethod
    async def interpret_raw(self, sig: str) -> Dict[str, Any]:
        """
        Calls the text service and returns its JSON answer as a dict.

        Retries, timeouts and mapping of HTTP/network failures to
        LLMError / LLMRetryableError happen here.
        """
        raise NotImplementedError

    @abstractmethod
    async def interpret(self, sig: str) -> FallbackResult:
        """
        Wraps interpret_raw and maps the answer to FallbackResult.
        Does NOT apply confidence thresholds or dose bounds, SigInterpreter does.
        """
        raise NotImplementedError
