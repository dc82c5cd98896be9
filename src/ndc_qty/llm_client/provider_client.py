# src/ndc_qty/llm_client/provider_client.py
from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from ndc_qty.config import LLMApiConfig, config
from ndc_qty.llm_client.base import FallbackResult, LLMError, LLMRetryableError, SigFallbackClient
from ndc_qty.resilience.retry import RETRYABLE_STATUS_CODES, retry_async
from ndc_qty.sig.prompt_builder import PROMPT_SYSTEM_INSTRUCTIONS, PromptBuilder
from ndc_qty.units.conversions import normalize_unit

logger = logging.getLogger(__name__)


class ProviderSigFallbackClient(SigFallbackClient):
    """
    SigFallbackClient over an OpenAI-compatible chat completions API.
    """

    def __init__(
        self,
        llm_conf: Optional[LLMApiConfig] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        llm_conf = llm_conf or config.llm
        self._conf = llm_conf
        self._base_url = llm_conf.base_url
        self._api_key = os.getenv(llm_conf.api_key_env_var, "")
        if not self._api_key:
            # configuration error, the caller decides whether to run without fallback
            raise LLMError(f"Missing API key in env var {llm_conf.api_key_env_var}")

        self._timeout = llm_conf.timeout_seconds
        self._retry_conf = llm_conf.retry
        self._prompt_builder = PromptBuilder()
        self._sleep = sleep

    async def _post_with_retries(self, endpoint: str, json: Dict[str, Any]) -> httpx.Response:
        """
        POST with retries on 5xx/429/timeout. Other statuses are returned as is.
        """
        url = f"{self._base_url.rstrip('/')}/{endpoint.lstrip('/')}"

        async def send() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(url, json=json, headers=self._build_headers())
            if response.status_code >= 500 or response.status_code in RETRYABLE_STATUS_CODES:
                response.raise_for_status()
            return response

        try:
            return await retry_async(
                send, self._retry_conf, sleep=self._sleep, context={"operation": "sig fallback"}
            )
        except httpx.HTTPStatusError as exc:
            raise LLMRetryableError(
                f"Request to {url} failed with status {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, OSError, asyncio.TimeoutError) as exc:
            raise LLMRetryableError(f"Request to {url} failed after retries") from exc

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    async def interpret_raw(self, sig: str) -> Dict[str, Any]:
        messages = [
            {"role": "system", "content": PROMPT_SYSTEM_INSTRUCTIONS},
            {"role": "user", "content": self._prompt_builder.build_user_prompt(sig)},
        ]

        payload: Dict[str, Any] = {
            "model": self._conf.model,
            "messages": messages,
            "temperature": 0,
            "max_tokens": self._conf.max_tokens,
            "stream": False,
            "response_format": {"type": "json_object"},
        }

        response = await self._post_with_retries(endpoint=self._conf.endpoint, json=payload)

        if response.status_code >= 400:
            raise LLMError(f"LLM API returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise LLMError("Failed to parse LLM response as JSON") from exc

        try:
            content = data["choices"][0]["message"]["content"]
            parsed = json.loads(content)
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            raise LLMError("Failed to extract JSON from LLM response") from exc

        if not isinstance(parsed, dict):
            raise LLMError("LLM response is not a JSON object")
        return parsed

    async def interpret(self, sig: str) -> FallbackResult:
        raw = await self.interpret_raw(sig)

        try:
            confidence = float(raw.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0
        # keep thresholds in SigInterpreter predictable
        confidence = max(0.0, min(confidence, 1.0))

        per_day: Optional[float]
        try:
            per_day = float(raw.get("per_day"))
        except (TypeError, ValueError):
            per_day = None

        unit_raw = raw.get("unit")
        unit = normalize_unit(unit_raw) if isinstance(unit_raw, str) else None

        return FallbackResult(unit=unit, per_day=per_day, confidence=confidence, raw_response=raw)
