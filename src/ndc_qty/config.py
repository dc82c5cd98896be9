# src/ndc_qty/config.py
from dataclasses import dataclass, field
import os
from typing import Optional

from dotenv import load_dotenv

# Load .env
load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() not in ("false", "0", "no", "off")


@dataclass
class RetryConfig:
    max_attempts: int = 2  # initial attempt included
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 5.0
    retry_on_5xx: bool = True
    retry_on_429: bool = True
    retry_on_timeout: bool = True


@dataclass
class RegistryApiConfig:
    """
    Settings for one upstream drug registry.

    Each registry publishes its own quota and changes at its own pace, so rate
    limit and fresh TTL are configured per instance.
    """
    name: str
    base_url: str
    rate_limit_per_second: int
    fresh_ttl_seconds: float
    timeout_seconds: float = 5.0
    rate_limit_window_seconds: float = 1.0
    cache_max_size: int = 1000
    stale_ttl_seconds: float = 48 * 60 * 60
    serve_stale_on_error: bool = True
    dependency_retry_after_ms: int = 2000
    api_key: Optional[str] = None
    retry: RetryConfig = field(default_factory=RetryConfig)


def _naming_registry() -> RegistryApiConfig:
    return RegistryApiConfig(
        name="rxnorm",
        base_url=os.getenv("RXNORM_API_URL", "https://rxnav.nlm.nih.gov/REST"),
        rate_limit_per_second=10,
        fresh_ttl_seconds=60 * 60,  # 1h
    )


def _packaging_registry() -> RegistryApiConfig:
    return RegistryApiConfig(
        name="fda",
        base_url=os.getenv("FDA_API_URL", "https://api.fda.gov/drug/ndc.json"),
        rate_limit_per_second=3,
        fresh_ttl_seconds=24 * 60 * 60,  # packaging changes rarely
        api_key=os.getenv("FDA_API_KEY") or None,
    )


@dataclass
class LLMApiConfig:
    """
    Text-understanding service used as the last-resort SIG parser.
    Any provider exposing an OpenAI-compatible chat completions endpoint works.
    """
    provider: str = "openai"
    base_url: str = field(default_factory=lambda: os.getenv("LLM_BASE_URL", "https://api.openai.com/v1"))
    api_key_env_var: str = "OPENAI_API_KEY"
    timeout_seconds: float = 5.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", "gpt-4o-mini"))
    endpoint: str = "/chat/completions"
    max_tokens: int = 200


@dataclass
class SigConfig:
    fallback_enabled: bool = field(default_factory=lambda: _env_flag("USE_AI_FALLBACK", True))
    # Fallback answers below this confidence are treated as unparsed
    min_confidence: float = 0.5
    max_per_day: float = 100.0


@dataclass
class SelectionConfig:
    max_packs: int = 3
    max_overfill: float = 0.10
    max_alternates: int = 10
    preferred_bonus: float = 50.0
    pack_penalty: float = 10.0


@dataclass
class ComputeConfig:
    # Whole-query wall clock budget, a small multiple of the upstream timeout
    total_timeout_seconds: float = 10.0
    max_secondary_lookups: int = 50
    dependency_retry_after_ms: int = 2000


@dataclass
class AppConfig:
    naming_registry: RegistryApiConfig = field(default_factory=_naming_registry)
    packaging_registry: RegistryApiConfig = field(default_factory=_packaging_registry)
    llm: LLMApiConfig = field(default_factory=LLMApiConfig)
    sig: SigConfig = field(default_factory=SigConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    compute: ComputeConfig = field(default_factory=ComputeConfig)


# Global config object, import it as `from ndc_qty.config import config`
config = AppConfig()
