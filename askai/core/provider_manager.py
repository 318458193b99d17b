from enum import Enum
from typing import Dict, List, Optional, Type

import httpx
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from askai.core.models import GenerationConfig
from askai.providers.anthropic_adapter import AnthropicAdapter
from askai.providers.base import BaseAdapter, extract_error_message
from askai.providers.gemini_adapter import GeminiAdapter
from askai.providers.openai_adapter import CustomOpenAIAdapter, OpenAICompatibleAdapter
from askai.providers.perplexity_adapter import PerplexityAdapter
from askai.utils.errors import ConfigError, ProviderError
from askai.utils.logging import get_logger

logger = get_logger(__name__)


class ProviderKind(str, Enum):
    OPENAI_COMPATIBLE = "openai_compatible"
    GEMINI = "gemini"
    ANTHROPIC = "anthropic"
    PERPLEXITY = "perplexity"
    CUSTOM_OPENAI_COMPATIBLE = "custom_openai_compatible"


BUILTIN_PROVIDERS = ["openai", "google", "anthropic", "openrouter", "perplexity"]

DEFAULT_BASE_URLS = {
    "openai": "https://api.openai.com/v1",
    "google": "https://generativelanguage.googleapis.com/v1beta",
    "anthropic": "https://api.anthropic.com/v1",
    "openrouter": "https://openrouter.ai/api/v1",
    "perplexity": "https://api.perplexity.ai",
}

DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "google": "gemini-2.5-flash",
    "anthropic": "claude-sonnet-4-5",
    "openrouter": "openai/gpt-4o",
    "perplexity": "sonar-pro",
}

PERPLEXITY_MODELS = ["sonar-pro", "sonar", "sonar-reasoning-pro", "sonar-reasoning"]


def resolve_kind(provider: str, config: GenerationConfig) -> ProviderKind:
    """Map a provider id onto the wire protocol it speaks"""
    if config.custom_provider(provider):
        return ProviderKind.CUSTOM_OPENAI_COMPATIBLE
    if provider == "google":
        return ProviderKind.GEMINI
    if provider == "anthropic":
        return ProviderKind.ANTHROPIC
    if provider == "perplexity":
        return ProviderKind.PERPLEXITY
    return ProviderKind.OPENAI_COMPATIBLE


def resolve_base_url(provider: str, config: GenerationConfig) -> Optional[str]:
    custom = config.custom_provider(provider)
    return (
        config.base_urls.get(provider)
        or (custom.base_url if custom else None)
        or DEFAULT_BASE_URLS.get(provider)
    )


class ProviderManager:
    """Resolves provider ids into adapters and lists their models"""

    # Registry of adapter classes per wire protocol
    PROVIDER_CLASSES: Dict[ProviderKind, Type[BaseAdapter]] = {
        ProviderKind.OPENAI_COMPATIBLE: OpenAICompatibleAdapter,
        ProviderKind.GEMINI: GeminiAdapter,
        ProviderKind.ANTHROPIC: AnthropicAdapter,
        ProviderKind.PERPLEXITY: PerplexityAdapter,
        ProviderKind.CUSTOM_OPENAI_COMPATIBLE: CustomOpenAIAdapter,
    }

    def __init__(self, config: GenerationConfig):
        self.config = config

    def kind(self, provider: Optional[str] = None) -> ProviderKind:
        return resolve_kind(provider or self.config.selected_provider, self.config)

    def adapter_class(self, provider: Optional[str] = None) -> Type[BaseAdapter]:
        return self.PROVIDER_CLASSES[self.kind(provider)]

    def model_for(self, provider: str) -> str:
        return self.config.selected_models.get(provider) or DEFAULT_MODELS.get(provider, "")

    def create_adapter(self, api_key: str, provider: Optional[str] = None) -> BaseAdapter:
        """Build the adapter for provider (defaults to the selected one)"""
        provider = provider or self.config.selected_provider
        base_url = resolve_base_url(provider, self.config)
        if not base_url:
            raise ConfigError(
                f"No base URL configured for provider '{provider}'",
                hint=f"Set providers.{provider}.base_url in config.yaml",
            )
        model = self.model_for(provider)
        if not model:
            raise ConfigError(
                f"No model selected for provider '{provider}'",
                hint=f"Set providers.{provider}.model in config.yaml",
            )

        adapter_class = self.adapter_class(provider)
        logger.debug(f"Using {adapter_class.__name__} for {provider} ({model})")
        return adapter_class(
            provider_id=provider,
            api_key=api_key,
            base_url=base_url,
            model=model,
            max_tokens=self.config.max_tokens,
            timeout=self.config.request_timeout,
        )

    def list_providers(self) -> List[str]:
        """Built-in providers followed by custom ones"""
        return BUILTIN_PROVIDERS + [c.id for c in self.config.custom_providers]

    async def list_models(self, provider: str, api_key: str) -> List[str]:
        """Fetch the provider's model ids, sorted"""
        kind = self.kind(provider)
        base_url = resolve_base_url(provider, self.config)

        try:
            if kind is ProviderKind.PERPLEXITY:
                models = list(PERPLEXITY_MODELS)
            elif kind is ProviderKind.GEMINI:
                models = await self._list_gemini_models(api_key, base_url)
            elif kind is ProviderKind.ANTHROPIC:
                # The SDK appends /v1 itself
                sdk_base = base_url[: -len("/v1")] if base_url and base_url.endswith("/v1") else base_url
                client = AsyncAnthropic(api_key=api_key, base_url=sdk_base)
                response = await client.models.list()
                models = [m.id for m in response.data]
            else:
                client = AsyncOpenAI(api_key=api_key, base_url=base_url)
                response = await client.models.list()
                models = [m.id for m in response.data]
        except ProviderError:
            raise
        except Exception as e:
            logger.error(f"Error listing models from {provider}: {e}")
            raise ProviderError(f"Failed to list models for {provider}: {e}") from e

        return sorted(models)

    async def _list_gemini_models(self, api_key: str, base_url: Optional[str]) -> List[str]:
        async with httpx.AsyncClient(timeout=self.config.request_timeout) as client:
            response = await client.get(f"{base_url}/models", params={"key": api_key})
            if response.is_error:
                raise ProviderError(extract_error_message(response), status_code=response.status_code)
            data = response.json()
        return [m["name"].replace("models/", "", 1) for m in data.get("models", []) if m.get("name")]
