"""Perplexity Sonar as a search backend."""

import httpx

from askai.core.credentials import CredentialRotator, is_quota_error
from askai.core.models import GenerationConfig, WebSearchResult
from askai.core.provider_manager import resolve_base_url
from askai.providers.base import extract_error_message
from askai.providers.perplexity_adapter import perplexity_sources
from askai.search.base import NO_RESULTS, SearchBackend
from askai.utils.logging import get_logger

logger = get_logger(__name__)

SEARCH_SYSTEM_PROMPT = (
    "You are a web search assistant. Provide concise, factual answers based on "
    "current web information. Include relevant sources when possible."
)


class PerplexitySearchBackend(SearchBackend):
    """One-shot chat completion against a search-oriented Sonar model."""

    name = "perplexity"

    def __init__(self, config: GenerationConfig, rotator: CredentialRotator):
        self.config = config
        self.rotator = rotator

    def is_available(self) -> bool:
        return bool(self.config.keys_for("perplexity"))

    async def _search(self, query: str) -> WebSearchResult:
        selection = await self.rotator.select_key(self.config.keys_for("perplexity"), "perplexity")
        if selection is None:
            return WebSearchResult(
                content="Error: No Perplexity API key configured for web search.", sources=[]
            )

        base_url = resolve_base_url("perplexity", self.config).rstrip("/")
        body = {
            "model": self.config.perplexity_search_model,
            "messages": [
                {"role": "system", "content": SEARCH_SYSTEM_PROMPT},
                {"role": "user", "content": query},
            ],
            "web_search_options": {"search_type": "pro"},
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {selection.key}",
        }

        async with httpx.AsyncClient(timeout=self.config.request_timeout) as client:
            response = await client.post(f"{base_url}/chat/completions", json=body, headers=headers)

        if response.is_error:
            message = extract_error_message(response)
            if is_quota_error(message):
                await self.rotator.mark_exhausted(selection.key, "perplexity")
            return WebSearchResult(content=f"Search error: {message}", sources=[])

        data = response.json()
        content = ((data.get("choices") or [{}])[0].get("message") or {}).get("content")
        return WebSearchResult(content=content or NO_RESULTS, sources=perplexity_sources(data))
