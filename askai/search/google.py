"""Gemini with Google Search grounding as a search backend."""

import httpx

from askai.core.credentials import CredentialRotator, is_quota_error
from askai.core.models import GenerationConfig, WebSearchResult
from askai.core.provider_manager import resolve_base_url
from askai.providers.base import extract_error_message
from askai.providers.gemini_adapter import grounding_sources
from askai.search.base import NO_RESULTS, SearchBackend

SEARCH_INSTRUCTION = (
    "Search the web and answer concisely with the most relevant, current facts "
    "for the following query."
)


class GoogleSearchBackend(SearchBackend):
    """Asks a Gemini model with the google_search tool attached."""

    name = "google"
    error_prefix = "Google search failed"

    def __init__(self, config: GenerationConfig, rotator: CredentialRotator):
        self.config = config
        self.rotator = rotator

    def is_available(self) -> bool:
        return bool(self.config.keys_for("google"))

    async def _search(self, query: str) -> WebSearchResult:
        selection = await self.rotator.select_key(self.config.keys_for("google"), "google")
        if selection is None:
            return WebSearchResult(
                content="Error: No Google API key configured for web search.", sources=[]
            )

        base_url = resolve_base_url("google", self.config).rstrip("/")
        url = f"{base_url}/models/{self.config.google_search_model}:generateContent"
        body = {
            "systemInstruction": {"parts": [{"text": SEARCH_INSTRUCTION}]},
            "contents": [{"role": "user", "parts": [{"text": query}]}],
            "tools": [{"google_search": {}}],
        }

        async with httpx.AsyncClient(timeout=self.config.request_timeout) as client:
            response = await client.post(url, params={"key": selection.key}, json=body)

        if response.is_error:
            message = extract_error_message(response)
            if is_quota_error(message):
                await self.rotator.mark_exhausted(selection.key, "google")
            return WebSearchResult(content=f"Google search error: {message}", sources=[])

        candidate = (response.json().get("candidates") or [{}])[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        content = "".join(p.get("text", "") for p in parts if not p.get("thought"))
        return WebSearchResult(content=content or NO_RESULTS, sources=grounding_sources(candidate))
