import asyncio
from typing import List, Optional, Sequence

from askai.core.credentials import CredentialRotator
from askai.core.models import GenerationConfig, SearchMode, WebSearchResult
from askai.core.provider_manager import ProviderKind, ProviderManager, resolve_kind
from askai.core.signal import AbortSignal, run_abortable
from askai.search.base import SearchBackend
from askai.search.google import GoogleSearchBackend
from askai.search.kagi import KagiSearchBackend
from askai.search.perplexity import PerplexitySearchBackend
from askai.utils.errors import AbortError
from askai.utils.logging import get_logger

logger = get_logger(__name__)


def has_backend_credentials(config: GenerationConfig) -> bool:
    """Whether the configured search backend can authenticate"""
    if config.web_search_provider == "kagi":
        return bool(config.kagi_session)
    if config.web_search_provider == "google":
        return bool(config.keys_for("google"))
    return bool(config.keys_for("perplexity"))


def resolve_search_mode(config: GenerationConfig, model: Optional[str] = None) -> SearchMode:
    """Decide how (and whether) web search takes part in a turn.

    Perplexity chat already searches on its own, Gemini grounds natively, and
    everything that can call functions gets the web_search tool when a search
    backend is usable. Without one, GPT models on OpenAI and custom endpoints
    fall back to the provider's native web search.
    """
    if not config.enable_web_search:
        return SearchMode.DISABLED

    provider = config.selected_provider
    model = model or ProviderManager(config).model_for(provider)
    kind = resolve_kind(provider, config)

    if kind is ProviderKind.PERPLEXITY:
        return SearchMode.DISABLED
    if kind is ProviderKind.GEMINI:
        return SearchMode.NATIVE

    supports_tools = ProviderManager.PROVIDER_CLASSES[kind].supports_function_calling
    if supports_tools and has_backend_credentials(config):
        return SearchMode.FUNCTION_CALLING

    if kind is ProviderKind.CUSTOM_OPENAI_COMPATIBLE:
        return SearchMode.NATIVE
    if provider == "openai" and model.lower().startswith("gpt"):
        return SearchMode.NATIVE
    return SearchMode.DISABLED


def should_enable_web_search(config: GenerationConfig, model: Optional[str] = None) -> bool:
    return resolve_search_mode(config, model) is not SearchMode.DISABLED


class WebSearchExecutor:
    """Runs web searches against the configured backend"""

    def __init__(self, config: GenerationConfig, rotator: CredentialRotator):
        self.config = config
        self.rotator = rotator
        self.backend = self._create_backend()

    def _create_backend(self) -> SearchBackend:
        if self.config.web_search_provider == "kagi":
            return KagiSearchBackend(self.config)
        if self.config.web_search_provider == "google":
            return GoogleSearchBackend(self.config, self.rotator)
        return PerplexitySearchBackend(self.config, self.rotator)

    async def execute(self, query: str, signal: Optional[AbortSignal] = None) -> WebSearchResult:
        """Search for one query; only cancellation raises"""
        logger.debug(f"Searching {self.backend.name} for: {query}")
        return await run_abortable(self.backend.search(query), signal)

    async def execute_batch(
        self, queries: Sequence[str], signal: Optional[AbortSignal] = None
    ) -> List[WebSearchResult]:
        """Search all queries concurrently, results in query order.

        A failing query becomes an error-bearing result and never cancels its
        siblings.
        """
        if signal is not None:
            signal.throw_if_aborted()
        return await run_abortable(self._gather(queries), signal)

    async def _gather(self, queries: Sequence[str]) -> List[WebSearchResult]:
        outcomes = await asyncio.gather(
            *(self.backend.search(q) for q in queries), return_exceptions=True
        )

        results = []
        for query, outcome in zip(queries, outcomes):
            if isinstance(outcome, (AbortError, asyncio.CancelledError)):
                raise AbortError()
            if isinstance(outcome, BaseException):
                logger.warning(f"Search for '{query}' failed: {outcome}")
                outcome = WebSearchResult(content=f"Search failed: {outcome}", sources=[])
            results.append(outcome)
        return results
