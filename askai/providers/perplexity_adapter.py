from typing import Any, Dict, List, Optional, Sequence

from askai.core.models import SearchMode, ToolRound, WebSearchSource, merge_sources
from askai.providers.base import StreamState, WireMessage
from askai.providers.openai_adapter import OpenAICompatibleAdapter


def _to_source(entry: Any, position: int) -> Optional[WebSearchSource]:
    if isinstance(entry, str):
        return WebSearchSource(title=f"Source {position}", url=entry) if entry else None
    if isinstance(entry, dict):
        url = entry.get("url") or entry.get("link")
        if not url:
            return None
        return WebSearchSource(
            title=entry.get("title") or f"Source {position}",
            url=url,
            snippet=entry.get("snippet") or entry.get("description"),
        )
    return None


def perplexity_sources(payload: Dict[str, Any]) -> List[WebSearchSource]:
    """Collect citations from every place Perplexity puts them.

    `search_results` (objects with titles) is read first so that the richer
    entry wins when the same URL also appears in a bare `citations` list.
    """
    choice = (payload.get("choices") or [{}])[0]
    message = choice.get("message") or choice.get("delta") or {}

    sources: List[WebSearchSource] = []
    for entries in (
        payload.get("search_results"),
        payload.get("citations"),
        message.get("citations"),
    ):
        converted = [_to_source(entry, i + 1) for i, entry in enumerate(entries or [])]
        sources = merge_sources(sources, [s for s in converted if s is not None])
    return sources


class PerplexityAdapter(OpenAICompatibleAdapter):
    """Perplexity Sonar; searches on every request, so it never gets tools"""

    supports_function_calling = False

    def _with_date_context(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return messages

    def _build_body(
        self,
        messages: List[WireMessage],
        search_mode: SearchMode,
        rounds: Sequence[ToolRound],
        stream: bool,
    ) -> Dict[str, Any]:
        body = super()._build_body(messages, SearchMode.DISABLED, (), stream)
        body["web_search_options"] = {"search_type": "pro"}
        return body

    def _collect_root_sources(self, payload: Dict[str, Any], state: StreamState) -> None:
        state.add_sources(perplexity_sources(payload))
