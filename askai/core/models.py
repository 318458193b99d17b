"""Pydantic models shared by the orchestration core."""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, Field


class WebSearchSource(BaseModel):
    """A citation attached to a search result or grounded answer."""

    title: str
    url: str
    snippet: Optional[str] = None


class WebSearchResult(BaseModel):
    """Normalized output of a single search query."""

    content: str
    sources: List[WebSearchSource] = Field(default_factory=list)


class WebSearchAttachment(BaseModel):
    """Search state attached to the assistant message that triggered it."""

    query: str
    result: Optional[str] = None
    is_searching: bool = False
    sources: List[WebSearchSource] = Field(default_factory=list)


class WebSearchStatus(BaseModel):
    """Status update sent to the caller's web-search channel."""

    query: str
    result: Optional[str] = None
    is_searching: bool
    sources: Optional[List[WebSearchSource]] = None
    start_new_message: bool = False


class ConversationMessage(BaseModel):
    """One entry of a conversation.

    Only role, content and image are ever sent to a provider. The other
    fields are attachments for whoever renders the conversation.
    """

    role: Literal["user", "assistant", "system"]
    content: str = ""
    image: Optional[str] = None  # data URL
    interrupted: bool = False
    response_time_ms: Optional[int] = None
    reasoning: Optional[str] = None
    generated_images: List[str] = Field(default_factory=list)
    web_search: Optional[WebSearchAttachment] = None
    error: Optional[str] = None


class ToolCall(BaseModel):
    """A model-issued function call, finalized from streamed fragments."""

    id: str
    name: str
    arguments: str = ""

    def parsed_arguments(self) -> Dict[str, Any]:
        """Parse the raw argument string, returning {} when it isn't a JSON object"""
        if not self.arguments.strip():
            return {}
        try:
            value = json.loads(self.arguments)
        except json.JSONDecodeError:
            return {}
        return value if isinstance(value, dict) else {}


class ToolRound(BaseModel):
    """A finished search round, replayed into every follow-up request."""

    assistant_text: str = ""
    tool_calls: List[ToolCall]
    results: Dict[str, str]  # tool_call_id -> folded result text


class SearchMode(str, Enum):
    DISABLED = "disabled"
    FUNCTION_CALLING = "function_calling"
    NATIVE = "native"


class StreamResult(BaseModel):
    """What a provider adapter returns from one streamed request."""

    text: str = ""
    error: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    sources: List[WebSearchSource] = Field(default_factory=list)


class ApiResponse(BaseModel):
    """Final result handed back to callers of the session."""

    text: str = ""
    error: Optional[str] = None


class StreamEvent(BaseModel):
    """Normalized event emitted by StreamSession.events()."""

    type: Literal["chunk", "reasoning", "image", "web_search", "error", "done"]
    text: str = ""
    web_search: Optional[WebSearchStatus] = None


class CustomProvider(BaseModel):
    """User-registered OpenAI-compatible endpoint"""

    id: str
    name: str
    base_url: str


class GenerationConfig(BaseModel):
    """Everything a turn needs to pick a provider, a key and a search backend."""

    selected_provider: str
    api_keys: Dict[str, List[str]] = Field(default_factory=dict)
    base_urls: Dict[str, str] = Field(default_factory=dict)
    selected_models: Dict[str, str] = Field(default_factory=dict)
    web_search_provider: Literal["perplexity", "google", "kagi"] = "perplexity"
    enable_web_search: bool = True
    kagi_session: Optional[str] = None
    custom_providers: List[CustomProvider] = Field(default_factory=list)
    max_tokens: int = 4096
    request_timeout: float = 60.0
    perplexity_search_model: str = "sonar-pro"
    google_search_model: str = "gemini-2.5-flash"

    def keys_for(self, provider: str) -> List[str]:
        return [k for k in self.api_keys.get(provider, []) if k]

    def custom_provider(self, provider_id: str) -> Optional[CustomProvider]:
        for custom in self.custom_providers:
            if custom.id == provider_id:
                return custom
        return None

    @property
    def selected_model(self) -> str:
        return self.selected_models.get(self.selected_provider, "")


class ExhaustedKeyEntry(BaseModel):
    """A key that hit its quota; ignored once expires_at has passed."""

    key: str
    provider: str
    exhausted_at: datetime
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at


def merge_sources(
    existing: List[WebSearchSource], new: Iterable[WebSearchSource]
) -> List[WebSearchSource]:
    """Append sources whose URL hasn't been seen yet, keeping first-seen order"""
    seen = {s.url for s in existing}
    merged = list(existing)
    for source in new:
        if not source.url or source.url in seen:
            continue
        seen.add(source.url)
        merged.append(source)
    return merged
