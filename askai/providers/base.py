from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx
from pydantic import BaseModel

from askai.core.models import (
    ApiResponse,
    ConversationMessage,
    SearchMode,
    StreamResult,
    ToolCall,
    ToolRound,
    WebSearchSource,
    merge_sources,
)
from askai.core.signal import AbortSignal, run_abortable
from askai.providers.streaming import ToolCallAccumulator
from askai.utils.errors import AbortError, ProviderError
from askai.utils.logging import get_logger

logger = get_logger(__name__)

WEB_SEARCH_TOOL_NAME = "web_search"
WEB_SEARCH_TOOL_DESCRIPTION = (
    "Search the web for current information. Use this when you need up-to-date "
    "information, recent news, current events, or facts you are unsure about. "
    "Pass several queries at once in `queries` when the question has independent parts."
)
WEB_SEARCH_TOOL_PARAMETERS: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {
            "type": "string",
            "description": "The search query to look up on the web",
        },
        "queries": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Several independent search queries to run in parallel",
        },
    },
}


class WireMessage(BaseModel):
    """The provider-facing part of a ConversationMessage"""

    role: str
    content: str
    image: Optional[str] = None


@dataclass
class StreamCallbacks:
    """Side channels fed while a response streams in"""

    on_chunk: Optional[Callable[[str], None]] = None
    on_reasoning: Optional[Callable[[str], None]] = None
    on_image: Optional[Callable[[str], None]] = None
    on_tool_calls: Optional[Callable[[List[ToolCall]], None]] = None


class StreamState:
    """Accumulates one request's output while forwarding it to callbacks."""

    def __init__(self, callbacks: StreamCallbacks):
        self.callbacks = callbacks
        self.text_parts: List[str] = []
        self.tool_calls = ToolCallAccumulator()
        self.sources: List[WebSearchSource] = []
        self.error: Optional[str] = None

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    def emit_chunk(self, text: Optional[str]) -> None:
        if not text:
            return
        self.text_parts.append(text)
        if self.callbacks.on_chunk:
            self.callbacks.on_chunk(text)

    def emit_reasoning(self, text: Optional[str]) -> None:
        if text and self.callbacks.on_reasoning:
            self.callbacks.on_reasoning(text)

    def emit_image(self, data_url: Optional[str]) -> None:
        if data_url and self.callbacks.on_image:
            self.callbacks.on_image(data_url)

    def add_sources(self, sources: Iterable[WebSearchSource]) -> None:
        self.sources = merge_sources(self.sources, sources)

    def result(self, error: Optional[str] = None) -> StreamResult:
        calls = self.tool_calls.finalize()
        if calls and self.callbacks.on_tool_calls:
            self.callbacks.on_tool_calls(calls)
        return StreamResult(
            text=self.text,
            error=error or self.error,
            tool_calls=calls,
            sources=self.sources,
        )


def sanitize_messages(messages: Sequence[ConversationMessage]) -> List[WireMessage]:
    """Strip UI-only fields and drop empty assistant placeholders"""
    wire = []
    for message in messages:
        if message.role == "assistant" and not message.content.strip() and not message.image:
            continue
        wire.append(WireMessage(role=message.role, content=message.content, image=message.image))
    return wire


def split_data_url(data_url: str) -> Tuple[str, str]:
    """Return (mime_type, base64_data) for a `data:<mime>;base64,<data>` URL"""
    meta, _, data = data_url.partition(",")
    mime_type = meta.split(":", 1)[-1].split(";", 1)[0] or "image/png"
    return mime_type, data


def extract_error_message(response: httpx.Response) -> str:
    """Pull a readable message out of a failed provider response."""
    message = ""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, list) and body:
        body = body[0]
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = error.get("message") or error.get("status") or ""
        elif isinstance(error, str):
            message = error
        message = message or body.get("message") or body.get("detail") or ""
    if not message:
        message = response.text.strip()[:500] if body is None else ""
    if not message:
        message = response.reason_phrase or "Request failed"
    return f"{message} (HTTP {response.status_code})"


def is_json_response(response: httpx.Response) -> bool:
    return "application/json" in response.headers.get("content-type", "")


class BaseAdapter(ABC):
    """Abstract base for all provider adapters"""

    supports_function_calling = False

    def __init__(
        self,
        provider_id: str,
        api_key: str,
        base_url: str,
        model: str,
        max_tokens: int = 4096,
        timeout: float = 60.0,
    ):
        self.provider_id = provider_id
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))

    async def call(
        self, messages: Sequence[ConversationMessage], signal: Optional[AbortSignal] = None
    ) -> ApiResponse:
        """Non-streaming completion"""
        try:
            text = await run_abortable(self._call(sanitize_messages(messages)), signal)
            return ApiResponse(text=text)
        except AbortError:
            raise
        except ProviderError as e:
            logger.warning(f"{self.provider_id} request failed: {e}")
            return ApiResponse(text="", error=str(e))
        except httpx.HTTPError as e:
            logger.warning(f"{self.provider_id} transport error: {e}")
            return ApiResponse(text="", error=str(e) or e.__class__.__name__)
        except Exception as e:
            logger.exception(f"Unexpected error in {self.provider_id} completion")
            return ApiResponse(text="", error=str(e) or "API call failed")

    async def stream(
        self,
        messages: Sequence[ConversationMessage],
        callbacks: StreamCallbacks,
        signal: Optional[AbortSignal] = None,
        search_mode: SearchMode = SearchMode.DISABLED,
        rounds: Sequence[ToolRound] = (),
    ) -> StreamResult:
        """Streaming completion.

        Everything received before a failure is kept in the result; only
        cancellation raises.
        """
        state = StreamState(callbacks)
        try:
            await run_abortable(
                self._stream(sanitize_messages(messages), state, search_mode, rounds), signal
            )
        except AbortError:
            raise
        except ProviderError as e:
            logger.warning(f"{self.provider_id} stream failed: {e}")
            return state.result(error=str(e))
        except httpx.HTTPError as e:
            logger.warning(f"{self.provider_id} transport error: {e}")
            return state.result(error=str(e) or e.__class__.__name__)
        except Exception as e:
            logger.exception(f"Unexpected error in {self.provider_id} streaming")
            return state.result(error=str(e) or "Stream failed")
        return state.result()

    async def _post_json(self, url: str, body: Dict[str, Any], headers: Dict[str, str]) -> Any:
        async with self._client() as client:
            response = await client.post(url, json=body, headers=headers)
            if response.is_error:
                raise ProviderError(extract_error_message(response), status_code=response.status_code)
            return response.json()

    async def _open_stream(
        self,
        client: httpx.AsyncClient,
        url: str,
        body: Dict[str, Any],
        headers: Dict[str, str],
    ) -> httpx.Response:
        request = client.build_request("POST", url, json=body, headers=headers)
        response = await client.send(request, stream=True)
        if response.is_error:
            await response.aread()
            await response.aclose()
            raise ProviderError(extract_error_message(response), status_code=response.status_code)
        return response

    @abstractmethod
    async def _call(self, messages: List[WireMessage]) -> str:
        """Send a single non-streaming request and return the answer text"""
        pass

    @abstractmethod
    async def _stream(
        self,
        messages: List[WireMessage],
        state: StreamState,
        search_mode: SearchMode,
        rounds: Sequence[ToolRound],
    ) -> None:
        """Send a streaming request, feeding everything it produces into state"""
        pass
