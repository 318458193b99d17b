from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from askai.core.models import SearchMode, ToolRound, WebSearchSource
from askai.providers.base import (
    WEB_SEARCH_TOOL_DESCRIPTION,
    WEB_SEARCH_TOOL_NAME,
    WEB_SEARCH_TOOL_PARAMETERS,
    BaseAdapter,
    StreamState,
    WireMessage,
    is_json_response,
)
from askai.providers.streaming import is_sse_done, parse_sse_line
from askai.utils.logging import get_logger

logger = get_logger(__name__)

WEB_SEARCH_TOOL = {
    "type": "function",
    "function": {
        "name": WEB_SEARCH_TOOL_NAME,
        "description": WEB_SEARCH_TOOL_DESCRIPTION,
        "parameters": WEB_SEARCH_TOOL_PARAMETERS,
    },
}

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

OPENROUTER_HEADERS = {
    "HTTP-Referer": "https://github.com/askai/askai",
    "X-Title": "askai",
}


def current_datetime_text(now: Optional[datetime] = None) -> str:
    """Long human-readable local date/time, e.g. 'Friday, October 17, 2026 at 09:30 AM CEST'"""
    now = (now or datetime.now()).astimezone()
    return f"{now.strftime('%A, %B %d, %Y at %I:%M %p')} {now.strftime('%Z')}".strip()


def date_context(now: Optional[datetime] = None) -> str:
    return (
        f"IMPORTANT: Today's date is {current_datetime_text(now)}. "
        "The web search tool retrieves real-time information. When searching for current "
        'status (e.g. "price now", "latest news"), do NOT append the current month/year to '
        "the query unless the question is about a specific period. If you decide to use the "
        "web search tool, briefly explain what you are going to search for before calling it."
    )


class OpenAICompatibleAdapter(BaseAdapter):
    """Chat Completions API (OpenAI, OpenRouter and anything speaking the same protocol)"""

    supports_function_calling = True

    def __init__(self, *args, clock: Callable[[], datetime] = datetime.now, **kwargs):
        super().__init__(*args, **kwargs)
        self.clock = clock

    @property
    def url(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if self.provider_id == "openrouter":
            headers.update(OPENROUTER_HEADERS)
        return headers

    def _encode_message(self, message: WireMessage) -> Dict[str, Any]:
        if message.image:
            return {
                "role": message.role,
                "content": [
                    {"type": "text", "text": message.content},
                    {"type": "image_url", "image_url": {"url": message.image}},
                ],
            }
        return {"role": message.role, "content": message.content}

    def _encode_round(self, round_: ToolRound) -> List[Dict[str, Any]]:
        encoded: List[Dict[str, Any]] = [
            {
                "role": "assistant",
                "content": round_.assistant_text or None,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.name, "arguments": call.arguments},
                    }
                    for call in round_.tool_calls
                ],
            }
        ]
        for call in round_.tool_calls:
            encoded.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": round_.results.get(call.id, ""),
                }
            )
        return encoded

    def _with_date_context(self, messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        context = date_context(self.clock())
        if messages and messages[0]["role"] == "system" and isinstance(messages[0]["content"], str):
            first = dict(messages[0])
            first["content"] = f"{context}\n\n{first['content']}"
            return [first, *messages[1:]]
        return [{"role": "system", "content": f"{context}\n\n{DEFAULT_SYSTEM_PROMPT}"}, *messages]

    def _build_messages(
        self, messages: List[WireMessage], rounds: Sequence[ToolRound] = ()
    ) -> List[Dict[str, Any]]:
        encoded = self._with_date_context([self._encode_message(m) for m in messages])
        for round_ in rounds:
            encoded.extend(self._encode_round(round_))
        return encoded

    def _build_body(
        self,
        messages: List[WireMessage],
        search_mode: SearchMode,
        rounds: Sequence[ToolRound],
        stream: bool,
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": self._build_messages(messages, rounds),
            "stream": stream,
        }
        if search_mode is SearchMode.FUNCTION_CALLING:
            body["tools"] = [WEB_SEARCH_TOOL]
            body["tool_choice"] = "auto"
        elif search_mode is SearchMode.NATIVE:
            body["web_search_options"] = {}
        return body

    async def _call(self, messages: List[WireMessage]) -> str:
        data = await self._post_json(
            self.url, self._build_body(messages, SearchMode.DISABLED, (), stream=False), self._headers()
        )
        choice = (data.get("choices") or [{}])[0]
        return (choice.get("message") or {}).get("content") or choice.get("text") or ""

    async def _stream(
        self,
        messages: List[WireMessage],
        state: StreamState,
        search_mode: SearchMode,
        rounds: Sequence[ToolRound],
    ) -> None:
        body = self._build_body(messages, search_mode, rounds, stream=True)
        async with self._client() as client:
            response = await self._open_stream(client, self.url, body, self._headers())
            try:
                if is_json_response(response):
                    await response.aread()
                    self._handle_completion(response.json(), state)
                    return

                async for line in response.aiter_lines():
                    if is_sse_done(line):
                        break
                    payload = parse_sse_line(line)
                    if payload is not None:
                        self._handle_chunk(payload, state)
                        if state.error:
                            break
            finally:
                await response.aclose()

    def _handle_chunk(self, payload: Dict[str, Any], state: StreamState) -> None:
        """Apply one streamed chat.completion.chunk"""
        if payload.get("error"):
            error = payload["error"]
            state.error = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            return

        self._collect_root_sources(payload, state)
        choices = payload.get("choices") or []
        if not choices:
            return
        delta = choices[0].get("delta") or {}

        state.emit_reasoning(delta.get("reasoning_content") or delta.get("reasoning"))
        state.emit_chunk(delta.get("content"))

        for image in delta.get("images") or []:
            state.emit_image((image.get("image_url") or {}).get("url"))

        for tool_call in delta.get("tool_calls") or []:
            function = tool_call.get("function") or {}
            state.tool_calls.add(
                tool_call.get("index", 0),
                call_id=tool_call.get("id"),
                name=function.get("name"),
                arguments=function.get("arguments"),
            )

        state.add_sources(url_citations(delta.get("annotations")))

    def _handle_completion(self, data: Dict[str, Any], state: StreamState) -> None:
        """Treat a plain JSON completion as a single chunk"""
        if data.get("error"):
            self._handle_chunk(data, state)
            return

        self._collect_root_sources(data, state)
        choice = (data.get("choices") or [{}])[0]
        message = choice.get("message") or {}

        state.emit_reasoning(message.get("reasoning_content") or message.get("reasoning"))
        state.emit_chunk(message.get("content") or choice.get("text"))
        for image in message.get("images") or []:
            state.emit_image((image.get("image_url") or {}).get("url"))
        for index, tool_call in enumerate(message.get("tool_calls") or []):
            function = tool_call.get("function") or {}
            state.tool_calls.add(
                index,
                call_id=tool_call.get("id"),
                name=function.get("name"),
                arguments=function.get("arguments"),
            )
        state.add_sources(url_citations(message.get("annotations")))

    def _collect_root_sources(self, payload: Dict[str, Any], state: StreamState) -> None:
        """Hook for providers that attach citations to the response root"""
        pass


def url_citations(annotations: Optional[List[Dict[str, Any]]]) -> List[WebSearchSource]:
    """Convert OpenAI `url_citation` annotations into sources"""
    sources = []
    for annotation in annotations or []:
        if annotation.get("type") != "url_citation":
            continue
        citation = annotation.get("url_citation") or annotation
        url = citation.get("url")
        if url:
            sources.append(WebSearchSource(title=citation.get("title") or url, url=url))
    return sources


class CustomOpenAIAdapter(OpenAICompatibleAdapter):
    """User-registered OpenAI-compatible endpoint (local servers, gateways)"""

    pass
