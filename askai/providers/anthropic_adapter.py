import json
from typing import Any, Dict, List, Sequence

from askai.core.models import SearchMode, ToolRound
from askai.providers.base import (
    WEB_SEARCH_TOOL_DESCRIPTION,
    WEB_SEARCH_TOOL_NAME,
    WEB_SEARCH_TOOL_PARAMETERS,
    BaseAdapter,
    StreamState,
    WireMessage,
    is_json_response,
    split_data_url,
)
from askai.providers.streaming import is_sse_done, parse_sse_line
from askai.utils.logging import get_logger

logger = get_logger(__name__)

ANTHROPIC_VERSION = "2023-06-01"

WEB_SEARCH_TOOL = {
    "name": WEB_SEARCH_TOOL_NAME,
    "description": WEB_SEARCH_TOOL_DESCRIPTION,
    "input_schema": WEB_SEARCH_TOOL_PARAMETERS,
}


class AnthropicAdapter(BaseAdapter):
    """Anthropic Messages API"""

    supports_function_calling = True

    @property
    def url(self) -> str:
        return f"{self.base_url}/messages"

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _encode_message(self, message: WireMessage) -> Dict[str, Any]:
        if message.image:
            mime_type, data = split_data_url(message.image)
            return {
                "role": message.role,
                "content": [
                    {
                        "type": "image",
                        "source": {"type": "base64", "media_type": mime_type, "data": data},
                    },
                    {"type": "text", "text": message.content},
                ],
            }
        return {"role": message.role, "content": message.content}

    def _encode_round(self, round_: ToolRound) -> List[Dict[str, Any]]:
        assistant_blocks: List[Dict[str, Any]] = []
        if round_.assistant_text:
            assistant_blocks.append({"type": "text", "text": round_.assistant_text})
        for call in round_.tool_calls:
            assistant_blocks.append(
                {
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.parsed_arguments(),
                }
            )
        results = [
            {
                "type": "tool_result",
                "tool_use_id": call.id,
                "content": round_.results.get(call.id, ""),
            }
            for call in round_.tool_calls
        ]
        return [
            {"role": "assistant", "content": assistant_blocks},
            {"role": "user", "content": results},
        ]

    def _build_body(
        self,
        messages: List[WireMessage],
        search_mode: SearchMode,
        rounds: Sequence[ToolRound],
        stream: bool,
    ) -> Dict[str, Any]:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        encoded = [self._encode_message(m) for m in messages if m.role != "system"]
        for round_ in rounds:
            encoded.extend(self._encode_round(round_))

        body: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": encoded,
            "stream": stream,
        }
        if system:
            body["system"] = system
        if search_mode is SearchMode.FUNCTION_CALLING:
            body["tools"] = [WEB_SEARCH_TOOL]
        return body

    async def _call(self, messages: List[WireMessage]) -> str:
        data = await self._post_json(
            self.url,
            self._build_body(messages, SearchMode.DISABLED, (), stream=False),
            self._headers(),
        )
        return "".join(
            block.get("text", "") for block in data.get("content") or [] if block.get("type") == "text"
        )

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
                    self._handle_message(response.json(), state)
                    return

                async for line in response.aiter_lines():
                    if is_sse_done(line):
                        break
                    event = parse_sse_line(line)
                    if event is None:
                        continue
                    self._handle_event(event, state)
                    if state.error or event.get("type") == "message_stop":
                        break
            finally:
                await response.aclose()

    def _handle_event(self, event: Dict[str, Any], state: StreamState) -> None:
        """Apply one Messages API stream event"""
        event_type = event.get("type")

        if event_type == "error":
            error = event.get("error") or {}
            state.error = error.get("message") or error.get("type") or "Stream error"

        elif event_type == "content_block_start":
            block = event.get("content_block") or {}
            if block.get("type") == "tool_use":
                state.tool_calls.add(
                    event.get("index", 0), call_id=block.get("id"), name=block.get("name")
                )
            elif block.get("type") == "text":
                state.emit_chunk(block.get("text"))

        elif event_type == "content_block_delta":
            delta = event.get("delta") or {}
            delta_type = delta.get("type")
            if delta_type == "text_delta":
                state.emit_chunk(delta.get("text"))
            elif delta_type == "thinking_delta":
                state.emit_reasoning(delta.get("thinking"))
            elif delta_type == "input_json_delta":
                state.tool_calls.add(event.get("index", 0), arguments=delta.get("partial_json"))

    def _handle_message(self, data: Dict[str, Any], state: StreamState) -> None:
        """Treat a plain JSON message as a single chunk"""
        if data.get("type") == "error":
            self._handle_event(data, state)
            return

        for index, block in enumerate(data.get("content") or []):
            block_type = block.get("type")
            if block_type == "text":
                state.emit_chunk(block.get("text"))
            elif block_type == "thinking":
                state.emit_reasoning(block.get("thinking"))
            elif block_type == "tool_use":
                state.tool_calls.add(
                    index,
                    call_id=block.get("id"),
                    name=block.get("name"),
                    arguments=json.dumps(block.get("input") or {}),
                )
