from typing import Any, Dict, List, Sequence

from askai.core.models import SearchMode, ToolRound, WebSearchSource
from askai.providers.base import BaseAdapter, StreamState, WireMessage, split_data_url
from askai.providers.streaming import JsonObjectStreamParser
from askai.utils.logging import get_logger

logger = get_logger(__name__)


def grounding_sources(candidate: Dict[str, Any]) -> List[WebSearchSource]:
    """Sources from a candidate's groundingMetadata.groundingChunks[].web"""
    metadata = candidate.get("groundingMetadata") or {}
    sources = []
    for chunk in metadata.get("groundingChunks") or []:
        web = chunk.get("web") or {}
        uri = web.get("uri")
        if uri:
            sources.append(
                WebSearchSource(title=web.get("title") or uri, url=uri, snippet=web.get("snippet"))
            )
    return sources


class GeminiAdapter(BaseAdapter):
    """Google Generative Language API"""

    def _url(self, method: str) -> str:
        return f"{self.base_url}/models/{self.model}:{method}?key={self.api_key}"

    def _build_body(self, messages: List[WireMessage], search_mode: SearchMode) -> Dict[str, Any]:
        system_parts = []
        contents = []
        for message in messages:
            if message.role == "system":
                system_parts.append({"text": message.content})
                continue

            parts: List[Dict[str, Any]] = []
            if message.content:
                parts.append({"text": message.content})
            if message.image:
                mime_type, data = split_data_url(message.image)
                parts.append({"inlineData": {"mimeType": mime_type, "data": data}})
            contents.append(
                {"role": "model" if message.role == "assistant" else "user", "parts": parts}
            )

        body: Dict[str, Any] = {
            "contents": contents,
            "generationConfig": {"maxOutputTokens": self.max_tokens},
        }
        if system_parts:
            body["systemInstruction"] = {"parts": system_parts}
        if search_mode is SearchMode.NATIVE:
            body["tools"] = [{"google_search": {}}]
        return body

    async def _call(self, messages: List[WireMessage]) -> str:
        data = await self._post_json(
            self._url("generateContent"),
            self._build_body(messages, SearchMode.DISABLED),
            {"Content-Type": "application/json"},
        )
        candidate = (data.get("candidates") or [{}])[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts if not p.get("thought"))

    async def _stream(
        self,
        messages: List[WireMessage],
        state: StreamState,
        search_mode: SearchMode,
        rounds: Sequence[ToolRound],
    ) -> None:
        # Grounding is resolved server-side, so there are never rounds to replay
        url = self._url("streamGenerateContent")
        body = self._build_body(messages, search_mode)
        parser = JsonObjectStreamParser()

        async with self._client() as client:
            response = await self._open_stream(
                client, url, body, {"Content-Type": "application/json"}
            )
            try:
                async for text in response.aiter_text():
                    for payload in parser.feed(text):
                        self._handle_payload(payload, state)
                        if state.error:
                            return
            finally:
                await response.aclose()

        if parser.remainder.strip():
            logger.debug(f"Gemini stream ended with unparsed data: {parser.remainder[:100]}")

    def _handle_payload(self, payload: Dict[str, Any], state: StreamState) -> None:
        if payload.get("error"):
            error = payload["error"]
            state.error = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            return

        for candidate in payload.get("candidates") or []:
            for part in (candidate.get("content") or {}).get("parts") or []:
                inline = part.get("inlineData")
                if inline and inline.get("data"):
                    mime_type = inline.get("mimeType", "image/png")
                    state.emit_image(f"data:{mime_type};base64,{inline['data']}")
                elif part.get("thought"):
                    state.emit_reasoning(part.get("text"))
                else:
                    state.emit_chunk(part.get("text"))
            state.add_sources(grounding_sources(candidate))
