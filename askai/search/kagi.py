"""Kagi Assistant context endpoint as a search backend.

The endpoint answers with a streamed, line-oriented text body rather than
JSON. The final answer sits on a `new_message.json:` line whose JSON payload
can arrive truncated, so parsing is deliberately forgiving.
"""

import json
import re
from typing import Any, Dict, List, Optional

import httpx

from askai.core.models import GenerationConfig, WebSearchResult, WebSearchSource
from askai.search.base import NO_RESULTS, SearchBackend
from askai.utils.logging import get_logger

logger = get_logger(__name__)

KAGI_CONTEXT_URL = "https://kagi.com/mother/context"
MESSAGE_MARKER = "new_message.json:"

# [^1]: [Title](url) (26%)
REFERENCE_PATTERN = re.compile(r"\[\^(\d+)\]:\s*\[(.*?)\]\((.*?)\)")
MD_FALLBACK_PATTERN = re.compile(r'"md":"([\s\S]*?)","metadata"')

KAGI_HEADERS = {
    "accept": "application/vnd.kagi.stream",
    "accept-language": "en-US,en;q=0.9",
    "cache-control": "no-cache",
    "origin": "https://kagi.com",
    "pragma": "no-cache",
    "user-agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36"
    ),
}


def _load_payload(text: str) -> Optional[Dict[str, Any]]:
    """json.loads, retrying once with everything after the last '}' dropped"""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        last_brace = text.rfind("}")
        if last_brace == -1:
            return None
        try:
            data = json.loads(text[: last_brace + 1])
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


def parse_references(references_md: str) -> List[WebSearchSource]:
    return [
        WebSearchSource(title=title, url=url)
        for _, title, url in REFERENCE_PATTERN.findall(references_md)
    ]


def _unescape(text: str) -> str:
    return text.replace("\\n", "\n").replace('\\"', '"').replace("\\\\", "\\")


def parse_kagi_response(raw_text: str) -> WebSearchResult:
    """Extract the markdown answer and its references from a Kagi stream body"""
    content = ""
    sources: List[WebSearchSource] = []

    for line in raw_text.splitlines():
        line = line.strip()
        if not line.startswith(MESSAGE_MARKER):
            continue

        data = _load_payload(line[len(MESSAGE_MARKER) :])
        if data is None:
            logger.debug("Unparseable Kagi message payload")
            continue
        if data.get("md"):
            content = data["md"]
        if data.get("references_md"):
            sources = parse_references(data["references_md"])
        if content:
            break

    if not content:
        match = MD_FALLBACK_PATTERN.search(raw_text)
        content = _unescape(match.group(1)) if match and match.group(1) else raw_text

    return WebSearchResult(content=content or NO_RESULTS, sources=sources)


class KagiSearchBackend(SearchBackend):
    """Session-cookie authenticated Kagi search."""

    name = "kagi"
    error_prefix = "Kagi search failed"

    def __init__(self, config: GenerationConfig):
        self.config = config

    def is_available(self) -> bool:
        return bool(self.config.kagi_session)

    async def _search(self, query: str) -> WebSearchResult:
        if not self.config.kagi_session:
            return WebSearchResult(content="Error: Kagi session cookie is missing.", sources=[])

        headers = dict(KAGI_HEADERS, cookie=f"kagi_session={self.config.kagi_session}")
        async with httpx.AsyncClient(timeout=self.config.request_timeout) as client:
            response = await client.post(KAGI_CONTEXT_URL, params={"q": query}, headers=headers)

        if response.is_error:
            return WebSearchResult(
                content=f"Kagi search error: {response.reason_phrase or response.status_code}",
                sources=[],
            )
        return parse_kagi_response(response.text)
