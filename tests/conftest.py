"""
Shared fixtures and fakes for askai tests.

Adapters and search backends talk HTTP through httpx, which the tests stub
with respx. The tool loop and session tests use the scripted fakes below
instead so they can control exactly what each request returns.
"""

import asyncio
import json
import random
from typing import Any, Dict, List, Optional, Sequence

import pytest

from askai.core.credentials import CredentialRotator
from askai.core.models import (
    ConversationMessage,
    GenerationConfig,
    SearchMode,
    StreamResult,
    ToolCall,
    WebSearchResult,
    WebSearchSource,
)
from askai.providers.base import StreamCallbacks
from askai.utils.store import MemoryStore


# =============================================================================
# Helper Functions
# =============================================================================


def sse(*payloads: Any, done: bool = True) -> str:
    """Build an SSE body from payloads (dicts are JSON-encoded)"""
    lines = []
    for payload in payloads:
        data = payload if isinstance(payload, str) else json.dumps(payload)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines)


def content_chunk(text: str) -> Dict[str, Any]:
    return {"choices": [{"delta": {"content": text}}]}


def tool_call_chunk(
    index: int,
    call_id: Optional[str] = None,
    name: Optional[str] = None,
    arguments: Optional[str] = None,
) -> Dict[str, Any]:
    function: Dict[str, Any] = {}
    if name:
        function["name"] = name
    if arguments is not None:
        function["arguments"] = arguments
    call: Dict[str, Any] = {"index": index, "function": function}
    if call_id:
        call["id"] = call_id
    return {"choices": [{"delta": {"tool_calls": [call]}}]}


def make_config(**overrides) -> GenerationConfig:
    """GenerationConfig for OpenAI with one key and no search credentials"""
    values: Dict[str, Any] = {
        "selected_provider": "openai",
        "api_keys": {"openai": ["sk-test-key"]},
        "selected_models": {"openai": "gpt-4o"},
    }
    values.update(overrides)
    return GenerationConfig(**values)


def web_search_call(call_id: str = "call_1", **arguments) -> ToolCall:
    return ToolCall(id=call_id, name="web_search", arguments=json.dumps(arguments))


def user(content: str) -> ConversationMessage:
    return ConversationMessage(role="user", content=content)


# =============================================================================
# Fakes
# =============================================================================


class ScriptedAdapter:
    """Adapter stand-in that replays one scripted response per request.

    Each script step is a dict with optional `chunks`, `tool_calls`,
    `sources` and `error`. Once the script runs out the last step repeats.
    """

    supports_function_calling = True

    def __init__(self, script: Sequence[Dict[str, Any]]):
        self.script = list(script)
        self.calls: List[Dict[str, Any]] = []

    async def stream(
        self,
        messages,
        callbacks: StreamCallbacks,
        signal=None,
        search_mode: SearchMode = SearchMode.DISABLED,
        rounds=(),
    ) -> StreamResult:
        self.calls.append(
            {"messages": list(messages), "search_mode": search_mode, "rounds": list(rounds)}
        )
        step = self.script[min(len(self.calls), len(self.script)) - 1]
        chunks = step.get("chunks", [])
        for chunk in chunks:
            if signal is not None:
                signal.throw_if_aborted()
            if callbacks.on_chunk:
                callbacks.on_chunk(chunk)
            await asyncio.sleep(0)
        return StreamResult(
            text="".join(chunks),
            error=step.get("error"),
            tool_calls=step.get("tool_calls", []),
            sources=step.get("sources", []),
        )


class FakeExecutor:
    """Records batches and answers every query with one source"""

    def __init__(self):
        self.batches: List[List[str]] = []

    async def execute_batch(self, queries, signal=None) -> List[WebSearchResult]:
        self.batches.append(list(queries))
        return [
            WebSearchResult(
                content=f"Results for {query}",
                sources=[WebSearchSource(title=f"About {query}", url=f"https://example.com/{query}")],
            )
            for query in queries
        ]


class FakeProviderManager:
    """Hands out a fixed adapter and remembers the keys it was built with"""

    def __init__(self, adapter):
        self.adapter = adapter
        self.keys: List[str] = []

    def create_adapter(self, api_key: str, provider: Optional[str] = None):
        self.keys.append(api_key)
        return self.adapter


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def rotator(store):
    """Rotator with a seeded RNG so key choice is reproducible"""
    return CredentialRotator(store, rng=random.Random(1234))


@pytest.fixture
def config():
    return make_config()
