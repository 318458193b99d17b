"""Tests for web-search backends, the executor and search-mode resolution"""

import asyncio
import json

import httpx
import pytest
import respx

from conftest import make_config
from askai.core.credentials import CredentialRotator
from askai.core.models import CustomProvider, SearchMode, WebSearchResult
from askai.core.signal import AbortController
from askai.search import WebSearchExecutor, resolve_search_mode, should_enable_web_search
from askai.search.base import NO_RESULTS, SearchBackend
from askai.search.google import GoogleSearchBackend
from askai.search.kagi import KAGI_CONTEXT_URL, KagiSearchBackend, parse_kagi_response
from askai.search.perplexity import PerplexitySearchBackend
from askai.utils.errors import AbortError
from askai.utils.store import MemoryStore

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"
GOOGLE_URL = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.5-flash:generateContent"


def kagi_line(payload) -> str:
    return "new_message.json:" + (payload if isinstance(payload, str) else json.dumps(payload))


class TestParseKagiResponse:
    """Test the forgiving Kagi stream parser"""

    def test_extracts_markdown_and_references(self):
        raw = "\n".join(
            [
                "hi:{}",
                kagi_line({"state": "generating"}),
                kagi_line(
                    {
                        "md": "Tokyo is **sunny**.",
                        "references_md": "[^1]: [Weather Tokyo](https://w.example/tokyo) (26%)\n"
                        "[^2]: [JMA](https://jma.example) (10%)",
                    }
                ),
            ]
        )

        result = parse_kagi_response(raw)

        assert result.content == "Tokyo is **sunny**."
        assert [(s.title, s.url) for s in result.sources] == [
            ("Weather Tokyo", "https://w.example/tokyo"),
            ("JMA", "https://jma.example"),
        ]

    def test_truncated_json_recovered_at_last_brace(self):
        """Test that trailing garbage after the object is dropped before parsing"""
        raw = kagi_line('{"md": "Answer here", "metadata": {}} trailing junk')

        assert parse_kagi_response(raw).content == "Answer here"

    def test_regex_fallback_for_unparseable_json(self):
        """Test that the md field is pulled out by pattern when JSON parsing fails"""
        raw = kagi_line('{"md":"Line one\\nSaid \\"hi\\"","metadata":{"broken": ')

        result = parse_kagi_response(raw)

        assert result.content == 'Line one\nSaid "hi"'
        assert result.sources == []

    def test_raw_text_when_nothing_matches(self):
        assert parse_kagi_response("plain body").content == "plain body"

    def test_empty_body(self):
        assert parse_kagi_response("").content == NO_RESULTS


class TestKagiBackend:
    """Test KagiSearchBackend"""

    @pytest.mark.asyncio
    async def test_missing_session(self):
        backend = KagiSearchBackend(make_config(web_search_provider="kagi"))

        result = await backend.search("q")

        assert result.content == "Error: Kagi session cookie is missing."
        assert not backend.is_available()

    @pytest.mark.asyncio
    @respx.mock
    async def test_sends_cookie_and_query(self):
        route = respx.post(url__startswith=KAGI_CONTEXT_URL).mock(
            return_value=httpx.Response(200, text=kagi_line({"md": "ok"}))
        )
        backend = KagiSearchBackend(make_config(web_search_provider="kagi", kagi_session="sess123"))

        result = await backend.search("tokyo weather")

        assert result.content == "ok"
        request = route.calls[0].request
        assert request.headers["cookie"] == "kagi_session=sess123"
        assert request.url.params["q"] == "tokyo weather"

    @pytest.mark.asyncio
    @respx.mock
    async def test_uses_configured_timeout(self):
        route = respx.post(url__startswith=KAGI_CONTEXT_URL).mock(
            return_value=httpx.Response(200, text=kagi_line({"md": "ok"}))
        )
        config = make_config(web_search_provider="kagi", kagi_session="s", request_timeout=5.0)

        await KagiSearchBackend(config).search("q")

        assert route.calls[0].request.extensions["timeout"]["read"] == 5.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_is_reported_in_content(self):
        respx.post(url__startswith=KAGI_CONTEXT_URL).mock(return_value=httpx.Response(403))
        backend = KagiSearchBackend(make_config(web_search_provider="kagi", kagi_session="sess"))

        result = await backend.search("q")

        assert result.content == "Kagi search error: Forbidden"

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_failure_is_reported_in_content(self):
        respx.post(url__startswith=KAGI_CONTEXT_URL).mock(side_effect=httpx.ConnectError("boom"))
        backend = KagiSearchBackend(make_config(web_search_provider="kagi", kagi_session="sess"))

        result = await backend.search("q")

        assert result.content == "Kagi search failed: boom"


class TestPerplexityBackend:
    """Test PerplexitySearchBackend"""

    @pytest.mark.asyncio
    async def test_no_key(self, rotator):
        backend = PerplexitySearchBackend(make_config(), rotator)

        result = await backend.search("q")

        assert result.content == "Error: No Perplexity API key configured for web search."

    @pytest.mark.asyncio
    @respx.mock
    async def test_returns_content_and_sources(self, rotator):
        route = respx.post(PERPLEXITY_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "choices": [{"message": {"content": "Tokyo: 18°C, clear."}}],
                    "citations": ["https://w.example"],
                },
            )
        )
        config = make_config(api_keys={"openai": ["sk"], "perplexity": ["pplx-1"]})

        result = await PerplexitySearchBackend(config, rotator).search("Tokyo weather")

        assert result.content == "Tokyo: 18°C, clear."
        assert [s.url for s in result.sources] == ["https://w.example"]
        body = json.loads(route.calls[0].request.content)
        assert body["model"] == "sonar-pro"
        assert body["messages"][-1] == {"role": "user", "content": "Tokyo weather"}
        assert route.calls[0].request.headers["Authorization"] == "Bearer pplx-1"

    @pytest.mark.asyncio
    @respx.mock
    async def test_quota_error_marks_key_exhausted(self, rotator):
        respx.post(PERPLEXITY_URL).mock(
            return_value=httpx.Response(429, json={"error": {"message": "Rate limit exceeded"}})
        )
        config = make_config(api_keys={"perplexity": ["pplx-1"]})

        result = await PerplexitySearchBackend(config, rotator).search("q")

        assert result.content == "Search error: Rate limit exceeded (HTTP 429)"
        exhausted = await rotator.exhausted_entries("perplexity")
        assert [e.key for e in exhausted] == ["pplx-1"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_empty_answer(self, rotator):
        respx.post(PERPLEXITY_URL).mock(
            return_value=httpx.Response(200, json={"choices": [{"message": {"content": ""}}]})
        )
        config = make_config(api_keys={"perplexity": ["pplx-1"]})

        result = await PerplexitySearchBackend(config, rotator).search("q")

        assert result.content == NO_RESULTS


class TestGoogleBackend:
    """Test GoogleSearchBackend"""

    @pytest.mark.asyncio
    @respx.mock
    async def test_grounded_answer(self, rotator):
        route = respx.post(url__startswith=GOOGLE_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "candidates": [
                        {
                            "content": {"parts": [{"text": "Clear skies."}]},
                            "groundingMetadata": {
                                "groundingChunks": [{"web": {"uri": "https://g.example", "title": "G"}}]
                            },
                        }
                    ]
                },
            )
        )
        config = make_config(web_search_provider="google", api_keys={"google": ["g-1"]})

        result = await GoogleSearchBackend(config, rotator).search("Tokyo weather")

        assert result.content == "Clear skies."
        assert [s.url for s in result.sources] == ["https://g.example"]
        body = json.loads(route.calls[0].request.content)
        assert body["tools"] == [{"google_search": {}}]
        assert route.calls[0].request.url.params["key"] == "g-1"

    @pytest.mark.asyncio
    @respx.mock
    async def test_error_response(self, rotator):
        respx.post(url__startswith=GOOGLE_URL).mock(
            return_value=httpx.Response(400, json={"error": {"message": "API key not valid"}})
        )
        config = make_config(web_search_provider="google", api_keys={"google": ["g-1"]})

        result = await GoogleSearchBackend(config, rotator).search("q")

        assert result.content == "Google search error: API key not valid (HTTP 400)"
        assert await rotator.exhausted_entries("google") == []


class ScriptedBackend(SearchBackend):
    """Backend whose behaviour per query is set by the test"""

    name = "scripted"

    def __init__(self, delays=None, failures=()):
        self.delays = delays or {}
        self.failures = set(failures)

    def is_available(self) -> bool:
        return True

    async def _search(self, query: str) -> WebSearchResult:
        await asyncio.sleep(self.delays.get(query, 0))
        if query in self.failures:
            raise RuntimeError(f"{query} exploded")
        return WebSearchResult(content=f"about {query}")


def make_executor(backend: SearchBackend) -> WebSearchExecutor:
    executor = WebSearchExecutor(make_config(), CredentialRotator(MemoryStore()))
    executor.backend = backend
    return executor


class TestWebSearchExecutor:
    """Test WebSearchExecutor"""

    def test_backend_follows_config(self, rotator):
        assert isinstance(WebSearchExecutor(make_config(), rotator).backend, PerplexitySearchBackend)
        assert isinstance(
            WebSearchExecutor(make_config(web_search_provider="kagi"), rotator).backend, KagiSearchBackend
        )
        assert isinstance(
            WebSearchExecutor(make_config(web_search_provider="google"), rotator).backend,
            GoogleSearchBackend,
        )

    @pytest.mark.asyncio
    async def test_batch_results_keep_query_order(self):
        """Test that results line up with queries even when they finish out of order"""
        executor = make_executor(ScriptedBackend(delays={"slow": 0.05, "fast": 0}))

        results = await executor.execute_batch(["slow", "fast"])

        assert [r.content for r in results] == ["about slow", "about fast"]

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_siblings(self):
        executor = make_executor(ScriptedBackend(failures={"bad"}))

        results = await executor.execute_batch(["good", "bad", "also good"])

        assert results[0].content == "about good"
        assert results[1].content == "Search failed: bad exploded"
        assert results[2].content == "about also good"

    @pytest.mark.asyncio
    async def test_already_aborted_signal(self):
        executor = make_executor(ScriptedBackend())
        controller = AbortController()
        controller.abort()

        with pytest.raises(AbortError):
            await executor.execute_batch(["q"], controller.signal)

    @pytest.mark.asyncio
    async def test_abort_during_batch(self):
        executor = make_executor(ScriptedBackend(delays={"q": 10}))
        controller = AbortController()

        asyncio.get_running_loop().call_later(0.01, controller.abort, "stop")
        with pytest.raises(AbortError):
            await executor.execute_batch(["q"], controller.signal)

    @pytest.mark.asyncio
    async def test_execute_single(self):
        executor = make_executor(ScriptedBackend())

        assert (await executor.execute("one")).content == "about one"


class TestResolveSearchMode:
    """Test resolve_search_mode"""

    def test_disabled_flag(self):
        config = make_config(enable_web_search=False, api_keys={"openai": ["k"], "perplexity": ["p"]})
        assert resolve_search_mode(config) is SearchMode.DISABLED
        assert not should_enable_web_search(config)

    def test_function_calling_when_backend_has_credentials(self):
        config = make_config(api_keys={"openai": ["k"], "perplexity": ["p"]})
        assert resolve_search_mode(config) is SearchMode.FUNCTION_CALLING

    def test_anthropic_with_kagi(self):
        config = make_config(
            selected_provider="anthropic", web_search_provider="kagi", kagi_session="s"
        )
        assert resolve_search_mode(config) is SearchMode.FUNCTION_CALLING

    def test_gpt_falls_back_to_native_without_backend(self):
        assert resolve_search_mode(make_config()) is SearchMode.NATIVE

    def test_non_gpt_openai_model_without_backend(self):
        config = make_config(selected_models={"openai": "o3-mini"})
        assert resolve_search_mode(config) is SearchMode.DISABLED

    def test_openrouter_without_backend(self):
        config = make_config(selected_provider="openrouter", api_keys={"openrouter": ["k"]})
        assert resolve_search_mode(config) is SearchMode.DISABLED

    def test_gemini_is_native(self):
        config = make_config(selected_provider="google", api_keys={"google": ["g"], "perplexity": ["p"]})
        assert resolve_search_mode(config) is SearchMode.NATIVE

    def test_perplexity_chat_never_uses_tools(self):
        config = make_config(selected_provider="perplexity", api_keys={"perplexity": ["p"]})
        assert resolve_search_mode(config) is SearchMode.DISABLED

    def test_custom_provider_native_without_backend(self):
        config = make_config(
            selected_provider="local",
            custom_providers=[CustomProvider(id="local", name="Local", base_url="http://localhost:8080/v1")],
        )
        assert resolve_search_mode(config) is SearchMode.NATIVE

    def test_empty_keys_do_not_count_as_credentials(self):
        config = make_config(api_keys={"openai": ["k"], "perplexity": [""]}, selected_models={"openai": "o1"})
        assert resolve_search_mode(config) is SearchMode.DISABLED

    def test_default_gpt_model_counts_without_selection(self):
        config = make_config(selected_models={})

        assert resolve_search_mode(config) is SearchMode.NATIVE
        assert should_enable_web_search(config)
