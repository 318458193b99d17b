"""The web-search tool-calling loop that drives one turn."""

from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from askai.core.models import (
    ApiResponse,
    ConversationMessage,
    SearchMode,
    StreamResult,
    ToolCall,
    ToolRound,
    WebSearchResult,
    WebSearchStatus,
)
from askai.core.signal import AbortSignal
from askai.providers.base import WEB_SEARCH_TOOL_NAME, BaseAdapter, StreamCallbacks
from askai.search.executor import WebSearchExecutor
from askai.utils.errors import AbortError
from askai.utils.logging import get_logger

logger = get_logger(__name__)

MAX_TOOL_ITERATIONS = 5

RESULT_SEPARATOR = "\n\n---\n\n"
RESULT_INSTRUCTION = (
    "Use these search results to answer the user's question. "
    "Cite the sources you rely on."
)


class LoopState(str, Enum):
    INITIAL_REQUEST = "initial_request"
    SEARCHING = "searching"
    FOLLOW_UP_REQUEST = "follow_up_request"
    DONE = "done"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


def extract_queries(call: ToolCall) -> List[str]:
    """Queries requested by one web_search call (`query` and/or `queries`)"""
    args = call.parsed_arguments()
    candidates = []
    if isinstance(args.get("query"), str):
        candidates.append(args["query"])
    if isinstance(args.get("queries"), list):
        candidates.extend(q for q in args["queries"] if isinstance(q, str))

    queries: List[str] = []
    for query in candidates:
        query = query.strip()
        if query and query not in queries:
            queries.append(query)
    return queries


def format_search_result(query: str, result: WebSearchResult, labeled: bool = False) -> str:
    text = result.content
    if result.sources:
        listing = "\n".join(
            f"[{i}] {source.title}: {source.url}" for i, source in enumerate(result.sources, 1)
        )
        text = f"{text}\n\nSources:\n{listing}"
    if labeled:
        text = f"[Results for: {query}]\n{text}"
    return text


def last_user_text(messages: Sequence[ConversationMessage]) -> str:
    for message in reversed(messages):
        if message.role == "user":
            return message.content
    return ""


class ToolCallLoop:
    """Runs the request, search, follow-up cycle for a single turn.

    The loop owns no network resources itself; it only sequences adapter and
    executor calls and reports search progress through on_web_search.
    """

    def __init__(
        self,
        adapter: BaseAdapter,
        executor: Optional[WebSearchExecutor],
        search_mode: SearchMode,
        signal: Optional[AbortSignal] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
        on_web_search: Optional[Callable[[WebSearchStatus], None]] = None,
        on_reasoning: Optional[Callable[[str], None]] = None,
        on_image: Optional[Callable[[str], None]] = None,
        max_iterations: int = MAX_TOOL_ITERATIONS,
    ):
        if search_mode is SearchMode.FUNCTION_CALLING and executor is None:
            raise ValueError("Function-calling search needs a WebSearchExecutor")

        self.adapter = adapter
        self.executor = executor
        self.search_mode = search_mode
        self.signal = signal
        self.on_chunk = on_chunk
        self.on_web_search = on_web_search
        self.on_reasoning = on_reasoning
        self.on_image = on_image
        self.max_iterations = max_iterations

        self.state = LoopState.INITIAL_REQUEST
        self.iterations = 0
        self.rounds: List[ToolRound] = []
        self._text_parts: List[str] = []
        self._held_status: Optional[WebSearchStatus] = None
        self._boundary_sent = False

    @property
    def text(self) -> str:
        return "".join(self._text_parts)

    def _set_state(self, state: LoopState) -> None:
        logger.debug(f"Tool loop: {self.state.value} -> {state.value}")
        self.state = state

    def _check_abort(self) -> None:
        if self.signal is not None:
            self.signal.throw_if_aborted()

    def _emit_status(self, status: WebSearchStatus) -> None:
        if self.on_web_search:
            self.on_web_search(status)

    def _flush_held_status(self, boundary: bool) -> None:
        if self._held_status is None:
            return
        status = self._held_status.model_copy(update={"start_new_message": boundary})
        self._held_status = None
        if boundary:
            self._boundary_sent = True
        self._emit_status(status)

    def _handle_chunk(self, text: str) -> None:
        if self._held_status is not None:
            self._flush_held_status(boundary=not self._boundary_sent)
        if self.on_chunk:
            self.on_chunk(text)

    async def _request(self, messages: Sequence[ConversationMessage]) -> StreamResult:
        self._check_abort()
        callbacks = StreamCallbacks(
            on_chunk=self._handle_chunk,
            on_reasoning=self.on_reasoning,
            on_image=self.on_image,
        )
        result = await self.adapter.stream(
            messages,
            callbacks,
            signal=self.signal,
            search_mode=self.search_mode,
            rounds=list(self.rounds),
        )
        self._text_parts.append(result.text)
        return result

    async def run(self, messages: Sequence[ConversationMessage]) -> ApiResponse:
        """Drive the turn to completion and return the accumulated text"""
        self._set_state(LoopState.INITIAL_REQUEST)
        result = await self._request(messages)
        if result.error:
            return ApiResponse(text=self.text, error=result.error)

        if self.search_mode is not SearchMode.FUNCTION_CALLING or not result.tool_calls:
            self._publish_sources(messages, result)
            self._set_state(LoopState.DONE)
            return ApiResponse(text=self.text)

        while result.tool_calls:
            if self.iterations >= self.max_iterations:
                logger.info(f"Reached {self.max_iterations} search iterations, stopping tool loop")
                self._set_state(LoopState.MAX_ITERATIONS_REACHED)
                return ApiResponse(text=self.text)

            self._set_state(LoopState.SEARCHING)
            self.rounds.append(await self._search_round(result))

            self._set_state(LoopState.FOLLOW_UP_REQUEST)
            self.iterations += 1
            try:
                result = await self._request(messages)
            except AbortError:
                self._held_status = None
                raise
            self._flush_held_status(boundary=False)
            if result.error:
                return ApiResponse(text=self.text, error=result.error)

        self._set_state(LoopState.DONE)
        return ApiResponse(text=self.text)

    def _publish_sources(self, messages: Sequence[ConversationMessage], result: StreamResult) -> None:
        """Forward citations from provider-side search"""
        if result.sources:
            self._emit_status(
                WebSearchStatus(
                    query=last_user_text(messages), is_searching=False, sources=result.sources
                )
            )

    async def _search_round(self, result: StreamResult) -> ToolRound:
        plan: List[Tuple[ToolCall, List[str]]] = []
        for call in result.tool_calls:
            queries = extract_queries(call) if call.name == WEB_SEARCH_TOOL_NAME else []
            plan.append((call, queries))
        flat = [query for _, queries in plan for query in queries]

        for query in flat:
            self._emit_status(WebSearchStatus(query=query, is_searching=True))

        self._check_abort()
        search_results = await self.executor.execute_batch(flat, self.signal) if flat else []

        for i, (query, search_result) in enumerate(zip(flat, search_results)):
            status = WebSearchStatus(
                query=query,
                result=search_result.content,
                is_searching=False,
                sources=search_result.sources,
            )
            if i == len(flat) - 1:
                self._held_status = status
            else:
                self._emit_status(status)

        folded: Dict[str, str] = {}
        cursor = 0
        for call, queries in plan:
            if call.name != WEB_SEARCH_TOOL_NAME:
                folded[call.id] = f"Error: Unknown tool '{call.name}'"
                continue
            if not queries:
                folded[call.id] = "Error: No search query provided"
                continue
            parts = []
            for query in queries:
                parts.append(
                    format_search_result(query, search_results[cursor], labeled=len(queries) > 1)
                )
                cursor += 1
            folded[call.id] = f"{RESULT_SEPARATOR.join(parts)}\n\n{RESULT_INSTRUCTION}"

        return ToolRound(assistant_text=result.text, tool_calls=result.tool_calls, results=folded)
