import asyncio
import time
from typing import AsyncIterator, Callable, List, Optional, Sequence, Tuple

from askai.core.credentials import CredentialRotator, is_quota_error
from askai.core.models import (
    ApiResponse,
    ConversationMessage,
    GenerationConfig,
    StreamEvent,
    WebSearchAttachment,
    WebSearchStatus,
    merge_sources,
)
from askai.core.provider_manager import ProviderManager
from askai.core.signal import AbortController, AbortSignal, link_signal
from askai.core.tool_loop import ToolCallLoop
from askai.providers.base import BaseAdapter
from askai.search.executor import WebSearchExecutor, resolve_search_mode
from askai.utils.errors import AbortError, ConfigError
from askai.utils.logging import get_logger

logger = get_logger(__name__)


class StreamSession:
    """
    Entry point for running turns against the selected provider.

    A session owns the abort controller of its current turn. Starting a new
    turn aborts whatever the previous one was still doing.
    """

    def __init__(
        self,
        config: GenerationConfig,
        rotator: CredentialRotator,
        executor: Optional[WebSearchExecutor] = None,
        provider_manager: Optional[ProviderManager] = None,
    ):
        self.config = config
        self.rotator = rotator
        self.executor = executor or WebSearchExecutor(config, rotator)
        self.provider_manager = provider_manager or ProviderManager(config)
        self._controller: Optional[AbortController] = None

    @property
    def provider(self) -> str:
        return self.config.selected_provider

    def abort(self, reason: object = None) -> None:
        """Cancel the turn in progress, if any"""
        if self._controller is not None:
            self._controller.abort(reason)

    def _start_turn(self, signal: Optional[AbortSignal]) -> Tuple[AbortController, Callable[[], None]]:
        """New turn controller linked to signal, plus the function that unlinks it"""
        if self._controller is not None:
            self._controller.abort("superseded")
        controller = AbortController()
        unlink = link_signal(signal, controller)
        self._controller = controller
        return controller, unlink

    async def _prepare(self) -> Tuple[Optional[str], Optional[BaseAdapter], Optional[str]]:
        """Pick this turn's key and build the adapter; returns (key, adapter, error)"""
        selection = await self.rotator.select_key(self.config.keys_for(self.provider), self.provider)
        if selection is None:
            return None, None, f"No API key found for {self.provider}"
        try:
            adapter = self.provider_manager.create_adapter(selection.key)
        except ConfigError as e:
            return selection.key, None, str(e)
        return selection.key, adapter, None

    async def _record_failure(self, key: str, response: ApiResponse) -> None:
        if response.error and is_quota_error(response.error):
            logger.info(f"Quota error from {self.provider}: {response.error}")
            await self.rotator.mark_exhausted(key, self.provider)

    async def open(
        self,
        messages: Sequence[ConversationMessage],
        on_chunk: Optional[Callable[[str], None]] = None,
        signal: Optional[AbortSignal] = None,
        on_web_search: Optional[Callable[[WebSearchStatus], None]] = None,
        on_reasoning: Optional[Callable[[str], None]] = None,
        on_image: Optional[Callable[[str], None]] = None,
    ) -> ApiResponse:
        """
        Stream one turn.

        Returns the accumulated text, with error set when the turn failed.
        Raises AbortError if the turn is cancelled.
        """
        controller, unlink = self._start_turn(signal)
        try:
            controller.signal.throw_if_aborted()
            key, adapter, error = await self._prepare()
            if error:
                return ApiResponse(text="", error=error)

            loop = ToolCallLoop(
                adapter,
                self.executor,
                resolve_search_mode(self.config),
                signal=controller.signal,
                on_chunk=on_chunk,
                on_web_search=on_web_search,
                on_reasoning=on_reasoning,
                on_image=on_image,
            )
            try:
                response = await loop.run(messages)
            except AbortError:
                raise
            except Exception as e:
                logger.exception(f"Unexpected error while streaming from {self.provider}")
                response = ApiResponse(text=loop.text, error=str(e) or "Stream failed")

            await self._record_failure(key, response)
            return response
        finally:
            unlink()

    async def call(
        self, messages: Sequence[ConversationMessage], signal: Optional[AbortSignal] = None
    ) -> ApiResponse:
        """Single-shot, non-streaming request"""
        controller, unlink = self._start_turn(signal)
        try:
            key, adapter, error = await self._prepare()
            if error:
                return ApiResponse(text="", error=error)
            response = await adapter.call(messages, controller.signal)
            await self._record_failure(key, response)
            return response
        finally:
            unlink()

    async def events(
        self, messages: Sequence[ConversationMessage], signal: Optional[AbortSignal] = None
    ) -> AsyncIterator[StreamEvent]:
        """Stream one turn as StreamEvents, ending with a `done` event"""
        queue: asyncio.Queue = asyncio.Queue()

        async def produce() -> None:
            try:
                response = await self.open(
                    messages,
                    on_chunk=lambda text: queue.put_nowait(StreamEvent(type="chunk", text=text)),
                    signal=signal,
                    on_web_search=lambda status: queue.put_nowait(
                        StreamEvent(type="web_search", web_search=status)
                    ),
                    on_reasoning=lambda text: queue.put_nowait(
                        StreamEvent(type="reasoning", text=text)
                    ),
                    on_image=lambda url: queue.put_nowait(StreamEvent(type="image", text=url)),
                )
            except Exception as e:
                queue.put_nowait(e)
                return
            if response.error:
                queue.put_nowait(StreamEvent(type="error", text=response.error))
            queue.put_nowait(StreamEvent(type="done", text=response.text))

        task = asyncio.ensure_future(produce())
        try:
            while True:
                item = await queue.get()
                if isinstance(item, Exception):
                    raise item
                yield item
                if item.type == "done":
                    return
        finally:
            if not task.done():
                self.abort("consumer closed")
                await asyncio.gather(task, return_exceptions=True)

    async def reply(
        self,
        history: List[ConversationMessage],
        signal: Optional[AbortSignal] = None,
        on_update: Optional[Callable[[List[ConversationMessage]], None]] = None,
    ) -> ApiResponse:
        """
        Stream the assistant's answer into history.

        An assistant message is appended and filled as the answer arrives. A
        web-search boundary starts a fresh assistant message for the
        post-search answer. On cancellation the message being written is
        marked interrupted before AbortError propagates.
        """
        messages = list(history)
        history.append(ConversationMessage(role="assistant"))
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        def changed() -> None:
            if on_update:
                on_update(history)

        def on_chunk(text: str) -> None:
            history[-1].content += text
            changed()

        def on_reasoning(text: str) -> None:
            history[-1].reasoning = (history[-1].reasoning or "") + text
            changed()

        def on_image(data_url: str) -> None:
            history[-1].generated_images.append(data_url)
            changed()

        def on_web_search(status: WebSearchStatus) -> None:
            message = history[-1]
            previous = message.web_search.sources if message.web_search else []
            message.web_search = WebSearchAttachment(
                query=status.query,
                result=status.result,
                is_searching=status.is_searching,
                sources=merge_sources(previous, status.sources or []),
            )
            if status.start_new_message:
                history.append(ConversationMessage(role="assistant"))
            changed()

        try:
            response = await self.open(
                messages,
                on_chunk=on_chunk,
                signal=signal,
                on_web_search=on_web_search,
                on_reasoning=on_reasoning,
                on_image=on_image,
            )
        except AbortError:
            history[-1].interrupted = True
            history[-1].response_time_ms = elapsed_ms()
            changed()
            raise

        history[-1].response_time_ms = elapsed_ms()
        if response.error:
            history[-1].error = response.error
        changed()
        return response
