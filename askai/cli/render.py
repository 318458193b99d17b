"""Terminal rendering of a streaming turn."""

from typing import List, Optional, Tuple

from rich.console import Console

from askai.core.models import ConversationMessage, WebSearchSource, merge_sources


class TurnRenderer:
    """Prints the growing tail of a conversation as StreamSession.reply fills it.

    Only the difference since the previous update is written, so the answer
    appears in the terminal as it streams.
    """

    def __init__(self, console: Console, show_reasoning: bool = False):
        self.console = console
        self.show_reasoning = show_reasoning
        self._index: Optional[int] = None
        self._reset()

    def _reset(self) -> None:
        self._content_len = 0
        self._reasoning_len = 0
        self._images = 0
        self._search_state: Optional[Tuple[str, bool]] = None

    def update(self, history: List[ConversationMessage]) -> None:
        index = len(history) - 1
        if self._index is not None and index != self._index:
            # A search boundary started a new message; flush the old one first
            self._render(history[self._index])
            self.console.print()
            self._reset()
        self._index = index
        self._render(history[index])

    def _render(self, message: ConversationMessage) -> None:
        search = message.web_search
        if search is not None:
            state = (search.query, search.is_searching)
            if state != self._search_state:
                self._search_state = state
                if search.is_searching:
                    self.console.print(f"\n[dim]Searching the web: {search.query}[/dim]")
                else:
                    count = len(search.sources)
                    self.console.print(f"[dim]Found {count} sources for: {search.query}[/dim]")

        if self.show_reasoning and message.reasoning:
            delta = message.reasoning[self._reasoning_len :]
            if delta:
                self.console.print(delta, style="dim italic", end="", markup=False, highlight=False)
            self._reasoning_len = len(message.reasoning)

        delta = message.content[self._content_len :]
        if delta:
            print(delta, end="", flush=True)
        self._content_len = len(message.content)

        for _ in message.generated_images[self._images :]:
            self.console.print("\n[dim]\\[image received][/dim]")
        self._images = len(message.generated_images)

    def finish(self, messages: List[ConversationMessage]) -> None:
        """Close the turn: trailing newline, interruption marker, sources"""
        print()
        if not messages:
            return

        last = messages[-1]
        if last.interrupted:
            self.console.print("[yellow]\\[Interrupted][/yellow]")

        sources: List[WebSearchSource] = []
        for message in messages:
            if message.web_search:
                sources = merge_sources(sources, message.web_search.sources)
        if sources:
            self.console.print("\n[bold]Sources[/bold]")
            for i, source in enumerate(sources, 1):
                self.console.print(f"  [cyan]{i}.[/cyan] {source.title} [dim]{source.url}[/dim]")
        if last.response_time_ms is not None:
            self.console.print(f"[dim]{last.response_time_ms / 1000:.1f}s[/dim]")
