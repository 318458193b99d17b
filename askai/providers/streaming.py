"""Wire-level stream parsing shared by the provider adapters."""

import json
from typing import Any, Dict, List, Optional

from askai.core.models import ToolCall
from askai.utils.logging import get_logger

logger = get_logger(__name__)

SSE_DONE = "[DONE]"


def parse_sse_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode one `data: {...}` SSE line.

    Returns None for blank lines, non-data fields (event:, id:, comments),
    the [DONE] sentinel and payloads that aren't valid JSON objects.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None

    data = line[5:].strip()
    if not data or data == SSE_DONE:
        return None

    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug(f"Skipping malformed SSE frame: {data[:100]}")
        return None
    return payload if isinstance(payload, dict) else None


def is_sse_done(line: str) -> bool:
    line = line.strip()
    return line.startswith("data:") and line[5:].strip() == SSE_DONE


class JsonObjectStreamParser:
    """Incrementally extracts top-level JSON objects from a raw text stream.

    Gemini streams a JSON array of response objects with no line framing, so
    objects can be split anywhere across network chunks. The parser tracks
    brace depth (ignoring braces inside string literals) and keeps the
    unconsumed remainder between feed() calls.
    """

    def __init__(self):
        self._buffer = ""
        self._pos = 0
        self._depth = 0
        self._start = -1
        self._in_string = False
        self._escaped = False

    def feed(self, text: str) -> List[Dict[str, Any]]:
        """Add text and return every object completed by it"""
        self._buffer += text
        objects: List[Dict[str, Any]] = []

        i = self._pos
        while i < len(self._buffer):
            char = self._buffer[i]
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif char == "\\":
                    self._escaped = True
                elif char == '"':
                    self._in_string = False
            elif char == '"':
                if self._depth > 0:
                    self._in_string = True
            elif char == "{":
                if self._depth == 0:
                    self._start = i
                self._depth += 1
            elif char == "}" and self._depth > 0:
                self._depth -= 1
                if self._depth == 0:
                    chunk = self._buffer[self._start : i + 1]
                    try:
                        value = json.loads(chunk)
                        if isinstance(value, dict):
                            objects.append(value)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping malformed JSON object: {chunk[:100]}")
                    self._start = -1
            i += 1

        if self._depth > 0:
            # Keep the partial object, rebase indices onto the trimmed buffer
            self._buffer = self._buffer[self._start :]
            self._pos = i - self._start
            self._start = 0
        else:
            # Only separators (commas, brackets, whitespace) remain
            self._buffer = ""
            self._pos = 0
        return objects

    @property
    def remainder(self) -> str:
        return self._buffer


class _ToolCallFragment:
    def __init__(self):
        self.id = ""
        self.name = ""
        self.argument_parts: List[str] = []


class ToolCallAccumulator:
    """Assembles streamed tool-call deltas keyed by the provider's index.

    The name is taken from the first delta that carries one; argument
    fragments are concatenated in arrival order. Calls come out ordered by
    the first time their index was seen.
    """

    def __init__(self):
        self._fragments: Dict[int, _ToolCallFragment] = {}

    def add(
        self,
        index: int,
        call_id: Optional[str] = None,
        name: Optional[str] = None,
        arguments: Optional[str] = None,
    ) -> None:
        fragment = self._fragments.get(index)
        if fragment is None:
            fragment = self._fragments[index] = _ToolCallFragment()
        if call_id and not fragment.id:
            fragment.id = call_id
        if name and not fragment.name:
            fragment.name = name
        if arguments:
            fragment.argument_parts.append(arguments)

    def __bool__(self) -> bool:
        return bool(self._fragments)

    def finalize(self) -> List[ToolCall]:
        calls = []
        for index, fragment in self._fragments.items():
            calls.append(
                ToolCall(
                    id=fragment.id or f"call_{index}",
                    name=fragment.name,
                    arguments="".join(fragment.argument_parts),
                )
            )
        return calls
