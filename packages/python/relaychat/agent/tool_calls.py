"""
Reassembly of tool calls from streamed fragments.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class ToolCall:
    id: str
    name: str = ""
    arguments: str = ""
    index: int | None = None


class ToolCallAccumulator:
    """
    Merge streamed tool-call fragments into complete calls.

    A fragment carrying an id starts a call (or continues the call with that id).
    A fragment without an id continues the call with the same stream index, or
    else the most recently started call.
    """

    def __init__(self):
        self._calls: dict[str, ToolCall] = {}
        self._by_index: dict[int, ToolCall] = {}
        self._last: ToolCall | None = None

    def add_fragment(self, fragment: dict) -> None:
        call_id = fragment.get("id")
        index = fragment.get("index")
        name = fragment.get("name") or ""
        arguments = fragment.get("arguments") or ""

        if call_id:
            call = self._calls.get(call_id)
            if call is None:
                call = ToolCall(id=call_id, name=name, index=index)
                self._calls[call_id] = call
            elif name and not call.name:
                call.name = name
        else:
            call = self._by_index.get(index) if index is not None else None
            if call is None:
                call = self._last
            if call is None:
                logger.warning(f"Dropping tool-call fragment with no call to continue: {fragment}")
                return
            if name and not call.name:
                call.name = name

        call.arguments += arguments
        if index is not None:
            self._by_index[index] = call
        self._last = call

    @property
    def calls(self) -> list[ToolCall]:
        """Completed calls in the order they were started."""
        return list(self._calls.values())

    def __len__(self) -> int:
        return len(self._calls)
