"""
Types shared by the agent tools.

Each tool is a ToolHandler: an OpenAI function definition, a thinking-text
generator shown while it runs, an async process(context, args) -> ToolResult,
and an optional similarity predicate used by the duplicate guard.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable

from bson import ObjectId

import relaychat as rc


@dataclass
class ToolResult:
    content: str = ""
    system_message: str | None = None
    requires_reentry: bool = False
    entity_id: str | None = None
    entity_name: str | None = None
    entity_type: str | None = None


@dataclass
class ToolHandler:
    name: str
    description: str
    parameters: dict[str, Any]
    thinking_text: Callable[[dict], str]
    process: Callable[[dict, dict], Awaitable[ToolResult]]
    check_if_similar: Callable[[dict, dict], bool] | None = None

    @property
    def definition(self) -> dict[str, Any]:
        """OpenAI function-calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def reply(system_message: str, **entity) -> ToolResult:
    """A result that hands system_message back to the model and re-enters the turn."""
    return ToolResult(content="", system_message=system_message, requires_reentry=True, **entity)


def _db(context: dict):
    return rc.common.get_async_db(context["client"])


def to_object_id(value: Any) -> ObjectId | None:
    """ObjectId for a model-supplied id, or None if it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and rc.common.is_valid_object_id(value):
        return ObjectId(value)
    return None


def json_default(obj: Any) -> Any:
    """Convert non-JSON-serializable values for tool result payloads."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, ObjectId):
        return str(obj)
    return str(obj)
