# Chat agent: turn orchestration, tools, cancellation and the todo processing loop.

from . import chats
from . import context
from . import action_log
from . import duplicates
from . import cancellation
from . import token_sink
from . import tool_calls
from . import tools
from . import tool_registry
from . import system_prompt
from . import todo_processing
from . import agent_loop
from .agent_loop import run_turn, start_turn, wait_for_turns, TurnOutcome
from .cancellation import CancellationScope, CancellationBridge, OperationCancelled
from .tools.common import ToolHandler, ToolResult

__all__ = [
    "chats",
    "context",
    "action_log",
    "duplicates",
    "cancellation",
    "token_sink",
    "tool_calls",
    "tools",
    "tool_registry",
    "system_prompt",
    "todo_processing",
    "agent_loop",
    "run_turn",
    "start_turn",
    "wait_for_turns",
    "TurnOutcome",
    "CancellationScope",
    "CancellationBridge",
    "OperationCancelled",
    "ToolHandler",
    "ToolResult",
]
