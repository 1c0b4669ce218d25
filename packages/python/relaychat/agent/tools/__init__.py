# Agent tool implementations (chat, docs, files, database, todo, processing).
# Each module exports async functions that take (context, params) and return a ToolResult,
# plus a HANDLERS list registered by tool_registry.

from . import common
from . import chat_tools
from . import docs_tools
from . import file_tools
from . import database_tools
from . import todo_tools
from . import process_tools
from .common import ToolHandler, ToolResult

__all__ = [
    "common",
    "chat_tools",
    "docs_tools",
    "file_tools",
    "database_tools",
    "todo_tools",
    "process_tools",
    "ToolHandler",
    "ToolResult",
]
