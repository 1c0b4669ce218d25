"""
Virtual files scoped to a chat: create, edit, delete, rename, read.
"""
from __future__ import annotations

import logging
from datetime import datetime, UTC

from .common import ToolHandler, ToolResult, _db, reply

logger = logging.getLogger(__name__)

_CONTINUE = "Please continue the conversation with this information."


def validate_path(path: str) -> str | None:
    """Return an error message if path is not acceptable, else None."""
    if not path or not path.strip():
        return "Path is required"
    if path.startswith("/") or path.startswith("."):
        return "Path may not start with '/' or '.'"
    return None


async def create_file(context: dict, params: dict) -> ToolResult:
    path = params["path"]
    content = params["content"]
    error = validate_path(path)
    db = _db(context)
    if error is None and await db.files.find_one({"chat_id": context["chat_id"], "path": path}):
        error = "File already exists"
    if error:
        return reply(f'I was unable to create file "{path}". Error: {error}\n{_CONTINUE}')
    now = datetime.now(UTC)
    result = await db.files.insert_one({
        "chat_id": context["chat_id"],
        "path": path,
        "mime_type": params.get("mime_type") or "text/plain",
        "content": content,
        "created_at": now,
        "updated_at": now,
    })
    return reply(
        f'I\'ve created the file "{path}" with the following content:\n```\n{content}\n```\n{_CONTINUE}',
        entity_id=str(result.inserted_id),
        entity_name=path,
        entity_type="file",
    )


async def edit_file(context: dict, params: dict) -> ToolResult:
    path = params["path"]
    content = params["content"]
    result = await _db(context).files.update_one(
        {"chat_id": context["chat_id"], "path": path},
        {"$set": {"content": content, "updated_at": datetime.now(UTC)}},
    )
    if result.matched_count == 0:
        return reply(f'I was unable to update file "{path}". Error: File not found\n{_CONTINUE}')
    return reply(
        f'I\'ve updated the file "{path}" with the following content:\n```\n{content}\n```\n{_CONTINUE}',
        entity_name=path,
        entity_type="file",
    )


async def delete_file(context: dict, params: dict) -> ToolResult:
    path = params["path"]
    result = await _db(context).files.delete_one({"chat_id": context["chat_id"], "path": path})
    if result.deleted_count == 0:
        return reply(f'I was unable to delete file "{path}". Error: File not found\n{_CONTINUE}')
    return reply(f'I\'ve successfully deleted the file "{path}". {_CONTINUE}', entity_name=path, entity_type="file")


async def rename_file(context: dict, params: dict) -> ToolResult:
    old_path = params["old_path"]
    new_path = params["new_path"]
    error = validate_path(new_path)
    db = _db(context)
    if error is None and await db.files.find_one({"chat_id": context["chat_id"], "path": new_path}):
        error = f'A file already exists at "{new_path}"'
    if error is None:
        result = await db.files.update_one(
            {"chat_id": context["chat_id"], "path": old_path},
            {"$set": {"path": new_path, "updated_at": datetime.now(UTC)}},
        )
        if result.matched_count == 0:
            error = "File not found"
    if error:
        return reply(
            f'I was unable to rename file from "{old_path}" to "{new_path}". Error: {error}\n{_CONTINUE}'
        )
    return reply(
        f'I\'ve successfully renamed "{old_path}" to "{new_path}". {_CONTINUE}',
        entity_name=new_path,
        entity_type="file",
    )


async def read_file(context: dict, params: dict) -> ToolResult:
    path = params["path"]
    doc = await _db(context).files.find_one({"chat_id": context["chat_id"], "path": path})
    if not doc:
        return reply(f'I was unable to read file "{path}". Error: File not found\n{_CONTINUE}')
    return reply(f'Here\'s the contents of "{path}":\n```\n{doc["content"]}\n```\n{_CONTINUE}')


def _path_schema(description: str) -> dict:
    return {"type": "string", "description": description}


HANDLERS: list[ToolHandler] = [
    ToolHandler(
        name="create_file",
        description="Create a new file in the chat with the specified content",
        parameters={
            "type": "object",
            "properties": {
                "path": _path_schema('The path to the file (e.g. "src/index.ts" or "README.md")'),
                "mime_type": {
                    "type": "string",
                    "description": 'The MIME type of the file (e.g. "text/plain", "text/markdown")',
                },
                "content": {"type": "string", "description": "The content of the file"},
            },
            "required": ["path", "mime_type", "content"],
        },
        thinking_text=lambda args: f"Creating file: {args.get('path')}",
        process=create_file,
    ),
    ToolHandler(
        name="edit_file",
        description="Edit an existing file in the chat",
        parameters={
            "type": "object",
            "properties": {
                "path": _path_schema("The path to the file to edit"),
                "content": {"type": "string", "description": "The new content of the file"},
            },
            "required": ["path", "content"],
        },
        thinking_text=lambda args: f"Editing file: {args.get('path')}",
        process=edit_file,
    ),
    ToolHandler(
        name="delete_file",
        description="Delete a file from the chat",
        parameters={
            "type": "object",
            "properties": {"path": _path_schema("The path to the file to delete")},
            "required": ["path"],
        },
        thinking_text=lambda args: f"Deleting file: {args.get('path')}",
        process=delete_file,
    ),
    ToolHandler(
        name="rename_file",
        description="Rename a file in the chat",
        parameters={
            "type": "object",
            "properties": {
                "old_path": _path_schema("The current path of the file"),
                "new_path": _path_schema("The new path for the file"),
            },
            "required": ["old_path", "new_path"],
        },
        thinking_text=lambda args: f"Renaming file: {args.get('old_path')} -> {args.get('new_path')}",
        process=rename_file,
    ),
    ToolHandler(
        name="read_file",
        description="Read the contents of a file in the chat",
        parameters={
            "type": "object",
            "properties": {"path": _path_schema("The path to the file to read")},
            "required": ["path"],
        },
        thinking_text=lambda args: f"Reading file: {args.get('path')}",
        process=read_file,
    ),
]
