"""
Core agent loop: stream a completion -> run the tool calls it produced -> re-enter
with the tool results until the model answers without needing them.

run_turn drives one agent turn (a pending message with role "agent") to a
terminal status; start_turn runs it in the background for the HTTP layer.
"""
from __future__ import annotations

import asyncio
import functools
import logging
import re
from dataclasses import dataclass
from typing import Any

import relaychat as rc

from .cancellation import CancellationBridge, CancellationScope, OperationCancelled
from .token_sink import TokenSink
from .tool_calls import ToolCallAccumulator

logger = logging.getLogger(__name__)

MAX_TOOL_CALLS_NOTICE = "\n\nReached maximum number of tool calls."
STREAM_ERROR_NOTICE = "\n\nError processing AI stream: {error}"
CONTINUING_THINKING_TEXT = "Processing tool results and continuing..."
MAX_COMPLETION_TOKENS = 4000

# Background turns started by start_turn; held so they are not garbage collected
_turn_tasks: set[asyncio.Task] = set()


@dataclass
class TurnOutcome:
    status: str
    content: str
    error: str | None = None


@dataclass
class _Reply:
    content: str


async def build_prompt(client, chat_id: str, history: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Messages for the first model call of a turn: system prompt, stored tool
    outcomes, context boundary, tool summary, reference docs, size-limited
    history and a trailing empty assistant message.
    """
    stored = await rc.agent.action_log.fetch_system_messages(client, chat_id)
    boundary = await rc.agent.system_prompt.build_context_boundary(client, chat_id)
    if boundary:
        stored.append(boundary)
    summary = rc.agent.system_prompt.build_tool_summary(stored)
    if summary:
        stored.append(summary)

    history_messages = [
        rc.agent.context.to_llm_message(m) for m in rc.agent.context.limit_context_size(history)
    ]
    messages = [rc.agent.system_prompt.build_system_message(), *stored]

    docs_tools = rc.agent.tools.docs_tools
    chat = await rc.agent.chats.get_chat(client, chat_id)
    docs_active = bool(chat and chat.get("docs_topic_active"))
    if not docs_active and docs_tools.mentions_docs_topic(history):
        docs_active = True
        await rc.agent.chats.update_chat(client, chat_id, docs_topic_active=True)
    if docs_active:
        docs = await docs_tools.fetch_reference_docs()
        if docs:
            estimated = rc.agent.context.estimate_messages_tokens(messages + history_messages)
            messages.append(rc.agent.system_prompt.build_docs_message(docs, estimated))

    messages.extend(history_messages)
    messages.append({"role": "assistant", "content": ""})
    return messages


async def _consume_stream(
    messages: list[dict[str, Any]],
    tools: list[dict[str, Any]],
    model: str | None,
    sink: TokenSink,
    accumulator: ToolCallAccumulator,
    reply: _Reply,
) -> None:
    stream = await rc.llm.stream_completion(messages, tools=tools, model=model, max_tokens=MAX_COMPLETION_TOKENS)
    async for chunk in stream:
        text, fragments = rc.llm.parse_stream_chunk(chunk)
        for fragment in fragments:
            accumulator.add_fragment(fragment)
        if text:
            reply.content += text
            await sink.absorb(text)


async def _finalize(client, turn_id: str, sink: TokenSink, content: str, cancellation: CancellationScope) -> TurnOutcome:
    await sink.flush()
    requested = "aborted" if cancellation.cancelled else "completed"
    status = await rc.agent.chats.finalize_turn(client, turn_id, content, requested)
    rc.agent.chats.schedule_token_purge(client, turn_id)
    logger.info(f"Turn {turn_id} finished: {status}")
    return TurnOutcome(status=status, content=content)


async def run_turn(
    client,
    chat_id: str,
    turn_id: str,
    history: list[dict[str, Any]],
    recursion_depth: int = 0,
    carried_messages: list[dict[str, Any]] | None = None,
    sink: TokenSink | None = None,
    content: str = "",
    cancellation: CancellationScope | None = None,
    exclude_tools: list[str | re.Pattern] | None = None,
    db_url: str | None = None,
    model: str | None = None,
    duplicate_warnings: set[str] | None = None,
) -> TurnOutcome:
    """
    Drive an agent turn to a terminal status.

    Args:
        client: The RelayClient instance
        chat_id: Chat the turn belongs to
        turn_id: The pending agent message being produced
        history: Stored chat messages (role, content, attachment) the turn answers
        recursion_depth: Number of tool-result re-entries so far
        carried_messages: LLM messages from the previous round; None on the first round
        sink: Token sink carried across re-entries
        content: Reply text accumulated so far
        cancellation: Scope carried across re-entries; a CancellationBridge on the turn is created when None
        exclude_tools: Tool names or patterns the model may not use in this turn
        db_url: PostgreSQL URL for the database tools, if the request supplied one
        model: LLM model override
        duplicate_warnings: Repeated-call keys already warned about in this turn, shared across re-entries

    Returns:
        TurnOutcome: The terminal status and final content
    """
    if sink is None:
        sink = TokenSink(client, turn_id)
    if duplicate_warnings is None:
        duplicate_warnings = set()

    if recursion_depth > rc.common.config.get_max_recursion_depth():
        logger.info(f"Turn {turn_id} reached maximum recursion depth, stopping")
        await sink.flush()
        content += MAX_TOOL_CALLS_NOTICE
        status = await rc.agent.chats.finalize_turn(client, turn_id, content, "completed")
        await rc.agent.chats.delete_tokens(client, turn_id)
        return TurnOutcome(status=status, content=content)

    owns_scope = cancellation is None
    if owns_scope:
        cancellation = CancellationBridge(client, turn_id).start()
    try:
        return await _run_round(
            client, chat_id, turn_id, history, recursion_depth, carried_messages,
            sink, content, cancellation, exclude_tools, db_url, model, duplicate_warnings,
        )
    finally:
        if owns_scope:
            await cancellation.aclose()


async def _run_round(
    client,
    chat_id: str,
    turn_id: str,
    history: list[dict[str, Any]],
    recursion_depth: int,
    carried_messages: list[dict[str, Any]] | None,
    sink: TokenSink,
    content: str,
    cancellation: CancellationScope,
    exclude_tools: list[str | re.Pattern] | None,
    db_url: str | None,
    model: str | None,
    duplicate_warnings: set[str],
) -> TurnOutcome:
    reply = _Reply(content)
    try:
        if carried_messages is None:
            messages = await build_prompt(client, chat_id, history)
        else:
            messages = list(carried_messages)

        if cancellation.cancelled:
            return await _finalize(client, turn_id, sink, reply.content, cancellation)

        tools = rc.agent.tool_registry.get_tool_definitions(exclude_tools)
        accumulator = ToolCallAccumulator()
        try:
            await cancellation.race(_consume_stream(messages, tools, model, sink, accumulator, reply))
        except OperationCancelled:
            logger.info(f"Turn {turn_id} cancelled while streaming")
            return await _finalize(client, turn_id, sink, reply.content, cancellation)

        context = {
            "client": client,
            "chat_id": chat_id,
            "turn_id": turn_id,
            "cancellation": cancellation,
            "db_url": db_url,
            "model": model,
            "exclude_tools": exclude_tools,
            "duplicate_warnings": duplicate_warnings,
        }
        system_messages: list[dict[str, Any]] = []
        requires_reentry = False
        for call in accumulator.calls:
            if cancellation.cancelled:
                break
            try:
                result = await rc.agent.tool_registry.process_tool_call(context, call)
            except OperationCancelled:
                break
            if result.content:
                reply.content += result.content
                await sink.absorb(result.content)
            if result.system_message:
                system_messages.append({"role": "system", "content": result.system_message})
            requires_reentry = requires_reentry or result.requires_reentry

        if (system_messages or requires_reentry) and not cancellation.cancelled:
            await sink.flush()
            await rc.agent.chats.set_thinking_text(client, turn_id, CONTINUING_THINKING_TEXT)
            logger.info(
                f"Turn {turn_id} re-entering at depth {recursion_depth + 1} "
                f"with {len(system_messages)} new system messages"
            )
            return await run_turn(
                client,
                chat_id,
                turn_id,
                history,
                recursion_depth=recursion_depth + 1,
                carried_messages=messages + system_messages,
                sink=sink,
                content=reply.content,
                cancellation=cancellation,
                exclude_tools=exclude_tools,
                db_url=db_url,
                model=model,
                duplicate_warnings=duplicate_warnings,
            )

        return await _finalize(client, turn_id, sink, reply.content, cancellation)
    except Exception as e:
        logger.exception(f"Error processing AI stream for turn {turn_id}")
        notice = STREAM_ERROR_NOTICE.format(error=e)
        reply.content += notice
        sink.buffer += notice
        await sink.flush()
        status = await rc.agent.chats.finalize_turn(client, turn_id, reply.content, "completed")
        rc.agent.chats.schedule_token_purge(client, turn_id)
        return TurnOutcome(status=status, content=reply.content, error=str(e))


def _on_turn_done(client, turn_id: str, task: asyncio.Task) -> None:
    _turn_tasks.discard(task)
    if task.cancelled():
        status = "aborted"
        logger.warning(f"Turn {turn_id} task was cancelled")
    else:
        exc = task.exception()
        if exc is None:
            return
        status = "failed"
        logger.error(f"Turn {turn_id} failed: {exc!r}", exc_info=exc)
    cleanup = asyncio.ensure_future(rc.agent.chats.mark_turn_terminal(client, turn_id, status))
    _turn_tasks.add(cleanup)
    cleanup.add_done_callback(_turn_tasks.discard)


async def start_turn(
    client,
    chat_id: str,
    history: list[dict[str, Any]],
    db_url: str | None = None,
    model: str | None = None,
) -> dict:
    """
    Insert a pending agent turn and produce it in the background.

    Returns:
        dict: The pending turn document
    """
    turn = await rc.agent.chats.create_turn(client, chat_id)
    turn_id = str(turn["_id"])
    task = asyncio.create_task(
        run_turn(client, chat_id, turn_id, history, db_url=db_url, model=model),
        name=f"turn-{turn_id}",
    )
    _turn_tasks.add(task)
    task.add_done_callback(functools.partial(_on_turn_done, client, turn_id))
    logger.info(f"Started turn {turn_id} in chat {chat_id}")
    return turn


async def wait_for_turns() -> None:
    """Wait for every background turn (and its cleanup) to finish."""
    while _turn_tasks:
        await asyncio.gather(*list(_turn_tasks), return_exceptions=True)
