"""
Read-only access to a user-supplied PostgreSQL database.

The connection URL travels with the chat request (context["db_url"]) and is never
stored. Queries run inside a READ ONLY transaction.
"""
from __future__ import annotations

import json
import logging
from typing import Any

import psycopg
from psycopg.rows import dict_row

from .common import ToolHandler, ToolResult, json_default, reply

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT_SECS = 10

_TABLES_SQL = """
    SELECT table_name
    FROM information_schema.tables
    WHERE table_schema = 'public' AND table_type = 'BASE TABLE'
    ORDER BY table_name
"""

_COLUMNS_SQL = """
    SELECT column_name, data_type, is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema = 'public' AND table_name = %s
    ORDER BY ordinal_position
"""

_PRIMARY_KEY_SQL = """
    SELECT c.column_name
    FROM information_schema.table_constraints tc
    JOIN information_schema.constraint_column_usage AS ccu USING (constraint_schema, constraint_name)
    JOIN information_schema.columns AS c
      ON c.table_name = tc.table_name AND c.column_name = ccu.column_name
    WHERE tc.table_schema = 'public' AND tc.table_name = %s AND tc.constraint_type = 'PRIMARY KEY'
"""

_FOREIGN_KEYS_SQL = """
    SELECT kcu.column_name,
           ccu.table_name AS foreign_table_name,
           ccu.column_name AS foreign_column_name
    FROM information_schema.table_constraints AS tc
    JOIN information_schema.key_column_usage AS kcu
      ON tc.constraint_name = kcu.constraint_name AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage AS ccu
      ON ccu.constraint_name = tc.constraint_name AND ccu.table_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY' AND tc.table_schema = 'public' AND tc.table_name = %s
"""


async def _connect(db_url: str) -> psycopg.AsyncConnection:
    return await psycopg.AsyncConnection.connect(
        db_url,
        connect_timeout=CONNECT_TIMEOUT_SECS,
        row_factory=dict_row,
    )


async def fetch_database_schema(db_url: str) -> list[dict[str, Any]]:
    """Tables of the public schema with their columns, primary key and foreign keys."""
    schema = []
    async with await _connect(db_url) as conn:
        async with conn.cursor() as cursor:
            await cursor.execute(_TABLES_SQL)
            tables = [row["table_name"] for row in await cursor.fetchall()]
            for table in tables:
                await cursor.execute(_COLUMNS_SQL, (table,))
                columns = await cursor.fetchall()
                await cursor.execute(_PRIMARY_KEY_SQL, (table,))
                primary_key = [row["column_name"] for row in await cursor.fetchall()]
                await cursor.execute(_FOREIGN_KEYS_SQL, (table,))
                foreign_keys = await cursor.fetchall()
                schema.append({
                    "table_name": table,
                    "columns": [
                        {
                            "name": col["column_name"],
                            "type": col["data_type"],
                            "is_nullable": col["is_nullable"] == "YES",
                            "default_value": col["column_default"],
                        }
                        for col in columns
                    ],
                    "primary_key": primary_key,
                    "foreign_keys": [
                        {
                            "column": fk["column_name"],
                            "references": {
                                "table": fk["foreign_table_name"],
                                "column": fk["foreign_column_name"],
                            },
                        }
                        for fk in foreign_keys
                    ],
                })
    return schema


async def execute_read_only_query(db_url: str, query: str) -> list[dict[str, Any]]:
    logger.info(f"Executing read-only query: {query[:200]}")
    async with await _connect(db_url) as conn:
        async with conn.transaction():
            async with conn.cursor() as cursor:
                await cursor.execute("SET TRANSACTION READ ONLY")
                await cursor.execute(query)
                if cursor.description is None:
                    return []
                return await cursor.fetchall()


async def get_database_schema(context: dict, params: dict) -> ToolResult:
    db_url = context.get("db_url")
    if not db_url:
        return ToolResult(content="\n\nI need a database URL to get the schema. Please provide one in your message.")
    schema = await fetch_database_schema(db_url)
    return reply(
        "Here's the database schema information:\n```json\n"
        f"{json.dumps(schema, indent=2, default=json_default)}\n```\n"
        "Please use this information to answer the user's question about the database schema."
    )


async def execute_postgres_query(context: dict, params: dict) -> ToolResult:
    db_url = context.get("db_url")
    if not db_url:
        return ToolResult(content="\n\nI need a database URL to execute queries. Please provide one in your message.")
    try:
        rows = await execute_read_only_query(db_url, params["query"])
    except psycopg.Error as e:
        logger.error(f"Error executing query: {e}")
        return ToolResult(content=f"\n\nError executing query: {e}")
    return reply(
        "Here are the results of your SQL query:\n```json\n"
        f"{json.dumps(rows, indent=2, default=json_default)}\n```\n"
        "Please use these results to answer the user's question."
    )


def _query_thinking_text(args: dict) -> str:
    query = args.get("query", "")
    return f"Running SQL query: {query[:50]}{'...' if len(query) > 50 else ''}"


HANDLERS: list[ToolHandler] = [
    ToolHandler(
        name="get_database_schema",
        description=(
            "Get the schema information for the user's PostgreSQL database to answer questions about tables, "
            "columns, relationships, and structure."
        ),
        parameters={"type": "object", "properties": {}},
        thinking_text=lambda args: "Getting database schema...",
        process=get_database_schema,
    ),
    ToolHandler(
        name="execute_postgres_query",
        description=(
            "Execute a read-only SQL query on the user's PostgreSQL database. Use this for SELECT queries to "
            "retrieve data. Queries are executed in read-only mode."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The SQL query to execute (must be read-only, write operations will fail)",
                },
            },
            "required": ["query"],
        },
        thinking_text=_query_thinking_text,
        process=execute_postgres_query,
    ),
]
