import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import relaychat as rc

logger = logging.getLogger(__name__)

CHANGE_PIPELINE = [
    {"$match": {"operationType": {"$in": ["insert", "update", "replace", "delete"]}}},
]


async def _snapshot(collection, query: Dict[str, Any], sort: Optional[list], projection: Optional[dict]) -> List[dict]:
    cursor = collection.find(query, projection)
    if sort:
        cursor = cursor.sort(sort)
    return await cursor.to_list(length=None)


async def watch_rows(
    client,
    collection_name: str,
    query: Dict[str, Any],
    sort: Optional[list] = None,
    projection: Optional[dict] = None,
    poll_interval: Optional[float] = None,
) -> AsyncIterator[List[dict]]:
    """
    Yield the current set of rows matching query, then a fresh snapshot each
    time the matching set changes.

    Strategy:
    1) Open a MongoDB change stream on the collection before reading anything,
       so no write landing after the initial snapshot is missed.
    2) Yield the initial snapshot, then re-query on every change, yielding only
       when the snapshot differs from the last one.
    3) If change streams are unavailable (e.g., standalone MongoDB), fall back to
       periodic re-query.

    The iterator never ends on its own; callers stop consuming it (or cancel the
    consuming task) when done.

    Args:
        client: The RelayClient instance
        collection_name: Collection to watch
        query: Filter selecting the rows of interest
        sort: Optional pymongo sort order applied to each snapshot
        projection: Optional projection applied to each snapshot
        poll_interval: Polling period for the fallback; defaults to LIVE_POLL_INTERVAL_SECS
    """
    db = rc.common.get_async_db(client)
    collection = db[collection_name]

    last_rows = None
    try:
        async with collection.watch(pipeline=CHANGE_PIPELINE) as change_stream:
            last_rows = await _snapshot(collection, query, sort, projection)
            yield last_rows
            async for _change in change_stream:
                rows = await _snapshot(collection, query, sort, projection)
                if rows != last_rows:
                    last_rows = rows
                    yield rows
    except Exception as e:
        logger.warning(f"Change streams unavailable or error on {collection_name}; falling back to polling: {e}")

    if last_rows is None:
        last_rows = await _snapshot(collection, query, sort, projection)
        yield last_rows

    if poll_interval is None:
        poll_interval = rc.common.config.get_live_poll_interval_secs()
    while True:
        await asyncio.sleep(poll_interval)
        rows = await _snapshot(collection, query, sort, projection)
        if rows != last_rows:
            last_rows = rows
            yield rows
