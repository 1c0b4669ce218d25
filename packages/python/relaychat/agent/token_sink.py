import logging
import time

import relaychat as rc

logger = logging.getLogger(__name__)


class TokenSink:
    """
    Buffers streamed reply text and writes it to the tokens collection in chunks.

    A chunk is written when the flush interval has elapsed since the last write
    or the buffer grows past the size threshold. The same sink is carried across
    the recursive calls of one turn so token numbers keep increasing.
    """

    def __init__(self, client, turn_id: str, flush_interval_ms: float | None = None, max_chars: int | None = None, clock=time.monotonic):
        self.client = client
        self.turn_id = turn_id
        self.flush_interval_ms = (
            flush_interval_ms if flush_interval_ms is not None else rc.common.config.get_token_flush_interval_ms()
        )
        self.max_chars = max_chars if max_chars is not None else rc.common.config.get_token_flush_max_chars()
        self._clock = clock
        self.token_number = 0
        self.buffer = ""
        self.last_flush = clock()

    async def absorb(self, text: str) -> None:
        if not text:
            return
        self.buffer += text
        elapsed_ms = (self._clock() - self.last_flush) * 1000.0
        if elapsed_ms >= self.flush_interval_ms or len(self.buffer) > self.max_chars:
            await self._write()

    async def flush(self) -> None:
        """Write whatever is buffered, regardless of timing."""
        if self.buffer:
            await self._write()

    async def _write(self) -> None:
        text = self.buffer
        self.buffer = ""
        await rc.agent.chats.insert_token(self.client, self.turn_id, self.token_number, text)
        self.token_number += 1
        self.last_flush = self._clock()
