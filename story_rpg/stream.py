"""NDJSON token stream decoding.

A streaming generate call answers with one JSON object per line:

    {"model": "llama2", "response": "The", "done": false}
    {"model": "llama2", "response": " door", "done": false}
    {"model": "llama2", "response": "", "done": true}

decode_record() is the line decoder: malformed lines are skipped, never
fatal. iter_tokens() turns a line source into an async sequence of tokens
that ends when the source is exhausted. read_stream() drains it into the
full response text while forwarding each token to a sink.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)

Line = str | bytes
LineSource = AsyncIterable[Line] | Iterable[Line]
TokenSink = Callable[[str], Any]


def decode_record(line: Line) -> dict[str, Any] | None:
    """Parse one stream line. Returns None for blank or malformed lines."""
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    line = line.strip()
    if not line:
        return None
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("skipping malformed stream line: %r", line[:80])
        return None
    if not isinstance(record, dict):
        logger.debug("skipping non-object stream record: %r", line[:80])
        return None
    return record


async def _aiter_lines(source: LineSource) -> AsyncIterator[Line]:
    if isinstance(source, AsyncIterable):
        async for line in source:
            yield line
    else:
        for line in source:
            yield line


async def iter_tokens(
    source: LineSource, *, stop_on_done: bool = False
) -> AsyncIterator[str]:
    """Yield the ``response`` text of every record, in arrival order.

    Iteration ends when the source closes. With ``stop_on_done`` an explicit
    ``"done": true`` record ends it early.
    """
    async for line in _aiter_lines(source):
        record = decode_record(line)
        if record is None:
            continue
        token = record.get("response")
        if isinstance(token, str) and token:
            yield token
        if stop_on_done and record.get("done") is True:
            return


async def read_stream(
    source: LineSource,
    on_token: TokenSink | None = None,
    *,
    stop_on_done: bool = False,
) -> str:
    """Accumulate the full response text, forwarding each token to ``on_token``.

    Source errors propagate; tokens already handed to the sink stay delivered.
    """
    parts: list[str] = []
    async for token in iter_tokens(source, stop_on_done=stop_on_done):
        parts.append(token)
        if on_token is not None:
            result = on_token(token)
            if inspect.isawaitable(result):
                await result
    return "".join(parts)
