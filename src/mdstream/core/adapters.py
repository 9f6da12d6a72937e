"""Chunk sources: simulated token streams, server-sent event payloads and HTTP response bodies"""

import asyncio
import re
from typing import AsyncIterable, AsyncIterator, Optional

import httpx
from structlog.stdlib import get_logger


logger = get_logger(__name__)

SSE_FIELD_RE = re.compile(r'^(?::|(?:event|id|retry|data):)')


async def chunk_text(text: str, size: int = 16, delay: float = 0.0) -> AsyncIterator[str]:
    """Yield text in fixed-size chunks, sleeping delay seconds between them."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    for i in range(0, len(text), size):
        yield text[i:i + size]
        if delay:
            await asyncio.sleep(delay)


async def iter_chunks(chunks) -> AsyncIterator[str]:
    """Turn an iterable of strings into an async chunk source."""
    for chunk in chunks:
        yield chunk
        await asyncio.sleep(0)


def parse_sse_payloads(raw: str) -> list[str]:
    """Return the data payload of each event in an SSE text block; multi-line data joined with newlines."""
    payloads = []
    for event in raw.replace('\r\n', '\n').split('\n\n'):
        lines = [
            line[5:].removeprefix(' ')
            for line in event.split('\n')
            if line.startswith('data:')
        ]
        if lines:
            payloads.append('\n'.join(lines))
    return payloads


def _segment_chunks(segment: str, complete: bool) -> list[str]:
    """Markdown carried by one blank-line separated segment.

    An SSE event gives its data payload and a field-only event (comment, event,
    id, retry) gives nothing. Anything else is plain markdown and is passed
    through, keeping the blank line that ended it.
    """
    payloads = parse_sse_payloads(segment)
    if payloads or not segment.strip():
        return payloads
    if all(SSE_FIELD_RE.match(line) for line in segment.split('\n') if line.strip()):
        return []
    return [segment + '\n\n' if complete else segment]


async def sse_to_markdown_stream(source: AsyncIterable[str], done_marker: str = "[DONE]") -> AsyncIterator[str]:
    """Re-split raw SSE text on event boundaries and yield each payload as a markdown chunk."""
    buffer = ''
    async for raw in source:
        buffer = (buffer + raw).replace('\r\n', '\n')
        *segments, buffer = buffer.split('\n\n')
        for segment in segments:
            for chunk in _segment_chunks(segment, complete=True):
                if chunk == done_marker:
                    return
                yield chunk
    for chunk in _segment_chunks(buffer, complete=False):
        if chunk == done_marker:
            return
        yield chunk


async def fetch_markdown_stream(
    url: str,
    method: str = "GET",
    client: Optional[httpx.AsyncClient] = None,
    done_marker: str = "[DONE]",
    **request_kwargs,
    ) -> AsyncIterator[str]:
    """Stream an HTTP response body as markdown chunks.

    The body may be SSE framed or plain text. A non-2xx status raises
    httpx.HTTPStatusError, which moves a consuming pipeline to the error state.
    A client created here is closed when the stream ends.
    """
    owned = client is None
    if owned:
        client = httpx.AsyncClient(timeout=30)
    try:
        async with client.stream(method, url, **request_kwargs) as response:
            logger.debug("stream_adapter.response", url=url, status=response.status_code)
            response.raise_for_status()
            async for chunk in sse_to_markdown_stream(response.aiter_text(), done_marker):
                yield chunk
    finally:
        if owned:
            await client.aclose()
