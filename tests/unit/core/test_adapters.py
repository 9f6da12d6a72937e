"""Unit tests for core/adapters.py"""

import asyncio
import json

import httpx
import pytest

from mdstream.core.adapters import (
    chunk_text,
    fetch_markdown_stream,
    iter_chunks,
    parse_sse_payloads,
    sse_to_markdown_stream,
)


def _collect(source):
    async def main():
        return [chunk async for chunk in source]
    return asyncio.run(main())


def test_chunk_text_splits_by_size():
    """Text is cut into fixed-size pieces with a shorter last piece."""
    assert _collect(chunk_text("abcdef", 4)) == ["abcd", "ef"]


def test_chunk_text_rejects_zero_size():
    """A chunk size below one is rejected."""
    with pytest.raises(ValueError, match="chunk size"):
        _collect(chunk_text("abc", 0))


def test_iter_chunks_preserves_order():
    """A plain iterable is replayed as an async source."""
    assert _collect(iter_chunks(["a", "b"])) == ["a", "b"]


def test_parse_sse_payloads():
    """Each event's data lines are joined with newlines."""
    raw = "data: a\n\nevent: msg\ndata: b\ndata: c\n\n: comment\n\n"
    assert parse_sse_payloads(raw) == ["a", "b\nc"]


def test_parse_sse_payloads_crlf():
    """CRLF line endings are accepted."""
    assert parse_sse_payloads("data: x\r\n\r\ndata:y\r\n\r\n") == ["x", "y"]


def test_sse_stream_reassembles_split_events():
    """Events split across network chunks are yielded whole; [DONE] ends the stream."""
    raw = ["data: He", "llo\n\ndata: wor", "ld\n\ndata: [DONE]\n\ndata: late\n\n"]
    assert _collect(sse_to_markdown_stream(iter_chunks(raw))) == ["Hello", "world"]


def test_sse_stream_flushes_trailing_event():
    """An event without a final blank line is still delivered at the end."""
    assert _collect(sse_to_markdown_stream(iter_chunks(["data: tail"]))) == ["tail"]


def test_plain_markdown_passes_through():
    """Text without SSE framing is yielded as markdown, keeping its blank lines."""
    chunks = _collect(sse_to_markdown_stream(iter_chunks(["# Title\n\nBo", "dy text"])))
    assert chunks == ["# Title\n\n", "Body text"]
    assert "".join(chunks) == "# Title\n\nBody text"


def test_field_only_events_are_skipped():
    """Comments and events without data lines carry no markdown."""
    raw = ": keepalive\n\nevent: ping\nid: 7\n\ndata: x\n\nretry: 100\n\n"
    assert _collect(sse_to_markdown_stream(iter_chunks([raw]))) == ["x"]


def _fetch(handler, **kwargs):
    async def main():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return [chunk async for chunk in fetch_markdown_stream("https://example.com/stream", client=client, **kwargs)]
    return asyncio.run(main())


def test_fetch_sse_body():
    """An SSE response body is reduced to its data payloads up to [DONE]."""
    def handler(request: httpx.Request) -> httpx.Response:
        body = b"data: # Hi\n\ndata: there\n\ndata: [DONE]\n\ndata: late\n\n"
        return httpx.Response(200, headers={"Content-Type": "text/event-stream"}, content=body)

    assert _fetch(handler) == ["# Hi", "there"]


def test_fetch_plain_body():
    """A response that is not SSE framed is emitted as raw text."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"raw chunk text")

    assert _fetch(handler) == ["raw chunk text"]


def test_fetch_forwards_request_options():
    """Method and request keyword arguments reach the server."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=b"data: ok\n\n")

    assert _fetch(handler, method="POST", json={"prompt": "hi"}) == ["ok"]
    assert seen == {"method": "POST", "body": {"prompt": "hi"}}


def test_fetch_error_status_raises():
    """A non-2xx response raises before any chunk is produced."""
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, content=b"boom")

    with pytest.raises(httpx.HTTPStatusError):
        _fetch(handler)
