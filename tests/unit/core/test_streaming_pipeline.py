"""Unit tests for core/pipeline.py"""

import asyncio

from structlog.testing import capture_logs

from mdstream.config import Settings
from mdstream.core.adapters import iter_chunks
from mdstream.core.models import StreamingStatus
from mdstream.core.pipeline import StreamingPipeline


def _run(pipeline, source):
    async def main():
        pipeline.start(source)
        return await pipeline.wait()
    return asyncio.run(main())


def test_initial_state_is_idle():
    """A new pipeline is idle with no blocks."""
    pipeline = StreamingPipeline()
    assert pipeline.status == StreamingStatus.idle
    assert pipeline.state.blocks == []
    assert pipeline.state.current_block is None


def test_completes_with_all_blocks():
    """A finished stream moves every block into blocks and clears current_block."""
    pipeline = StreamingPipeline(batch_window_ms=0)
    final = _run(pipeline, iter_chunks(["# Ti", "tle\n\nHello **wor", "ld**"]))
    assert final.status == StreamingStatus.completed
    assert [b.type for b in final.blocks] == ["heading", "paragraph"]
    assert final.current_block is None
    assert final.raw_content == "# Title\n\nHello **world**"
    assert all(b.is_complete for b in final.blocks)


def test_streaming_splits_current_block():
    """While streaming, the last block is exposed separately."""
    pipeline = StreamingPipeline(batch_window_ms=1000, max_batch_chunks=1)
    states = []
    pipeline.add_listener(states.append)
    _run(pipeline, iter_chunks(["# Title\n\n", "Body"]))
    streaming = [s for s in states if s.status == StreamingStatus.streaming and s.raw_content]
    last = streaming[-1]
    assert [b.type for b in last.blocks] == ["heading"]
    assert last.current_block.type == "paragraph"


def test_repair_applied_on_completion():
    """Unclosed emphasis is repaired before the final parse."""
    final = _run(StreamingPipeline(batch_window_ms=0), iter_chunks(["Some **bold"]))
    children = final.blocks[0].children
    assert [c.type for c in children] == ["text", "bold"]
    assert final.raw_content == "Some **bold"


def test_repair_can_be_disabled():
    """With repair off the final parse sees the raw text."""
    pipeline = StreamingPipeline(batch_window_ms=0, repair_on_complete=False)
    final = _run(pipeline, iter_chunks(["Some **bold"]))
    assert [c.type for c in final.blocks[0].children] == ["text"]


def test_streamed_code_fence_states():
    """Each chunk is parsed in order; the fence is incomplete until closed."""
    pipeline = StreamingPipeline(batch_window_ms=1000, max_batch_chunks=1)
    states = []
    pipeline.add_listener(states.append)
    final = _run(pipeline, iter_chunks(["```ts\n", "const x=1", "\n```\n"]))

    first = next(s for s in states if s.raw_content == "```ts\n")
    assert first.current_block.type == "code"
    assert first.current_block.is_complete is False

    assert len(final.blocks) == 1
    code = final.blocks[0]
    assert (code.language, code.raw_content, code.is_complete) == ("typescript", "const x=1", True)


def test_batching_coalesces_chunks():
    """Chunks arriving within one window are applied as a single batch."""
    pipeline = StreamingPipeline(batch_window_ms=5000)
    states = []
    pipeline.add_listener(states.append)
    _run(pipeline, iter_chunks(["a", "b", "c"]))
    applied = [s for s in states if s.status == StreamingStatus.streaming and s.raw_content]
    assert len(applied) == 1
    assert applied[0].raw_content == "abc"


def test_full_queue_holds_back_fast_source():
    """A source that never yields control is paused once the queue is full."""
    produced = []

    async def fast():
        for i in range(50):
            produced.append(i)
            yield "x"

    pipeline = StreamingPipeline(batch_window_ms=0, max_queued_chunks=1)
    seen = []

    def on_state(state):
        if state.status == StreamingStatus.streaming and state.raw_content:
            seen.append(len(produced))

    pipeline.add_listener(on_state)
    final = _run(pipeline, fast())
    assert seen[0] < 10
    assert final.status == StreamingStatus.completed
    assert final.raw_content == "x" * 50


def test_empty_chunks_are_ignored():
    """Empty chunks never trigger a parse."""
    pipeline = StreamingPipeline(batch_window_ms=5000)
    states = []
    pipeline.add_listener(states.append)
    final = _run(pipeline, iter_chunks(["", ""]))
    assert final.status == StreamingStatus.completed
    assert not [s for s in states if s.status == StreamingStatus.streaming and s.raw_content]


def test_source_error_sets_error_status():
    """A failing source ends in the error state and drops buffered chunks."""
    async def failing():
        yield "Hello"
        raise ConnectionError("dropped")

    pipeline = StreamingPipeline(batch_window_ms=5000)
    with capture_logs() as logs:
        final = _run(pipeline, failing())
    assert final.status == StreamingStatus.error
    assert final.raw_content == ""
    assert final.blocks == []
    assert any(log["event"] == "streaming_pipeline.stream_failed" for log in logs)


def test_listener_sees_lifecycle():
    """Listeners observe idle, streaming and completed in order."""
    pipeline = StreamingPipeline(batch_window_ms=0)
    statuses = []
    pipeline.add_listener(lambda s: statuses.append(s.status))
    _run(pipeline, iter_chunks(["x"]))
    assert statuses[0] == StreamingStatus.idle
    assert statuses[1] == StreamingStatus.streaming
    assert statuses[-1] == StreamingStatus.completed


def test_remove_listener():
    """The callable returned by add_listener unsubscribes it."""
    pipeline = StreamingPipeline(batch_window_ms=0)
    seen = []
    remove = pipeline.add_listener(seen.append)
    remove()
    _run(pipeline, iter_chunks(["x"]))
    assert seen == []


def test_reset_detaches_source():
    """reset() cancels the running stream and nothing is applied afterwards."""
    async def slow():
        yield "Hello"
        await asyncio.sleep(10)
        yield " world"

    async def main():
        pipeline = StreamingPipeline(batch_window_ms=0)
        pipeline.start(slow())
        await asyncio.sleep(0.05)
        assert pipeline.state.raw_content == "Hello"
        pipeline.reset()
        await asyncio.sleep(0.05)
        return pipeline

    pipeline = asyncio.run(main())
    assert pipeline.status == StreamingStatus.idle
    assert pipeline.state.raw_content == ""
    assert pipeline.state.blocks == []


def test_restart_discards_previous_stream():
    """Starting again abandons the earlier source."""
    async def slow():
        await asyncio.sleep(0.05)
        yield "AAA"

    async def main():
        pipeline = StreamingPipeline(batch_window_ms=0)
        pipeline.start(slow())
        pipeline.start(iter_chunks(["B"]))
        final = await pipeline.wait()
        await asyncio.sleep(0.1)
        return final, pipeline.state

    final, later = asyncio.run(main())
    assert final.raw_content == "B"
    assert later.raw_content == "B"


def test_highlight_result_attached_to_code_block():
    """Highlight results are keyed by block id and decorate code blocks."""
    pipeline = StreamingPipeline(batch_window_ms=0)
    _run(pipeline, iter_chunks(["```py\nx = 1\n```\n"]))
    pipeline.apply_highlight_result("code-0", ["<span>x</span> = 1"])
    block = pipeline.state.blocks[0]
    assert block.highlight.block_id == "code-0"
    assert block.highlight.lines == ["<span>x</span> = 1"]


def test_from_settings():
    """Pipeline options come from Settings."""
    settings = Settings(batch_window_ms=10, max_batch_chunks=4, repair_on_complete=False, max_queued_chunks=8)
    pipeline = StreamingPipeline.from_settings(settings)
    assert pipeline.batch_window == 0.01
    assert pipeline.max_batch_chunks == 4
    assert pipeline.repair_on_complete is False
    assert pipeline.max_queued_chunks == 8
