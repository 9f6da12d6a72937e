"""Streaming pipeline: batches chunks from an async source and drives incremental parsing"""

import asyncio
from typing import AsyncIterable, Callable, Optional

from structlog.stdlib import get_logger

from mdstream.config import Settings
from mdstream.core.models import Block, BlockType, HighlightResult, StreamingState, StreamingStatus
from mdstream.core.parser import BlockParser
from mdstream.core.repair import repair_markdown


logger = get_logger(__name__)

Listener = Callable[[StreamingState], None]

_CHUNK = "chunk"
_DONE = "done"
_ERROR = "error"


async def _read_source(source: AsyncIterable[str], queue: asyncio.Queue) -> None:
    """Forward chunks to the queue, ending with a done or error message."""
    try:
        async for chunk in source:
            await queue.put((_CHUNK, chunk))
    except Exception as e:
        await queue.put((_ERROR, e))
        return
    await queue.put((_DONE, None))


class StreamingPipeline:
    """idle -> streaming -> completed | error; publishes a StreamingState after every batch."""

    def __init__(
        self,
        parser: Optional[BlockParser] = None,
        batch_window_ms: int = 32,
        max_batch_chunks: int = 0,
        repair_on_complete: bool = True,
        max_queued_chunks: int = 64,
        ):
        self.parser = parser or BlockParser()
        self.batch_window = batch_window_ms / 1000
        self.max_batch_chunks = max_batch_chunks
        self.repair_on_complete = repair_on_complete
        self.max_queued_chunks = max_queued_chunks
        self._state = StreamingState()
        self._listeners: list[Listener] = []
        self._highlights: dict[str, HighlightResult] = {}
        self._task: Optional[asyncio.Task] = None
        self._generation = 0

    @classmethod
    def from_settings(cls, settings: Settings, parser: Optional[BlockParser] = None) -> "StreamingPipeline":
        return cls(
            parser=parser or BlockParser(settings.parser_config),
            batch_window_ms=settings.batch_window_ms,
            max_batch_chunks=settings.max_batch_chunks,
            repair_on_complete=settings.repair_on_complete,
            max_queued_chunks=settings.max_queued_chunks,
        )

    @property
    def state(self) -> StreamingState:
        return self._state

    @property
    def status(self) -> StreamingStatus:
        return self._state.status

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener; returns a callable that removes it."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    def _publish(self, state: StreamingState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("streaming_pipeline.listener_failed", status=state.status.value)

    # --- lifecycle ---

    def start(self, source: AsyncIterable[str]) -> asyncio.Task:
        """Reset, enter streaming and consume source in a task on the running loop."""
        self.reset()
        self._publish(StreamingState(status=StreamingStatus.streaming))
        generation = self._generation
        self._task = asyncio.get_running_loop().create_task(self._consume(source, generation))
        return self._task

    async def wait(self) -> StreamingState:
        """Wait for the current stream to finish and return the final state."""
        if self._task is not None:
            await asyncio.wait({self._task})
        return self._state

    def reset(self) -> None:
        """Detach from the current source, drop buffered chunks and return to idle."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self.parser.reset()
        self._highlights.clear()
        self._publish(StreamingState())

    async def _consume(self, source: AsyncIterable[str], generation: int) -> None:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queued_chunks)
        reader = asyncio.create_task(_read_source(source, queue))
        loop = asyncio.get_running_loop()
        batch: list[str] = []
        deadline: Optional[float] = None
        try:
            while True:
                timeout = None if deadline is None else max(0.0, deadline - loop.time())
                try:
                    kind, payload = await asyncio.wait_for(queue.get(), timeout)
                except asyncio.TimeoutError:
                    self._apply_batch(batch, generation)
                    batch, deadline = [], None
                    continue

                if kind == _CHUNK:
                    if not payload:
                        continue
                    batch.append(payload)
                    if deadline is None:
                        deadline = loop.time() + self.batch_window
                    if self.max_batch_chunks and len(batch) >= self.max_batch_chunks:
                        self._apply_batch(batch, generation)
                        batch, deadline = [], None
                elif kind == _DONE:
                    self._apply_batch(batch, generation)
                    self._finalize(generation)
                    return
                else:
                    self._fail(payload, generation)
                    return
        finally:
            reader.cancel()

    # --- state transitions ---

    def _apply_batch(self, batch: list[str], generation: int) -> None:
        if not batch or generation != self._generation:
            return
        previous = self._state.raw_content
        raw = previous + ''.join(batch)
        result = self.parser.parse_incremental(previous, raw)
        blocks = [self._decorate(b) for b in result.blocks]
        logger.debug("streaming_pipeline.batch_applied", chunks=len(batch), blocks=len(blocks))
        self._publish(StreamingState(
            blocks=blocks[:-1],
            current_block=blocks[-1] if blocks else None,
            raw_content=raw,
            status=StreamingStatus.streaming,
        ))

    def _finalize(self, generation: int) -> None:
        if generation != self._generation:
            return
        raw = self._state.raw_content
        text = repair_markdown(raw) if self.repair_on_complete else raw
        result = self.parser.parse(text)
        blocks = [
            self._decorate(b if b.is_complete else b.model_copy(update={"is_complete": True}))
            for b in result.blocks
        ]
        logger.info("streaming_pipeline.completed", blocks=len(blocks), chars=len(raw))
        self._publish(StreamingState(
            blocks=blocks,
            current_block=None,
            raw_content=raw,
            status=StreamingStatus.completed,
        ))

    def _fail(self, error: Exception, generation: int) -> None:
        if generation != self._generation:
            return
        logger.error("streaming_pipeline.stream_failed", error=repr(error))
        self._publish(self._state.model_copy(update={"status": StreamingStatus.error}))

    # --- highlight attachment ---

    def _decorate(self, block: Block) -> Block:
        highlight = self._highlights.get(block.id)
        if highlight is None or block.type != BlockType.code.value:
            return block
        return block.model_copy(update={"highlight": highlight})

    def apply_highlight_result(self, block_id: str, lines: list[str]) -> None:
        """Attach highlighted lines to a code block id and republish the current state."""
        self._highlights[block_id] = HighlightResult(block_id=block_id, lines=list(lines))
        state = self._state
        current = state.current_block
        self._publish(state.model_copy(update={
            "blocks": [self._decorate(b) for b in state.blocks],
            "current_block": self._decorate(current) if current is not None else None,
        }))
