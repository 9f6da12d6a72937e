"""CLI command implementations"""

import asyncio
import json
from pathlib import Path
from typing import Annotated, Optional

import typer

from mdstream.config import Settings, load_config
from mdstream.core.adapters import chunk_text
from mdstream.core.models import StreamingState
from mdstream.core.parser import BlockParser
from mdstream.core.pipeline import StreamingPipeline
from mdstream.core.repair import repair_markdown
from mdstream.core.utils.log import configure_logging
from mdstream.plugins.runtime import create_plugin_runtime


def _fail(msg: str, cause: Exception = None) -> None:
    """Print a user-friendly error to stderr and exit 1."""
    typer.echo(f"Error: {msg}", err=True)
    if cause:
        typer.echo(f"  {cause}", err=True)
    raise typer.Exit(1)


def _settings(overrides: dict = None) -> Settings:
    """Load config with standard CLI error handling, then configure logging."""
    try:
        settings = load_config(overrides=overrides)
    except ValueError as e:
        _fail(str(e))
    configure_logging(settings.log_level)
    return settings


def _read(path: str) -> str:
    """Read a UTF-8 markdown file or exit with an error."""
    p = Path(path)
    if not p.is_file():
        _fail(f"File not found: {path}")
    try:
        return p.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        _fail(f"Cannot read {path}", e)


def _parser(preset: str, runtime=None) -> BlockParser:
    """Build a BlockParser for preset, exiting on an unknown preset name."""
    try:
        return runtime.create_parser(preset) if runtime else BlockParser(preset)
    except KeyError as e:
        _fail(f"Unknown parser preset: {preset}", e)


def _dump_blocks(blocks) -> str:
    return json.dumps([b.payload() for b in blocks], indent=2, ensure_ascii=False)


def parse_cmd(
    path: Annotated[str, typer.Argument(help="Markdown file to parse")],
    parser: Annotated[Optional[str], typer.Option("--parser-config", help="MarkdownIt preset name")] = None,
    ):
    """Parse a file in one pass and print the result as JSON."""
    settings = _settings(overrides={"parser_config": parser})
    result = _parser(settings.parser_config).parse(_read(path))
    typer.echo(json.dumps({
        "blocks": [b.payload() for b in result.blocks],
        "has_incomplete_block": result.has_incomplete_block,
    }, indent=2, ensure_ascii=False))


def _echo_state(state: StreamingState) -> None:
    current = state.current_block.type if state.current_block else "-"
    typer.echo(f"status={state.status.value} blocks={len(state.blocks)} current={current}")


def stream_cmd(
    path: Annotated[str, typer.Argument(help="Markdown file to stream")],
    chunk_size: Annotated[Optional[int], typer.Option("--chunk-size", help="Characters per chunk")] = None,
    batch_ms: Annotated[Optional[int], typer.Option("--batch-ms", help="Batch window in milliseconds")] = None,
    max_chunks: Annotated[Optional[int], typer.Option("--max-chunks", help="Flush after N chunks; 0 = time only")] = None,
    delay: Annotated[float, typer.Option("--delay", help="Seconds to wait between chunks")] = 0.0,
    quiet: Annotated[bool, typer.Option("--quiet", help="Only print the final blocks")] = False,
    ):
    """Feed a file through the streaming pipeline chunk by chunk."""
    settings = _settings(overrides={
        "chunk_size": chunk_size, "batch_window_ms": batch_ms, "max_batch_chunks": max_chunks,
    })
    text = _read(path)
    block_parser = _parser(settings.parser_config)

    async def _run() -> StreamingState:
        pipeline = StreamingPipeline.from_settings(settings, parser=block_parser)
        if not quiet:
            pipeline.add_listener(_echo_state)
        pipeline.start(chunk_text(text, settings.chunk_size, delay))
        return await pipeline.wait()

    final = asyncio.run(_run())
    if final.status.value != "completed":
        _fail(f"Stream ended with status {final.status.value}")
    typer.echo(_dump_blocks(final.blocks))


def repair_cmd(
    path: Annotated[str, typer.Argument(help="Markdown file to repair")],
    ):
    """Close markup left open at the end of a file and print the result."""
    _settings()
    typer.echo(repair_markdown(_read(path)), nl=False)


def render_cmd(
    path: Annotated[str, typer.Argument(help="Markdown file to render")],
    parser: Annotated[Optional[str], typer.Option("--parser-config", help="MarkdownIt preset name")] = None,
    ):
    """Render a file to plain text through the plugin runtime."""
    settings = _settings(overrides={"parser_config": parser})
    runtime = create_plugin_runtime()
    runtime.initialize()
    try:
        result = _parser(settings.parser_config, runtime).parse(_read(path))
        typer.echo('\n\n'.join(runtime.render_blocks(result.blocks)))
    finally:
        runtime.destroy()
