"""Block parser: full and incremental parsing with a stable-prefix cache"""

from dataclasses import dataclass, field
from typing import Optional

from structlog.stdlib import get_logger

from mdstream.core.blocks import BlockBuilder, stable_id
from mdstream.core.footnotes import extract_footnotes
from mdstream.core.inline import InlineParser
from mdstream.core.lexer import Lexer
from mdstream.core.models import Block, BlockType, ParserResult
from mdstream.core.utils.fences import BoundaryScan, has_incomplete_tail, scan_boundary
from mdstream.plugins.observability import Observability
from mdstream.plugins.plugin import SecurityPolicy


logger = get_logger(__name__)


@dataclass
class ParseCache:
    """Blocks parsed from parsed_text[:stable_text_end], reused while that prefix is unchanged."""
    parsed_text: str = ""
    stable_blocks: list[Block] = field(default_factory=list)
    stable_text_end: int = 0


def footnote_block(defs: dict[str, str], position: int) -> Block:
    return Block(
        id=stable_id(BlockType.footnote_def.value, position),
        type=BlockType.footnote_def.value,
        content='\n'.join(f"[^{key}]: {value}" for key, value in defs.items()),
        position=position,
        footnote_defs=dict(defs),
    )


def mark_incomplete(blocks: list[Block]) -> list[Block]:
    """Copy the list with the last content block flagged incomplete; cached blocks are not touched."""
    out = list(blocks)
    for i in range(len(out) - 1, -1, -1):
        if out[i].type != BlockType.footnote_def.value:
            out[i] = out[i].model_copy(update={"is_complete": False})
            break
    return out


class BlockParser:
    """Parses markdown into Blocks; parse_incremental re-parses only the unstable tail."""

    def __init__(
        self,
        preset: str = 'gfm-like',
        parser_extensions=(),
        inline_extensions=(),
        security: Optional[SecurityPolicy] = None,
        observability: Optional[Observability] = None,
        ):
        self.observability = observability or Observability()
        self.lexer = Lexer(preset)
        self.inline = InlineParser(inline_extensions, security, self.observability)
        self.builder = BlockBuilder(self.inline, parser_extensions, self.observability)
        self._cache = ParseCache()

    def reset(self) -> None:
        self._cache = ParseCache()

    def _convert_segment(self, text: str, out: list[Block]) -> dict[str, str]:
        """Lex text and append its blocks to out, numbering from len(out); return footnote defs."""
        footnotes = extract_footnotes(text)
        for tok in self.lexer.lex(footnotes.text):
            block = self.builder.token_to_block(tok, len(out))
            if block is not None:
                out.append(block)
        return footnotes.defs

    def _parse_blocks(self, text: str, out: list[Block]) -> None:
        defs = self._convert_segment(text, out)
        if defs:
            out.append(footnote_block(defs, len(out)))

    def parse(self, text: str) -> ParserResult:
        """Parse the whole text; errors are logged and the blocks built so far are returned."""
        if not text.strip():
            return ParserResult()
        return self._parse_whole(text, scan_boundary(text))

    def _parse_whole(self, text: str, scan: BoundaryScan) -> ParserResult:
        blocks: list[Block] = []
        try:
            incomplete = has_incomplete_tail(text, scan)
            self._parse_blocks(text, blocks)
        except Exception as e:
            logger.error("block_parser.parse_failed", error=repr(e), blocks=len(blocks))
            return ParserResult(blocks=blocks, has_incomplete_block=False)
        return ParserResult(
            blocks=mark_incomplete(blocks) if incomplete else blocks,
            has_incomplete_block=incomplete,
        )

    def parse_incremental(self, previous_text: str, new_text: str) -> ParserResult:
        """Parse new_text, reusing cached blocks for the prefix before the last stable boundary."""
        if not previous_text or not new_text.startswith(previous_text):
            self.reset()
            result = self.parse(new_text)
            self._cache = ParseCache(parsed_text=new_text)
            return result

        try:
            return self._parse_tail(new_text)
        except Exception as e:
            logger.warning("block_parser.incremental_failed", error=repr(e))
            self.reset()
            return self.parse(new_text)

    def _parse_tail(self, text: str) -> ParserResult:
        scan = scan_boundary(text)
        boundary = scan.boundary
        if boundary <= 0:
            result = self._parse_whole(text, scan)
            self._cache = ParseCache(parsed_text=text)
            return result

        cache = self._cache
        if cache.stable_text_end == boundary and cache.parsed_text[:boundary] == text[:boundary]:
            stable = cache.stable_blocks
        else:
            stable = []
            self._parse_blocks(text[:boundary], stable)
            logger.debug("block_parser.stable_reparsed", boundary=boundary, blocks=len(stable))

        blocks: list[Block] = []
        defs: dict[str, str] = {}
        for block in stable:
            if block.type == BlockType.footnote_def.value:
                defs.update(block.footnote_defs or {})
            else:
                blocks.append(block)

        tail = text[boundary:]
        if tail.strip():
            defs.update(self._convert_segment(tail, blocks))
        if defs:
            blocks.append(footnote_block(defs, len(blocks)))

        self._cache = ParseCache(parsed_text=text, stable_blocks=stable, stable_text_end=boundary)
        incomplete = has_incomplete_tail(text, scan)
        return ParserResult(
            blocks=mark_incomplete(blocks) if incomplete else blocks,
            has_incomplete_block=incomplete,
        )
