"""Token-to-Block conversion with stable ids and block parser extensions"""

import re
from typing import Optional

from mdstream.core.extensions import ExtensionDispatcher, shape_block
from mdstream.core.inline import InlineParser
from mdstream.core.lexer import Token
from mdstream.core.models import Block, BlockType, Inline, InlineType, ListItem
from mdstream.core.utils.language import normalize_language
from mdstream.plugins.observability import Observability
from mdstream.plugins.plugin import DROP, ParserContext, TokenHandlerInput


WS_RE = re.compile(r'\s+')

BLOCK_TYPE_MAP: dict[str, BlockType] = {
    'heading':    BlockType.heading,
    'paragraph':  BlockType.paragraph,
    'code':       BlockType.code,
    'list':       BlockType.list,
    'blockquote': BlockType.blockquote,
    'hr':         BlockType.thematic_break,
    'html':       BlockType.html,
    'table':      BlockType.table,
}


def stable_id(block_type: str, position: int, parent_id: Optional[str] = None) -> str:
    """Deterministic block id; nested blocks are prefixed with their parent's id."""
    base = f"{block_type}-{position}"
    return f"{parent_id}-{base}" if parent_id else base


def _collapse(text: str) -> str:
    return WS_RE.sub(' ', text).strip()


class BlockBuilder:
    """Converts normalized Tokens to Blocks, consulting block parser extensions first."""

    def __init__(
        self,
        inline_parser: Optional[InlineParser] = None,
        extensions=(),
        observability: Optional[Observability] = None,
        ):
        self.observability = observability or Observability()
        self.inline = inline_parser or InlineParser(observability=self.observability)
        self._dispatcher = ExtensionDispatcher(
            extensions,
            shape=shape_block,
            observability=self.observability,
            calls_counter="parser_extension_calls",
            fallbacks_counter="parser_extension_fallbacks",
        )

    def tokens_to_blocks(
        self,
        tokens: list[Token],
        offset: int = 0,
        context: Optional[ParserContext] = None,
        ) -> list[Block]:
        """Convert tokens in order; positions advance only for emitted blocks."""
        context = context or ParserContext()
        blocks: list[Block] = []
        for tok in tokens:
            block = self.token_to_block(tok, offset + len(blocks), context)
            if block is not None:
                blocks.append(block)
        return blocks

    def token_to_block(
        self,
        tok: Token,
        position: int,
        context: Optional[ParserContext] = None,
        block_id: Optional[str] = None,
        ) -> Block | None:
        """Convert one token; None for unsupported tokens or a dropped extension result."""
        context = context or ParserContext()
        block_type = BLOCK_TYPE_MAP.get(tok.type)
        default_id = block_id or stable_id(
            block_type.value if block_type else tok.type, position, context.parent_id,
        )

        if self._dispatcher.extensions:
            data = TokenHandlerInput(
                token=tok,
                id=default_id,
                position=position,
                context=context,
                parse_inline=self.inline.parse_inline_tokens,
            )
            result = self._dispatcher.dispatch(tok.type, data)
            if result is DROP:
                return None
            if result is not None:
                return self._sanitize_block(result)

        if block_type is None:
            return None
        return self._builtin(tok, block_type, default_id, position, context)

    def _sanitize_block(self, block: Block) -> Block:
        if not block.children:
            return block
        children = [self.inline.sanitize_inline(c) for c in block.children]
        return block.model_copy(update={"children": children})

    def _children(self, tok: Token) -> list[Inline] | None:
        return self.inline.parse_inline_tokens(tok.inline) or None

    def _builtin(self, tok: Token, block_type: BlockType, block_id: str, position: int, context) -> Block:
        common = {"id": block_id, "type": block_type.value, "position": position}

        if block_type is BlockType.heading:
            return Block(**common, content=tok.text, level=tok.depth, children=self._children(tok))
        if block_type is BlockType.paragraph:
            return Block(**common, content=tok.text, children=self._children(tok))
        if block_type is BlockType.code:
            body = tok.text[:-1] if tok.text.endswith('\n') else tok.text
            return Block(**common, content=body, raw_content=body, language=normalize_language(tok.lang))
        if block_type is BlockType.list:
            items = self._list_items(tok, block_id, context)
            return Block(
                **common,
                content='\n'.join(item.content for item in items),
                subtype='ordered' if tok.ordered else 'unordered',
                items=items,
            )
        if block_type is BlockType.blockquote:
            nested = self.tokens_to_blocks(
                tok.tokens, context=ParserContext(depth=context.depth + 1, parent_id=block_id),
            )
            return Block(**common, content=tok.raw, blocks=nested or None)
        if block_type is BlockType.thematic_break:
            return Block(**common, content='---')
        if block_type is BlockType.html:
            return Block(**common, content=tok.text.rstrip('\n'))
        return Block(**common, content=tok.raw, headers=tok.header, rows=tok.rows, align=tok.align)

    def _list_items(self, tok: Token, list_id: str, context: ParserContext) -> list[ListItem]:
        items = []
        nested_context = ParserContext(depth=context.depth + 1, parent_id=list_id)
        for i, item in enumerate(tok.items):
            item_id = f"{list_id}-item-{i}"
            children: list[Inline] = []
            nested: list[Block] = []
            lists = 0
            others = 0
            for sub in item.tokens:
                if sub.type in ('paragraph', 'heading'):
                    if children:
                        children.append(Inline(type=InlineType.text.value, content=' '))
                    children.extend(self.inline.parse_inline_tokens(sub.inline))
                    continue
                if sub.type == 'list':
                    sub_id = f"{item_id}-list-{lists}"
                    lists += 1
                else:
                    sub_type = BLOCK_TYPE_MAP[sub.type].value if sub.type in BLOCK_TYPE_MAP else sub.type
                    sub_id = f"{item_id}-block-{others}-{sub_type}"
                    others += 1
                block = self.token_to_block(sub, len(nested), nested_context, block_id=sub_id)
                if block is not None:
                    nested.append(block)
            items.append(ListItem(
                id=item_id,
                content=_collapse(item.text),
                children=children or None,
                blocks=nested or None,
                task=True if item.task else None,
                checked=item.checked if item.task else None,
            ))
        return items
