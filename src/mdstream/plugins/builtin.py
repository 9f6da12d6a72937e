"""Builtin plugin: plain-text renderers for every built-in block type"""

from typing import Callable

from mdstream.core.models import Block, BlockType, Inline, InlineType
from mdstream.plugins.plugin import BUILTIN_PLUGIN_NAME, Plugin


BUILTIN_ORDER = -1_000_000


def render_inlines(nodes: list[Inline] | None) -> str:
    """Flatten an inline tree to plain text."""
    parts = []
    for node in nodes or []:
        t = node.type
        if t == InlineType.hard_break.value:
            parts.append('\n')
        elif t == InlineType.link.value:
            label = render_inlines(node.children) or node.content
            parts.append(f"{label} ({node.href})" if node.href else label)
        elif t == InlineType.image.value:
            parts.append(f"[image: {node.alt or node.src}]")
        elif t == InlineType.footnote_ref.value:
            parts.append(f"[{node.content}]")
        elif t == InlineType.math.value:
            parts.append(f"$${node.content}$$" if node.display_mode else f"${node.content}$")
        elif node.children:
            parts.append(render_inlines(node.children))
        else:
            parts.append(node.content)
    return ''.join(parts)


def _text(block: Block) -> str:
    return render_inlines(block.children) if block.children else block.content


def render_paragraph(block: Block) -> str:
    return _text(block)


def render_heading(block: Block) -> str:
    return f"{'#' * (block.level or 1)} {_text(block)}"


def render_code(block: Block) -> str:
    body = '\n'.join(block.highlight.lines) if block.highlight else (block.raw_content or '')
    return f"```{block.language or ''}\n{body}\n```"


def render_list(block: Block) -> str:
    lines = []
    for i, item in enumerate(block.items or []):
        marker = f"{i + 1}." if block.subtype == 'ordered' else '-'
        if item.task:
            marker += ' [x]' if item.checked else ' [ ]'
        lines.append(f"{marker} {render_inlines(item.children) if item.children else item.content}")
        for nested in item.blocks or []:
            lines += ['  ' + line for line in render_block(nested).split('\n')]
    return '\n'.join(lines)


def render_blockquote(block: Block) -> str:
    inner = '\n\n'.join(render_block(b) for b in block.blocks or [])
    return '\n'.join(f"> {line}".rstrip() for line in inner.split('\n'))


def render_table(block: Block) -> str:
    rows = [block.headers or []] + list(block.rows or [])
    return '\n'.join(' | '.join(cells) for cells in rows)


def render_thematic_break(block: Block) -> str:
    return '---'


def render_raw(block: Block) -> str:
    return block.content


def render_footnotes(block: Block) -> str:
    return '\n'.join(f"[{key}] {value}" for key, value in (block.footnote_defs or {}).items())


RENDERERS: dict[str, Callable[[Block], str]] = {
    BlockType.paragraph.value:      render_paragraph,
    BlockType.heading.value:        render_heading,
    BlockType.code.value:           render_code,
    BlockType.list.value:           render_list,
    BlockType.blockquote.value:     render_blockquote,
    BlockType.table.value:          render_table,
    BlockType.thematic_break.value: render_thematic_break,
    BlockType.html.value:           render_raw,
    BlockType.footnote_def.value:   render_footnotes,
    BlockType.unknown.value:        render_raw,
}


def render_block(block: Block) -> str:
    """Render a nested block with the builtin renderers."""
    return RENDERERS.get(block.type, render_raw)(block)


def builtin_plugin() -> Plugin:
    return Plugin(name=BUILTIN_PLUGIN_NAME, components=dict(RENDERERS), order=BUILTIN_ORDER)
