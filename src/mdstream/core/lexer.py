"""markdown-it adapter: normalizes the syntax tree into stable block and inline tokens"""

import re
from dataclasses import dataclass, field
from typing import Optional

from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode

from mdstream.core.utils.tokens import cell_alignment, heading_level, inline_child, source_slice


TASK_RE = re.compile(r'^\[([ xX])\]\s+')
SCRIPT_OPEN_RE = re.compile(r'^<(sup|sub)>$', re.IGNORECASE)

INLINE_TYPE_MAP: dict[str, str] = {
    'strong': 'strong',
    'em':     'em',
    's':      'del',
}


@dataclass
class InlineToken:
    """Normalized inline token; tokens holds nested spans for containers."""
    type: str                   # text, strong, em, del, codespan, link, image, br, html
    text: str = ""
    raw: str = ""
    href: Optional[str] = None
    title: Optional[str] = None
    tokens: Optional[list["InlineToken"]] = None


@dataclass
class Token:
    """Normalized block token."""
    type: str                   # heading, paragraph, code, list, list_item, blockquote, hr, html, table
    raw: str = ""
    text: str = ""
    depth: Optional[int] = None             # heading level
    lang: Optional[str] = None              # code fence info string
    ordered: bool = False
    start: Optional[int] = None
    task: bool = False
    checked: Optional[bool] = None
    items: list["Token"] = field(default_factory=list)
    tokens: list["Token"] = field(default_factory=list)    # nested blocks
    inline: list[InlineToken] = field(default_factory=list)
    header: list[str] = field(default_factory=list)
    rows: list[list[str]] = field(default_factory=list)
    align: list[Optional[str]] = field(default_factory=list)


def make_parser(preset: str = 'gfm-like') -> MarkdownIt:
    """Build a MarkdownIt instance for the given preset name."""
    md = MarkdownIt(preset, options_update={"linkify": False, "typographer": False})
    md.disable("text_join", ignoreInvalid=True)
    return md


# --- inline ---

def _escape_text(node) -> str:
    """Keep the backslash on an escaped dollar so the math scanner sees it."""
    if node.info == 'escape' and node.content == '$':
        return node.markup
    return node.content


def _source_text(node) -> str:
    """Approximate the markdown source of an inline node."""
    if node.type == 'text':
        return node.content
    if node.type == 'text_special':
        return node.markup if node.info == 'escape' else node.content
    if node.type in ('softbreak', 'hardbreak'):
        return '\n'
    if node.type == 'html_inline':
        return node.content
    if node.type == 'code_inline':
        return f"{node.markup}{node.content}{node.markup}"
    if node.type == 'image':
        return f"![{node.content}]({node.attrGet('src') or ''})"
    inner = ''.join(_source_text(c) for c in node.children)
    if node.type == 'link':
        return f"[{inner}]({node.attrGet('href') or ''})"
    return f"{node.markup}{inner}{node.markup}"


def _coalesce_script(nodes: list, i: int) -> tuple[str, int] | None:
    """Join a <sup>/<sub> html run into one raw string; return (raw, next_index)."""
    m = SCRIPT_OPEN_RE.match(nodes[i].content.strip())
    if not m:
        return None
    tag = m.group(1).lower()
    depth = 0
    parts = []
    for j in range(i, len(nodes)):
        node = nodes[j]
        if node.type == 'html_inline':
            content = node.content.strip().lower()
            if content == f"<{tag}>":
                depth += 1
            elif content == f"</{tag}>":
                depth -= 1
        parts.append(_source_text(node))
        if depth == 0:
            return ''.join(parts), j + 1
    return None


def lex_inline(nodes: list) -> list[InlineToken]:
    """Convert inline SyntaxTreeNodes to InlineTokens, merging adjacent text runs."""
    out: list[InlineToken] = []
    i = 0
    while i < len(nodes):
        node = nodes[i]
        t = node.type

        if t in ('text', 'text_special', 'softbreak'):
            text = node.content if t == 'text' else _escape_text(node) if t == 'text_special' else '\n'
            if out and out[-1].type == 'text':
                out[-1].text += text
                out[-1].raw += text
            else:
                out.append(InlineToken(type='text', text=text, raw=text))
            i += 1
            continue

        if t == 'html_inline':
            run = _coalesce_script(nodes, i)
            if run:
                raw, i = run
                out.append(InlineToken(type='html', text=raw, raw=raw))
                continue
            out.append(InlineToken(type='html', text=node.content, raw=node.content))
        elif t == 'code_inline':
            out.append(InlineToken(type='codespan', text=node.content, raw=_source_text(node)))
        elif t == 'hardbreak':
            out.append(InlineToken(type='br', raw='\n'))
        elif t == 'image':
            out.append(InlineToken(
                type='image',
                text=node.content,
                raw=_source_text(node),
                href=str(node.attrGet('src') or ''),
                title=node.attrGet('title'),
            ))
        elif t == 'link':
            children = lex_inline(node.children)
            out.append(InlineToken(
                type='link',
                text=''.join(c.text for c in children),
                raw=_source_text(node),
                href=str(node.attrGet('href') or ''),
                title=node.attrGet('title'),
                tokens=children,
            ))
        elif t in INLINE_TYPE_MAP:
            children = lex_inline(node.children)
            out.append(InlineToken(
                type=INLINE_TYPE_MAP[t],
                text=''.join(c.text for c in children),
                raw=_source_text(node),
                tokens=children,
            ))
        else:
            text = _source_text(node)
            out.append(InlineToken(type='text', text=text, raw=text))
        i += 1
    return out


# --- blocks ---

def _inline_of(node) -> tuple[str, list[InlineToken]]:
    inline = inline_child(node)
    if inline is None:
        return '', []
    return inline.content, lex_inline(inline.children)


def _strip_task(item: Token) -> None:
    """Detect a [ ] / [x] prefix on a list item and remove it from its first text."""
    m = TASK_RE.match(item.text)
    if not m:
        return
    item.task = True
    item.checked = m.group(1) != ' '
    item.text = item.text[m.end():]
    for block in item.tokens:
        if block.type != 'paragraph':
            continue
        block.text = TASK_RE.sub('', block.text, count=1)
        if block.inline and block.inline[0].type == 'text':
            first = block.inline[0]
            first.text = TASK_RE.sub('', first.text, count=1)
            first.raw = first.text
        break


def _table(node, raw: str) -> Token:
    tok = Token(type='table', raw=raw, text=raw)
    for section in node.children:
        for row in section.children:
            cells = [inline_child(c).content.strip() if inline_child(c) else '' for c in row.children]
            if section.type == 'thead':
                tok.header = cells
                tok.align = [cell_alignment(c) for c in row.children]
            else:
                tok.rows.append(cells)
    return tok


def node_to_token(node, source_lines: list[str]) -> Token | None:
    """Convert a block-level SyntaxTreeNode to a Token, or None for unsupported nodes."""
    t = node.type
    raw = source_slice(node, source_lines)

    if t == 'heading':
        text, inline = _inline_of(node)
        return Token(type='heading', raw=raw, text=text, depth=heading_level(node), inline=inline)
    if t == 'paragraph':
        text, inline = _inline_of(node)
        return Token(type='paragraph', raw=raw, text=text, inline=inline)
    if t == 'fence':
        return Token(type='code', raw=raw, text=node.content, lang=node.info.strip() or None)
    if t == 'code_block':
        return Token(type='code', raw=raw, text=node.content)
    if t in ('bullet_list', 'ordered_list'):
        tok = Token(type='list', raw=raw, ordered=t == 'ordered_list')
        if tok.ordered:
            start = node.attrGet('start')
            tok.start = int(start) if start is not None else 1
        for child in node.children:
            item = node_to_token(child, source_lines)
            if item is not None:
                tok.items.append(item)
        return tok
    if t == 'list_item':
        nested = [b for b in (node_to_token(c, source_lines) for c in node.children) if b is not None]
        text = ' '.join(b.text for b in nested if b.type in ('paragraph', 'heading'))
        item = Token(type='list_item', raw=raw, text=text, tokens=nested)
        _strip_task(item)
        return item
    if t == 'blockquote':
        nested = [b for b in (node_to_token(c, source_lines) for c in node.children) if b is not None]
        return Token(type='blockquote', raw=raw, text=raw, tokens=nested)
    if t == 'hr':
        return Token(type='hr', raw=raw, text=raw)
    if t == 'html_block':
        return Token(type='html', raw=raw, text=node.content)
    if t == 'table':
        return _table(node, raw)
    return None


class Lexer:
    """Tokenizes markdown text into normalized block Tokens."""

    def __init__(self, preset: str = 'gfm-like'):
        self.preset = preset
        self._md = make_parser(preset)

    def lex(self, text: str) -> list[Token]:
        source_lines = text.splitlines(keepends=True)
        root = SyntaxTreeNode(self._md.parse(text))
        tokens = []
        for node in root.children:
            tok = node_to_token(node, source_lines)
            if tok is not None:
                tokens.append(tok)
        return tokens
