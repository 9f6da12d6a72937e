"""Inline token conversion: emphasis, links, math, footnote refs and sanitization"""

import re
from typing import Optional

from structlog.stdlib import get_logger

from mdstream.core.extensions import ExtensionDispatcher, shape_inlines
from mdstream.core.footnotes import FOOTNOTE_HTML_RE, FOOTNOTE_REF_RE
from mdstream.core.lexer import InlineToken
from mdstream.core.models import Inline, InlineType
from mdstream.plugins.observability import Observability
from mdstream.plugins.plugin import DROP, InlineTokenHandlerInput, SecurityPolicy


logger = get_logger(__name__)

SUP_RE = re.compile(r'^<sup>(.*)</sup>$', re.DOTALL | re.IGNORECASE)
SUB_RE = re.compile(r'^<sub>(.*)</sub>$', re.DOTALL | re.IGNORECASE)
ALNUM = frozenset('ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789')

CONTAINER_TYPES: dict[str, InlineType] = {
    'strong': InlineType.bold,
    'em':     InlineType.italic,
    'del':    InlineType.strikethrough,
}


# --- math scanner ---

def _likely_inline_math_start(text: str, i: int) -> bool:
    """A single $ opens math only before a non-space non-digit and not after an alphanumeric."""
    if i + 1 >= len(text):
        return False
    nxt = text[i + 1]
    if nxt.isspace() or nxt.isdigit():
        return False
    return not (i > 0 and text[i - 1] in ALNUM)


def _find_closing(text: str, start: int, length: int) -> int:
    """Index of the closing delimiter at or after start, or -1."""
    for j in range(start, len(text)):
        if text[j] != '$' or text[j - 1] == '\\':
            continue
        if length == 2:
            if text.startswith('$$', j):
                return j
        elif not text[j - 1].isspace():
            return j
    return -1


def split_math(text: str) -> list[Inline]:
    """Split raw text into text and math nodes; unmatched delimiters stay literal."""
    nodes: list[Inline] = []
    buf: list[str] = []

    def _flush():
        if buf:
            nodes.append(Inline(type=InlineType.text.value, content=''.join(buf)))
            buf.clear()

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == '\\' and i + 1 < n and text[i + 1] == '$':
            buf.append('$')
            i += 2
            continue
        if ch != '$':
            buf.append(ch)
            i += 1
            continue

        length = 2 if text.startswith('$$', i) else 1
        if length == 1 and not _likely_inline_math_start(text, i):
            buf.append('$')
            i += 1
            continue

        close = _find_closing(text, i + length, length)
        if close == -1:
            buf.append(text[i:i + length])
            i += length
            continue

        formula = text[i + length:close].strip()
        if not formula:
            buf.append(text[i:close + length])
        else:
            _flush()
            nodes.append(Inline(type=InlineType.math.value, content=formula, display_mode=length == 2))
        i = close + length

    _flush()
    return nodes


def split_footnote_refs(nodes: list[Inline]) -> list[Inline]:
    """Split `[^id]` references out of text nodes into footnote-ref nodes."""
    out: list[Inline] = []
    for node in nodes:
        if node.type != InlineType.text.value or '[^' not in node.content:
            out.append(node)
            continue
        pos = 0
        for m in FOOTNOTE_REF_RE.finditer(node.content):
            if m.start() > pos:
                out.append(Inline(type=InlineType.text.value, content=node.content[pos:m.start()]))
            out.append(Inline(type=InlineType.footnote_ref.value, content=m.group(1)))
            pos = m.end()
        if pos < len(node.content):
            out.append(Inline(type=InlineType.text.value, content=node.content[pos:]))
    return out


def html_to_inline(raw: str) -> Inline:
    """Map raw inline HTML to footnote-ref, sup or sub; anything else degrades to text."""
    stripped = raw.strip()
    if m := FOOTNOTE_HTML_RE.match(stripped):
        return Inline(type=InlineType.footnote_ref.value, content=m.group(1))
    if m := SUP_RE.match(stripped):
        return Inline(type=InlineType.sup.value, content=m.group(1))
    if m := SUB_RE.match(stripped):
        return Inline(type=InlineType.sub.value, content=m.group(1))
    return Inline(type=InlineType.text.value, content=raw)


class InlineParser:
    """Converts InlineTokens to sanitized Inline trees, consulting inline extensions first."""

    def __init__(
        self,
        extensions=(),
        security: Optional[SecurityPolicy] = None,
        observability: Optional[Observability] = None,
        ):
        self.security = security or SecurityPolicy()
        self.observability = observability or Observability()
        self._dispatcher = ExtensionDispatcher(
            extensions,
            shape=shape_inlines,
            observability=self.observability,
            calls_counter="inline_extension_calls",
            fallbacks_counter="inline_extension_fallbacks",
        )

    def parse_inline_tokens(self, tokens: list[InlineToken]) -> list[Inline]:
        return [self.sanitize_inline(node) for node in self._convert_all(tokens)]

    def _convert_all(self, tokens: list[InlineToken]) -> list[Inline]:
        out: list[Inline] = []
        for tok in tokens:
            out.extend(self._convert(tok))
        return out

    def _convert(self, tok: InlineToken) -> list[Inline]:
        if self._dispatcher.extensions:
            data = InlineTokenHandlerInput(token=tok, parse_inline=self.parse_inline_tokens)
            result = self._dispatcher.dispatch(tok.type, data)
            if result is DROP:
                return []
            if result is not None:
                return result

        if tok.type in CONTAINER_TYPES:
            return [Inline(
                type=CONTAINER_TYPES[tok.type].value,
                content=tok.text,
                children=self._convert_all(tok.tokens or []),
            )]
        if tok.type == 'codespan':
            return [Inline(type=InlineType.code.value, content=tok.text)]
        if tok.type == 'link':
            return [Inline(
                type=InlineType.link.value,
                content=tok.text,
                href=tok.href,
                children=self._convert_all(tok.tokens or []),
            )]
        if tok.type == 'image':
            return [Inline(type=InlineType.image.value, content=tok.text, src=tok.href, alt=tok.text)]
        if tok.type == 'br':
            return [Inline(type=InlineType.hard_break.value)]
        if tok.type == 'html':
            return [html_to_inline(tok.raw)]
        if tok.tokens:
            return self._convert_all(tok.tokens)
        return split_footnote_refs(split_math(tok.text))

    def sanitize_inline(self, node: Inline) -> Inline:
        """Sanitize children first (pruning empty lists), then apply the policy's sanitizer."""
        if node.children is not None:
            children = [self.sanitize_inline(c) for c in node.children]
            node = node.model_copy(update={"children": children or None})
        sanitizer = self.security.sanitize_inline
        if sanitizer is None:
            return node
        try:
            result = sanitizer(node)
        except Exception as e:
            self.observability.increment("errors")
            logger.warning("inline_parser.sanitize_failed", type=node.type, error=repr(e))
            return Inline(type=InlineType.text.value, content=node.content)
        if not isinstance(result, Inline):
            return Inline(type=InlineType.text.value, content=node.content)
        return result
