"""Repair of markup left unterminated when a stream ends mid-construct"""

import re
from typing import Callable

from structlog.stdlib import get_logger

from mdstream.core.utils.fences import find_code_ranges, scan_boundary


logger = get_logger(__name__)

INLINE_CODE_RE = re.compile(r'(?<!`)(`+)(?!`)(.+?)(?<!`)\1(?!`)', re.DOTALL)
LINK_TAIL_RE = re.compile(r'(?<!!)\[([^\[\]]*)\]\(([^()\s]*)$')
IMAGE_TAIL_RE = re.compile(r'!\[([^\[\]]*)(\]\(([^()\s]*))?$')
SETEXT_RE = re.compile(r'^ {0,3}-+[ \t]*$')


def _mask(text: str, inline_code: bool = True) -> str:
    """Blank out fenced code (and optionally inline code spans) keeping offsets intact."""
    chars = list(text)
    spans = find_code_ranges(text)
    if inline_code:
        spans += [m.span() for m in INLINE_CODE_RE.finditer(text)]
    for start, end in spans:
        for i in range(start, end):
            if chars[i] != '\n':
                chars[i] = ' '
    return ''.join(chars)


def _append(text: str, marker: str) -> str:
    """Insert marker after the last non-whitespace character."""
    body = text.rstrip()
    return body + marker + text[len(body):]


def _runs(masked: str, char: str):
    """Yield (start, end) of maximal runs of char."""
    for m in re.finditer(re.escape(char) + '+', masked):
        yield m.start(), m.end()


def _unclosed_run(masked: str, char: str, length: int, intraword: bool = True) -> bool:
    """True when an opening run of exactly length is left without a closer."""
    open_run = False
    for start, end in _runs(masked, char):
        if end - start != length:
            continue
        prev = masked[start - 1] if start > 0 else ' '
        nxt = masked[end] if end < len(masked) else ' '
        if not intraword and prev.isalnum() and nxt.isalnum():
            continue
        if open_run:
            if not prev.isspace():
                open_run = False
        elif not nxt.isspace():
            open_run = True
    return open_run


def _emphasis(char: str, length: int, intraword: bool = True) -> Callable[[str], str]:
    def handler(text: str) -> str:
        if _unclosed_run(_mask(text), char, length, intraword):
            return _append(text, char * length)
        return text
    handler.__name__ = f"close_{char * length}"
    return handler


def guard_setext(text: str) -> str:
    """Keep a trailing dash line from turning the paragraph above it into a heading."""
    lines = _mask(text).split('\n')
    while lines and not lines[-1].strip():
        lines.pop()
    if len(lines) < 2 or not SETEXT_RE.match(lines[-1]) or not lines[-2].strip():
        return text
    cut = sum(len(line) + 1 for line in lines[:-1])
    return text[:cut] + '\n' + text[cut:]


def close_link(text: str) -> str:
    masked = _mask(text)
    if LINK_TAIL_RE.search(masked.rstrip()):
        return _append(text, ')')
    return text


def close_image(text: str) -> str:
    """Close an image with a url; drop an image that has none yet."""
    masked = _mask(text).rstrip()
    m = IMAGE_TAIL_RE.search(masked)
    if not m:
        return text
    if m.group(3):
        return _append(text, ')')
    return text[:m.start()].rstrip(' \t') + text[len(masked):]


def close_inline_code(text: str) -> str:
    masked = _mask(text, inline_code=False)
    singles = sum(1 for start, end in _runs(masked, '`') if end - start == 1)
    return _append(text, '`') if singles % 2 else text


def close_display_math(text: str) -> str:
    if _mask(text).count('$$') % 2:
        return text + ('$$' if text.endswith('\n') else '\n$$')
    return text


def close_fence(text: str) -> str:
    fence = scan_boundary(text).open_fence
    if fence is None:
        return text
    sep = '' if text.endswith('\n') else '\n'
    return f"{text}{sep}{fence.prefix}{fence.char * fence.length}\n"


REPAIR_HANDLERS: list[tuple[int, Callable[[str], str]]] = [
    (0,  guard_setext),
    (10, close_link),
    (11, close_image),
    (20, _emphasis('*', 3)),
    (30, _emphasis('*', 2)),
    (40, _emphasis('_', 2, intraword=False)),
    (41, _emphasis('*', 1)),
    (42, _emphasis('_', 1, intraword=False)),
    (50, close_inline_code),
    (60, _emphasis('~', 2)),
    (70, close_display_math),
    (80, close_fence),
]


def repair_markdown(text: str) -> str:
    """Apply every repair handler in priority order."""
    for _, handler in sorted(REPAIR_HANDLERS, key=lambda h: h[0]):
        repaired = handler(text)
        if repaired != text:
            logger.debug("repair.applied", handler=handler.__name__)
        text = repaired
    return text
