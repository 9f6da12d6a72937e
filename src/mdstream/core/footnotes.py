"""Footnote definition extraction and reference patterns"""

import re
from dataclasses import dataclass, field

from mdstream.core.utils.fences import find_code_ranges, in_ranges


FOOTNOTE_DEF_RE = re.compile(r'^\[\^([^\]]+)\]:[ \t]*(.+)$', re.MULTILINE)
FOOTNOTE_REF_RE = re.compile(r'\[\^([^\]]+)\]')
FOOTNOTE_HTML_RE = re.compile(r'^<sup><a href="#fn-([^"]+)">\[[^\]]*\]</a></sup>$')


@dataclass
class Footnotes:
    text: str                                       # input with definition lines removed
    defs: dict[str, str] = field(default_factory=dict)


def extract_footnotes(text: str) -> Footnotes:
    """Strip `[^id]: text` definition lines outside fenced code and collect them.

    References are left in place; the inline parser turns `[^id]` found in
    text nodes into footnote-ref nodes, so code spans and code blocks keep
    their content verbatim.
    """
    defs: dict[str, str] = {}
    ranges = find_code_ranges(text)

    def _take_def(m: re.Match) -> str:
        if ranges and in_ranges(m.start(), ranges):
            return m.group(0)
        defs[m.group(1)] = m.group(2).strip()
        return ''

    return Footnotes(text=FOOTNOTE_DEF_RE.sub(_take_def, text), defs=defs)
