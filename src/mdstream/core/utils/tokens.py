"""Shared markdown-it token utilities"""

import re


ALIGN_RE = re.compile(r'text-align:\s*(left|center|right)')


def heading_level(node) -> int | None:
    """Return the heading level (1-6) for a heading node, else None."""
    if node.type == 'heading' and node.tag and node.tag[0] == 'h' and node.tag[1:].isdigit():
        return int(node.tag[1:])
    return None


def cell_alignment(node) -> str | None:
    """Return left/center/right from a th/td style attribute, else None."""
    style = node.attrs.get('style') if node.attrs else None
    m = ALIGN_RE.search(str(style)) if style else None
    return m.group(1) if m else None


def source_slice(node, source_lines: list[str]) -> str:
    """Extract raw source for a block via node.map; fallback to node.content."""
    if node.map:
        start, end = node.map
        return ''.join(source_lines[start:end]).rstrip()
    return (node.content or '').rstrip()


def inline_child(node):
    """Return the inline child of a paragraph/heading/cell node, else None."""
    for child in node.children:
        if child.type == 'inline':
            return child
    return None
