"""Raw-character fence tracking: stable boundary scan and incomplete-tail detection"""

import re
from dataclasses import dataclass
from typing import Optional


INCOMPLETE_LINE_RES = (
    re.compile(r'^#{1,6}\s*$'),        # heading marker without text
    re.compile(r'^[*+-]\s*$'),         # bare bullet
    re.compile(r'^\d+[.)]\s*$'),       # bare ordered marker
    re.compile(r'^>\s*$'),             # bare blockquote marker
)


@dataclass
class Fence:
    char: str       # ` or ~
    length: int
    prefix: str = ""    # indent and quote markers before the run


@dataclass
class BoundaryScan:
    """Result of one pass over the text."""
    boundary: int                   # offset just past the last blank line outside a fence; 0 if none
    open_fence: Optional[Fence]     # fence still open at end of text


def fence_start_index(line: str) -> int:
    """Index of a potential fence marker: skip up to 3 spaces and any '>' quote markers."""
    i = 0
    n = len(line)
    while True:
        spaces = 0
        while i < n and line[i] == ' ' and spaces < 3:
            i += 1
            spaces += 1
        if i < n and line[i] == '>':
            i += 1
            continue
        break
    while i < n and line[i] in ' \t':
        i += 1
    return i


def fence_marker(line: str) -> Fence | None:
    """Return the fence run at the start of the line (after quote markers), or None."""
    i = fence_start_index(line)
    if i >= len(line) or line[i] not in '`~':
        return None
    char = line[i]
    j = i
    while j < len(line) and line[j] == char:
        j += 1
    if j - i < 3:
        return None
    if char == '`' and '`' in line[j:]:
        return None
    return Fence(char=char, length=j - i, prefix=line[:i])


def closes_fence(line: str, fence: Fence) -> bool:
    """True if the line closes fence: same char, at least as long, nothing but whitespace after."""
    i = fence_start_index(line)
    j = i
    while j < len(line) and line[j] == fence.char:
        j += 1
    if j - i < fence.length:
        return False
    return line[j:].strip(' \t\r') == ''


def _is_blank(line: str) -> bool:
    return line.strip(' \t\r') == ''


def scan_boundary(text: str) -> BoundaryScan:
    """Walk the text line by line tracking fences; record the last stable boundary."""
    boundary = 0
    fence: Fence | None = None
    pos = 0
    n = len(text)
    while pos < n:
        end = text.find('\n', pos)
        has_newline = end != -1
        if not has_newline:
            end = n
        line = text[pos:end]

        if fence is not None:
            if closes_fence(line, fence):
                fence = None
        elif (marker := fence_marker(line)) is not None:
            fence = marker
        elif has_newline and _is_blank(line):
            boundary = end + 1

        pos = end + 1
    return BoundaryScan(boundary=boundary, open_fence=fence)


def find_code_ranges(text: str) -> list[tuple[int, int]]:
    """Return [start, end) offsets of fenced code regions; an unclosed fence runs to the end."""
    ranges = []
    fence: Fence | None = None
    start = 0
    pos = 0
    n = len(text)
    while pos < n:
        end = text.find('\n', pos)
        if end == -1:
            end = n
        line = text[pos:end]
        if fence is not None:
            if closes_fence(line, fence):
                ranges.append((start, end))
                fence = None
        elif (marker := fence_marker(line)) is not None:
            fence = marker
            start = pos
        pos = end + 1
    if fence is not None:
        ranges.append((start, n))
    return ranges


def in_ranges(pos: int, ranges: list[tuple[int, int]]) -> bool:
    return any(start <= pos < end for start, end in ranges)


def has_incomplete_tail(text: str, scan: Optional[BoundaryScan] = None) -> bool:
    """True if a fence is open at the end or the last non-blank line is a bare block marker.

    Pass the scan already taken over text to avoid walking it twice.
    """
    scan = scan or scan_boundary(text)
    if scan.open_fence is not None:
        return True
    for line in reversed(text.split('\n')):
        stripped = line.strip()
        if stripped:
            return any(r.match(stripped) for r in INCOMPLETE_LINE_RES)
    return False
