"""Public data contracts: blocks, inline spans, parser results and streaming state"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class BlockType(str, Enum):
    paragraph      = "paragraph"
    heading        = "heading"
    code           = "code"
    list           = "list"
    blockquote     = "blockquote"
    table          = "table"
    thematic_break = "thematic-break"
    html           = "html"
    footnote_def   = "footnote-def"
    unknown        = "unknown"


class InlineType(str, Enum):
    text          = "text"
    bold          = "bold"
    italic        = "italic"
    strikethrough = "strikethrough"
    code          = "code"
    link          = "link"
    image         = "image"
    math          = "math"
    hard_break    = "hard-break"
    sup           = "sup"
    sub           = "sub"
    footnote_ref  = "footnote-ref"


class StreamingStatus(str, Enum):
    idle      = "idle"
    streaming = "streaming"
    completed = "completed"
    error     = "error"


class Inline(BaseModel):
    """A span of inline markup; children present only for container spans."""
    model_config = ConfigDict(frozen=True)

    type: str
    content: str = ""
    children: Optional[list["Inline"]] = None
    href: Optional[str] = None
    src: Optional[str] = None
    alt: Optional[str] = None
    display_mode: Optional[bool] = None     # math only; True for $$...$$


class HighlightResult(BaseModel):
    """Highlighted lines for a code block, produced outside the parser."""
    model_config = ConfigDict(frozen=True)

    block_id: str
    lines: list[str]


class ListItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    children: Optional[list[Inline]] = None
    blocks: Optional[list["Block"]] = None  # nested lists and other block content
    task: Optional[bool] = None
    checked: Optional[bool] = None


class Block(BaseModel):
    """A renderable unit of the document; plugin blocks may carry extra fields."""
    model_config = ConfigDict(frozen=True, extra="allow")

    id: str
    type: str
    content: str
    position: int
    is_complete: bool = True
    level: Optional[int] = None             # heading level (1-6)
    children: Optional[list[Inline]] = None
    raw_content: Optional[str] = None       # code body without fences
    language: Optional[str] = None
    subtype: Optional[str] = None           # list: ordered | unordered
    items: Optional[list[ListItem]] = None
    blocks: Optional[list["Block"]] = None  # blockquote children
    headers: Optional[list[str]] = None
    rows: Optional[list[list[str]]] = None
    align: Optional[list[Optional[str]]] = None
    footnote_defs: Optional[dict[str, str]] = None
    highlight: Optional[HighlightResult] = None

    def payload(self) -> dict[str, Any]:
        """Return the block as a dict without unset optional fields."""
        return self.model_dump(exclude_none=True, mode="json")


ListItem.model_rebuild()


class ParserResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    blocks: list[Block] = Field(default_factory=list)
    has_incomplete_block: bool = False


class StreamingState(BaseModel):
    """Snapshot published by the pipeline after each applied batch."""
    model_config = ConfigDict(frozen=True)

    blocks: list[Block] = Field(default_factory=list)
    current_block: Optional[Block] = None
    raw_content: str = ""
    status: StreamingStatus = StreamingStatus.idle
