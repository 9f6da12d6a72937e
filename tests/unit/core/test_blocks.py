"""Unit tests for core/blocks.py"""

from mdstream.core.blocks import BlockBuilder, stable_id


def _blocks(lexer, md: str):
    return BlockBuilder().tokens_to_blocks(lexer.lex(md))


def test_stable_id():
    """Ids combine type and position, prefixed by the parent id when nested."""
    assert stable_id("paragraph", 3) == "paragraph-3"
    assert stable_id("paragraph", 0, "blockquote-1") == "blockquote-1-paragraph-0"


def test_heading_block(lexer):
    """Headings keep level, marker-free content and inline children."""
    block = _blocks(lexer, "## Hello *there*\n")[0]
    assert block.id == "heading-0"
    assert block.level == 2
    assert block.content == "Hello *there*"
    assert [c.type for c in block.children] == ["text", "italic"]


def test_paragraph_block(lexer):
    """Paragraph content is the inline source text."""
    block = _blocks(lexer, "Some **bold** text.\n")[0]
    assert block.type == "paragraph"
    assert block.content == "Some **bold** text."


def test_code_block_language_and_raw_content(lexer):
    """Code blocks drop the trailing newline and normalize the language."""
    block = _blocks(lexer, "```ts\nconst x=1\n```\n")[0]
    assert block.type == "code"
    assert block.language == "typescript"
    assert block.raw_content == "const x=1"
    assert block.content == "const x=1"


def test_list_block_ids_and_content(lexer):
    """List items get ids derived from the list id; content joins item texts."""
    block = _blocks(lexer, "- a\n- b\n")[0]
    assert block.id == "list-0"
    assert block.subtype == "unordered"
    assert block.content == "a\nb"
    assert [item.id for item in block.items] == ["list-0-item-0", "list-0-item-1"]


def test_ordered_list_subtype(lexer):
    """Ordered lists are marked by subtype."""
    assert _blocks(lexer, "1. one\n2. two\n")[0].subtype == "ordered"


def test_nested_list_ids(lexer):
    """Nested lists become list blocks inside the item with derived ids."""
    item = _blocks(lexer, "- a\n  - b\n")[0].items[0]
    assert item.content == "a"
    nested = item.blocks[0]
    assert nested.id == "list-0-item-0-list-0"
    assert nested.type == "list"
    assert nested.items[0].id == "list-0-item-0-list-0-item-0"
    assert nested.items[0].content == "b"


def test_nested_code_in_list_item(lexer):
    """Non-list blocks inside an item are numbered with their type."""
    item = _blocks(lexer, "- a\n\n  ```\n  x\n  ```\n")[0].items[0]
    assert item.blocks[0].id == "list-0-item-0-block-0-code"
    assert item.blocks[0].raw_content == "x"


def test_task_list_flags(lexer):
    """Task items carry task and checked flags."""
    items = _blocks(lexer, "- [x] done\n- [ ] todo\n- plain\n")[0].items
    assert [(i.task, i.checked) for i in items] == [(True, True), (True, False), (None, None)]
    assert items[0].content == "done"


def test_blockquote_nested_positions(lexer):
    """Blockquote children restart positions at zero under the quote's id."""
    block = _blocks(lexer, "> one\n>\n> two\n")[0]
    assert block.type == "blockquote"
    assert [(b.id, b.position) for b in block.blocks] == [
        ("blockquote-0-paragraph-0", 0),
        ("blockquote-0-paragraph-1", 1),
    ]


def test_thematic_break(lexer):
    """Horizontal rules become thematic-break blocks."""
    blocks = _blocks(lexer, "a\n\n***\n")
    assert blocks[1].type == "thematic-break"
    assert blocks[1].content == "---"


def test_html_block(lexer):
    """Block HTML keeps its raw source as content."""
    block = _blocks(lexer, "<div>hi</div>\n")[0]
    assert block.type == "html"
    assert block.content == "<div>hi</div>"


def test_table_block(lexer):
    """Tables expose headers, rows and alignment."""
    block = _blocks(lexer, "| a | b |\n|:-:|---|\n| 1 | 2 |\n")[0]
    assert block.type == "table"
    assert block.headers == ["a", "b"]
    assert block.rows == [["1", "2"]]
    assert block.align == ["center", None]


def test_positions_are_sequential(lexer, sample_md):
    """Emitted blocks are numbered 0..n-1 with matching ids."""
    blocks = _blocks(lexer, sample_md)
    assert [b.position for b in blocks] == list(range(len(blocks)))
    assert all(b.id == f"{b.type}-{b.position}" for b in blocks)
