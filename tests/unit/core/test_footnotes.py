"""Unit tests for core/footnotes.py"""

from mdstream.core.footnotes import extract_footnotes


def test_definitions_removed_refs_kept():
    """Definition lines are collected; references stay in the text for the inline parser."""
    notes = extract_footnotes("See[^a].\n\n[^a]: Note text")
    assert notes.defs == {"a": "Note text"}
    assert notes.text == "See[^a].\n\n"


def test_text_without_definitions_is_unchanged():
    """Text with references but no definitions passes through verbatim."""
    notes = extract_footnotes("Later[^x] and `[^a-z]+`")
    assert notes.defs == {}
    assert notes.text == "Later[^x] and `[^a-z]+`"


def test_later_definition_wins():
    """A repeated id keeps the last definition."""
    notes = extract_footnotes("[^a]: one\n[^a]: two\n")
    assert notes.defs == {"a": "two"}


def test_fenced_code_is_untouched():
    """Footnote syntax inside fenced code is left alone."""
    text = "```\n[^x]: not a def\nref[^x]\n```\n"
    notes = extract_footnotes(text)
    assert notes.defs == {}
    assert notes.text == text


def test_definition_requires_line_start():
    """Only definitions at the start of a line are extracted."""
    notes = extract_footnotes("text [^a]: inline")
    assert notes.defs == {}
