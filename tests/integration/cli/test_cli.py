"""Integration tests for the CLI commands"""

import json

import pytest
from typer.testing import CliRunner

from mdstream.cli.cli import app


DOC = "# Hello\n\nWorld with **bold**.\n\n- a\n- b\n\n```py\nx = 1\n```\n"


@pytest.fixture(name="runner")
def fixture_runner(tmp_path, monkeypatch):
    """A CliRunner working in a temp directory holding doc.md."""
    monkeypatch.chdir(tmp_path)
    (tmp_path / "doc.md").write_text(DOC)
    return CliRunner()


def test_parse_prints_blocks_json(runner):
    """parse emits the block list and the incomplete flag as JSON."""
    result = runner.invoke(app, ["parse", "doc.md"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert [b["type"] for b in data["blocks"]] == ["heading", "paragraph", "list", "code"]
    assert data["blocks"][3]["language"] == "python"
    assert data["has_incomplete_block"] is False


def test_parse_reports_incomplete(runner, tmp_path):
    """An open fence is reported in the JSON output."""
    (tmp_path / "open.md").write_text("```js\nlet a")
    data = json.loads(runner.invoke(app, ["parse", "open.md"]).stdout)
    assert data["has_incomplete_block"] is True
    assert data["blocks"][0]["is_complete"] is False


def test_stream_reports_states_and_final_blocks(runner):
    """stream prints one line per state, then the completed blocks."""
    result = runner.invoke(app, ["stream", "doc.md", "--chunk-size", "7", "--batch-ms", "0"])
    assert result.exit_code == 0, result.output
    out = result.stdout
    assert "status=streaming" in out
    assert "status=completed" in out
    blocks = json.loads(out[out.index("[\n"):])
    assert [b["type"] for b in blocks] == ["heading", "paragraph", "list", "code"]
    assert all(b["is_complete"] for b in blocks)


def test_stream_quiet(runner):
    """--quiet suppresses state lines."""
    result = runner.invoke(app, ["stream", "doc.md", "--quiet", "--batch-ms", "0"])
    assert result.exit_code == 0, result.output
    assert "status=" not in result.stdout
    assert len(json.loads(result.stdout)) == 4


def test_stream_repairs_unclosed_markup(runner, tmp_path):
    """The final parse of a stream sees repaired text."""
    (tmp_path / "cut.md").write_text("Some **bold")
    result = runner.invoke(app, ["stream", "cut.md", "--quiet", "--batch-ms", "0"])
    blocks = json.loads(result.stdout)
    assert [c["type"] for c in blocks[0]["children"]] == ["text", "bold"]


def test_repair_closes_markup(runner, tmp_path):
    """repair prints the text with open markup closed."""
    (tmp_path / "cut.md").write_text("Some **bold")
    result = runner.invoke(app, ["repair", "cut.md"])
    assert result.exit_code == 0, result.output
    assert result.stdout == "Some **bold**"


def test_render_plain_text(runner):
    """render runs blocks through the builtin renderers."""
    result = runner.invoke(app, ["render", "doc.md"])
    assert result.exit_code == 0, result.output
    out = result.stdout
    assert out.startswith("# Hello\n\nWorld with bold.")
    assert "- a\n- b" in out
    assert "```python\nx = 1\n```" in out


def test_missing_file_exits_1(runner):
    """A missing input file is reported and exits with code 1."""
    result = runner.invoke(app, ["parse", "nope.md"])
    assert result.exit_code == 1
    assert "File not found: nope.md" in result.output


def test_invalid_config_exits_1(runner, tmp_path):
    """An unreadable config.yaml is reported and exits with code 1."""
    (tmp_path / "config.yaml").write_text("key: [unclosed\n")
    result = runner.invoke(app, ["parse", "doc.md"])
    assert result.exit_code == 1
    assert "Invalid config.yaml" in result.output


def test_unknown_preset_exits_1(runner):
    """An unknown parser preset is reported and exits with code 1."""
    result = runner.invoke(app, ["parse", "doc.md", "--parser-config", "nonsense"])
    assert result.exit_code == 1
    assert "Unknown parser preset: nonsense" in result.output
