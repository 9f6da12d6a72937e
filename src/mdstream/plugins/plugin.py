"""Plugin descriptors, parser extension contracts and hook contexts"""

from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Optional

from mdstream.core.lexer import InlineToken, Token
from mdstream.core.models import Block, Inline


BUILTIN_PLUGIN_NAME = "builtin"

OverrideStrategy = Literal["replace", "preserve", "error"]


class _Drop:
    """Extension result meaning: consume the token and emit nothing."""

    def __repr__(self) -> str:
        return "DROP"


DROP = _Drop()


@dataclass
class ParserContext:
    """Where a token sits in the document being parsed."""
    depth: int = 0                      # 0 for top-level blocks, +1 per blockquote level
    parent_id: Optional[str] = None


@dataclass
class TokenHandlerInput:
    token: Token
    id: str                             # id the built-in conversion would assign
    position: int
    context: ParserContext
    parse_inline: Callable[[list[InlineToken]], list[Inline]]


@dataclass
class InlineTokenHandlerInput:
    token: InlineToken
    parse_inline: Callable[[list[InlineToken]], list[Inline]]


@dataclass
class BlockParserExtension:
    """Custom block conversion for tokens of the given type(s).

    handler returns a Block (or dict accepted by Block), DROP, or None to pass.
    """
    handler: Callable[[TokenHandlerInput], Any]
    name: str = ""
    type: str | tuple[str, ...] | None = None
    match: Optional[Callable[[TokenHandlerInput], bool]] = None
    validate: Optional[Callable[[Any], bool]] = None
    fallback: Optional[Callable[[TokenHandlerInput], Any]] = None
    priority: int = 0


@dataclass
class InlineParserExtension:
    """Custom inline conversion; handler returns Inline, a list of them, DROP, or None."""
    handler: Callable[[InlineTokenHandlerInput], Any]
    name: str = ""
    type: str | tuple[str, ...] | None = None
    match: Optional[Callable[[InlineTokenHandlerInput], bool]] = None
    validate: Optional[Callable[[Any], bool]] = None
    fallback: Optional[Callable[[InlineTokenHandlerInput], Any]] = None
    priority: int = 0


@dataclass
class LifecycleContext:
    plugin_name: str
    observability: Any
    register_cleanup: Callable[[Callable[[], None]], None]


@dataclass
class RenderHookContext:
    block: Block
    is_complete: bool
    block_index: int
    depth: int = 0
    component: Any = None
    inputs: dict[str, Any] = field(default_factory=dict)


def default_allow_component_registration(block_type: str, plugin_name: str) -> bool:
    """Only the builtin plugin may bind a renderer to raw html blocks."""
    return not (block_type == "html" and plugin_name != BUILTIN_PLUGIN_NAME)


@dataclass
class SecurityPolicy:
    allow_component_registration: Callable[[str, str], bool] = default_allow_component_registration
    sanitize_inline: Optional[Callable[[Inline], Inline]] = None


@dataclass
class Plugin:
    """A bundle of renderer bindings, parser extensions and hooks."""
    name: str
    components: dict[str, Any] = field(default_factory=dict)
    order: int = 0
    override_strategy: OverrideStrategy = "replace"
    block_matcher: Optional[Callable[[Block], bool]] = None
    block_resolver: Optional[Callable[[Block], Optional[str]]] = None
    parser_extensions: list[BlockParserExtension] = field(default_factory=list)
    inline_parser_extensions: list[InlineParserExtension] = field(default_factory=list)
    on_init: Optional[Callable[[LifecycleContext], Any]] = None
    on_destroy: Optional[Callable[[LifecycleContext], None]] = None
    before_render: Optional[Callable[[RenderHookContext], None]] = None
    after_render: Optional[Callable[[RenderHookContext], None]] = None


def type_matches(filter_: str | tuple[str, ...] | None, token_type: str) -> bool:
    """True when an extension's type filter accepts token_type."""
    if filter_ is None:
        return True
    if isinstance(filter_, str):
        return filter_ == token_type
    return token_type in filter_
