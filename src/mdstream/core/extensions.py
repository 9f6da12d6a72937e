"""Priority-ordered dispatch of plugin parser extensions with validation and fallback"""

from dataclasses import dataclass
from typing import Any, Callable, Optional

from pydantic import ValidationError
from structlog.stdlib import get_logger

from mdstream.core.models import Block, Inline
from mdstream.plugins.observability import Observability
from mdstream.plugins.plugin import DROP, BlockParserExtension, InlineParserExtension, type_matches


logger = get_logger(__name__)


@dataclass(frozen=True)
class RegisteredExtension:
    """An extension together with the plugin that declared it."""
    plugin_name: str
    extension: BlockParserExtension | InlineParserExtension


def sort_extensions(extensions) -> tuple[RegisteredExtension, ...]:
    """Order by priority, highest first; ties keep registration order."""
    return tuple(sorted(extensions, key=lambda r: -r.extension.priority))


def shape_block(result: Any) -> Block | Any | None:
    """Coerce a handler result to a Block (or DROP); None when the shape is wrong."""
    if result is DROP or isinstance(result, Block):
        return result
    if isinstance(result, dict):
        try:
            return Block.model_validate(result)
        except ValidationError:
            return None
    return None


def shape_inlines(result: Any) -> list[Inline] | Any | None:
    """Coerce a handler result to a list of Inline (or DROP); None when the shape is wrong."""
    if result is DROP:
        return result
    items = result if isinstance(result, list) else [result]
    out = []
    for item in items:
        if isinstance(item, Inline):
            out.append(item)
        elif isinstance(item, dict):
            try:
                out.append(Inline.model_validate(item))
            except ValidationError:
                return None
        else:
            return None
    return out


class ExtensionDispatcher:
    """Runs one family (block or inline) of extensions against a token."""

    def __init__(
        self,
        extensions,
        shape: Callable[[Any], Any],
        observability: Observability,
        calls_counter: str,
        fallbacks_counter: str,
        ):
        self.extensions = sort_extensions(extensions)
        self.shape = shape
        self.observability = observability
        self.calls_counter = calls_counter
        self.fallbacks_counter = fallbacks_counter

    def _call(self, reg: RegisteredExtension, stage: str, fn, data) -> tuple[bool, Any]:
        """Call fn(data); on exception count and log it, returning (False, None)."""
        try:
            return True, fn(data)
        except Exception as e:
            self.observability.increment("errors", reg.plugin_name)
            logger.warning(
                "extension.failed",
                plugin=reg.plugin_name,
                extension=reg.extension.name,
                stage=stage,
                error=repr(e),
            )
            return False, None

    def _accept(self, reg: RegisteredExtension, result: Any) -> Any | None:
        """Run the extension's validator then the shape check."""
        validate = reg.extension.validate
        if validate is not None and result is not DROP:
            ok, valid = self._call(reg, "validate", validate, result)
            if not ok or not valid:
                return None
        return self.shape(result)

    def _fallback(self, reg: RegisteredExtension, data) -> Any | None:
        fallback = reg.extension.fallback
        if fallback is None:
            return None
        self.observability.increment(self.fallbacks_counter, reg.plugin_name)
        ok, result = self._call(reg, "fallback", fallback, data)
        if not ok or result is None:
            return None
        return self.shape(result)

    def dispatch(self, token_type: str, data) -> Optional[Any]:
        """Return the first valid extension result for the token, or None to use built-in handling."""
        for reg in self.extensions:
            ext = reg.extension
            if not type_matches(ext.type, token_type):
                continue
            if ext.match is not None:
                ok, matched = self._call(reg, "match", ext.match, data)
                if not ok or not matched:
                    continue

            self.observability.increment(self.calls_counter, reg.plugin_name)
            ok, result = self._call(reg, "handler", ext.handler, data)
            if ok and result is None:
                continue
            if ok:
                accepted = self._accept(reg, result)
                if accepted is not None:
                    return accepted
                logger.debug("extension.rejected", plugin=reg.plugin_name, extension=ext.name)

            recovered = self._fallback(reg, data)
            if recovered is not None:
                return recovered
        return None
