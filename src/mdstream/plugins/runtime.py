"""Plugin registry construction, conflict resolution, lifecycle and render hooks"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional

from structlog.stdlib import get_logger

from mdstream.core.extensions import RegisteredExtension
from mdstream.core.models import Block, BlockType
from mdstream.core.parser import BlockParser
from mdstream.plugins.builtin import builtin_plugin
from mdstream.plugins.observability import ConflictRecord, Observability, ObservabilitySnapshot
from mdstream.plugins.plugin import LifecycleContext, Plugin, RenderHookContext, SecurityPolicy


logger = get_logger(__name__)

SECURITY_POLICY_OWNER = "security-policy"


class PluginConflictError(RuntimeError):
    """Raised while building the registry when a plugin with strategy 'error' rebinds a type."""

    def __init__(self, record: ConflictRecord):
        self.record = record
        super().__init__(
            f"Plugin '{record.plugin_name}' cannot bind '{record.block_type}': "
            f"already bound by '{record.existing_plugin_name}'"
        )


@dataclass(frozen=True)
class MatcherEntry:
    plugin_name: str
    matcher: Optional[Callable[[Block], bool]]
    resolver: Optional[Callable[[Block], Optional[str]]]
    components: Mapping[str, Any]


@dataclass(frozen=True)
class PluginRegistry:
    """Immutable result of merging plugins in order."""
    plugins: tuple[Plugin, ...]
    component_map: Mapping[str, Any]
    owners: Mapping[str, str]
    matchers: tuple[MatcherEntry, ...]
    parser_extensions: tuple[RegisteredExtension, ...]
    inline_extensions: tuple[RegisteredExtension, ...]
    before_render: tuple[tuple[str, Callable], ...]
    after_render: tuple[tuple[str, Callable], ...]
    conflicts: tuple[ConflictRecord, ...]
    security: SecurityPolicy


def sort_plugins(plugins: Iterable[Plugin]) -> list[Plugin]:
    """Sort by order; ties keep declaration order."""
    indexed = list(enumerate(plugins))
    return [p for _, p in sorted(indexed, key=lambda item: (item[1].order, item[0]))]


def build_registry(plugins: Iterable[Plugin], security: Optional[SecurityPolicy] = None) -> PluginRegistry:
    """Merge plugin bindings, extensions and hooks; record every conflict."""
    security = security or SecurityPolicy()
    ordered = sort_plugins(plugins)
    components: dict[str, Any] = {}
    owners: dict[str, str] = {}
    conflicts: list[ConflictRecord] = []
    matchers: list[MatcherEntry] = []
    parser_exts: list[RegisteredExtension] = []
    inline_exts: list[RegisteredExtension] = []
    before: list[tuple[str, Callable]] = []
    after: list[tuple[str, Callable]] = []

    for plugin in ordered:
        for block_type, component in plugin.components.items():
            existing = owners.get(block_type)
            if not security.allow_component_registration(block_type, plugin.name):
                record = ConflictRecord(
                    plugin_name=plugin.name,
                    existing_plugin_name=existing or SECURITY_POLICY_OWNER,
                    block_type=block_type,
                    strategy="preserve",
                )
                conflicts.append(record)
                logger.warning("plugin_registry.binding_rejected", plugin=plugin.name, block_type=block_type)
                continue
            if existing is not None and existing != plugin.name:
                record = ConflictRecord(
                    plugin_name=plugin.name,
                    existing_plugin_name=existing,
                    block_type=block_type,
                    strategy=plugin.override_strategy,
                )
                conflicts.append(record)
                logger.info("plugin_registry.conflict", **record.model_dump())
                if plugin.override_strategy == "error":
                    raise PluginConflictError(record)
                if plugin.override_strategy == "preserve":
                    continue
            components[block_type] = component
            owners[block_type] = plugin.name

        if plugin.block_matcher is not None or plugin.block_resolver is not None:
            matchers.append(MatcherEntry(
                plugin_name=plugin.name,
                matcher=plugin.block_matcher,
                resolver=plugin.block_resolver,
                components=MappingProxyType(dict(plugin.components)),
            ))
        parser_exts += [RegisteredExtension(plugin.name, ext) for ext in plugin.parser_extensions]
        inline_exts += [RegisteredExtension(plugin.name, ext) for ext in plugin.inline_parser_extensions]
        if plugin.before_render is not None:
            before.append((plugin.name, plugin.before_render))
        if plugin.after_render is not None:
            after.append((plugin.name, plugin.after_render))

    return PluginRegistry(
        plugins=tuple(ordered),
        component_map=MappingProxyType(components),
        owners=MappingProxyType(owners),
        matchers=tuple(matchers),
        parser_extensions=tuple(parser_exts),
        inline_extensions=tuple(inline_exts),
        before_render=tuple(before),
        after_render=tuple(after),
        conflicts=tuple(conflicts),
        security=security,
    )


class PluginRuntime:
    """Owns the registry, observability counters and plugin lifecycle."""

    def __init__(self, plugins: Iterable[Plugin] = (), security: Optional[SecurityPolicy] = None):
        self.registry = build_registry(plugins, security)
        self.observability = Observability(self.registry.conflicts)
        self._cleanups: list[tuple[str, Callable[[], None]]] = []
        self._initialized = False

    @property
    def conflicts(self) -> tuple[ConflictRecord, ...]:
        return self.registry.conflicts

    def snapshot(self) -> ObservabilitySnapshot:
        return self.observability.snapshot()

    def create_parser(self, preset: str = 'gfm-like') -> BlockParser:
        """Build a BlockParser wired to the registered extensions and security policy."""
        return BlockParser(
            preset,
            parser_extensions=self.registry.parser_extensions,
            inline_extensions=self.registry.inline_extensions,
            security=self.registry.security,
            observability=self.observability,
        )

    def _guarded(self, plugin_name: str, event: str, fn: Callable, *args) -> Any:
        try:
            return fn(*args)
        except Exception as e:
            self.observability.increment("errors", plugin_name)
            logger.warning(event, plugin=plugin_name, error=repr(e))
            return None

    # --- lifecycle ---

    def initialize(self) -> None:
        """Run on_init hooks in plugin order; a callable returned by a hook becomes a cleanup."""
        if self._initialized:
            return
        self._initialized = True
        for plugin in self.registry.plugins:
            if plugin.on_init is None:
                continue
            self.observability.increment("lifecycle_init_calls", plugin.name)
            ctx = LifecycleContext(
                plugin_name=plugin.name,
                observability=self.observability,
                register_cleanup=lambda fn, name=plugin.name: self._cleanups.append((name, fn)),
            )
            result = self._guarded(plugin.name, "plugin_runtime.init_failed", plugin.on_init, ctx)
            if callable(result):
                self._cleanups.append((plugin.name, result))

    def destroy(self) -> None:
        """Run on_destroy hooks in reverse plugin order, then cleanups in reverse registration order."""
        if not self._initialized:
            return
        for plugin in reversed(self.registry.plugins):
            if plugin.on_destroy is None:
                continue
            self.observability.increment("lifecycle_destroy_calls", plugin.name)
            ctx = LifecycleContext(
                plugin_name=plugin.name,
                observability=self.observability,
                register_cleanup=lambda fn: None,
            )
            self._guarded(plugin.name, "plugin_runtime.destroy_failed", plugin.on_destroy, ctx)
        cleanups, self._cleanups = self._cleanups, []
        for name, cleanup in reversed(cleanups):
            self._guarded(name, "plugin_runtime.cleanup_failed", cleanup)
        self._initialized = False

    # --- rendering ---

    def run_before_render(self, ctx: RenderHookContext) -> None:
        for name, hook in self.registry.before_render:
            self.observability.increment("before_render_calls", name)
            self._guarded(name, "plugin_runtime.hook_failed", hook, ctx)

    def run_after_render(self, ctx: RenderHookContext) -> None:
        for name, hook in self.registry.after_render:
            self.observability.increment("after_render_calls", name)
            self._guarded(name, "plugin_runtime.hook_failed", hook, ctx)

    def _lookup(self, block_type: Optional[str], entry: MatcherEntry) -> Any:
        if not block_type:
            return None
        return self.registry.component_map.get(block_type) or entry.components.get(block_type)

    def resolve_component(self, block: Block) -> Any:
        """Matcher entries in plugin order, then the type map, then unknown, then paragraph."""
        for entry in self.registry.matchers:
            try:
                if entry.matcher is not None and not entry.matcher(block):
                    continue
                resolved_type = entry.resolver(block) if entry.resolver is not None else None
            except Exception as e:
                self.observability.increment("errors", entry.plugin_name)
                logger.warning("plugin_runtime.matcher_failed", plugin=entry.plugin_name, error=repr(e))
                continue
            resolved = self._lookup(resolved_type, entry)
            if resolved is not None:
                return resolved
            if entry.matcher is not None and entry.components:
                return next(iter(entry.components.values()))

        component_map = self.registry.component_map
        for block_type in (block.type, BlockType.unknown.value, BlockType.paragraph.value):
            if block_type in component_map:
                return component_map[block_type]
        return None

    def render_blocks(self, blocks: list[Block], inputs: Optional[dict[str, Any]] = None) -> list[str]:
        """Render blocks with their resolved components, wrapped in before/after render hooks."""
        out = []
        for index, block in enumerate(blocks):
            component = self.resolve_component(block)
            ctx = RenderHookContext(
                block=block,
                is_complete=block.is_complete,
                block_index=index,
                component=component,
                inputs=dict(inputs or {}),
            )
            self.run_before_render(ctx)
            out.append(component(block) if component is not None else block.content)
            self.run_after_render(ctx)
        return out


def create_plugin_runtime(
    plugins: Iterable[Plugin] = (),
    security: Optional[SecurityPolicy] = None,
    include_builtin: bool = True,
    ) -> PluginRuntime:
    """Build a runtime, placing the builtin renderers ahead of the given plugins."""
    plugins = list(plugins)
    if include_builtin:
        plugins.insert(0, builtin_plugin())
    return PluginRuntime(plugins, security)
