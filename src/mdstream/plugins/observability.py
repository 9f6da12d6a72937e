"""Plugin runtime counters and conflict records"""

from collections import Counter
from typing import Optional

from pydantic import BaseModel, ConfigDict


COUNTERS = (
    "lifecycle_init_calls",
    "lifecycle_destroy_calls",
    "before_render_calls",
    "after_render_calls",
    "parser_extension_calls",
    "parser_extension_fallbacks",
    "inline_extension_calls",
    "inline_extension_fallbacks",
    "errors",
)


class ConflictRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    plugin_name: str
    existing_plugin_name: str
    block_type: str
    strategy: str


class ObservabilitySnapshot(BaseModel):
    """Immutable copy of the counters at one point in time."""
    model_config = ConfigDict(frozen=True)

    counters: dict[str, int]
    plugins: dict[str, dict[str, int]]
    conflicts: tuple[ConflictRecord, ...]


class Observability:
    """Aggregate and per-plugin counters; the only mutable state shared with plugins."""

    def __init__(self, conflicts: tuple[ConflictRecord, ...] = ()):
        self.conflicts = tuple(conflicts)
        self._totals: Counter = Counter()
        self._per_plugin: dict[str, Counter] = {}

    def increment(self, counter: str, plugin_name: Optional[str] = None) -> None:
        if counter not in COUNTERS:
            raise KeyError(f"Unknown counter: {counter}")
        self._totals[counter] += 1
        if plugin_name:
            self._per_plugin.setdefault(plugin_name, Counter())[counter] += 1

    def count(self, counter: str, plugin_name: Optional[str] = None) -> int:
        if plugin_name:
            return self._per_plugin.get(plugin_name, Counter())[counter]
        return self._totals[counter]

    def snapshot(self) -> ObservabilitySnapshot:
        return ObservabilitySnapshot(
            counters={name: self._totals[name] for name in COUNTERS},
            plugins={
                plugin: {name: counts[name] for name in COUNTERS}
                for plugin, counts in self._per_plugin.items()
            },
            conflicts=self.conflicts,
        )
