"""Registry mapping tool types to adapter factories."""

import logging
from collections.abc import Callable, Iterable

from boostsec.scan_pipeline.adapters.base import ToolAdapter
from boostsec.scan_pipeline.adapters.command import CommandAdapter
from boostsec.scan_pipeline.adapters.fuzz_runner import FuzzRunnerAdapter
from boostsec.scan_pipeline.adapters.static_analysis import StaticAnalysisAdapter
from boostsec.scan_pipeline.adapters.test_runner import TestRunnerAdapter
from boostsec.scan_pipeline.errors import ConfigError
from boostsec.scan_pipeline.models.stage import StageDescriptor

logger = logging.getLogger(__name__)

AdapterFactory = Callable[[], ToolAdapter]


class AdapterRegistry:
    """Adapters registered by tool type name."""

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._factories: dict[str, AdapterFactory] = {}

    def register(self, tool_type: str, factory: AdapterFactory) -> None:
        """Register (or replace) the adapter used for a tool type."""
        if tool_type in self._factories:
            logger.info(f"Replacing adapter registered for '{tool_type}'")
        self._factories[tool_type] = factory

    def get(self, tool_type: str) -> ToolAdapter:
        """Create the adapter for a tool type.

        Raises:
            ConfigError: If no adapter is registered for the tool type

        """
        factory = self._factories.get(tool_type)
        if factory is None:
            raise ConfigError(
                f"No adapter registered for tool type '{tool_type}'. "
                f"Known types: {', '.join(self.tool_types())}"
            )
        return factory()

    def resolve(self, stages: Iterable[StageDescriptor]) -> dict[str, ToolAdapter]:
        """Look up the adapter of every stage, failing before anything runs."""
        return {stage.name: self.get(stage.tool) for stage in stages}

    def tool_types(self) -> list[str]:
        """Return registered tool types."""
        return sorted(self._factories)


def default_registry() -> AdapterRegistry:
    """Build a registry holding the built-in adapters."""
    registry = AdapterRegistry()
    registry.register("static-analysis", StaticAnalysisAdapter)
    registry.register("test-runner", TestRunnerAdapter)
    registry.register("fuzz-runner", FuzzRunnerAdapter)
    registry.register("command", CommandAdapter)
    return registry
