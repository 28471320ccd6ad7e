from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Dict, List, Sequence

from .base import ReportSink

if TYPE_CHECKING:
    from ..config import RunConfig

SinkFactory = Callable[["RunConfig"], ReportSink]


class SinkRegistry:
    """
    Registry mapping sink names (as used in config) to sink factories.
    """

    def __init__(self) -> None:
        self._map: Dict[str, SinkFactory] = {}

    def register(self, name: str, factory: SinkFactory) -> None:
        self._map[name] = factory

    def is_registered(self, name: str) -> bool:
        return name in self._map

    def registered_names(self) -> list[str]:
        return sorted(self._map.keys())

    def get(self, name: str, cfg: RunConfig) -> ReportSink:
        factory = self._map.get(name)
        if factory is None:
            raise KeyError(f"No sink registered for '{name}'")
        return factory(cfg)


_global_registry = SinkRegistry()


def register_sink(name: str, factory: SinkFactory) -> None:
    _global_registry.register(name, factory)


def is_sink_registered(name: str) -> bool:
    return _global_registry.is_registered(name)


def registered_sink_names() -> list[str]:
    return _global_registry.registered_names()


def get_sink(name: str, cfg: RunConfig) -> ReportSink:
    return _global_registry.get(name, cfg)


def build_sinks(names: Sequence[str], cfg: RunConfig) -> List[ReportSink]:
    return [get_sink(name, cfg) for name in names]


def _register_builtin_sinks() -> None:
    from .log import LogSink
    from .xlsx import XlsxSink

    register_sink("log", lambda _cfg: LogSink())
    register_sink("xlsx", lambda cfg: XlsxSink(cfg.output))


_register_builtin_sinks()
