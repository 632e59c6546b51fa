"""Signal source registry — maps source names to classes.

Used by ZoneEngine to instantiate the sources named in configuration.
"""

from zoneforge.config import Config
from zoneforge.strategy.base import (
    SignalSourceProtocol,
    StructureSignalSource,
    ZoneSignalSource,
)


SOURCE_REGISTRY: dict[str, type] = {
    "zone": ZoneSignalSource,
    "structure": StructureSignalSource,
}


def get_source(name: str, config: Config) -> SignalSourceProtocol:
    """Look up and instantiate a signal source by registry key.

    Raises ``KeyError`` if the source name is not registered.
    """
    if name not in SOURCE_REGISTRY:
        raise KeyError(
            f"Unknown signal source '{name}'. "
            f"Available: {', '.join(SOURCE_REGISTRY.keys())}"
        )
    return SOURCE_REGISTRY[name](config)
