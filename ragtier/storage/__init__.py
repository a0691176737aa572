"""Hot and cold vector storage tiers."""

from .base import ColdDriverError, ColdIndexDriver
from .factory import create_cold_driver, create_cold_drivers
from .hot_index import HotIndex, load_hot_index

__all__ = [
    "ColdDriverError",
    "ColdIndexDriver",
    "HotIndex",
    "create_cold_driver",
    "create_cold_drivers",
    "load_hot_index",
]
