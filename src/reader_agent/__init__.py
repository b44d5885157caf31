"""Reader Agent: retrieval and orchestration core."""

from .cache import LRUCache, generate_cache_key
from .config import CacheConfig, OrchestratorConfig, RetrievalConfig, Settings, ToolSessionConfig

__all__ = [
    "CacheConfig",
    "LRUCache",
    "OrchestratorConfig",
    "RetrievalConfig",
    "Settings",
    "ToolSessionConfig",
    "generate_cache_key",
]
