"""Persistent configuration storage for termgate."""

from termgate.store.config_store import (
    ConfigStore,
    ConfigurationError,
    PersistenceError,
    parse_policy,
    parse_targets,
)

__all__ = [
    "ConfigStore",
    "ConfigurationError",
    "PersistenceError",
    "parse_policy",
    "parse_targets",
]
