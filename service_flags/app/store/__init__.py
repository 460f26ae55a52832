"""
Flag lookup for the evaluation service.

The in-memory store stands in for the persistence layer that owns flag
records; it hands immutable snapshots to the engine.
"""

from .memory import FlagStore, InMemoryFlagStore

__all__ = ["FlagStore", "InMemoryFlagStore"]
