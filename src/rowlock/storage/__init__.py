"""Storage backends implementing the row/cell contract used by locks."""

from .base import MutationBatch, RowMutation, RowStore
from .memory import InMemoryRowStore

__all__ = ["InMemoryRowStore", "MutationBatch", "RowMutation", "RowStore"]
