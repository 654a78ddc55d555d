"""Keeps storage and the vector index in step with the workspace."""

from codeloom.sync.service import FileChange, SyncEvent, SyncService

__all__ = ["FileChange", "SyncEvent", "SyncService"]
