"""Snapshot persistence for the last observed roster."""

from .store import JsonStateStore, ReadOnlyStateStore, StateStore

__all__ = ["JsonStateStore", "ReadOnlyStateStore", "StateStore"]
