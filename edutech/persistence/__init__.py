"""
Persistence

Local UI state that survives restarts (filter and column preferences).
"""

from .preferences import MemoryPreferenceStore, PreferenceStore

__all__ = [
    "MemoryPreferenceStore",
    "PreferenceStore",
]
