"""Exception types raised by the chat statistics engine.

Readers raise these; the store decides at each boundary whether a failure
skips one chat, triggers a rebuild, or propagates.
"""

from __future__ import annotations


class StatsError(Exception):
    """Base class for all chat statistics errors."""


class MissingFileError(StatsError, FileNotFoundError):
    """A chat directory, chat file or snapshot does not exist."""


class MalformedDataError(StatsError, ValueError):
    """A chat file is empty or its content cannot be parsed."""


class SnapshotCorruptError(StatsError):
    """The persisted collection is unreadable or of another version."""


class AccumulatorConsistencyError(StatsError):
    """A value was removed from an aggregate that never contained it."""


class PersistenceError(StatsError):
    """Writing the stats snapshot failed."""
