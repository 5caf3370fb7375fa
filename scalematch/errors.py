"""Exception types raised by the matching pipeline."""

from __future__ import annotations


class ScaleMatchError(RuntimeError):
    """Base class for every error raised by scalematch."""


class InvalidDimensionError(ScaleMatchError, ValueError):
    """A buffer dimension is zero, negative or disagrees with its data."""


class InvalidOptionError(ScaleMatchError, ValueError):
    """A matching option (scale list, scale count, threshold...) is malformed."""


class SelectionOutOfBoundsError(ScaleMatchError, ValueError):
    """A selection rectangle does not fit inside its buffer."""


class AlreadyRunningError(ScaleMatchError):
    """``match()`` was called while another match is still processing."""


class OffloadChannelError(ScaleMatchError):
    """The background offload unit failed to produce a reply."""


class MatchCancelledError(ScaleMatchError):
    """The scale sweep observed a cancellation request."""
