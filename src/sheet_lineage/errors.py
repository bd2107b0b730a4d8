"""
Exceptions raised while tracing formula lineage.

Host-index gaps, malformed reference tokens and budget truncation are
deliberately *not* exceptions: they are a ``None`` return, a dropped token
and the ``truncated`` flag respectively.
"""


class TraceError(Exception):
    """Base class for everything the tracer raises on purpose."""


class InvalidInputError(TraceError):
    """The trace target is a range or multi-area address, not a single cell."""


class DataSourceError(TraceError):
    """Reading from the workbook failed; the whole trace is aborted."""

    def __init__(self, message: str, address: str | None = None):
        super().__init__(message)
        self.address = address


class TraceCancelledError(TraceError):
    """The caller asked the trace to stop before it finished."""
