"""Module-scoped notification dispatch: durable queue, retrying worker pool, channel fan-out."""

__version__ = "1.0.0"
