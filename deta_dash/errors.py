"""
Error kinds raised by the dashboard pipeline.

The FastAPI entrypoint maps each kind to an HTTP status; nothing here is
retried automatically.
"""

from typing import Optional


class DashboardError(Exception):
    """Base class for every error reported back to the user."""


class UnsupportedFormat(DashboardError):
    pass


class MalformedDataset(DashboardError):
    pass


class ParseError(DashboardError):
    """Structural CSV failure, with the parser's position when it gave one."""

    def __init__(self, detail: str, line: Optional[int] = None):
        self.detail = detail
        self.line = line
        where = f" (line {line})" if line is not None else ""
        super().__init__(f"CSV parsing error{where}: {detail}")


class UpstreamResponseError(DashboardError):
    pass


class UpstreamParseError(DashboardError):
    pass


class PersistenceError(DashboardError):
    pass
