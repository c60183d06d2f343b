from __future__ import annotations


class DashboardError(Exception):
    """Base class for dashboard failures that handlers know how to render."""


class DataSourceError(DashboardError):
    """Connection or query failure talking to the metrics database."""


class RowValidationError(DashboardError):
    """A single result row is unusable; callers skip it and carry on."""

    def __init__(self, message: str, row=None):
        super().__init__(message)
        self.row = row


class AuthenticationFailure(DashboardError):
    """Username/password pair did not match a stored user."""


class SessionError(DashboardError):
    """The session could not be created or torn down."""
