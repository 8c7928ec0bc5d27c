"""Exceptions raised by the location analytics package."""


class LocationAnalyticsError(Exception):
    """Base class for all package errors."""


class InvalidFixError(LocationAnalyticsError, ValueError):
    """A positional fix failed validation and was not recorded."""


class NotFoundError(LocationAnalyticsError, LookupError):
    """A requested pattern or optimization does not exist."""
