#!/usr/bin/env python3
"""Common error types shared across modules.

Provides lightweight exceptions in one place to avoid circular imports.
"""

from typing import Optional


class FeedAggregatorError(Exception):
    """Base class for all application errors."""


class TransientFetchError(FeedAggregatorError):
    """Raised when fetching a single source fails (network or HTTP status).

    Contained by the ingestion cycle and reported in that source's result.
    Not retried within a cycle.

    Attributes:
        source_id: Identifier of the source that failed.
        status: HTTP status code, when the failure came from a response.
    """

    def __init__(self, source_id: str, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.source_id = source_id
        self.status = status


class ParseError(FeedAggregatorError):
    """Raised for a malformed feed document or feed item.

    Never escapes the parser: the offending item (or whole feed) is dropped.
    """


class ValidationError(FeedAggregatorError):
    """Raised when administrative input is rejected before any store mutation."""


class StoreError(FeedAggregatorError):
    """Raised when a persistence operation fails.

    Attributes:
        operation: Name of the store operation that failed.
    """

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation


__all__ = [
    "FeedAggregatorError",
    "TransientFetchError",
    "ParseError",
    "ValidationError",
    "StoreError",
]
