"""Errors raised by the search core.

Only request-scope conditions leave the orchestrator; per-item failures are
converted to in-band error items by the dispatcher.
"""

from __future__ import annotations


class SearchServiceError(Exception):
    """Base class for search core errors."""

    code = "SEARCH_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ScrapeJobTimeoutError(SearchServiceError):
    """A single fetch job did not finish within its timeout."""

    code = "SCRAPE_TIMEOUT"


class SearchTimeoutError(SearchServiceError):
    """The whole request exceeded its deadline."""

    code = "SEARCH_TIMEOUT"


class SearchProviderError(SearchServiceError):
    code = "SEARCH_PROVIDER_ERROR"


class CompletionError(SearchServiceError):
    code = "COMPLETION_ERROR"
