from __future__ import annotations


class NetworkError(Exception):
    """Transport-level probe failure (timeout, DNS, refused). Message is already normalized."""


class ContentValidationError(Exception):
    def __init__(self, keyword: str) -> None:
        self.keyword = keyword
        super().__init__(f'Keyword "{keyword}" not found in response body')


class SSLInspectionError(Exception):
    pass


class PersistenceError(Exception):
    """A store read or write failed; the current service's remaining steps must not run."""
