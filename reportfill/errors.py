from __future__ import annotations


class PayloadError(ValueError):
    """Missing or undecodable request payload. Reported to the caller as a 4xx."""


class AssetNotFoundError(FileNotFoundError):
    """A template or font file could not be found in any search location."""

    def __init__(self, message: str, *, searched: list[str] | None = None):
        super().__init__(message)
        self.searched = list(searched or [])


class ChartFetchError(RuntimeError):
    """The remote chart could not be fetched or decoded. Always recovered locally."""
