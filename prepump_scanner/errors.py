from __future__ import annotations

from typing import Optional


class ScannerError(Exception):
    """Base error for the scanner."""


class UpstreamError(ScannerError):
    def __init__(self, message: str, *, status: Optional[int] = None, label: str = ""):
        super().__init__(message)
        self.status = status
        self.label = label


class Throttled(UpstreamError):
    """Upstream rate limit hit; recoverable with the shared pause and one retry."""


class TransportFailure(UpstreamError):
    """Network error, timeout, non-2xx or malformed body. Not retried."""


class SymbolListUnavailable(ScannerError):
    """The active symbol universe could not be fetched; the run is abandoned."""
