"""
Exception hierarchy for the enrichment engine.
"""
from typing import Optional


class IngestError(Exception):
    """Base class for all engine errors."""


class UpstreamError(IngestError):
    """An external call failed: bad status, bad payload or transport error."""

    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class RateLimitedError(UpstreamError):
    """Upstream kept answering 429 after every retry."""


class SeedingError(IngestError):
    """Discovering the candidate universe failed; nothing was stored."""


class NotSeededError(IngestError):
    """A snapshot was requested before the candidate store exists."""


class PersistenceError(IngestError):
    """Reading or writing durable state failed."""


class CodecError(IngestError):
    """A stored candidates blob could not be decoded."""


class EnrichmentError(IngestError):
    """One enrichment step failed for a candidate."""

    def __init__(self, message: str, candidate: str, step: str):
        super().__init__(message)
        self.candidate = candidate
        self.step = step
