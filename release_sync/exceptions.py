"""
Exception hierarchy for the release sync engine.

Provider failures are split into transient errors (retried inside the
request pipeline) and terminal errors (surfaced to the caller). Store
faults abort a full sync; everything else is handled per title.
"""

from typing import Optional


class ReleaseSyncError(Exception):
    """Base error for everything raised by this package."""


class ConfigurationError(ReleaseSyncError):
    """Required configuration is missing or invalid."""


class ProviderError(ReleaseSyncError):
    """A call to an external provider failed."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider}: {message}")


class ProviderRateLimitedError(ProviderError):
    """Provider answered 429. Retried by the pipeline."""

    def __init__(self, provider: str, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(provider, "rate limited", status_code=429)


class ProviderServerError(ProviderError):
    """Provider answered 5xx (or any other unexpected status). Retried by the pipeline."""


class ProviderUnavailableError(ProviderError):
    """Retry budget exhausted for a transient failure."""


class ProviderAuthError(ProviderError):
    """Credentials were rejected. Never retried."""


class TranslationError(ReleaseSyncError):
    """A provider record could not be translated into a candidate date."""


class StoreError(ReleaseSyncError):
    """The persisted calendar store is unreachable or rejected a write."""


class SyncAlreadyRunningError(ReleaseSyncError):
    """A full sync is already running for this owner."""

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"Full sync already running for owner {owner_id}")
