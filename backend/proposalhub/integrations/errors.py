from __future__ import annotations


class EnrichmentError(RuntimeError):
    pass


class LinkedInSessionError(EnrichmentError):
    """No usable LinkedIn browser session; the user has to sign in again."""


class ProviderUnavailable(EnrichmentError):
    """The provider is not configured or did not answer."""
