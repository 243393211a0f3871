"""Exception types shared across the Watchtower pipeline."""

from typing import Optional


class WatchtowerError(Exception):
    """Base class for Watchtower errors."""


class RepositoryAccessError(WatchtowerError):
    """
    Raised when the repository host cannot be reached or refuses access.

    Raised from ``check_access`` this is the only error that aborts a run.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ManifestEditError(WatchtowerError):
    """Raised when a manifest cannot be rewritten for a version bump."""


class SourceUnavailableError(WatchtowerError):
    """Raised inside a threat source when its feed cannot be queried."""
