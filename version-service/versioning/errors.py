"""Exceptions raised by version tracking."""


class APIVersionManagerError(Exception):
    """Base error for version checks, updates and history reads."""


class VersionValidationError(APIVersionManagerError):
    """Request rejected before any network call (blank version, downgrade)."""


class VersionConflictError(APIVersionManagerError):
    """A version record changed between read and write; the caller should retry."""


class VersionCheckError(APIVersionManagerError):
    """A live API returned a payload no version could be derived from."""


class ServiceNotConfiguredError(APIVersionManagerError):
    """The service has no configured client (missing credentials)."""
