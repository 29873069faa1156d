class DiskSentryError(Exception):
    """Base class for disk sentry errors."""

class ProviderUnavailable(DiskSentryError):
    """The event-subscription or query service cannot be reached or started."""

class SourceMiss(DiskSentryError):
    """A single attribute query or association walk failed. Never surfaced to callers."""

class PreconditionViolation(DiskSentryError, ValueError):
    """Caller supplied an invalid timeout or polling argument."""
