"""Error taxonomy shared by services, the live gateway and the HTTP layer."""


class PortalError(Exception):
    """Base class for errors surfaced to the caller of a core operation."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotAuthorized(PortalError):
    """Caller has no standing for the target conversation or notification."""

    status_code = 403


class NotFound(PortalError):
    status_code = 404


class ValidationError(PortalError):
    """Malformed input detected by the core (not by request schemas)."""

    status_code = 400


class StorageError(PortalError):
    """Persistence failure. Retryable; nothing was partially written."""

    status_code = 503


class DeliveryWarning(PortalError):
    """Live push or email failure. Logged only, never raised to a caller."""

    def __init__(self, message: str, target: str) -> None:
        super().__init__(message)
        self.target = target
