
class ServiceDeskError(Exception):
    """Base class for errors raised by the service desk core."""
    pass


class ValidationError(ServiceDeskError):
    """Raised when required input is missing or invalid (e.g. no service type)."""
    pass


class NotFoundError(ServiceDeskError):
    """Raised when a customer, session or active session cannot be found."""
    pass


class ConflictError(ServiceDeskError):
    """Raised when the operation clashes with current state (duplicate active session, wrong status)."""
    pass


class OptimisticConflict(ServiceDeskError):
    """Raised by the store when a write carries a stale version."""

    def __init__(self, message: str, session_id: int | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class CapacityExceeded(OptimisticConflict):
    """Raised by the store when a promotion would push a service type over its slot limit."""
    pass
