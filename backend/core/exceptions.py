class PortalError(Exception):
    """Base class for hospital portal errors"""


class StorageError(PortalError):
    pass


class ConcurrentUpdateError(StorageError):
    """Raised when a versioned write keeps losing the compare-and-swap"""


class RecordNotFoundError(PortalError):
    pass


class ValidationError(PortalError):
    """Input rejected before any write; the message is shown to the user"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuthenticationError(PortalError):
    pass


class AuthorizationError(PortalError):
    pass


class SlotUnavailableError(PortalError):
    pass


class InvalidTransitionError(PortalError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move appointment from {current} to {target}")
        self.current = current
        self.target = target
