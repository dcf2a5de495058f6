# relay_provisioning/exceptions.py
from typing import Dict, Optional, Tuple


class RelaySetupError(RuntimeError):
    """
    Base error of the provisioning run.
    Carries the remote operation that failed and the original cause, so the
    message reads like "createEventBus: <cause>" up the call chain.
    """

    def __init__(self, message: str, operation: Optional[str] = None, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation}: {message}" if operation else message)


class RecordNotFoundError(RelaySetupError, LookupError):
    """Query returned zero records."""


class CreationError(RelaySetupError):
    """Remote create returned no identifier."""


class HttpStatusError(RelaySetupError):
    def __init__(self, status: int, message: str = "", operation: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        self.status = status
        super().__init__(f"HTTP error! Status: {status} {message}".rstrip(), operation, cause)


class AuthExpiredError(HttpStatusError):
    def __init__(self, message: str = "session expired", operation: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(401, message, operation, cause)


class AuthRefreshError(RelaySetupError):
    """Refresh token grant did not return an access token."""


class TokenExchangeError(AuthRefreshError):
    """Authorization code exchange failed."""


class RetryBoundExceededError(RelaySetupError):
    def __init__(self, message: str, attempts: int, operation: Optional[str] = None):
        self.attempts = attempts
        super().__init__(message, operation)


class MaxIterationsExceeded(RetryBoundExceededError):
    pass


class SourceNotFoundError(RetryBoundExceededError):
    pass


class ValidationMismatchError(RelaySetupError):
    def __init__(self, mismatches: Dict[str, Tuple[object, object]], operation: Optional[str] = "validateFunctionality"):
        # field -> (sent, observed)
        self.mismatches = mismatches
        fields = ", ".join(sorted(mismatches)) or "payload"
        super().__init__(f"messages do not match ({fields})", operation)


class LogEmptyError(RelaySetupError):
    pass


class EmptyLogGroupError(LogEmptyError):
    pass


class NoEventsError(LogEmptyError):
    pass


class ProvisioningError(RelaySetupError):
    """AWS call failed."""
