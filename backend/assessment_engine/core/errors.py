from fastapi import status


class AttemptEngineError(Exception):
    """Base class for failures surfaced to callers of the attempt engine.

    Each subclass maps to one error kind; `code` is a stable machine-readable
    identifier and `message` the user-facing text.
    """

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_code: str = 'ATTEMPT_ERROR'

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code


class NotFoundError(AttemptEngineError):
    status_code = status.HTTP_404_NOT_FOUND
    default_code = 'NOT_FOUND'


class PolicyViolationError(AttemptEngineError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_code = 'POLICY_VIOLATION'


class AuthorizationDeniedError(AttemptEngineError):
    status_code = status.HTTP_403_FORBIDDEN
    default_code = 'FORBIDDEN'
