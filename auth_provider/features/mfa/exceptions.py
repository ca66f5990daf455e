from fastapi import status

from auth_provider.platform.exceptions import AppError

INVALID_CODE_MESSAGE = "Invalid verification code"


class VerificationFailed(AppError):
    """
    A submitted code was rejected.

    `reason` keeps the real cause for logs. Not-found, expired and wrong codes
    all share one public message so callers cannot tell which emails hold a
    live code.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    message = INVALID_CODE_MESSAGE
    reason = "failed"


class CodeNotFound(VerificationFailed):
    reason = "not_found"


class CodeExpired(VerificationFailed):
    reason = "expired"


class InvalidCode(VerificationFailed):
    reason = "mismatch"


class TooManyAttempts(VerificationFailed):
    reason = "too_many_attempts"
    message = "Too many invalid attempts. Request a new code."


class CodeAlreadyConsumed(Exception):
    """Raised by the store when a consume lost the race for a row."""

    def __init__(self, code_id: str):
        self.code_id = code_id
        super().__init__(f"Verification code {code_id} is already consumed")
