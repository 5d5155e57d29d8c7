from __future__ import annotations

from typing import Optional


CREDENTIALS_GUIDANCE = (
    "Please check your credentials and ensure the Connected Application is properly configured."
)
RATE_LIMIT_GUIDANCE = (
    "Acumatica has rate limiting in place. Consider adding delays between requests."
)


class AcumaticaError(RuntimeError):
    pass


class AuthenticationError(AcumaticaError):
    def __init__(self, message: str, description: str = CREDENTIALS_GUIDANCE):
        super().__init__(message)
        self.description = description


class RateLimitError(AcumaticaError):
    def __init__(
        self,
        message: str = "Rate limit exceeded. Please wait and try again.",
        *,
        retry_after: Optional[float] = None,
        description: str = RATE_LIMIT_GUIDANCE,
    ):
        super().__init__(message)
        self.retry_after = retry_after
        self.description = description


class ApiError(AcumaticaError):
    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class PollTimeoutError(AcumaticaError):
    pass


class PollFailedError(AcumaticaError):
    pass
