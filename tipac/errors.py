from typing import Any, Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def payload(self) -> dict:
        return {"error": self.message}


class InvalidInput(AppError):
    status_code = 400


class Unauthorized(AppError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(AppError):
    status_code = 404


class UpstreamError(AppError):
    """A database or third-party call failed."""
    status_code = 500

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.details = details

    def payload(self) -> dict:
        out = {"error": self.message}
        if self.details:
            out["details"] = self.details
        return out


class AuthError(UpstreamError):
    """Credential exchange with the payment gateway failed."""


class GatewayError(UpstreamError):
    def __init__(self, message: str, *, status: Optional[int] = None,
                 body: Any = None):
        super().__init__(message, details=None if body is None else str(body))
        self.status = status
        self.body = body


class InternalError(AppError):
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
