"""
Domain errors raised by the service layer.

Routers never build error responses by hand: they let these propagate and
the handler registered in `main` renders them as
`{"ok": false, "error": <code>, "detail": <message>}`.
"""


class AppError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class ValidationFailed(AppError):
    status_code = 400
    code = "validation_failed"


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class AuthError(AppError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class RateLimitError(AppError):
    status_code = 429
    code = "rate_limit_exceeded"


class ProviderUnavailable(AppError):
    status_code = 400
    code = "provider_not_available"


class ModelUnavailable(AppError):
    status_code = 400
    code = "model_not_available"


class AIGenerationError(AppError):
    status_code = 502
    code = "ai_generation_failed"
