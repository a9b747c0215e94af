class ExamShieldError(Exception):
    """Base error carrying the HTTP status the API layer answers with."""
    status_code = 500
    default_message = "Unexpected server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class AuthenticationError(ExamShieldError):
    status_code = 401
    default_message = "Unauthorized"


class AuthorizationError(ExamShieldError):
    """Valid identity but wrong token, role or attempt state."""
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(ExamShieldError):
    status_code = 404
    default_message = "Not found"


class ValidationError(ExamShieldError):
    status_code = 400
    default_message = "Malformed request"


class InternalError(ExamShieldError):
    status_code = 500
