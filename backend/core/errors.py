"""Domain error taxonomy.

Every error carries a ``kind`` and an HTTP-style ``status_code`` but does not
depend on the transport; ``main.py`` renders them into JSON responses.
"""


class ApiError(Exception):
    kind = "InternalFault"
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": self.kind, "success": False}


class NotFoundError(ApiError):
    kind = "NotFound"
    status_code = 404
    default_message = "Resource not found"


class ConflictError(ApiError):
    kind = "Conflict"
    status_code = 409
    default_message = "Resource already exists"


class InvalidCredentialError(ApiError):
    kind = "InvalidCredential"
    status_code = 401
    default_message = "Invalid user credentials"


class MissingTokenError(ApiError):
    kind = "MissingToken"
    status_code = 401
    default_message = "Unauthorized request"


class InvalidTokenError(ApiError):
    kind = "InvalidToken"
    status_code = 401
    default_message = "Invalid token"


class StaleTokenError(ApiError):
    kind = "StaleToken"
    status_code = 401
    default_message = "Refresh token is expired or used"


class ValidationFailure(ApiError):
    kind = "ValidationFailure"
    status_code = 400
    default_message = "Invalid request"


class UpstreamFailure(ApiError):
    kind = "UpstreamFailure"
    status_code = 502
    default_message = "Upstream service failure"


class TokenIssuanceError(UpstreamFailure):
    kind = "TokenIssuanceFailure"
    status_code = 500
    default_message = "Something went wrong while generating access and refresh tokens"


class InternalFault(ApiError):
    pass
