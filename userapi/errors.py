class OAuthError(Exception):
    """Base class for errors reported to OAuth 2.0 clients (RFC 6749)."""
    code = 500
    error = "server_error"

    def __init__(self, message=None):
        super().__init__(message or self.error)
        self.message = message or self.error

    def to_dict(self):
        return {
            "error": self.error,
            "error_description": self.message,
        }

class InvalidRequestError(OAuthError):
    code = 400
    error = "invalid_request"

class InvalidClientError(OAuthError):
    code = 400
    error = "invalid_client"

class InvalidGrantError(OAuthError):
    code = 400
    error = "invalid_grant"

class UnauthorizedClientError(OAuthError):
    code = 400
    error = "unauthorized_client"

class UnsupportedGrantTypeError(OAuthError):
    code = 400
    error = "unsupported_grant_type"

class InvalidScopeError(OAuthError):
    code = 400
    error = "invalid_scope"

class InvalidTokenError(OAuthError):
    code = 401
    error = "invalid_token"

class UnauthorizedRequestError(OAuthError):
    code = 401
    error = "unauthorized_request"

class InsufficientScopeError(OAuthError):
    code = 403
    error = "insufficient_scope"

class ServerError(OAuthError):
    code = 503
    error = "server_error"

class TokenCollisionError(Exception):
    """An access or refresh token value is already in use."""
