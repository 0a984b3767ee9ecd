"""
Error kinds raised by the auth core.

Every error carries an internal ``kind`` (kept for logs and metrics) and a
``public_message`` that is safe to return to the client. Kinds that would let a
caller tell "unknown user" from "revoked session" share one public message.
"""

TOKEN_REJECTED_MESSAGE = 'Invalid or expired token'
LOGIN_FAILED_MESSAGE = 'Invalid email or password'


class AuthError(Exception):
    kind = 'AuthError'
    status_code = 500
    public_message = 'Internal server error'

    def __init__(self, detail: str = None, public_message: str = None):
        super().__init__(detail or self.kind)
        self.detail = detail
        if public_message:
            self.public_message = public_message


class StorageError(AuthError):
    """Persistence layer unavailable or failed. Never retried here."""
    kind = 'StorageError'


class AuthenticationError(AuthError):
    """Base for every 401 outcome; optional auth treats these as anonymous."""
    kind = 'AuthenticationError'
    status_code = 401
    public_message = TOKEN_REJECTED_MESSAGE


class MissingToken(AuthenticationError):
    kind = 'MissingToken'
    public_message = 'Access token required'


class InvalidToken(AuthenticationError):
    kind = 'InvalidToken'
    reason = 'invalid'


class MalformedToken(InvalidToken):
    reason = 'malformed'


class InvalidSignature(InvalidToken):
    reason = 'signature'


class TokenExpired(AuthenticationError):
    kind = 'TokenExpired'


class SessionRevoked(AuthenticationError):
    kind = 'SessionRevoked'


class UserNotFound(AuthenticationError):
    kind = 'UserNotFound'


class AccountDisabled(AuthenticationError):
    kind = 'AccountDisabled'


class InvalidCredentials(AuthenticationError):
    kind = 'InvalidCredentials'
    public_message = LOGIN_FAILED_MESSAGE


class Forbidden(AuthError):
    kind = 'Forbidden'
    status_code = 403
    public_message = 'Access denied'


class EmailTaken(AuthError):
    kind = 'EmailTaken'
    status_code = 409
    public_message = 'An account with this email already exists'


class WeakPassword(AuthError):
    kind = 'WeakPassword'
    status_code = 400
    public_message = 'Password must be at least 6 characters long'
