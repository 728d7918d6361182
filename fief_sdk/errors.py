"""
Error taxonomy for the Fief SDK.
Access-token errors carry a closed AccessTokenErrorKind tag; server.request_outcome maps it
to the request-level outcome.
"""
from enum import Enum


class AccessTokenErrorKind(str, Enum):
    INVALID = "invalid"
    EXPIRED = "expired"
    MISSING_SCOPE = "missing_scope"
    ACR_TOO_LOW = "acr_too_low"
    MISSING_PERMISSION = "missing_permission"


class FiefError(Exception):
    """Base Fief SDK error."""


class FiefRequestError(FiefError):
    """The provider answered with a non-2xx status. detail is the raw response body."""

    def __init__(self, status: int, detail: str):
        super().__init__(f"[{status}] - {detail}")
        self.status = status
        self.detail = detail


class FiefAccessTokenError(FiefError):
    kind: AccessTokenErrorKind


class FiefAccessTokenInvalid(FiefAccessTokenError):
    """Bad signature, malformed token, or a required claim (scope, acr, permissions) is missing."""

    kind = AccessTokenErrorKind.INVALID


class FiefAccessTokenExpired(FiefAccessTokenError):
    kind = AccessTokenErrorKind.EXPIRED


class FiefAccessTokenMissingScope(FiefAccessTokenError):
    kind = AccessTokenErrorKind.MISSING_SCOPE


class FiefAccessTokenACRTooLow(FiefAccessTokenError):
    kind = AccessTokenErrorKind.ACR_TOO_LOW


class FiefAccessTokenMissingPermission(FiefAccessTokenError):
    kind = AccessTokenErrorKind.MISSING_PERMISSION


class FiefIdTokenInvalid(FiefError):
    """ID token failed decryption, signature verification, or c_hash/at_hash binding."""


class CryptoHelperError(FiefError):
    pass


class InvalidMethod(CryptoHelperError):
    """Unsupported PKCE code challenge method."""

    def __init__(self, method: str):
        super().__init__(f'Invalid method "{method}". Allowed methods are: plain, S256')
        self.method = method


class FiefAuthError(FiefError):
    """Request-level authentication outcome raised by the request adapters and session façade."""


class FiefAuthUnauthorized(FiefAuthError):
    pass


class FiefAuthForbidden(FiefAuthError):
    pass


class FiefAuthAuthorizeError(FiefAuthError):
    """The provider redirected back with an error (or without a code)."""

    def __init__(self, error: str, description: str | None = None):
        super().__init__(f"{error}: {description}" if description else error)
        self.error = error
        self.description = description


class FiefAuthNotAuthenticatedError(FiefAuthError):
    pass
