"""
Session façade for applications driving the login redirect themselves.
Persists token set, user information and the PKCE verifier through an AuthStorage;
MemoryAuthStorage keeps a single session in process (tests, CLIs, single-user apps).
"""
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Protocol

import httpx

from fief_sdk.client import Fief
from fief_sdk.config import DEFAULT_SCOPE, TOKEN_REFRESH_BUFFER
from fief_sdk.crypto import generate_pkce
from fief_sdk.errors import (
    FiefAuthAuthorizeError,
    FiefAuthNotAuthenticatedError,
    FiefIdTokenInvalid,
    FiefRequestError,
)
from fief_sdk.models import TokenSet, UserProfile


class FlowState(Enum):
    START = "start"
    AUTHORIZATION_REQUESTED = "authorization_requested"
    CODE_RECEIVED = "code_received"
    # Passed inside Fief.auth_callback, which exchanges and validates in one call
    TOKEN_EXCHANGED = "token_exchanged"
    VALIDATED = "validated"
    AUTHORIZATION_DENIED = "authorization_denied"
    EXCHANGE_FAILED = "exchange_failed"
    VALIDATION_FAILED = "validation_failed"


logger = logging.getLogger(__name__)


@dataclass
class StoredTokens:
    access_token: str
    id_token: str
    token_type: str
    expires_in: int
    issued_at: float
    refresh_token: str | None = None

    @classmethod
    def from_token_set(cls, tokens: TokenSet, issued_at: float | None = None) -> "StoredTokens":
        return cls(
            access_token=tokens["access_token"],
            id_token=tokens["id_token"],
            token_type=tokens.get("token_type", "bearer"),
            expires_in=tokens.get("expires_in", 0),
            issued_at=time.time() if issued_at is None else issued_at,
            refresh_token=tokens.get("refresh_token"),
        )

    def to_token_set(self) -> TokenSet:
        tokens = TokenSet(
            access_token=self.access_token,
            id_token=self.id_token,
            token_type=self.token_type,
            expires_in=self.expires_in,
        )
        if self.refresh_token:
            tokens["refresh_token"] = self.refresh_token
        return tokens

    def access_token_expired_or_soon(self, buffer_seconds: int = TOKEN_REFRESH_BUFFER) -> bool:
        """
        True if access token is expired or within buffer_seconds of expiry (for proactive refresh).
        When token lifetime is shorter than buffer_seconds, only return True when actually expired.
        """
        elapsed = time.time() - self.issued_at
        if elapsed >= self.expires_in:
            return True
        if self.expires_in > buffer_seconds and elapsed >= (self.expires_in - buffer_seconds):
            return True
        return False


class AuthStorage(Protocol):
    """Where the session keeps its state. Every getter returns None when nothing is stored."""

    def get_userinfo(self) -> UserProfile | None: ...

    def set_userinfo(self, userinfo: UserProfile) -> None: ...

    def clear_userinfo(self) -> None: ...

    def get_token_info(self) -> StoredTokens | None: ...

    def set_token_info(self, tokens: TokenSet) -> None: ...

    def clear_token_info(self) -> None: ...

    def get_code_verifier(self) -> str | None: ...

    def set_code_verifier(self, code_verifier: str) -> None: ...

    def clear_code_verifier(self) -> None: ...


class MemoryAuthStorage:
    def __init__(self):
        self._userinfo: UserProfile | None = None
        self._tokens: StoredTokens | None = None
        self._code_verifier: str | None = None

    def get_userinfo(self) -> UserProfile | None:
        return self._userinfo

    def set_userinfo(self, userinfo: UserProfile) -> None:
        self._userinfo = userinfo

    def clear_userinfo(self) -> None:
        self._userinfo = None

    def get_token_info(self) -> StoredTokens | None:
        return self._tokens

    def set_token_info(self, tokens: TokenSet) -> None:
        self._tokens = StoredTokens.from_token_set(tokens)

    def clear_token_info(self) -> None:
        self._tokens = None

    def get_code_verifier(self) -> str | None:
        return self._code_verifier

    def set_code_verifier(self, code_verifier: str) -> None:
        self._code_verifier = code_verifier

    def clear_code_verifier(self) -> None:
        self._code_verifier = None


class FiefSession:
    """
    Login / callback / logout around a Fief client, PKCE handled automatically.

        session = FiefSession(fief)
        redirect(session.login_url("http://localhost:8000/callback"))
        # ... in the callback handler:
        session.auth_callback("http://localhost:8000/callback", request.query_params)
    """

    def __init__(self, client: Fief, storage: AuthStorage | None = None):
        self.client = client
        self.storage = storage if storage is not None else MemoryAuthStorage()
        self.flow_state = FlowState.START
        # Codes being exchanged; a callback replayed while its exchange runs is refused
        self._pending_codes: set[str] = set()
        self._pending_lock = threading.Lock()

    def is_authenticated(self) -> bool:
        return self.storage.get_token_info() is not None

    def get_userinfo(self) -> UserProfile | None:
        return self.storage.get_userinfo()

    def get_token_info(self) -> StoredTokens | None:
        return self.storage.get_token_info()

    def login_url(
        self,
        redirect_uri: str,
        *,
        state: str | None = None,
        scope: list[str] | None = None,
        lang: str | None = None,
        extras_params: dict[str, str] | None = None,
    ) -> str:
        """Start a login: new PKCE verifier (stored for the callback), authorization URL returned."""
        pkce = generate_pkce("S256")
        self.storage.set_code_verifier(pkce.code_verifier)
        url = self.client.auth_url(
            redirect_uri,
            state=state,
            scope=scope or DEFAULT_SCOPE.split(),
            code_challenge=pkce.code_challenge,
            code_challenge_method=pkce.method,
            lang=lang,
            extras_params=extras_params,
        )
        self.flow_state = FlowState.AUTHORIZATION_REQUESTED
        return url

    def auth_callback(self, redirect_uri: str, params: Mapping[str, str]) -> None:
        """
        Complete the login from the callback query parameters; store tokens and user information.
        The stored verifier is consumed whatever the outcome. A callback for a code whose exchange
        is still running raises FiefAuthAuthorizeError("exchange_in_progress").
        """
        error = params.get("error")
        code = params.get("code")
        if error is not None:
            self.storage.clear_code_verifier()
            self.flow_state = FlowState.AUTHORIZATION_DENIED
            raise FiefAuthAuthorizeError(error, params.get("error_description"))
        if code is None:
            self.storage.clear_code_verifier()
            self.flow_state = FlowState.AUTHORIZATION_DENIED
            raise FiefAuthAuthorizeError("missing_code")
        with self._pending_lock:
            if code in self._pending_codes:
                raise FiefAuthAuthorizeError(
                    "exchange_in_progress", "This authorization code is already being exchanged"
                )
            self._pending_codes.add(code)

        self.flow_state = FlowState.CODE_RECEIVED
        code_verifier = self.storage.get_code_verifier()
        self.storage.clear_code_verifier()
        try:
            tokens, userinfo = self.client.auth_callback(code, redirect_uri, code_verifier)
        except FiefIdTokenInvalid:
            logger.warning("Login callback: ID token rejected")
            self.flow_state = FlowState.VALIDATION_FAILED
            raise
        except (FiefRequestError, httpx.HTTPError) as e:
            logger.warning("Login callback: code exchange failed: %s", e)
            self.flow_state = FlowState.EXCHANGE_FAILED
            raise
        finally:
            with self._pending_lock:
                self._pending_codes.discard(code)

        self.storage.set_token_info(tokens)
        self.storage.set_userinfo(userinfo)
        self.flow_state = FlowState.VALIDATED

    def refresh_userinfo(self) -> UserProfile:
        """Fetch user information with the session's access token and store it."""
        tokens = self.storage.get_token_info()
        if tokens is None:
            raise FiefAuthNotAuthenticatedError()
        userinfo = self.client.userinfo(tokens.access_token)
        self.storage.set_userinfo(userinfo)
        return userinfo

    def refresh_tokens(self, buffer_seconds: int = TOKEN_REFRESH_BUFFER, force: bool = False) -> bool:
        """
        Use the refresh token when the access token is expired or about to be (or always with force).
        Returns True if tokens were refreshed. On refresh failure the session is cleared and
        FiefAuthNotAuthenticatedError raised.
        """
        tokens = self.storage.get_token_info()
        if tokens is None:
            raise FiefAuthNotAuthenticatedError()
        if not force and not tokens.access_token_expired_or_soon(buffer_seconds=buffer_seconds):
            return False
        if not tokens.refresh_token:
            self.clear()
            raise FiefAuthNotAuthenticatedError()
        try:
            new_tokens, userinfo = self.client.auth_refresh_token(tokens.refresh_token)
        except (FiefRequestError, FiefIdTokenInvalid, httpx.HTTPError) as e:
            logger.warning("Token refresh failed; clearing session: %s", e)
            self.clear()
            raise FiefAuthNotAuthenticatedError() from e
        # Provider may keep the refresh token unchanged and omit it from the response
        new_tokens.setdefault("refresh_token", tokens.refresh_token)
        self.storage.set_token_info(new_tokens)
        self.storage.set_userinfo(userinfo)
        return True

    def clear(self) -> None:
        self.storage.clear_userinfo()
        self.storage.clear_token_info()

    def logout_url(self, redirect_uri: str) -> str:
        """Clear the local session and return the provider logout URL to redirect to."""
        self.clear()
        self.flow_state = FlowState.START
        return self.client.logout_url(redirect_uri)
