"""
Request authentication for server applications.
A token getter pulls the credential out of the incoming request, the client validates it
against the route's policy, and token-level errors become Unauthorized / Forbidden.
Framework adapters (see fastapi_auth) build on FiefAuth / FiefAsyncAuth.
"""
import inspect
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from starlette.requests import cookie_parser

from fief_sdk.client import Fief, FiefAsync
from fief_sdk.config import SESSION_COOKIE_NAME, USERINFO_CACHE_TTL
from fief_sdk.errors import (
    AccessTokenErrorKind,
    FiefAccessTokenError,
    FiefAuthForbidden,
    FiefAuthUnauthorized,
)
from fief_sdk.models import AuthenticationOutcome, FiefACR, UserProfile, parse_acr

logger = logging.getLogger(__name__)

TokenGetter = Callable[[Any], str | None]


class RequestOutcome(Enum):
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"


def request_outcome(kind: AccessTokenErrorKind, optional: bool) -> RequestOutcome | None:
    """
    Map an access-token error kind to the request outcome. None means the error propagates as is.
    Policy failures are always Forbidden: a credential was presented, so the policy applies.
    """
    if kind in (AccessTokenErrorKind.INVALID, AccessTokenErrorKind.EXPIRED):
        return None if optional else RequestOutcome.UNAUTHORIZED
    if kind in (
        AccessTokenErrorKind.MISSING_SCOPE,
        AccessTokenErrorKind.ACR_TOO_LOW,
        AccessTokenErrorKind.MISSING_PERMISSION,
    ):
        return RequestOutcome.FORBIDDEN
    raise ValueError(f"Unhandled access token error kind: {kind!r}")


def _raise_for_outcome(error: FiefAccessTokenError, optional: bool) -> None:
    outcome = request_outcome(error.kind, optional)
    if outcome is RequestOutcome.UNAUTHORIZED:
        raise FiefAuthUnauthorized() from error
    if outcome is RequestOutcome.FORBIDDEN:
        raise FiefAuthForbidden() from error
    raise error


def authorization_scheme_getter(scheme: str = "bearer") -> TokenGetter:
    """Token from the Authorization header, e.g. "Bearer <token>". Scheme match is case-insensitive."""

    def _getter(request) -> str | None:
        authorization = request.headers.get("authorization")
        if authorization is None:
            return None
        parts = authorization.split(" ")
        if len(parts) != 2 or parts[0].lower() != scheme.lower():
            return None
        return parts[1]

    return _getter


def cookie_getter(cookie_name: str = SESSION_COOKIE_NAME) -> TokenGetter:
    """Token from a cookie of the Cookie header. Cookies the parser cannot read are skipped, not fatal."""

    def _getter(request) -> str | None:
        cookie_header = request.headers.get("cookie")
        if cookie_header is None:
            return None
        return cookie_parser(cookie_header).get(cookie_name)

    return _getter


class UserInfoCache(Protocol):
    """Per-user cache of user information, keyed by user id. Methods may be sync or async."""

    def get(self, user_id: str) -> UserProfile | None | Awaitable[UserProfile | None]: ...

    def set(self, user_id: str, userinfo: UserProfile) -> None | Awaitable[None]: ...

    def remove(self, user_id: str) -> None | Awaitable[None]: ...

    def clear(self) -> None | Awaitable[None]: ...


class MemoryUserInfoCache:
    """In-process UserInfoCache with a TTL. Single process only; not shared between workers."""

    def __init__(self, ttl: int = USERINFO_CACHE_TTL):
        self.ttl = ttl
        self._entries: dict[str, tuple[UserProfile, float]] = {}

    def get(self, user_id: str) -> UserProfile | None:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        userinfo, stored_at = entry
        if (time.monotonic() - stored_at) > self.ttl:
            del self._entries[user_id]
            return None
        return userinfo

    def set(self, user_id: str, userinfo: UserProfile) -> None:
        self._entries[user_id] = (userinfo, time.monotonic())

    def remove(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class FiefAuth:
    """
    Authenticate requests with a synchronous Fief client.

        auth = FiefAuth(fief, authorization_scheme_getter())
        outcome = auth.authenticate(scope=["openid"])(request)
    """

    def __init__(self, client: Fief, token_getter: TokenGetter, user_info_cache: UserInfoCache | None = None):
        self.client = client
        self.token_getter = token_getter
        self.user_info_cache = user_info_cache

    def authenticate(
        self,
        *,
        optional: bool = False,
        scope: list[str] | None = None,
        acr: FiefACR | str | None = None,
        permissions: list[str] | None = None,
        refresh: bool = False,
    ) -> Callable[[Any], AuthenticationOutcome]:
        """
        Handler resolving a request to its AuthenticationOutcome.
        Raises FiefAuthUnauthorized / FiefAuthForbidden; other errors propagate.
        An unknown acr level raises ValueError here, not per request.
        """
        if acr is not None:
            acr = parse_acr(acr)

        def _authenticate(request) -> AuthenticationOutcome:
            token = self.token_getter(request)
            if token is None:
                if not optional:
                    raise FiefAuthUnauthorized()
                return AuthenticationOutcome()

            try:
                access_token_info = self.client.validate_access_token(token, scope, acr, permissions)
            except FiefAccessTokenError as e:
                _raise_for_outcome(e, optional)

            user = None
            if self.user_info_cache is not None:
                user = self.user_info_cache.get(access_token_info["id"])
                if user is None or refresh:
                    user = self.client.userinfo(access_token_info["access_token"])
                    self.user_info_cache.set(access_token_info["id"], user)
            return AuthenticationOutcome(access_token_info=access_token_info, user=user)

        return _authenticate


class FiefAsyncAuth:
    """Authenticate requests with a FiefAsync client. Token getter and cache may be sync or async."""

    def __init__(
        self, client: FiefAsync, token_getter: TokenGetter, user_info_cache: UserInfoCache | None = None
    ):
        self.client = client
        self.token_getter = token_getter
        self.user_info_cache = user_info_cache

    def authenticate(
        self,
        *,
        optional: bool = False,
        scope: list[str] | None = None,
        acr: FiefACR | str | None = None,
        permissions: list[str] | None = None,
        refresh: bool = False,
    ) -> Callable[[Any], Awaitable[AuthenticationOutcome]]:
        if acr is not None:
            acr = parse_acr(acr)

        async def _authenticate(request) -> AuthenticationOutcome:
            token = await _maybe_await(self.token_getter(request))
            if token is None:
                if not optional:
                    raise FiefAuthUnauthorized()
                return AuthenticationOutcome()

            try:
                access_token_info = await self.client.validate_access_token(token, scope, acr, permissions)
            except FiefAccessTokenError as e:
                _raise_for_outcome(e, optional)

            user = None
            if self.user_info_cache is not None:
                user = await _maybe_await(self.user_info_cache.get(access_token_info["id"]))
                if user is None or refresh:
                    user = await self.client.userinfo(access_token_info["access_token"])
                    await _maybe_await(self.user_info_cache.set(access_token_info["id"], user))
            return AuthenticationOutcome(access_token_info=access_token_info, user=user)

        return _authenticate
