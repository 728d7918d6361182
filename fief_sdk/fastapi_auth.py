"""
FastAPI integration: route dependencies enforcing a Fief access-token policy.
Unauthorized -> 401 with WWW-Authenticate: Bearer, Forbidden -> 403. On optional routes a
presented but invalid or expired token is also answered with 401.
"""
import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from fief_sdk.client import FiefAsync
from fief_sdk.errors import FiefAccessTokenError, FiefAuthForbidden, FiefAuthUnauthorized
from fief_sdk.models import AuthenticationOutcome, FiefACR, UserProfile
from fief_sdk.server import FiefAsyncAuth, TokenGetter, UserInfoCache

logger = logging.getLogger(__name__)


class FiefFastAPIAuth:
    """
    Example:

        fief = FiefAsync("https://example.fief.dev", "CLIENT_ID", "CLIENT_SECRET")
        auth = FiefFastAPIAuth(fief, authorization_scheme_getter(), MemoryUserInfoCache())

        @app.get("/castles")
        async def castles(outcome: AuthenticationOutcome = Depends(auth.authenticated(permissions=["castles:read"]))):
            ...
    """

    def __init__(
        self,
        client: FiefAsync,
        token_getter: TokenGetter,
        user_info_cache: UserInfoCache | None = None,
    ):
        self.client = client
        self.auth = FiefAsyncAuth(client, token_getter, user_info_cache)

    def authenticated(
        self,
        *,
        optional: bool = False,
        scope: list[str] | None = None,
        acr: FiefACR | str | None = None,
        permissions: list[str] | None = None,
        refresh: bool = False,
    ):
        """Dependency: request -> AuthenticationOutcome, or 401/403."""
        authenticate = self.auth.authenticate(
            optional=optional, scope=scope, acr=acr, permissions=permissions, refresh=refresh
        )

        async def _dependency(request: Request) -> AuthenticationOutcome:
            try:
                return await authenticate(request)
            except (FiefAuthUnauthorized, FiefAccessTokenError):
                logger.debug("Unauthorized request to %s", request.url.path)
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail={"error": "invalid_token", "error_description": "Authentication required"},
                    headers={"WWW-Authenticate": "Bearer"},
                )
            except FiefAuthForbidden:
                logger.debug("Forbidden request to %s", request.url.path)
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail={"error": "insufficient_scope", "error_description": "Access token policy not met"},
                )

        return _dependency

    def current_user(self, *, optional: bool = True, refresh: bool = False):
        """
        Dependency: request -> user information (None when anonymous and optional).
        Without a user info cache, user information is fetched from the provider on every call.
        """
        authenticated = self.authenticated(optional=optional, refresh=refresh)

        async def _dependency(
            outcome: Annotated[AuthenticationOutcome, Depends(authenticated)],
        ) -> UserProfile | None:
            if outcome.user is None and outcome.access_token_info is not None:
                return await self.client.userinfo(outcome.access_token_info["access_token"])
            return outcome.user

        return _dependency
