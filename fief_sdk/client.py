"""
Fief client: authorization URL, code and refresh-token exchange, token validation, profile API.
Fief is synchronous (httpx.Client), FiefAsync asynchronous (httpx.AsyncClient); BaseFief holds
everything that does no I/O. Pass http_client to control transport, timeouts, proxies;
otherwise the client creates (and closes) its own.
"""
import logging
from urllib.parse import urlencode

import httpx
from jwt import PyJWKSet

from fief_sdk import config
from fief_sdk.discovery import AsyncDiscoveryCache, DiscoveryCache
from fief_sdk.models import AccessTokenInfo, FiefACR, ProviderMetadata, TokenSet, UserProfile
from fief_sdk.tokens import decode_id_token, load_encryption_key, validate_access_token
from fief_sdk.transport import create_async_client, create_client, raise_for_error

logger = logging.getLogger(__name__)

PROFILE_PATH = "/api/profile"
PASSWORD_PATH = "/api/password"
EMAIL_CHANGE_PATH = "/api/email/change"
EMAIL_VERIFY_PATH = "/api/email/verify"
LOGOUT_PATH = "/logout"


class BaseFief:
    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str | None = None,
        *,
        encryption_key: str | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.encryption_key = load_encryption_key(encryption_key) if encryption_key else None

    @classmethod
    def from_env(cls, **kwargs):
        """Build a client from FIEF_* environment settings (see fief_sdk.config)."""
        if not config.BASE_URL or not config.CLIENT_ID:
            raise ValueError("FIEF_BASE_URL and FIEF_CLIENT_ID are required")
        return cls(
            config.BASE_URL,
            config.CLIENT_ID,
            config.CLIENT_SECRET,
            encryption_key=config.ENCRYPTION_KEY,
            **kwargs,
        )

    def _build_auth_url(
        self,
        metadata: ProviderMetadata,
        redirect_uri: str,
        *,
        state: str | None = None,
        scope: list[str] | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        lang: str | None = None,
        extras_params: dict[str, str] | None = None,
    ) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
        }
        if state:
            params["state"] = state
        if code_challenge:
            params["code_challenge"] = code_challenge
        if code_challenge_method:
            params["code_challenge_method"] = code_challenge_method
        if scope:
            params["scope"] = " ".join(scope)
        if lang:
            params["lang"] = lang
        # Extras last so callers can override anything above
        if extras_params:
            params.update(extras_params)
        return f"{metadata['authorization_endpoint']}?{urlencode(params)}"

    def _auth_callback_payload(self, code: str, redirect_uri: str, code_verifier: str | None) -> dict:
        payload = {
            "grant_type": "authorization_code",
            "client_id": self.client_id,
            "code": code,
            "redirect_uri": redirect_uri,
        }
        if self.client_secret:
            payload["client_secret"] = self.client_secret
        if code_verifier:
            payload["code_verifier"] = code_verifier
        return payload

    def _refresh_token_payload(self, refresh_token: str, scope: list[str] | None) -> dict:
        payload = {
            "grant_type": "refresh_token",
            "client_id": self.client_id,
            "refresh_token": refresh_token,
        }
        if self.client_secret:
            payload["client_secret"] = self.client_secret
        if scope:
            payload["scope"] = " ".join(scope)
        return payload

    def _decode_id_token(
        self,
        id_token: str,
        signing_keys: PyJWKSet,
        code: str | None = None,
        access_token: str | None = None,
    ) -> UserProfile:
        return decode_id_token(
            id_token,
            signing_keys,
            code=code,
            access_token=access_token,
            encryption_key=self.encryption_key,
        )

    @staticmethod
    def _bearer(access_token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    def logout_url(self, redirect_uri: str) -> str:
        """
        URL of the provider logout page; the provider clears its own session and redirects
        to redirect_uri. Clearing the application's session is the caller's job.
        """
        return f"{self.base_url}{LOGOUT_PATH}?{urlencode({'redirect_uri': redirect_uri})}"


class Fief(BaseFief):
    """
    Synchronous Fief client.

        fief = Fief("https://example.fief.dev", "CLIENT_ID", "CLIENT_SECRET")
        url = fief.auth_url("http://localhost:8000/callback", scope=["openid"])
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str | None = None,
        *,
        encryption_key: str | None = None,
        http_client: httpx.Client | None = None,
        timeout: float = config.HTTP_TIMEOUT,
    ):
        super().__init__(base_url, client_id, client_secret, encryption_key=encryption_key)
        self._owns_http_client = http_client is None
        self.http_client = http_client if http_client is not None else create_client(timeout=timeout)
        self.discovery = DiscoveryCache(self.http_client, self.base_url)

    def close(self) -> None:
        if self._owns_http_client:
            self.http_client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    def refresh_discovery(self) -> None:
        """Drop cached OpenID configuration and JWKS; next call refetches them."""
        self.discovery.refresh()

    def auth_url(
        self,
        redirect_uri: str,
        *,
        state: str | None = None,
        scope: list[str] | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        lang: str | None = None,
        extras_params: dict[str, str] | None = None,
    ) -> str:
        """Authorization URL to redirect the user to."""
        return self._build_auth_url(
            self.discovery.get_provider_metadata(),
            redirect_uri,
            state=state,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            lang=lang,
            extras_params=extras_params,
        )

    def auth_callback(
        self, code: str, redirect_uri: str, code_verifier: str | None = None
    ) -> tuple[TokenSet, UserProfile]:
        """
        Exchange an authorization code for tokens. redirect_uri must be the one given to auth_url,
        code_verifier the one whose challenge was sent there.
        """
        metadata = self.discovery.get_provider_metadata()
        response = self.http_client.post(
            metadata["token_endpoint"],
            data=self._auth_callback_payload(code, redirect_uri, code_verifier),
        )
        raise_for_error(response)
        tokens: TokenSet = response.json()
        userinfo = self._decode_id_token(
            tokens["id_token"],
            self.discovery.get_signing_keys(),
            code=code,
            access_token=tokens["access_token"],
        )
        logger.info("Authorization code exchanged for sub=%s", userinfo.get("sub"))
        return tokens, userinfo

    def auth_refresh_token(
        self, refresh_token: str, scope: list[str] | None = None
    ) -> tuple[TokenSet, UserProfile]:
        """Fresh tokens from a refresh token. scope, if given, must be a subset of the original."""
        metadata = self.discovery.get_provider_metadata()
        response = self.http_client.post(
            metadata["token_endpoint"],
            data=self._refresh_token_payload(refresh_token, scope),
        )
        raise_for_error(response)
        tokens: TokenSet = response.json()
        userinfo = self._decode_id_token(
            tokens["id_token"],
            self.discovery.get_signing_keys(),
            access_token=tokens["access_token"],
        )
        logger.info("refresh_token grant: new tokens for sub=%s", userinfo.get("sub"))
        return tokens, userinfo

    def validate_access_token(
        self,
        access_token: str,
        required_scope: list[str] | None = None,
        required_acr: FiefACR | str | None = None,
        required_permissions: list[str] | None = None,
    ) -> AccessTokenInfo:
        return validate_access_token(
            access_token,
            self.discovery.get_signing_keys(),
            required_scope=required_scope,
            required_acr=required_acr,
            required_permissions=required_permissions,
        )

    def decode_id_token(
        self,
        id_token: str,
        signing_keys: PyJWKSet,
        *,
        code: str | None = None,
        access_token: str | None = None,
    ) -> UserProfile:
        return self._decode_id_token(id_token, signing_keys, code=code, access_token=access_token)

    def userinfo(self, access_token: str) -> UserProfile:
        """Fresh user information from the userinfo endpoint."""
        metadata = self.discovery.get_provider_metadata()
        response = self.http_client.get(metadata["userinfo_endpoint"], headers=self._bearer(access_token))
        raise_for_error(response)
        return response.json()

    def _profile_request(self, method: str, path: str, access_token: str, data: dict) -> UserProfile:
        response = self.http_client.request(
            method, f"{self.base_url}{path}", json=data, headers=self._bearer(access_token)
        )
        raise_for_error(response)
        return response.json()

    def update_profile(self, access_token: str, data: dict) -> UserProfile:
        """User field values go nested under "fields", keyed by slug."""
        return self._profile_request("PATCH", PROFILE_PATH, access_token, data)

    def change_password(self, access_token: str, new_password: str) -> UserProfile:
        """Requires an access token with ACR level 1."""
        return self._profile_request("PATCH", PASSWORD_PATH, access_token, {"password": new_password})

    def email_change(self, access_token: str, email: str) -> UserProfile:
        """Start an email change; the user receives a code to pass to email_verify. ACR level 1."""
        return self._profile_request("PATCH", EMAIL_CHANGE_PATH, access_token, {"email": email})

    def email_verify(self, access_token: str, code: str) -> UserProfile:
        return self._profile_request("POST", EMAIL_VERIFY_PATH, access_token, {"code": code})


class FiefAsync(BaseFief):
    """Asynchronous Fief client; same operations as Fief, awaitable."""

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str | None = None,
        *,
        encryption_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = config.HTTP_TIMEOUT,
    ):
        super().__init__(base_url, client_id, client_secret, encryption_key=encryption_key)
        self._owns_http_client = http_client is None
        self.http_client = http_client if http_client is not None else create_async_client(timeout=timeout)
        self.discovery = AsyncDiscoveryCache(self.http_client, self.base_url)

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    def refresh_discovery(self) -> None:
        self.discovery.refresh()

    async def auth_url(
        self,
        redirect_uri: str,
        *,
        state: str | None = None,
        scope: list[str] | None = None,
        code_challenge: str | None = None,
        code_challenge_method: str | None = None,
        lang: str | None = None,
        extras_params: dict[str, str] | None = None,
    ) -> str:
        return self._build_auth_url(
            await self.discovery.get_provider_metadata(),
            redirect_uri,
            state=state,
            scope=scope,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            lang=lang,
            extras_params=extras_params,
        )

    async def auth_callback(
        self, code: str, redirect_uri: str, code_verifier: str | None = None
    ) -> tuple[TokenSet, UserProfile]:
        metadata = await self.discovery.get_provider_metadata()
        response = await self.http_client.post(
            metadata["token_endpoint"],
            data=self._auth_callback_payload(code, redirect_uri, code_verifier),
        )
        raise_for_error(response)
        tokens: TokenSet = response.json()
        userinfo = self._decode_id_token(
            tokens["id_token"],
            await self.discovery.get_signing_keys(),
            code=code,
            access_token=tokens["access_token"],
        )
        logger.info("Authorization code exchanged for sub=%s", userinfo.get("sub"))
        return tokens, userinfo

    async def auth_refresh_token(
        self, refresh_token: str, scope: list[str] | None = None
    ) -> tuple[TokenSet, UserProfile]:
        metadata = await self.discovery.get_provider_metadata()
        response = await self.http_client.post(
            metadata["token_endpoint"],
            data=self._refresh_token_payload(refresh_token, scope),
        )
        raise_for_error(response)
        tokens: TokenSet = response.json()
        userinfo = self._decode_id_token(
            tokens["id_token"],
            await self.discovery.get_signing_keys(),
            access_token=tokens["access_token"],
        )
        logger.info("refresh_token grant: new tokens for sub=%s", userinfo.get("sub"))
        return tokens, userinfo

    async def validate_access_token(
        self,
        access_token: str,
        required_scope: list[str] | None = None,
        required_acr: FiefACR | str | None = None,
        required_permissions: list[str] | None = None,
    ) -> AccessTokenInfo:
        return validate_access_token(
            access_token,
            await self.discovery.get_signing_keys(),
            required_scope=required_scope,
            required_acr=required_acr,
            required_permissions=required_permissions,
        )

    def decode_id_token(
        self,
        id_token: str,
        signing_keys: PyJWKSet,
        *,
        code: str | None = None,
        access_token: str | None = None,
    ) -> UserProfile:
        return self._decode_id_token(id_token, signing_keys, code=code, access_token=access_token)

    async def userinfo(self, access_token: str) -> UserProfile:
        metadata = await self.discovery.get_provider_metadata()
        response = await self.http_client.get(metadata["userinfo_endpoint"], headers=self._bearer(access_token))
        raise_for_error(response)
        return response.json()

    async def _profile_request(self, method: str, path: str, access_token: str, data: dict) -> UserProfile:
        response = await self.http_client.request(
            method, f"{self.base_url}{path}", json=data, headers=self._bearer(access_token)
        )
        raise_for_error(response)
        return response.json()

    async def update_profile(self, access_token: str, data: dict) -> UserProfile:
        return await self._profile_request("PATCH", PROFILE_PATH, access_token, data)

    async def change_password(self, access_token: str, new_password: str) -> UserProfile:
        return await self._profile_request("PATCH", PASSWORD_PATH, access_token, {"password": new_password})

    async def email_change(self, access_token: str, email: str) -> UserProfile:
        return await self._profile_request("PATCH", EMAIL_CHANGE_PATH, access_token, {"email": email})

    async def email_verify(self, access_token: str, code: str) -> UserProfile:
        return await self._profile_request("POST", EMAIL_VERIFY_PATH, access_token, {"code": code})
