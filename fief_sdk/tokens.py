"""
Token verification against the provider's JWKS.
Signatures and registered claims (exp, nbf, iat) via PyJWT; encrypted ID tokens are JWE and
decrypted with jwcrypto first. Access tokens are then checked against scope / ACR / permission
requirements, ID tokens against c_hash / at_hash.
"""
import logging

import jwt
from jwcrypto import jwe, jwk
from jwcrypto.common import JWException
from jwt import PyJWK, PyJWKSet

from fief_sdk.crypto import is_valid_hash
from fief_sdk.errors import (
    FiefAccessTokenACRTooLow,
    FiefAccessTokenExpired,
    FiefAccessTokenInvalid,
    FiefAccessTokenMissingPermission,
    FiefAccessTokenMissingScope,
    FiefIdTokenInvalid,
)
from fief_sdk.models import AccessTokenInfo, FiefACR, UserProfile, compare_acr, parse_acr

logger = logging.getLogger(__name__)

# Audience is not verified: the provider only hands these tokens to the client they were issued for
_DECODE_OPTIONS = {"verify_aud": False}


def load_encryption_key(encryption_key: str) -> jwk.JWK:
    """Parse the private JWK (JSON string) used to decrypt ID tokens."""
    return jwk.JWK.from_json(encryption_key)


def decrypt_token(token: str, encryption_key: jwk.JWK) -> str:
    envelope = jwe.JWE()
    envelope.deserialize(token, key=encryption_key)
    return envelope.payload.decode("utf-8")


def _candidate_keys(token: str, signing_keys: PyJWKSet) -> list[PyJWK]:
    """Key named by the header kid; without kid, every key matching the header alg."""
    header = jwt.get_unverified_header(token)
    kid = header.get("kid")
    if kid is not None:
        try:
            return [signing_keys[kid]]
        except KeyError:
            raise jwt.InvalidKeyError(f"No signing key with kid {kid!r}") from None
    alg = header.get("alg")
    keys = [key for key in signing_keys.keys if key.algorithm_name == alg]
    if not keys:
        raise jwt.InvalidKeyError(f"No signing key for alg {alg!r}")
    return keys


def verify_signed_token(token: str, signing_keys: PyJWKSet) -> dict:
    """
    Verify signature and registered claims; return the payload.
    Raises jwt.ExpiredSignatureError only once the signature has been verified,
    any other jwt.PyJWTError for every other failure.
    """
    error: jwt.PyJWTError | None = None
    for key in _candidate_keys(token, signing_keys):
        try:
            return jwt.decode(token, key.key, algorithms=[key.algorithm_name], options=_DECODE_OPTIONS)
        except jwt.InvalidSignatureError as e:
            error = e
    raise error


def validate_access_token(
    access_token: str,
    signing_keys: PyJWKSet,
    required_scope: list[str] | None = None,
    required_acr: FiefACR | str | None = None,
    required_permissions: list[str] | None = None,
) -> AccessTokenInfo:
    """
    Verify an access token and enforce the caller's requirements.
    Failure precedence: expired, invalid (signature/structure, missing scope claim),
    missing scope, invalid acr, ACR too low, missing permissions claim, missing permission.
    """
    try:
        claims = verify_signed_token(access_token, signing_keys)
    except jwt.ExpiredSignatureError as e:
        logger.debug("Access token expired: %s", e)
        raise FiefAccessTokenExpired() from e
    except jwt.PyJWTError as e:
        logger.debug("Access token verification failed: %s", e)
        raise FiefAccessTokenInvalid() from e

    sub = claims.get("sub")
    scope = claims.get("scope")
    if not isinstance(sub, str) or not isinstance(scope, str):
        logger.debug("Access token missing sub or scope claim")
        raise FiefAccessTokenInvalid()
    access_token_scope = scope.split(" ")
    for required in required_scope or []:
        if required not in access_token_scope:
            raise FiefAccessTokenMissingScope()

    try:
        acr = FiefACR(claims.get("acr"))
    except (TypeError, ValueError):
        logger.debug("Access token has missing or unknown acr: %r", claims.get("acr"))
        raise FiefAccessTokenInvalid() from None
    if required_acr is not None and compare_acr(acr, parse_acr(required_acr)) < 0:
        raise FiefAccessTokenACRTooLow()

    permissions = claims.get("permissions")
    if not isinstance(permissions, list):
        logger.debug("Access token missing permissions claim")
        raise FiefAccessTokenInvalid()
    for required in required_permissions or []:
        if required not in permissions:
            raise FiefAccessTokenMissingPermission()

    return AccessTokenInfo(
        id=sub,
        scope=access_token_scope,
        acr=acr,
        permissions=permissions,
        access_token=access_token,
    )


def _hash_matches(value: str | None, claim) -> bool:
    return bool(value) and isinstance(claim, str) and is_valid_hash(value, claim)


def decode_id_token(
    id_token: str,
    signing_keys: PyJWKSet,
    *,
    code: str | None = None,
    access_token: str | None = None,
    encryption_key: jwk.JWK | None = None,
) -> UserProfile:
    """
    Decrypt (when an encryption key is configured) and verify an ID token; return its claims.
    c_hash must match code and at_hash must match access_token whenever the claim is present.
    """
    try:
        signed_token = id_token
        if encryption_key is not None:
            signed_token = decrypt_token(id_token, encryption_key)
        claims = verify_signed_token(signed_token, signing_keys)
    except (jwt.PyJWTError, JWException, ValueError) as e:
        logger.debug("ID token verification failed: %s", e)
        raise FiefIdTokenInvalid() from e

    if "c_hash" in claims and not _hash_matches(code, claims["c_hash"]):
        logger.debug("ID token c_hash does not match authorization code")
        raise FiefIdTokenInvalid()
    if "at_hash" in claims and not _hash_matches(access_token, claims["at_hash"]):
        logger.debug("ID token at_hash does not match access token")
        raise FiefIdTokenInvalid()
    return claims
