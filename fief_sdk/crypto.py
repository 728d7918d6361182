"""
PKCE (RFC 7636) helpers and the OIDC truncated-hash convention (c_hash / at_hash).
plain and S256 challenge methods.
"""
import hashlib
import hmac
import secrets
from base64 import urlsafe_b64encode

from fief_sdk.errors import InvalidMethod
from fief_sdk.models import PKCEPair

# 96 bytes -> 128 chars base64url, the RFC 7636 maximum verifier length
CODE_VERIFIER_BYTES = 96


def _b64url(data: bytes) -> str:
    return urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    """Opaque value for CSRF protection; returned in callback."""
    return secrets.token_urlsafe(32)


def generate_code_verifier() -> str:
    """High-entropy PKCE code verifier. Single use: discard after the code exchange."""
    return _b64url(secrets.token_bytes(CODE_VERIFIER_BYTES))


def get_code_challenge(code: str, method: str) -> str:
    """Derive the code challenge sent in the authorization URL from the verifier."""
    if method == "plain":
        return code
    if method == "S256":
        return _b64url(hashlib.sha256(code.encode("utf-8")).digest())
    raise InvalidMethod(method)


def generate_pkce(method: str = "S256") -> PKCEPair:
    """
    Generate a verifier and its challenge for one authorization attempt.
    """
    code_verifier = generate_code_verifier()
    return PKCEPair(
        code_verifier=code_verifier,
        code_challenge=get_code_challenge(code_verifier, method),
        method=method,
    )


def get_validation_hash(value: str) -> str:
    """Left half of SHA-256(value), base64url. Used for c_hash and at_hash claims."""
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    return _b64url(digest[: len(digest) // 2])


def is_valid_hash(value: str, hash: str) -> bool:
    return hmac.compare_digest(get_validation_hash(value).encode("ascii"), hash.encode("utf-8"))
