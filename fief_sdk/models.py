"""
Data shapes exchanged with the provider and returned to callers.
JSON documents are TypedDicts; in-process values are dataclasses.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypedDict


class FiefACR(str, Enum):
    """Authentication Context Class Reference levels, weakest first."""

    LEVEL_ZERO = "0"  # previous session reused, no authentication performed
    LEVEL_ONE = "1"  # password authentication performed


ACR_LEVELS_ORDER = [FiefACR.LEVEL_ZERO, FiefACR.LEVEL_ONE]


def compare_acr(a: FiefACR, b: FiefACR) -> int:
    """Negative if a is weaker than b, zero if equal, positive if stronger. Position-based."""
    return ACR_LEVELS_ORDER.index(a) - ACR_LEVELS_ORDER.index(b)


def parse_acr(value: FiefACR | str) -> FiefACR:
    """Required ACR level given by the caller. Unknown levels are a programming error."""
    try:
        return FiefACR(value)
    except ValueError:
        allowed = ", ".join(repr(level.value) for level in ACR_LEVELS_ORDER)
        raise ValueError(f"Unknown ACR level {value!r}; expected one of {allowed}") from None


class ProviderMetadata(TypedDict):
    authorization_endpoint: str
    token_endpoint: str
    userinfo_endpoint: str
    jwks_uri: str


class _TokenSetBase(TypedDict):
    access_token: str
    id_token: str
    token_type: str
    expires_in: int


class TokenSet(_TokenSetBase, total=False):
    refresh_token: str


class AccessTokenInfo(TypedDict):
    id: str
    scope: list[str]
    acr: FiefACR
    permissions: list[str]
    access_token: str


class UserProfile(TypedDict, total=False):
    sub: str
    email: str
    tenant_id: str
    fields: dict[str, Any]


@dataclass(frozen=True)
class PKCEPair:
    code_verifier: str
    code_challenge: str
    method: str


@dataclass
class AuthenticationOutcome:
    access_token_info: AccessTokenInfo | None = None
    user: UserProfile | None = None
