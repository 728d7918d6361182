"""
Tests for access-token validation (policy checks and error precedence) and ID-token decoding
(signature, c_hash / at_hash binding, JWE decryption).
"""
import pytest
from jwcrypto import jwk
from jwt import PyJWKSet

from fief_sdk.crypto import get_validation_hash
from fief_sdk.errors import (
    AccessTokenErrorKind,
    FiefAccessTokenACRTooLow,
    FiefAccessTokenExpired,
    FiefAccessTokenInvalid,
    FiefAccessTokenMissingPermission,
    FiefAccessTokenMissingScope,
    FiefIdTokenInvalid,
)
from fief_sdk.models import FiefACR
from fief_sdk.tests.provider import USERINFO, encrypt_token, make_access_token, make_id_token, make_key_and_jwks
from fief_sdk.tokens import decode_id_token, load_encryption_key, validate_access_token


@pytest.fixture
def signing_keys(key_and_jwks):
    return PyJWKSet.from_dict(key_and_jwks[1])


@pytest.fixture(scope="module")
def other_key():
    return make_key_and_jwks()[0]


# --- access tokens ---


def test_valid_access_token(signing_key, signing_keys):
    token = make_access_token(
        signing_key, {"scope": "openid profile", "acr": "1", "permissions": ["castles:read"]}
    )
    info = validate_access_token(token, signing_keys, ["openid"], FiefACR.LEVEL_ONE, ["castles:read"])
    assert info == {
        "id": "user1",
        "scope": ["openid", "profile"],
        "acr": FiefACR.LEVEL_ONE,
        "permissions": ["castles:read"],
        "access_token": token,
    }


def test_acr_too_low(signing_key, signing_keys):
    token = make_access_token(signing_key, {"scope": "openid profile", "acr": "0", "permissions": ["read"]})
    with pytest.raises(FiefAccessTokenACRTooLow) as exc_info:
        validate_access_token(token, signing_keys, required_acr="1")
    assert exc_info.value.kind == AccessTokenErrorKind.ACR_TOO_LOW


def test_higher_acr_satisfies_lower_requirement(signing_key, signing_keys):
    token = make_access_token(signing_key, {"scope": "openid profile", "acr": "1", "permissions": ["read"]})
    info = validate_access_token(token, signing_keys, required_acr="0")
    assert info["acr"] == FiefACR.LEVEL_ONE


def test_missing_scope(signing_key, signing_keys):
    token = make_access_token(signing_key, {"scope": "openid profile"})
    with pytest.raises(FiefAccessTokenMissingScope):
        validate_access_token(token, signing_keys, required_scope=["admin"])


def test_missing_permission(signing_key, signing_keys):
    token = make_access_token(signing_key, {"permissions": ["castles:read"]})
    with pytest.raises(FiefAccessTokenMissingPermission):
        validate_access_token(token, signing_keys, required_permissions=["castles:read", "castles:delete"])


def test_expired_token_is_expired_not_invalid(signing_key, signing_keys):
    token = make_access_token(signing_key, exp_delta=-60)
    with pytest.raises(FiefAccessTokenExpired) as exc_info:
        validate_access_token(token, signing_keys)
    assert not isinstance(exc_info.value, FiefAccessTokenInvalid)


def test_expired_token_with_bad_signature_is_invalid(other_key, signing_keys):
    token = make_access_token(other_key, exp_delta=-60)
    with pytest.raises(FiefAccessTokenInvalid):
        validate_access_token(token, signing_keys)


def test_expired_wins_over_policy_failures(signing_key, signing_keys):
    token = make_access_token(signing_key, {"scope": "openid"}, exp_delta=-60)
    with pytest.raises(FiefAccessTokenExpired):
        validate_access_token(token, signing_keys, required_scope=["admin"], required_acr="1")


def test_wrong_signature_is_invalid(other_key, signing_keys):
    token = make_access_token(other_key)
    with pytest.raises(FiefAccessTokenInvalid):
        validate_access_token(token, signing_keys)


def test_unknown_kid_is_invalid(signing_key, signing_keys):
    token = make_access_token(signing_key, kid="rotated-away")
    with pytest.raises(FiefAccessTokenInvalid):
        validate_access_token(token, signing_keys)


def test_token_without_kid_matched_by_alg(signing_key, signing_keys):
    token = make_access_token(signing_key, kid=None)
    assert validate_access_token(token, signing_keys)["id"] == "user1"


def test_malformed_token_is_invalid(signing_keys):
    with pytest.raises(FiefAccessTokenInvalid):
        validate_access_token("not-a-jwt", signing_keys)


@pytest.mark.parametrize(
    "claims",
    [
        {"scope": None},
        {"sub": None},
        {"acr": None},
        {"acr": "2"},
        {"permissions": None},
        {"permissions": "castles:read"},
    ],
)
def test_missing_or_malformed_claims_are_invalid(signing_key, signing_keys, claims):
    token = make_access_token(signing_key, claims)
    with pytest.raises(FiefAccessTokenInvalid):
        validate_access_token(token, signing_keys)


def test_missing_scope_checked_before_acr(signing_key, signing_keys):
    token = make_access_token(signing_key, {"scope": "openid", "acr": "0"})
    with pytest.raises(FiefAccessTokenMissingScope):
        validate_access_token(token, signing_keys, required_scope=["admin"], required_acr="1")


def test_acr_checked_before_permissions(signing_key, signing_keys):
    token = make_access_token(signing_key, {"acr": "0", "permissions": []})
    with pytest.raises(FiefAccessTokenACRTooLow):
        validate_access_token(token, signing_keys, required_acr="1", required_permissions=["castles:read"])


# --- ID tokens ---


def test_decode_id_token(signing_key, signing_keys):
    id_token = make_id_token(signing_key, code="CODE", access_token="ACCESS")
    claims = decode_id_token(id_token, signing_keys, code="CODE", access_token="ACCESS")
    assert claims["sub"] == USERINFO["sub"]
    assert claims["email"] == USERINFO["email"]
    assert claims["fields"] == USERINFO["fields"]


def test_c_hash_mismatch_is_invalid(signing_key, signing_keys):
    id_token = make_id_token(signing_key, {"c_hash": get_validation_hash("OTHER")})
    with pytest.raises(FiefIdTokenInvalid):
        decode_id_token(id_token, signing_keys, code="CODE")


def test_c_hash_without_code_is_invalid(signing_key, signing_keys):
    id_token = make_id_token(signing_key, code="CODE")
    with pytest.raises(FiefIdTokenInvalid):
        decode_id_token(id_token, signing_keys)


def test_at_hash_mismatch_is_invalid(signing_key, signing_keys):
    id_token = make_id_token(signing_key, access_token="ACCESS")
    with pytest.raises(FiefIdTokenInvalid):
        decode_id_token(id_token, signing_keys, access_token="OTHER")


def test_id_token_without_hash_claims_skips_binding(signing_key, signing_keys):
    id_token = make_id_token(signing_key)
    assert decode_id_token(id_token, signing_keys, code="CODE")["sub"] == "user1"


def test_id_token_bad_signature_is_invalid(other_key, signing_keys):
    id_token = make_id_token(other_key)
    with pytest.raises(FiefIdTokenInvalid):
        decode_id_token(id_token, signing_keys)


def test_expired_id_token_is_invalid(signing_key, signing_keys):
    id_token = make_id_token(signing_key, exp_delta=-60)
    with pytest.raises(FiefIdTokenInvalid):
        decode_id_token(id_token, signing_keys)


def test_encrypted_id_token(signing_key, signing_keys):
    encryption_key = jwk.JWK.generate(kty="RSA", size=2048)
    id_token = encrypt_token(make_id_token(signing_key, code="CODE"), encryption_key)
    claims = decode_id_token(
        id_token, signing_keys, code="CODE", encryption_key=load_encryption_key(encryption_key.export())
    )
    assert claims["sub"] == "user1"


def test_encrypted_id_token_wrong_key_is_invalid(signing_key, signing_keys):
    encryption_key = jwk.JWK.generate(kty="RSA", size=2048)
    id_token = encrypt_token(make_id_token(signing_key), encryption_key)
    with pytest.raises(FiefIdTokenInvalid):
        decode_id_token(id_token, signing_keys, encryption_key=jwk.JWK.generate(kty="RSA", size=2048))


def test_plain_id_token_with_encryption_key_is_invalid(signing_key, signing_keys):
    with pytest.raises(FiefIdTokenInvalid):
        decode_id_token(
            make_id_token(signing_key), signing_keys, encryption_key=jwk.JWK.generate(kty="RSA", size=2048)
        )


def test_unknown_required_acr_is_rejected(signing_key, signing_keys):
    token = make_access_token(signing_key, {"acr": "1"})
    with pytest.raises(ValueError, match="Unknown ACR level '2'"):
        validate_access_token(token, signing_keys, required_acr="2")
