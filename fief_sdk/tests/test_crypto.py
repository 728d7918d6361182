"""Tests for PKCE helpers and c_hash / at_hash validation hashes."""
import hashlib
import re
from base64 import urlsafe_b64encode

import pytest

from fief_sdk.crypto import (
    generate_code_verifier,
    generate_pkce,
    generate_state,
    get_code_challenge,
    get_validation_hash,
    is_valid_hash,
)
from fief_sdk.errors import CryptoHelperError, InvalidMethod

B64URL = re.compile(r"^[A-Za-z0-9_-]+$")


def test_code_verifier_is_base64url_without_padding():
    verifier = generate_code_verifier()
    assert B64URL.match(verifier)
    assert len(verifier) == 128


def test_code_verifiers_are_unique():
    assert generate_code_verifier() != generate_code_verifier()


def test_state_is_random():
    assert generate_state() != generate_state()


@pytest.mark.parametrize("code", ["", "abc", "x" * 128, "ünïcode"])
def test_plain_challenge_is_verifier(code):
    assert get_code_challenge(code, "plain") == code


def test_s256_challenge_is_base64url_sha256():
    verifier = "dBjftJeZ4CVP-mJ92K9qv6j0XQhkQaR6LgDS7f1cPb8"
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    expected = urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    challenge = get_code_challenge(verifier, "S256")
    assert challenge == expected
    assert len(challenge) == 43
    assert "=" not in challenge


def test_s256_challenge_is_deterministic():
    verifier = generate_code_verifier()
    assert get_code_challenge(verifier, "S256") == get_code_challenge(verifier, "S256")


@pytest.mark.parametrize("method", ["unknown", "s256", "S512", ""])
def test_unknown_challenge_method_raises(method):
    with pytest.raises(InvalidMethod) as exc_info:
        get_code_challenge("abc", method)
    assert isinstance(exc_info.value, CryptoHelperError)


def test_generate_pkce_pairs_verifier_and_challenge():
    pkce = generate_pkce()
    assert pkce.method == "S256"
    assert pkce.code_challenge == get_code_challenge(pkce.code_verifier, "S256")

    plain = generate_pkce("plain")
    assert plain.code_challenge == plain.code_verifier


def test_validation_hash_is_left_half_of_sha256():
    value = "some-authorization-code"
    digest = hashlib.sha256(value.encode("utf-8")).digest()
    expected = urlsafe_b64encode(digest[:16]).rstrip(b"=").decode("ascii")
    assert get_validation_hash(value) == expected


@pytest.mark.parametrize("value", ["", "CODE", "eyJhbGciOiJSUzI1NiJ9.e30.sig", "ünïcode"])
def test_validation_hash_round_trips(value):
    assert is_valid_hash(value, get_validation_hash(value)) is True


def test_validation_hash_rejects_other_value():
    assert is_valid_hash("CODE", get_validation_hash("OTHER")) is False
