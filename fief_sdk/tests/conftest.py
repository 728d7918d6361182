"""
Fixtures: signing key, fake provider, and Fief clients wired to it through httpx.MockTransport.
"""
import anyio
import httpx
import pytest

from fief_sdk.client import Fief, FiefAsync
from fief_sdk.tests.provider import BASE_URL, CLIENT_ID, CLIENT_SECRET, FakeProvider, make_key_and_jwks


@pytest.fixture(scope="session")
def key_and_jwks():
    return make_key_and_jwks()


@pytest.fixture
def signing_key(key_and_jwks):
    return key_and_jwks[0]


@pytest.fixture
def provider(key_and_jwks):
    return FakeProvider(*key_and_jwks)


@pytest.fixture
def fief(provider):
    http_client = httpx.Client(transport=httpx.MockTransport(provider.handler))
    with Fief(BASE_URL, CLIENT_ID, CLIENT_SECRET, http_client=http_client) as client:
        yield client
    http_client.close()


@pytest.fixture
def fief_async(provider):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))
    yield FiefAsync(BASE_URL, CLIENT_ID, CLIENT_SECRET, http_client=http_client)
    anyio.run(http_client.aclose)
    assert http_client.is_closed


@pytest.fixture
def anyio_backend():
    return "asyncio"
