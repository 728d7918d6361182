"""
HTTP transport for talking to the provider. Clients are created here or injected by the caller;
the SDK never looks one up in the environment.
"""
import httpx

from fief_sdk.config import HTTP_TIMEOUT
from fief_sdk.errors import FiefRequestError


def create_client(timeout: float = HTTP_TIMEOUT, **kwargs) -> httpx.Client:
    return httpx.Client(timeout=timeout, headers={"Accept": "application/json"}, **kwargs)


def create_async_client(timeout: float = HTTP_TIMEOUT, **kwargs) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout, headers={"Accept": "application/json"}, **kwargs)


def raise_for_error(response: httpx.Response) -> None:
    """Raise FiefRequestError for any status outside 2xx. Response body must already be read."""
    if response.status_code < 200 or response.status_code > 299:
        raise FiefRequestError(response.status_code, response.text)
