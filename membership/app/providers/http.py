"""HTTP transport shared by provider clients."""
from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional

import httpx

from ..errors import NotFound, ProviderError, RateLimited, Unauthorized, Unreachable
from .models import Provider

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., httpx.AsyncClient]

_MAX_BODY_CHARS = 2048


def _http_client_factory(**kwargs: Any) -> httpx.AsyncClient:
    timeout = kwargs.pop("timeout", 5.0)
    return httpx.AsyncClient(timeout=timeout, **kwargs)


def raise_for_provider_status(provider: Provider, response: httpx.Response) -> None:
    """Translate an unsuccessful provider response into a typed error."""

    if response.is_success:
        return
    status_code = response.status_code
    body = response.text[:_MAX_BODY_CHARS]
    message = f"{provider.value} API error: {status_code} {response.reason_phrase}".rstrip()
    if status_code in (401, 403):
        raise Unauthorized(message, provider=provider, provider_status=status_code, body=body)
    if status_code == 404:
        raise NotFound(message, provider=provider, provider_status=status_code, body=body)
    if status_code == 429:
        raise RateLimited(message, provider=provider, provider_status=status_code, body=body)
    raise ProviderError(message, provider=provider, provider_status=status_code, body=body)


class ProviderTransport:
    """Issues JSON requests against one provider base URL.

    Network failures and timeouts surface as :class:`Unreachable`; non-2xx
    responses are mapped by :func:`raise_for_provider_status`. Nothing is
    retried here.
    """

    def __init__(
        self,
        provider: Provider,
        *,
        base_url: str,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float = 5.0,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._client_factory = client_factory or _http_client_factory

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Mapping[str, Any]] = None,
        data: Optional[Mapping[str, str]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        request_headers = {**self._headers, **(headers or {})}
        try:
            async with self._client_factory(timeout=self._timeout) as client:
                response = await client.request(
                    method, url, json=json, data=data, headers=request_headers
                )
        except httpx.TimeoutException as exc:
            logger.warning("%s request timed out: %s %s", self.provider.value, method, path)
            raise Unreachable(
                f"{self.provider.value} request timed out after {self._timeout}s",
                provider=self.provider,
            ) from exc
        except httpx.RequestError as exc:
            logger.warning("%s request failed: %s %s (%s)", self.provider.value, method, path, exc)
            raise Unreachable(
                f"{self.provider.value} request failed: {exc}", provider=self.provider
            ) from exc

        raise_for_provider_status(self.provider, response)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderError(
                f"{self.provider.value} returned invalid JSON",
                provider=self.provider,
                provider_status=response.status_code,
                body=response.text[:_MAX_BODY_CHARS],
            ) from exc


def require_field(provider: Provider, payload: Any, field: str) -> Any:
    """Return ``payload[field]`` or raise a :class:`ProviderError` if absent."""

    if not isinstance(payload, dict) or not payload.get(field):
        raise ProviderError(f"{provider.value} response missing '{field}'", provider=provider)
    return payload[field]


__all__ = [
    "ClientFactory",
    "ProviderTransport",
    "raise_for_provider_status",
    "require_field",
]
