"""Shared plumbing for the httpx service clients."""

from abc import ABC, abstractmethod
from typing import Any

import httpx

from agentctl.core.exceptions import AuthenticationError, ServiceError
from agentctl.core.logging import get_logger

logger = get_logger(__name__)


class ServiceClient(ABC):
    """JSON API client with bearer-token auth, connected on first use.

    Subclasses name the service, choose the error type raised for failed
    requests and say where the base URL and token come from.
    """

    service_name = "Service"
    error_class: type[ServiceError] = ServiceError
    content_type = "application/json"

    def __init__(self, timeout: float):
        self._timeout = timeout
        self._client: httpx.Client | None = None

    @abstractmethod
    def _base_url(self) -> str | None:
        """Service base URL, or None when unconfigured."""

    @abstractmethod
    def _token(self) -> str | None:
        """Bearer token, or None when unconfigured."""

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client.

        Raises:
            ServiceError: If no URL is configured
            AuthenticationError: If no token is configured
        """
        if self._client is None:
            url = self._base_url()
            token = self._token()

            if not url:
                raise self.error_class(f"{self.service_name} URL not configured")
            if not token:
                raise AuthenticationError(f"{self.service_name} token not configured")

            self._client = httpx.Client(
                base_url=url.rstrip("/"),
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": self.content_type,
                },
                timeout=self._timeout,
            )
            logger.debug("Created API client", service=self.service_name, url=url)

        return self._client

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = self.client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._http_error(e.response) from e
        except httpx.RequestError as e:
            raise self.error_class(f"{self.service_name} request failed: {e}") from e

        return self._parse(response)

    def _parse(self, response: httpx.Response) -> Any:
        return response.json() if response.content else None

    def _http_error(self, response: httpx.Response) -> ServiceError:
        """Build the error for a non-2xx response, preferring the API's message."""
        try:
            data = response.json()
        except ValueError:
            data = None
        message = data.get("message") if isinstance(data, dict) else None
        return self.error_class(
            message or response.text or f"HTTP {response.status_code}",
            status_code=response.status_code,
        )

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def __enter__(self) -> "ServiceClient":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
