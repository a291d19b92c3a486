"""Thin httpx wrapper for the Microsoft Graph endpoints used by restoration."""

from typing import Any

import httpx

from plannerbridge.config.models import GraphConfig


class GraphClient:
    """Wrapper for an httpx client bound to one tenant, with lazy initialization.

    The client never interprets status codes; ``RequestExecutor`` owns
    classification and retries.
    """

    def __init__(
        self,
        base_url: str,
        access_token: str,
        timeout: int = 30,
        verify_ssl: bool = True,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Initialize Graph client with configuration.

        Args:
            base_url: Graph API root, e.g. https://graph.microsoft.com/v1.0
            access_token: OAuth bearer token for the target tenant
            timeout: Request timeout in seconds
            verify_ssl: Whether to verify SSL certificates
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._transport = transport
        self._http: httpx.Client | None = None

    @classmethod
    def from_config(cls, config: GraphConfig) -> "GraphClient":
        return cls(
            base_url=str(config.base_url),
            access_token=config.access_token or "",
            timeout=config.timeout,
            verify_ssl=config.verify_ssl,
        )

    @property
    def http(self) -> httpx.Client:
        """
        Lazy-load the HTTP client on first access.

        Returns:
            Initialized httpx.Client
        """
        if self._http is None:
            self._http = httpx.Client(
                base_url=self.base_url,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Accept": "application/json",
                },
                timeout=self.timeout,
                verify=self.verify_ssl,
                transport=self._transport,
            )
        return self._http

    def send(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request and return the raw response, whatever its status."""
        return self.http.request(method, path, json=json, params=params, headers=headers)

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    def __enter__(self) -> "GraphClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
