"""Resilient HTTP Client — httpx.AsyncClient wrapped with auth, retry, and status mapping.

Invariants:
    - Every request runs through RetryPolicy keyed by (METHOD, path)
    - Non-2xx responses raise httpx.HTTPStatusError so ErrorClassifier sees the response
    - Bearer token read from the credential store per attempt (a retry after re-login
      picks up the new token)
    - DELETE succeeds on 200 or 204; bodies of 204 responses are never parsed

Design Decisions:
    - Wrapper over raw client: isolates retry and auth from MutationStore callers
    - ResourceGateway methods match the server call contract, so they plug straight
      into MutationStore.create/update/remove
    - `{"data": ...}` envelopes unwrapped in one place
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from optimistic.config import Settings
from optimistic.core.domain_types import Entity, EntityId, entity_id
from optimistic.core.protocols import CredentialStore
from optimistic.services.retry_policy import RetryPolicy

logger = logging.getLogger(__name__)


class ResilientHttpClient:
    """Authenticated JSON client whose requests are retried per RetryPolicy."""

    def __init__(
        self,
        base_url: str,
        retry_policy: RetryPolicy,
        credentials: CredentialStore | None = None,
        *,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        self.retry_policy = retry_policy
        self.credentials = credentials

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        retry_policy: RetryPolicy,
        credentials: CredentialStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "ResilientHttpClient":
        return cls(
            settings.api_base_url,
            retry_policy,
            credentials,
            timeout_seconds=settings.request_timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "ResilientHttpClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> httpx.Response:
        """Send one logical request; transient failures are retried transparently."""
        method = method.upper()

        async def attempt() -> httpx.Response:
            response = await self.client.request(
                method, path, json=json, params=params, headers=self._auth_headers(),
            )
            logger.debug(
                f"{method} {path} → {response.status_code}",
                extra={"method": method, "resource": path, "status_code": response.status_code},
            )
            response.raise_for_status()
            return response

        return await self.retry_policy.execute(attempt, method=method, resource=path)

    async def get_json(self, path: str, params: Mapping[str, Any] | None = None) -> Any:
        response = await self.request("GET", path, params=params)
        return _unwrap(response.json())

    async def send_json(self, method: str, path: str, payload: Any) -> Any:
        response = await self.request(method, path, json=payload)
        if response.status_code == 204 or not response.content:
            return None
        return _unwrap(response.json())

    async def delete(self, path: str) -> bool:
        response = await self.request("DELETE", path)
        return response.status_code in (200, 204)

    def resource(self, path: str) -> "ResourceGateway":
        return ResourceGateway(self, "/" + path.strip("/"))

    def _auth_headers(self) -> dict[str, str]:
        token = self.credentials.get_token() if self.credentials else None
        return {"Authorization": f"Bearer {token}"} if token else {}


@dataclass
class ResourceGateway:
    """REST collection endpoint exposed as MutationStore server calls."""
    http: ResilientHttpClient
    path: str

    async def list(self, params: Mapping[str, Any] | None = None) -> list[Entity]:
        data = await self.http.get_json(self.path, params=params)
        return list(data or [])

    async def create(self, item: Entity) -> Entity:
        return await self.http.send_json("POST", self.path, _to_json(item))

    async def update(self, item: Entity) -> Entity:
        return await self.http.send_json(
            "PUT", f"{self.path}/{entity_id(item)}", _to_json(item),
        )

    async def delete(self, item_id: EntityId) -> None:
        await self.http.delete(f"{self.path}/{item_id}")


def _unwrap(body: Any) -> Any:
    if isinstance(body, Mapping) and "data" in body:
        return body["data"]
    return body


def _to_json(item: Entity) -> Any:
    if isinstance(item, Mapping):
        return dict(item)
    dump = getattr(item, "model_dump", None)
    if callable(dump):
        return dump(mode="json")
    return vars(item)
