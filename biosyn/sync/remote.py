"""
Remote profile store client (httpx).

Endpoints:
- GET  {base}/api/user/{email} -> profile JSON, or JSON null when unknown
- POST {base}/api/user         -> full-document upsert, returns the stored profile

Transport errors and non-2xx responses raise RemoteStoreError.
"""

from __future__ import annotations

import urllib.parse

import httpx

from biosyn.errors import RemoteStoreError
from biosyn.sync.profile import UserProfile

_DEFAULT_TIMEOUT_S = 10.0


def _decode_profile(data: dict, email: str) -> UserProfile:
    """Decode a profile document; a malformed one is a store failure."""
    try:
        return UserProfile.from_dict(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise RemoteStoreError(f"malformed profile for {email}: {e!r}") from e


class RemoteProfileStore:
    """Thin async client over the profile store HTTP API."""

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = _DEFAULT_TIMEOUT_S,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_s)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_profile(self, email: str) -> UserProfile | None:
        path = f"/api/user/{urllib.parse.quote(email, safe='@')}"
        data = await self._request("GET", path)
        if data is None:
            return None
        if not isinstance(data, dict) or "email" not in data:
            raise RemoteStoreError(f"unexpected profile payload for {email}")
        return _decode_profile(data, email)

    async def save_profile(self, profile: UserProfile) -> UserProfile:
        data = await self._request("POST", "/api/user", json=profile.to_dict())
        if not isinstance(data, dict) or "email" not in data:
            return profile
        return _decode_profile(data, profile.email)

    async def ping(self) -> bool:
        """Reachability probe for ConnectivityMonitor.watch()."""
        try:
            await self._client.get("/api/user/_ping")
        except httpx.HTTPError:
            return False
        return True

    async def _request(self, method: str, path: str, **kwargs) -> object:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise RemoteStoreError(f"{method} {path}: HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {path}: {e!r}") from e
        except ValueError as e:
            raise RemoteStoreError(f"{method} {path}: invalid JSON") from e
