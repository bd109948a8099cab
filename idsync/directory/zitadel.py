"""Zitadel management API client."""

from __future__ import annotations

import base64
import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from idsync.directory.client import (
    DirectoryClient,
    DirectoryUser,
    Email,
    ImportHumanUserRequest,
    Phone,
    Profile,
)
from idsync.exceptions import (
    ConfigError,
    ProviderError,
    ProviderNotFoundError,
    ProviderTransportError,
    ProviderValidationError,
    StatusCode,
)
from idsync.models.config import ZitadelConfig

logger = logging.getLogger(__name__)

TOKEN_ENV = "IDSYNC_ZITADEL_TOKEN"
ORG_HEADER = "x-zitadel-orgid"

# Used when an error body carries no gRPC code
HTTP_STATUS_CODES = {
    400: StatusCode.INVALID_ARGUMENT,
    401: StatusCode.UNAUTHENTICATED,
    403: StatusCode.PERMISSION_DENIED,
    404: StatusCode.NOT_FOUND,
    409: StatusCode.ALREADY_EXISTS,
    429: StatusCode.RESOURCE_EXHAUSTED,
    503: StatusCode.UNAVAILABLE,
    504: StatusCode.DEADLINE_EXCEEDED,
}


def provider_error(code: StatusCode, message: str) -> ProviderError:
    """Build the most specific provider error for a status code."""
    if code == StatusCode.INVALID_ARGUMENT:
        return ProviderValidationError(message)
    if code == StatusCode.NOT_FOUND:
        return ProviderNotFoundError(message)
    return ProviderError(code, message)


class ZitadelClient(DirectoryClient):
    """Client for the Zitadel management REST API (v1)."""

    def __init__(self, config: ZitadelConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        """
        Initialize the Zitadel client.

        Args:
            config: Instance URL, organization and credentials.
            transport: Optional httpx transport, used to fake the API in tests.
        """
        token = config.token or os.getenv(TOKEN_ENV)
        if not token:
            raise ConfigError(f"No Zitadel access token in configuration or ${TOKEN_ENV}")

        self.base_url = config.url.rstrip("/")
        self.organization_id = config.organization_id
        self.timeout = config.timeout
        self._token = token
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self._token}"},
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> ZitadelClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        path: str,
        org_id: Optional[str] = None,
        params: Dict[str, Any] | None = None,
        json: Dict[str, Any] | None = None,
    ) -> Any:
        """Make a request to the management API and decode the response."""
        headers = {ORG_HEADER: org_id or self.organization_id}
        try:
            response = await self.client.request(method, path, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise ProviderTransportError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            code = HTTP_STATUS_CODES.get(response.status_code, StatusCode.UNKNOWN)
            message = response.text
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                if "code" in body:
                    code = StatusCode.from_value(body["code"])
                message = str(body.get("message", message))
            raise provider_error(code, message)

        if not response.content:
            return {}
        return response.json()

    async def create_human_user(self, org_id: str, request: ImportHumanUserRequest) -> str:
        body = await self._request("POST", "/management/v1/users/human/_import", org_id, json=request.to_wire())
        user_id = body.get("userId")
        if not user_id:
            raise ProviderError(StatusCode.INTERNAL, "create response did not contain a user id")
        return str(user_id)

    async def update_human_user_name(self, org_id: str, user_id: str, user_name: str) -> None:
        await self._request("PUT", f"/management/v1/users/{user_id}/username", org_id, json={"userName": user_name})

    async def update_human_user_profile(self, org_id: str, user_id: str, profile: Profile) -> None:
        await self._request("PUT", f"/management/v1/users/{user_id}/profile", org_id, json=profile.to_wire())

    async def update_human_user_email(self, org_id: str, user_id: str, email: Email) -> None:
        await self._request("PUT", f"/management/v1/users/{user_id}/email", org_id, json=email.to_wire())

    async def update_human_user_phone(self, org_id: str, user_id: str, phone: Phone) -> None:
        await self._request("PUT", f"/management/v1/users/{user_id}/phone", org_id, json=phone.to_wire())

    async def remove_human_user_phone(self, org_id: str, user_id: str) -> None:
        await self._request("DELETE", f"/management/v1/users/{user_id}/phone", org_id)

    async def set_user_metadata(self, org_id: str, user_id: str, key: str, value: str) -> None:
        encoded = base64.b64encode(value.encode("utf-8")).decode("ascii")
        await self._request("POST", f"/management/v1/users/{user_id}/metadata/{key}", org_id, json={"value": encoded})

    async def add_user_grant(self, org_id: str, user_id: str, project_id: str, role_keys: List[str]) -> None:
        await self._request(
            "POST",
            f"/management/v1/users/{user_id}/grants",
            org_id,
            json={"projectId": project_id, "roleKeys": role_keys},
        )

    async def get_user_by_login_name(self, login_name: str) -> Optional[DirectoryUser]:
        try:
            body = await self._request(
                "GET", "/management/v1/global/users/_by_login_name", params={"loginName": login_name}
            )
        except ProviderNotFoundError:
            return None
        user = body.get("user")
        return DirectoryUser.model_validate(user) if user else None

    async def get_user_by_nick_name(self, org_id: str, nick_name: str) -> Optional[DirectoryUser]:
        query = {"nickNameQuery": {"nickName": nick_name, "method": "TEXT_QUERY_METHOD_EQUALS"}}
        body = await self._request("POST", "/management/v1/users/_search", org_id, json={"queries": [query]})
        results = body.get("result") or []
        if len(results) > 1:
            logger.warning(f"Found {len(results)} users with nick name {nick_name}, using the first one")
        return DirectoryUser.model_validate(results[0]) if results else None

    async def remove_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/management/v1/users/{user_id}")
