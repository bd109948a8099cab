"""Disable-list source: emails of users to remove, served over HTTP.

The list endpoint is protected with an OAuth2 client-credentials token. The
token response carries both an access token (sent as bearer) and an id token
(sent as `x-participant-token`). The list is requested for the current UTC
date and must be a JSON array of email addresses.
"""

import logging
from datetime import datetime, timezone
from time import perf_counter
from typing import TYPE_CHECKING, Any, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from idsync.entities.models import SourceDiff, UserId
from idsync.exceptions import SourceError
from idsync.metrics.metrics import SOURCE_DIFF_ITEMS, SOURCE_SYNC_LATENCY
from idsync.models.source_config import BaseSourceConfig
from idsync.sources.source import Source

if TYPE_CHECKING:
    from idsync.models.config import FeatureFlags

logger = logging.getLogger(__name__)


class DisableListSourceConfig(BaseSourceConfig):
    """Configuration to get a list of users to remove from an endpoint."""

    endpoint_url: str = Field(..., description="URL of the list endpoint")
    oauth2_url: str = Field(..., description="OAuth2 token URL for the endpoint")
    client_id: str = Field(..., description="API client ID")
    client_secret: str = Field(..., description="API client secret")
    scope: str = Field(..., description="OAuth2 scope")
    grant_type: str = Field(default="client_credentials", description="OAuth2 grant type")
    timeout: float = Field(default=30.0, description="Request timeout in seconds")


class OAuth2Token(BaseModel):
    """Token response of the OAuth2 endpoint."""

    access_token: str
    id_token: str


class DisableListSource(Source[DisableListSourceConfig]):
    """Disable-list source implementation."""

    NAME = "DisableList"

    def __init__(
        self,
        config: DisableListSourceConfig,
        feature_flags: "FeatureFlags",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(config, feature_flags)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)

    async def get_diff(self) -> SourceDiff:
        op_start = perf_counter()
        emails = await self.get_removed_user_emails()

        elapsed = perf_counter() - op_start
        SOURCE_SYNC_LATENCY.labels(source=self.NAME, source_id=self.source_id).observe(elapsed)
        SOURCE_DIFF_ITEMS.labels(source=self.NAME, source_id=self.source_id).observe(len(emails))
        logger.info(f"Fetched {len(emails)} users to remove from {self.config.endpoint_url} in {elapsed:.3f}s")

        return SourceDiff(deleted_user_ids=[UserId.login(email) for email in emails])

    async def get_removed_user_emails(self) -> List[str]:
        """Get the list of user emails that have been removed."""
        async with self._client() as client:
            token = await self.get_oauth2_token(client)
            return await self.fetch_list(client, token)

    async def get_oauth2_token(self, client: httpx.AsyncClient) -> OAuth2Token:
        data = {
            "grant_type": self.config.grant_type,
            "scope": self.config.scope,
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
        }
        body = await self._request(client, "POST", self.config.oauth2_url, data=data)
        try:
            return OAuth2Token.model_validate(body)
        except ValidationError as e:
            raise SourceError(f"Failed to deserialize oAuth2 token response: {e}") from e

    async def fetch_list(self, client: httpx.AsyncClient, token: OAuth2Token) -> List[str]:
        current_date = datetime.now(timezone.utc).strftime("%Y%m%d")
        body = await self._request(
            client,
            "GET",
            self.config.endpoint_url,
            params={"date": current_date},
            headers={
                "Authorization": f"Bearer {token.access_token}",
                "x-participant-token": token.id_token,
            },
        )
        if not isinstance(body, list) or not all(isinstance(email, str) for email in body):
            raise SourceError("Failed to deserialize email list response: expected a list of strings")
        return body

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise SourceError(f"Request to {url} failed: {e}") from e

        if response.status_code != httpx.codes.OK:
            raise SourceError(f"Error in response: {response.status_code}")

        try:
            body = response.json()
        except ValueError as e:
            raise SourceError(f"Invalid JSON in response from {url}") from e

        if isinstance(body, dict) and "error" in body:
            raise SourceError(f"Error in response: {body['error']}")
        return body
