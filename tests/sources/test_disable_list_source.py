"""Tests for the disable-list source, with the HTTP endpoints faked by httpx."""

import asyncio
import json
from typing import List
from urllib.parse import parse_qs

import httpx
import pytest

from idsync.entities.models import UserId
from idsync.exceptions import SourceError
from idsync.models.config import FeatureFlags
from idsync.sources.disable_list import DisableListSource, DisableListSourceConfig

OAUTH2_URL = "https://auth.example.com/oauth2/token"
ENDPOINT_URL = "https://api.example.com/disabled-users"


def _config() -> DisableListSourceConfig:
    return DisableListSourceConfig(
        id="disable_list",
        endpoint_url=ENDPOINT_URL,
        oauth2_url=OAUTH2_URL,
        client_id="client",
        client_secret="secret",
        scope="read:users",
    )


def _source(handler) -> DisableListSource:
    return DisableListSource(_config(), FeatureFlags(), transport=httpx.MockTransport(handler))


class FakeEndpoints:
    """Serves a token and a list, recording the requests."""

    def __init__(self, emails=None, list_status: int = 200, list_body=None):
        self.emails = emails if emails is not None else ["a@example.com", "b@example.com"]
        self.list_status = list_status
        self.list_body = list_body
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if str(request.url) == OAUTH2_URL:
            return httpx.Response(200, json={"access_token": "access", "id_token": "identity"})
        if self.list_body is not None:
            return httpx.Response(self.list_status, content=self.list_body)
        return httpx.Response(self.list_status, json=self.emails)


def test_disable_list_reports_deletions_by_login():
    endpoints = FakeEndpoints()

    diff = asyncio.run(_source(endpoints).get_diff())

    assert diff.new_users == []
    assert diff.changed_users == []
    assert diff.deleted_user_ids == [UserId.login("a@example.com"), UserId.login("b@example.com")]


def test_disable_list_sends_credentials():
    endpoints = FakeEndpoints()

    asyncio.run(_source(endpoints).get_removed_user_emails())

    token_request, list_request = endpoints.requests
    assert token_request.method == "POST"
    form = parse_qs(token_request.content.decode())
    assert form == {
        "grant_type": ["client_credentials"],
        "scope": ["read:users"],
        "client_id": ["client"],
        "client_secret": ["secret"],
    }

    assert list_request.method == "GET"
    assert list_request.headers["Authorization"] == "Bearer access"
    assert list_request.headers["x-participant-token"] == "identity"
    date = list_request.url.params["date"]
    assert len(date) == 8 and date.isdigit()


def test_disable_list_error_status():
    endpoints = FakeEndpoints(list_status=500)

    with pytest.raises(SourceError, match="Error in response: 500"):
        asyncio.run(_source(endpoints).get_diff())


def test_disable_list_invalid_json():
    endpoints = FakeEndpoints(list_body=b"not json")

    with pytest.raises(SourceError, match="Invalid JSON"):
        asyncio.run(_source(endpoints).get_diff())


def test_disable_list_error_body():
    endpoints = FakeEndpoints(list_body=json.dumps({"error": "unauthorized"}).encode())

    with pytest.raises(SourceError, match="unauthorized"):
        asyncio.run(_source(endpoints).get_diff())


def test_disable_list_unexpected_shape():
    endpoints = FakeEndpoints(emails=[1, 2])

    with pytest.raises(SourceError, match="expected a list of strings"):
        asyncio.run(_source(endpoints).get_diff())


def test_disable_list_invalid_token_response():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"access_token": "access"})

    with pytest.raises(SourceError, match="oAuth2 token"):
        asyncio.run(_source(handler).get_diff())


def test_disable_list_connection_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SourceError, match="failed"):
        asyncio.run(_source(handler).get_diff())
