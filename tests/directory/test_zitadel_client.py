"""Tests for the Zitadel management API client."""

import asyncio
import base64
import json
from typing import List
from unittest import TestCase
from unittest.mock import patch

import httpx
import pytest

from idsync.directory.client import Email, ImportHumanUserRequest, Phone, Profile
from idsync.directory.zitadel import ZitadelClient
from idsync.exceptions import (
    ConfigError,
    ProviderError,
    ProviderNotFoundError,
    ProviderTransportError,
    ProviderValidationError,
    StatusCode,
)
from idsync.models.config import ZitadelConfig


def _config(**overrides) -> ZitadelConfig:
    data = {
        "url": "https://zitadel.example.com/",
        "token": "pat",
        "organization_id": "org-1",
        "project_id": "project-1",
    }
    data.update(overrides)
    return ZitadelConfig(**data)


class Recorder:
    def __init__(self, response: httpx.Response):
        self.response = response
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


async def _call(client: ZitadelClient, method: str, *args):
    async with client:
        return await getattr(client, method)(*args)


class TestZitadelClient(TestCase):
    def _client(self, response: httpx.Response) -> "tuple[ZitadelClient, Recorder]":
        recorder = Recorder(response)
        return ZitadelClient(_config(), transport=httpx.MockTransport(recorder)), recorder

    def test_create_human_user(self):
        client, recorder = self._client(httpx.Response(200, json={"userId": "123"}))
        request = ImportHumanUserRequest(
            user_name="john.doe@example.com",
            profile=Profile(first_name="John", last_name="Doe", display_name="Doe, John", nick_name="jdoe"),
            email=Email(email="john.doe@example.com", is_email_verified=True),
            phone=Phone(phone="+12015550123", is_phone_verified=True),
        )

        user_id = asyncio.run(_call(client, "create_human_user", "org-2", request))

        self.assertEqual(user_id, "123")
        sent = recorder.requests[0]
        self.assertEqual(sent.method, "POST")
        self.assertEqual(sent.url.path, "/management/v1/users/human/_import")
        self.assertEqual(sent.headers["Authorization"], "Bearer pat")
        self.assertEqual(sent.headers["x-zitadel-orgid"], "org-2")
        body = json.loads(sent.content)
        self.assertEqual(body["userName"], "john.doe@example.com")
        self.assertEqual(body["profile"]["nickName"], "jdoe")
        self.assertEqual(body["email"], {"email": "john.doe@example.com", "isEmailVerified": True})
        self.assertTrue(body["requestPasswordlessRegistration"])
        self.assertFalse(body["passwordChangeRequired"])

    def test_set_user_metadata_encodes_value(self):
        client, recorder = self._client(httpx.Response(200, json={}))

        asyncio.run(_call(client, "set_user_metadata", "org-1", "123", "localpart", "abc"))

        sent = recorder.requests[0]
        self.assertEqual(sent.url.path, "/management/v1/users/123/metadata/localpart")
        self.assertEqual(json.loads(sent.content), {"value": base64.b64encode(b"abc").decode()})

    def test_remove_phone(self):
        client, recorder = self._client(httpx.Response(200, content=b""))

        asyncio.run(_call(client, "remove_human_user_phone", "org-1", "123"))

        sent = recorder.requests[0]
        self.assertEqual(sent.method, "DELETE")
        self.assertEqual(sent.url.path, "/management/v1/users/123/phone")

    def test_get_user_by_login_name(self):
        client, recorder = self._client(
            httpx.Response(200, json={"user": {"id": "123", "userName": "john.doe@example.com", "state": "USER_STATE_ACTIVE"}})
        )

        user = asyncio.run(_call(client, "get_user_by_login_name", "john.doe@example.com"))

        self.assertEqual(user.id, "123")
        self.assertEqual(user.user_name, "john.doe@example.com")
        self.assertEqual(recorder.requests[0].url.params["loginName"], "john.doe@example.com")

    def test_get_user_by_login_name_not_found(self):
        client, _ = self._client(httpx.Response(404, json={"code": 5, "message": "User could not be found"}))

        user = asyncio.run(_call(client, "get_user_by_login_name", "nobody@example.com"))

        self.assertIsNone(user)

    def test_get_user_by_nick_name(self):
        client, recorder = self._client(httpx.Response(200, json={"result": [{"id": "123", "userName": "jdoe"}]}))

        user = asyncio.run(_call(client, "get_user_by_nick_name", "org-1", "jdoe"))

        self.assertEqual(user.id, "123")
        query = json.loads(recorder.requests[0].content)["queries"][0]
        self.assertEqual(query["nickNameQuery"]["nickName"], "jdoe")

    def test_get_user_by_nick_name_empty(self):
        client, _ = self._client(httpx.Response(200, json={"details": {}}))

        self.assertIsNone(asyncio.run(_call(client, "get_user_by_nick_name", "org-1", "jdoe")))


@pytest.mark.parametrize(
    "response, error_type, code",
    [
        (
            httpx.Response(400, json={"code": 3, "message": "Errors.User.Phone.Invalid (PHONE-so0wa)"}),
            ProviderValidationError,
            StatusCode.INVALID_ARGUMENT,
        ),
        (httpx.Response(404, json={"code": 5, "message": "not found"}), ProviderNotFoundError, StatusCode.NOT_FOUND),
        (httpx.Response(403, text="forbidden"), ProviderError, StatusCode.PERMISSION_DENIED),
        (httpx.Response(500, json={"message": "boom"}), ProviderError, StatusCode.UNKNOWN),
    ],
)
def test_error_mapping(response, error_type, code):
    client = ZitadelClient(_config(), transport=httpx.MockTransport(lambda request: response))

    with pytest.raises(error_type) as excinfo:
        asyncio.run(_call(client, "remove_user", "123"))

    assert excinfo.value.code == code


def test_invalid_phone_message_is_preserved():
    response = httpx.Response(400, json={"code": 3, "message": "Errors.User.Phone.Invalid (PHONE-so0wa)"})
    client = ZitadelClient(_config(), transport=httpx.MockTransport(lambda request: response))

    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(_call(client, "remove_user", "123"))

    assert "PHONE-so0wa" in excinfo.value.message
    assert str(excinfo.value).startswith("INVALID_ARGUMENT: ")


def test_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = ZitadelClient(_config(), transport=httpx.MockTransport(handler))

    with pytest.raises(ProviderTransportError):
        asyncio.run(_call(client, "remove_user", "123"))


def test_token_from_environment():
    with patch.dict("os.environ", {"IDSYNC_ZITADEL_TOKEN": "env-token"}):
        client = ZitadelClient(_config(token=None))

    assert client._token == "env-token"


def test_missing_token():
    with patch.dict("os.environ", {}, clear=True):
        with pytest.raises(ConfigError):
            ZitadelClient(_config(token=None))
