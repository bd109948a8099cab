from typing import Optional
from unittest.mock import AsyncMock

import pytest

from idsync.directory.client import DirectoryClient, DirectoryUser
from idsync.entities.models import AttributeValue, User
from idsync.models.config import ZitadelConfig


def _make_user(
    email: str = "john.doe@example.com",
    first_name: str = "John",
    last_name: str = "Doe",
    preferred_username: str = "john.doe",
    external_user_id: str = "jdoe",
    phone: Optional[str] = "+12015550123",
    enabled: bool = True,
) -> User:
    return User(
        first_name=AttributeValue.text(first_name),
        last_name=AttributeValue.text(last_name),
        preferred_username=AttributeValue.text(preferred_username),
        email=AttributeValue.text(email),
        external_user_id=AttributeValue.text(external_user_id),
        phone=AttributeValue.text(phone) if phone is not None else None,
        enabled=enabled,
    )


@pytest.fixture
def temp_dir(tmpdir):
    return tmpdir


@pytest.fixture
def make_user():
    return _make_user


@pytest.fixture
def zitadel_config():
    return ZitadelConfig(
        url="https://zitadel.example.com",
        token="test-token",
        organization_id="org-1",
        project_id="project-1",
        idp_id="idp-1",
    )


@pytest.fixture
def directory_client():
    client = AsyncMock(spec=DirectoryClient)
    client.create_human_user.return_value = "user-1"
    client.get_user_by_login_name.return_value = DirectoryUser(id="user-1", user_name="john.doe@example.com")
    client.get_user_by_nick_name.return_value = DirectoryUser(id="user-1", user_name="john.doe@example.com")
    return client


@pytest.fixture
def mock_config():
    return {
        "zitadel": {
            "url": "https://zitadel.example.com",
            "token": "test-token",
            "organization_id": "org-1",
            "project_id": "project-1",
        },
        "sources": {
            "csv": {"file_path": "users.csv"},
        },
        "feature_flags": ["dry_run"],
    }
