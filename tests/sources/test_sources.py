import asyncio
from collections import OrderedDict
from unittest.mock import AsyncMock, MagicMock

import pytest

from idsync.entities.models import UserId
from idsync.entities.normalizer import SearchEntry
from idsync.exceptions import ConfigError, SourceError
from idsync.models.config import FeatureFlag, FeatureFlags
from idsync.sources.ldap import Changed, LdapSource, LdapSourceConfig, New, Removed, load_poller_factory
from idsync.sources.source import Source


def _ldap_config(**overrides) -> LdapSourceConfig:
    data = {
        "id": "ldap",
        "url": "ldap://localhost:389",
        "base_dn": "ou=people,dc=example,dc=com",
        "bind_dn": "cn=admin,dc=example,dc=com",
        "bind_password": "secret",
        "user_filter": "(objectClass=person)",
        "attributes": {
            "first_name": "givenName",
            "last_name": "sn",
            "preferred_username": "displayName",
            "email": "mail",
            "phone": "telephoneNumber",
            "user_id": "uid",
            "status": "userAccountControl",
            "disable_bitmasks": [2],
        },
    }
    data.update(overrides)
    return LdapSourceConfig(**data)


def _entry(uid: str, mail: str = "", status: str = "512", **extra) -> SearchEntry:
    attrs = {
        "givenName": ["John"],
        "sn": ["Doe"],
        "displayName": [uid],
        "mail": [mail or f"{uid}@example.com"],
        "uid": [uid],
        "userAccountControl": [status],
    }
    attrs.update(extra)
    return SearchEntry(dn=f"uid={uid},ou=people,dc=example,dc=com", attrs={k: v for k, v in attrs.items() if v})


def _poller(statuses) -> MagicMock:
    poller = MagicMock()
    poller.sync_once = AsyncMock(return_value=statuses)
    poller.persist_cache = AsyncMock()
    return poller


def test_source_initialization():
    mock_config = MagicMock()
    mock_config.id = "test_source"
    flags = FeatureFlags()

    source = Source(mock_config, flags)

    assert source.config == mock_config
    assert source.feature_flags == flags
    assert source.source_id == "test_source"
    assert source.get_name() == "source"


def test_source_requires_id():
    mock_config = MagicMock()
    mock_config.id = ""

    with pytest.raises(ValueError):
        Source(mock_config, FeatureFlags())


def test_ldap_source_builds_diff():
    poller = _poller(
        [
            New(_entry("alice")),
            Changed(old=_entry("bob", status="512"), new=_entry("bob", status="514")),
            Removed(b"carol"),
        ]
    )
    source = LdapSource(_ldap_config(), FeatureFlags(), poller=poller)

    diff = asyncio.run(source.get_diff())

    assert [str(u.email) for u in diff.new_users] == ["alice@example.com"]
    assert len(diff.changed_users) == 1
    assert diff.changed_users[0].old.enabled is True
    assert diff.changed_users[0].new.enabled is False
    assert diff.deleted_user_ids == [UserId.nick("carol")]
    poller.persist_cache.assert_awaited_once()


def test_ldap_source_skips_unparseable_entries(caplog):
    broken = _entry("dave")
    del broken.attrs["mail"]
    poller = _poller([New(_entry("alice")), New(broken)])
    source = LdapSource(_ldap_config(), FeatureFlags(), poller=poller)

    diff = asyncio.run(source.get_diff())

    assert len(diff.new_users) == 1
    assert "missing `mail` values for `uid=dave,ou=people,dc=example,dc=com`" in caplog.text


def test_ldap_source_does_not_persist_cache_in_dry_run(caplog):
    poller = _poller([New(_entry("alice"))])
    source = LdapSource(_ldap_config(), FeatureFlags(flags=[FeatureFlag.dry_run]), poller=poller)

    diff = asyncio.run(source.get_diff())

    assert len(diff.new_users) == 1
    poller.persist_cache.assert_not_awaited()
    assert "Not writing ldap cache during a dry run" in caplog.text


def test_ldap_source_wraps_poller_errors():
    poller = _poller([])
    poller.sync_once.side_effect = ConnectionError("connection refused")
    source = LdapSource(_ldap_config(), FeatureFlags(), poller=poller)

    with pytest.raises(SourceError, match="Failed to sync/fetch data from LDAP"):
        asyncio.run(source.get_diff())


def test_ldap_source_without_poller():
    source = LdapSource(_ldap_config(), FeatureFlags())

    with pytest.raises(SourceError):
        asyncio.run(source.get_diff())


def test_load_poller_factory():
    assert load_poller_factory("collections:OrderedDict") is OrderedDict


@pytest.mark.parametrize(
    "path, message",
    [
        ("collections", "expected `module:callable`"),
        ("no_such_module_for_idsync:build", "Cannot import poller module"),
        ("os:sep", "is not a callable"),
    ],
)
def test_load_poller_factory_invalid(path, message):
    with pytest.raises(ConfigError, match=message):
        load_poller_factory(path)


def test_ldap_config_poller_path():
    assert _ldap_config().poller is None
    assert _ldap_config(poller="pollers.ad:build_poller").poller == "pollers.ad:build_poller"
