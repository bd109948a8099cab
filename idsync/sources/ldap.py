"""LDAP source: users reported by a directory poller.

The poller owns the connection, the change detection and its cache. This
module only turns what it reports into canonical users:
- `New` entries become new users.
- `Changed` entries become changed users (old and new state).
- `Removed` entries become deletions by nick name, the external id stored on
  the provider.
"""

import importlib
import logging
from dataclasses import dataclass
from time import perf_counter
from typing import TYPE_CHECKING, Callable, List, Optional, Protocol, Union

from pydantic import BaseModel, Field

from idsync.entities.models import ChangedUser, SourceDiff, User, UserId
from idsync.entities.normalizer import SearchEntry, normalize_user
from idsync.exceptions import ConfigError, SourceError, UserParseError
from idsync.metrics.metrics import SOURCE_DIFF_ITEMS, SOURCE_SYNC_LATENCY
from idsync.models.source_config import BaseSourceConfig, LdapAttributesConfig
from idsync.sources.source import Source

if TYPE_CHECKING:
    from idsync.models.config import FeatureFlags

logger = logging.getLogger(__name__)


class LdapTlsConfig(BaseModel):
    """TLS settings handed to the poller."""

    client_key: Optional[str] = None
    client_certificate: Optional[str] = None
    server_certificate: Optional[str] = None
    danger_disable_tls_verify: bool = False
    danger_use_start_tls: bool = False


class LdapSourceConfig(BaseSourceConfig):
    """Configuration for the LDAP source."""

    url: str = Field(..., description="URL of the LDAP/AD server")
    base_dn: str = Field(..., description="Base DN for searching users")
    bind_dn: str = Field(..., description="DN to bind for authentication")
    bind_password: str = Field(..., description="Password for the bind DN")
    user_filter: str = Field(..., description="Search filter, e.g. (objectClass=person). Do not filter on status")
    timeout: int = Field(default=5, description="Timeout for LDAP operations in seconds")
    check_for_deleted_entries: bool = Field(default=True, description="Whether to report deleted entries")
    use_attribute_filter: bool = Field(default=True, description="Request only the mapped attributes")
    cache_path: str = Field(default="ldap-cache.bin", description="Where the poller keeps its last known state")
    tls: Optional[LdapTlsConfig] = None
    poller: Optional[str] = Field(
        default=None, description="Import path `module:callable` of the factory that builds the directory poller"
    )
    attributes: LdapAttributesConfig


@dataclass
class New:
    """A directory entry seen for the first time."""

    entry: SearchEntry


@dataclass
class Changed:
    """A directory entry whose tracked attributes changed."""

    old: SearchEntry
    new: SearchEntry


@dataclass
class Removed:
    """A directory entry that disappeared; only its persistent id is known."""

    pid: bytes


EntryStatus = Union[New, Changed, Removed]


class DirectoryPoller(Protocol):
    """Change-detecting directory reader."""

    async def sync_once(self) -> List[EntryStatus]:
        ...

    async def persist_cache(self) -> None:
        ...


PollerFactory = Callable[[LdapSourceConfig], DirectoryPoller]
"""Builds a poller from the connection, filter, cache and TLS settings of an LDAP source."""


def load_poller_factory(path: str) -> PollerFactory:
    """Resolve a `module:callable` import path to a poller factory."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigError(f"Invalid poller path `{path}`, expected `module:callable`")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import poller module `{module_name}`: {e}") from e

    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigError(f"Poller factory `{path}` is not a callable")
    return factory


class LdapSource(Source[LdapSourceConfig]):
    """LDAP source implementation."""

    NAME = "LDAP"

    def __init__(
        self,
        config: LdapSourceConfig,
        feature_flags: "FeatureFlags",
        poller: Optional[DirectoryPoller] = None,
    ):
        super().__init__(config, feature_flags)
        self.poller = poller

    def parse_user(self, entry: SearchEntry) -> User:
        return normalize_user(entry, self.config.attributes)

    async def get_diff(self) -> SourceDiff:
        if self.poller is None:
            raise SourceError(
                f"No directory poller available for LDAP source {self.source_id}, set `poller` in its configuration"
            )

        op_start = perf_counter()
        try:
            statuses = await self.poller.sync_once()
        except Exception as e:
            raise SourceError(f"Failed to sync/fetch data from LDAP: {e}") from e

        diff = SourceDiff()
        invalid: List[str] = []

        for status in statuses:
            try:
                if isinstance(status, New):
                    logger.debug(f"New entry: {status.entry.dn}")
                    diff.new_users.append(self.parse_user(status.entry))
                elif isinstance(status, Changed):
                    logger.debug(f"Changes found for {status.new.dn}")
                    diff.changed_users.append(
                        ChangedUser(old=self.parse_user(status.old), new=self.parse_user(status.new))
                    )
                else:
                    pid = status.pid.decode("utf-8")
                    logger.debug(f"Deleted user {pid}")
                    diff.deleted_user_ids.append(UserId.nick(pid))
            except (UserParseError, UnicodeDecodeError) as e:
                invalid.append(str(e))

        if invalid:
            messages = "\n".join(invalid)
            logger.warning(f"Some users cannot be synced due to missing attributes:\n{messages}")

        if self.feature_flags.dry_run:
            logger.warning("Not writing ldap cache during a dry run")
        else:
            await self.poller.persist_cache()

        elapsed = perf_counter() - op_start
        SOURCE_SYNC_LATENCY.labels(source=self.NAME, source_id=self.source_id).observe(elapsed)
        SOURCE_DIFF_ITEMS.labels(source=self.NAME, source_id=self.source_id).observe(diff.total)
        logger.info(
            f"Finished syncing LDAP data: {len(diff.new_users)} new, {len(diff.changed_users)} changed, "
            f"{len(diff.deleted_user_ids)} removed in {elapsed:.3f}s"
        )
        return diff
