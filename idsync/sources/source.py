"""Base source interface for identity data.

Defines the abstract interface for all sources.
"""

from typing import TYPE_CHECKING, Generic, TypeVar

from idsync.entities.models import SourceDiff
from idsync.models.source_config import BaseSourceConfig

if TYPE_CHECKING:
    from idsync.models.config import FeatureFlags

TConfig = TypeVar("TConfig", bound=BaseSourceConfig)


class Source(Generic[TConfig]):
    """Base class for identity sources.

    A source reports the users it knows about as a `SourceDiff` of new,
    changed and removed users. There may be multiple instances of the same
    source type, but with different configuration.

    Parameters:
        config: A Pydantic model configuration for the source.
        feature_flags: The globally enabled feature flags.
    """

    NAME: str = "source"

    def __init__(self, config: TConfig, feature_flags: "FeatureFlags"):
        """Initialize the source with its configuration."""
        self.config = config
        self.feature_flags = feature_flags

        source_id: str = self.config.id
        if not source_id:
            raise ValueError("Source ID is not set in configuration")
        self.source_id = source_id

    def get_name(self) -> str:
        """Name of the source, for logging."""
        return self.NAME

    async def get_diff(self) -> SourceDiff:
        """Get the changes since the last sync pass.

        Contract:
            - Records that cannot be turned into users are logged and left out;
              they never fail the whole diff.
            - Failing to reach the source raises `SourceError` (or lets the
              underlying error propagate); the caller isolates it per source.
            - The method must not mutate the identity provider.
        """
        raise NotImplementedError
