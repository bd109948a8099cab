"""Run one sync pass: fetch each source's diff, classify it and apply it."""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from idsync.directory.client import DirectoryClient
from idsync.directory.zitadel import ZitadelClient
from idsync.exceptions import ConfigError
from idsync.metrics.metrics import SOURCE_FAILURES
from idsync.models.config import IdsyncConfig
from idsync.sources.csv import CsvSource
from idsync.sources.disable_list import DisableListSource
from idsync.sources.ldap import LdapSource, PollerFactory, load_poller_factory
from idsync.sources.source import Source
from idsync.sync.apply import ApplyEngine, ApplyReport
from idsync.sync.classifier import classify

logger = logging.getLogger(__name__)


@dataclass
class SourceResult:
    """Outcome of one source within a sync pass."""

    source: str
    source_id: str
    buckets: str = ""
    error: Optional[str] = None
    report: ApplyReport = field(default_factory=ApplyReport)

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    """Outcome of a whole sync pass."""

    results: List[SourceResult] = field(default_factory=list)

    @property
    def failed_sources(self) -> List[SourceResult]:
        return [r for r in self.results if not r.ok]

    @property
    def failed_operations(self) -> int:
        return sum(r.report.failed for r in self.results)

    def totals(self) -> ApplyReport:
        total = ApplyReport()
        for result in self.results:
            total.merge(result.report)
        return total


def build_sources(config: IdsyncConfig, poller_factory: Optional[PollerFactory] = None) -> List[Source[Any]]:
    """Instantiate the configured and enabled sources, in sync order.

    The LDAP poller is built by `poller_factory` when given, otherwise by the
    factory named in the LDAP source's `poller` setting.
    """
    flags = config.feature_flags
    sources: List[Source[Any]] = []

    ldap = config.sources.ldap
    if ldap and ldap.enabled:
        if poller_factory is None and ldap.poller:
            poller_factory = load_poller_factory(ldap.poller)
        poller = poller_factory(ldap) if poller_factory is not None else None
        sources.append(LdapSource(ldap, flags, poller))
    if config.sources.csv and config.sources.csv.enabled:
        sources.append(CsvSource(config.sources.csv, flags))
    if config.sources.disable_list and config.sources.disable_list.enabled:
        sources.append(DisableListSource(config.sources.disable_list, flags))

    return sources


class SyncOrchestrator:
    """Drives a single pass over all sources.

    Sources are processed one after the other. A source that fails to
    produce a diff is logged and recorded, and the remaining sources still run.
    """

    def __init__(
        self,
        config: IdsyncConfig,
        client: DirectoryClient,
        sources: Optional[List[Source[Any]]] = None,
        poller_factory: Optional[PollerFactory] = None,
    ):
        if sources is None:
            if not config.sources.configured():
                raise ConfigError("No sources are configured")
            sources = build_sources(config, poller_factory)

        self.config = config
        self.sources = sources
        self.engine = ApplyEngine(client, config.zitadel, config.feature_flags)

    async def perform_sync(self) -> SyncReport:
        report = SyncReport()
        if self.config.feature_flags.dry_run:
            logger.warning("Dry run enabled: no changes will be made to the identity provider")

        for source in self.sources:
            result = SourceResult(source=source.get_name(), source_id=source.source_id)
            report.results.append(result)

            try:
                diff = await source.get_diff()
            except Exception as e:
                logger.exception(f"Failed to get diff from {source.get_name()} source {source.source_id}")
                SOURCE_FAILURES.labels(source=source.get_name(), source_id=source.source_id).inc()
                result.error = str(e)
                continue

            buckets = classify(diff)
            result.buckets = buckets.summary()
            logger.debug(f"{source.get_name()} ({source.source_id}) operations: {result.buckets}")

            result.report = await self.engine.apply(buckets)

        return report


async def perform_sync(config: IdsyncConfig, poller_factory: Optional[PollerFactory] = None) -> SyncReport:
    """Open a provider client and run one sync pass with the configured sources."""
    async with ZitadelClient(config.zitadel) as client:
        return await SyncOrchestrator(config, client, poller_factory=poller_factory).perform_sync()
