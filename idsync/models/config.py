"""Configuration models for idsync.

This module defines the configuration structure for the identity provider,
the sources and the opt-in feature flags.
"""

import os
from enum import Enum
from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from idsync.exceptions import ConfigError
from idsync.sources.csv import CsvSourceConfig
from idsync.sources.disable_list import DisableListSourceConfig
from idsync.sources.ldap import LdapSourceConfig

DEFAULT_CONFIG_PATH = "config.yaml"
CONFIG_PATH_ENV = "IDSYNC_CONFIG"


class ZitadelConfig(BaseModel):
    """Connection and placement settings for the identity provider."""

    url: str = Field(..., description="Base URL of the Zitadel instance")
    token: Optional[str] = Field(default=None, description="Service user access token (or IDSYNC_ZITADEL_TOKEN)")
    organization_id: str = Field(..., description="Organization users are created in")
    project_id: str = Field(..., description="Project the user role is granted on")
    idp_id: str = Field(default="", description="Identity provider to link users with when SSO login is enabled")
    timeout: float = Field(default=30.0, description="Request timeout in seconds")


class FeatureFlag(str, Enum):
    """Opt-in features."""

    dry_run = "dry_run"
    deactivate_only = "deactivate_only"
    verify_email = "verify_email"
    verify_phone = "verify_phone"
    sso_login = "sso_login"


class FeatureFlags(BaseModel):
    """Set of enabled feature flags."""

    flags: List[FeatureFlag] = Field(default_factory=list)

    def is_enabled(self, flag: FeatureFlag) -> bool:
        return flag in self.flags

    @property
    def dry_run(self) -> bool:
        return self.is_enabled(FeatureFlag.dry_run)

    @property
    def deactivate_only(self) -> bool:
        return self.is_enabled(FeatureFlag.deactivate_only)

    @property
    def require_email_verification(self) -> bool:
        return self.is_enabled(FeatureFlag.verify_email)

    @property
    def require_phone_verification(self) -> bool:
        return self.is_enabled(FeatureFlag.verify_phone)

    @property
    def sso_login_enabled(self) -> bool:
        return self.is_enabled(FeatureFlag.sso_login)


class SourcesConfig(BaseModel):
    """Configuration for all sources (LDAP, CSV, disable list)."""

    ldap: Optional[LdapSourceConfig] = None
    csv: Optional[CsvSourceConfig] = None
    disable_list: Optional[DisableListSourceConfig] = None

    def configured(self) -> List[str]:
        """Names of the sources present in the configuration, in sync order."""
        return [name for name in ("ldap", "csv", "disable_list") if getattr(self, name) is not None]


class IdsyncConfig(BaseModel):
    """Main configuration for idsync."""

    zitadel: ZitadelConfig
    sources: SourcesConfig = Field(default_factory=SourcesConfig)
    feature_flags: FeatureFlags = Field(default_factory=FeatureFlags)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Level of the idsync loggers"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, v):
        return v.upper() if isinstance(v, str) else v


class ConfigLoader:
    """Utility class for loading configuration from YAML files."""

    @staticmethod
    def default_path() -> str:
        return os.getenv(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH)

    @staticmethod
    def load(path: Optional[str] = None) -> IdsyncConfig:
        """Load configuration from a YAML file.

        Args:
            path: Path to the YAML configuration file. Defaults to
                `$IDSYNC_CONFIG` or `config.yaml`.

        Returns:
            IdsyncConfig: Loaded configuration object.

        Raises:
            ConfigError: If the file is missing or does not validate.
        """
        p = Path(path or ConfigLoader.default_path())
        if not p.exists():
            raise ConfigError(f"Configuration file {p} not found")

        with open(p, "r") as f:
            raw_data = yaml.safe_load(f) or {}

        # Inject the source key as 'id' if not provided
        sources = raw_data.get("sources") or {}
        for source_type, source_config in sources.items():
            if isinstance(source_config, dict) and "id" not in source_config:
                source_config["id"] = source_type

        # Feature flags are written as a plain list in YAML
        flags = raw_data.get("feature_flags")
        if isinstance(flags, list):
            raw_data["feature_flags"] = {"flags": flags}

        try:
            return IdsyncConfig(**raw_data)
        except ValueError as e:
            raise ConfigError(f"Invalid configuration in {p}: {e}") from e
