"""Base configuration models shared by all sources.

This module defines the common configuration fields shared by all sources and
the attribute mapping used to read directory records.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, model_validator


class BaseSourceConfig(BaseModel):
    """Base configuration class for all sources."""

    id: str = Field(..., description="Source ID")
    enabled: bool = Field(default=True, description="Whether this source is enabled")


class AttributeMapping(BaseModel):
    """Name of a source attribute and whether it should be read as binary.

    In YAML the mapping is either a bare attribute name or a mapping with
    `name` and `is_binary`.
    """

    name: str
    is_binary: bool = False

    @model_validator(mode="before")
    @classmethod
    def _from_bare_name(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"name": data}
        return data

    def __str__(self) -> str:
        return self.name


class LdapAttributesConfig(BaseModel):
    """Mapping from free-form directory attributes to canonical user fields."""

    first_name: AttributeMapping
    last_name: AttributeMapping
    preferred_username: AttributeMapping
    email: AttributeMapping
    phone: AttributeMapping
    user_id: AttributeMapping
    status: AttributeMapping = Field(..., description="Account status, read as a 32-bit integer (e.g. AD userAccountControl)")
    disable_bitmasks: List[int] = Field(
        default_factory=list,
        description="A user is disabled if any of these bits is set in the status (e.g. 2 for ACCOUNTDISABLE)",
    )
    last_modified: Optional[AttributeMapping] = None
