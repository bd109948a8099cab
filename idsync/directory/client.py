"""Identity provider client interface and wire models.

The apply engine only talks to the provider through `DirectoryClient`. Errors
are raised as `ProviderError` subclasses carrying the provider status code and
message, which the engine inspects for the invalid-phone retry.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WireModel(BaseModel):
    """Base for provider payloads; serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Gender(str, Enum):
    unspecified = "GENDER_UNSPECIFIED"
    female = "GENDER_FEMALE"
    male = "GENDER_MALE"
    diverse = "GENDER_DIVERSE"


class Profile(WireModel):
    first_name: str
    last_name: str
    display_name: str
    nick_name: str = ""
    gender: Gender = Gender.unspecified
    preferred_language: str = ""


class Email(WireModel):
    email: str
    is_email_verified: bool = False


class Phone(WireModel):
    phone: str
    is_phone_verified: bool = False


class Idp(WireModel):
    """Link to an external identity provider."""

    config_id: str
    external_user_id: str
    display_name: str


class ImportHumanUserRequest(WireModel):
    user_name: str
    profile: Profile
    email: Email
    phone: Optional[Phone] = None
    password_change_required: bool = False
    request_passwordless_registration: bool = True
    idps: List[Idp] = Field(default_factory=list)


class DirectoryUser(WireModel):
    """A user as returned by provider lookups."""

    id: str
    user_name: str = ""
    state: Optional[str] = None


class DirectoryClient(ABC):
    """Method surface of the identity provider used by the apply engine."""

    @abstractmethod
    async def create_human_user(self, org_id: str, request: ImportHumanUserRequest) -> str:
        """Create a human user and return its provider id."""

    @abstractmethod
    async def update_human_user_name(self, org_id: str, user_id: str, user_name: str) -> None:
        ...

    @abstractmethod
    async def update_human_user_profile(self, org_id: str, user_id: str, profile: Profile) -> None:
        ...

    @abstractmethod
    async def update_human_user_email(self, org_id: str, user_id: str, email: Email) -> None:
        ...

    @abstractmethod
    async def update_human_user_phone(self, org_id: str, user_id: str, phone: Phone) -> None:
        ...

    @abstractmethod
    async def remove_human_user_phone(self, org_id: str, user_id: str) -> None:
        ...

    @abstractmethod
    async def set_user_metadata(self, org_id: str, user_id: str, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def add_user_grant(self, org_id: str, user_id: str, project_id: str, role_keys: List[str]) -> None:
        ...

    @abstractmethod
    async def get_user_by_login_name(self, login_name: str) -> Optional[DirectoryUser]:
        """Look up a user by login name, returning None if there is none."""

    @abstractmethod
    async def get_user_by_nick_name(self, org_id: str, nick_name: str) -> Optional[DirectoryUser]:
        """Look up a user by nick name, returning None if there is none."""

    @abstractmethod
    async def remove_user(self, user_id: str) -> None:
        """Remove a user; raises `ProviderNotFoundError` if it does not exist."""
