"""Canonical user models shared by all sources and the apply engine."""

import base64
import hashlib
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Union

# Namespace for deterministic link ids. Must never change once users have been synced.
LINK_ID_NAMESPACE = uuid.UUID("d9979cff-abee-4666-bc88-1ec45a843fb8")


@dataclass(frozen=True, eq=False)
class AttributeValue:
    """A source attribute value that is either text or raw bytes.

    Two values are equal when their byte representations match, so
    `AttributeValue.text("a") == AttributeValue.binary(b"a")`.
    """

    value: Union[str, bytes]

    @classmethod
    def text(cls, value: str) -> "AttributeValue":
        return cls(value)

    @classmethod
    def binary(cls, value: bytes) -> "AttributeValue":
        return cls(bytes(value))

    @property
    def is_binary(self) -> bool:
        return isinstance(self.value, bytes)

    def as_bytes(self) -> bytes:
        if isinstance(self.value, bytes):
            return self.value
        return self.value.encode("utf-8")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AttributeValue):
            return NotImplemented
        return self.as_bytes() == other.as_bytes()

    def __hash__(self) -> int:
        return hash(self.as_bytes())

    def __str__(self) -> str:
        if isinstance(self.value, bytes):
            return base64.b64encode(self.value).decode("ascii")
        return self.value

    def __repr__(self) -> str:
        tag = "Binary" if self.is_binary else "Text"
        return f"{tag}({self.value!r})"


def link_id(external_user_id: AttributeValue) -> uuid.UUID:
    """Derive the deterministic UUIDv5 link id (localpart) for an external id.

    The digest is computed over the raw bytes of the id, so binary ids that
    are not valid UTF-8 still map to a stable value.
    """
    digest = hashlib.sha1(LINK_ID_NAMESPACE.bytes + external_user_id.as_bytes()).digest()
    return uuid.UUID(bytes=digest[:16], version=5)


def _redact(value: Optional[AttributeValue]) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    if "@" in text:
        local, _, domain = text.partition("@")
        return f"{local[:1]}***@{domain}"
    return f"{text[:1]}***" if text else ""


@dataclass
class User:
    """Source-agnostic representation of a directory user."""

    first_name: AttributeValue
    last_name: AttributeValue
    preferred_username: AttributeValue
    email: AttributeValue
    external_user_id: AttributeValue
    phone: Optional[AttributeValue] = None
    enabled: bool = True

    @property
    def display_name(self) -> str:
        return f"{self.last_name}, {self.first_name}"

    @property
    def log_name(self) -> str:
        """Name used to identify this user in logs."""
        return f"email={self.email}"

    @property
    def link_id(self) -> uuid.UUID:
        return link_id(self.external_user_id)

    def without_phone(self) -> "User":
        return replace(self, phone=None)

    def redacted(self) -> Dict[str, object]:
        """Return a log-safe view of the user."""
        return {
            "first_name": _redact(self.first_name),
            "last_name": _redact(self.last_name),
            "preferred_username": _redact(self.preferred_username),
            "email": _redact(self.email),
            "phone": _redact(self.phone),
            "external_user_id": str(self.external_user_id),
            "enabled": self.enabled,
        }

    def __str__(self) -> str:
        return self.log_name


@dataclass
class ChangedUser:
    """One directory entry observed in two states."""

    old: User
    new: User


class UserIdKind(str, Enum):
    """How a provider-side user is looked up."""

    LOGIN = "login"
    NICK = "nick"
    DIRECTORY_ID = "directory_id"


@dataclass(frozen=True)
class UserId:
    """Identity token used to resolve a deletion target at the provider."""

    kind: UserIdKind
    value: str

    @classmethod
    def login(cls, value: str) -> "UserId":
        return cls(UserIdKind.LOGIN, value)

    @classmethod
    def nick(cls, value: str) -> "UserId":
        return cls(UserIdKind.NICK, value)

    @classmethod
    def directory_id(cls, value: str) -> "UserId":
        return cls(UserIdKind.DIRECTORY_ID, value)

    def __str__(self) -> str:
        return f"{self.kind.value}={self.value}"


@dataclass
class SourceDiff:
    """Changes reported by one source for one sync pass."""

    new_users: List[User] = field(default_factory=list)
    changed_users: List[ChangedUser] = field(default_factory=list)
    deleted_user_ids: List[UserId] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.new_users) + len(self.changed_users) + len(self.deleted_user_ids)
