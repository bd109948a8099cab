"""Attribute resolution and user normalization for directory records."""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from idsync.entities.models import AttributeValue, User
from idsync.exceptions import MissingAttributeError, StatusParseError
from idsync.models.source_config import AttributeMapping, LdapAttributesConfig

logger = logging.getLogger(__name__)

_INT_PATTERN = re.compile(r"[+-]?\d+")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


@dataclass
class SearchEntry:
    """A raw directory record.

    Attribute values that are valid UTF-8 are listed in `attrs`; everything
    else is only available in `bin_attrs`.
    """

    dn: str
    attrs: Dict[str, List[str]] = field(default_factory=dict)
    bin_attrs: Dict[str, List[bytes]] = field(default_factory=dict)

    def attr_first(self, name: str) -> str | None:
        values = self.attrs.get(name)
        return values[0] if values else None

    def bin_attr_first(self, name: str) -> bytes | None:
        values = self.bin_attrs.get(name)
        return values[0] if values else None


def resolve_attribute(entry: SearchEntry, mapping: AttributeMapping) -> AttributeValue:
    """Read the first value of a mapped attribute from an entry.

    Binary mappings prefer the binary form and fall back to the text form
    re-encoded as bytes, since directories only list values that are not
    valid UTF-8 as binary.

    Raises:
        MissingAttributeError: If the attribute has no usable value.
    """
    if mapping.is_binary:
        binary = entry.bin_attr_first(mapping.name)
        if binary is not None:
            return AttributeValue.binary(binary)
        text = entry.attr_first(mapping.name)
        if text is not None:
            return AttributeValue.binary(text.encode("utf-8"))
    else:
        text = entry.attr_first(mapping.name)
        if text is not None:
            return AttributeValue.text(text)

    raise MissingAttributeError(mapping.name, entry.dn)


def parse_status(value: AttributeValue) -> int:
    """Interpret a status attribute as a signed 32-bit integer."""
    if value.is_binary:
        raw = value.as_bytes()
        if len(raw) != 4:
            raise StatusParseError("failed to convert to i32 flag")
        return int.from_bytes(raw, "big", signed=True)

    text = str(value)
    if not _INT_PATTERN.fullmatch(text):
        raise StatusParseError(f"invalid status value `{text}`")
    status = int(text)
    if not _INT32_MIN <= status <= _INT32_MAX:
        raise StatusParseError(f"status value `{text}` out of range for i32")
    return status


def is_enabled(status: int, disable_bitmasks: Iterable[int]) -> bool:
    """A user is enabled unless one of the disable bits is set in its status."""
    return not any(status & flag != 0 for flag in disable_bitmasks)


def normalize_user(entry: SearchEntry, attributes: LdapAttributesConfig) -> User:
    """Build a canonical user from a directory entry.

    All fields except the phone number are required.
    """
    status = parse_status(resolve_attribute(entry, attributes.status))
    enabled = is_enabled(status, attributes.disable_bitmasks)

    first_name = resolve_attribute(entry, attributes.first_name)
    last_name = resolve_attribute(entry, attributes.last_name)
    preferred_username = resolve_attribute(entry, attributes.preferred_username)
    email = resolve_attribute(entry, attributes.email)
    external_user_id = resolve_attribute(entry, attributes.user_id)
    try:
        phone = resolve_attribute(entry, attributes.phone)
    except MissingAttributeError:
        logger.debug(f"No phone number for `{entry.dn}`")
        phone = None

    return User(
        first_name=first_name,
        last_name=last_name,
        preferred_username=preferred_username,
        email=email,
        external_user_id=external_user_id,
        phone=phone,
        enabled=enabled,
    )
