"""Partition a source diff into provider operations."""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from idsync.entities.models import SourceDiff, User, UserId

logger = logging.getLogger(__name__)


@dataclass
class Buckets:
    """Operations derived from one source diff."""

    create: List[User] = field(default_factory=list)
    disable: List[User] = field(default_factory=list)
    enable: List[User] = field(default_factory=list)
    update: List[Tuple[User, User]] = field(default_factory=list)
    delete: List[UserId] = field(default_factory=list)

    def deactivate_only(self) -> "Buckets":
        """Keep only the operations that remove access."""
        return Buckets(disable=list(self.disable), delete=list(self.delete))

    def summary(self) -> str:
        return (
            f"create={len(self.create)} disable={len(self.disable)} enable={len(self.enable)} "
            f"update={len(self.update)} delete={len(self.delete)}"
        )


def classify(diff: SourceDiff) -> Buckets:
    """Sort new, changed and removed users into operation buckets.

    - New users that start disabled are never created.
    - A changed user that became disabled is disabled with its latest state.
    - A changed user that became enabled is created again.
    - A changed user that stays enabled is updated with both states.
    - A changed user that stays disabled needs no operation.
    - Removed ids are deleted as-is.
    """
    buckets = Buckets()

    for user in diff.new_users:
        if user.enabled:
            buckets.create.append(user)
        else:
            logger.debug(f"Skipping new user {user.log_name}: disabled")

    for changed in diff.changed_users:
        old, new = changed.old, changed.new
        if old.enabled and not new.enabled:
            buckets.disable.append(new)
        elif not old.enabled and new.enabled:
            buckets.enable.append(new)
        elif new.enabled:
            buckets.update.append((old, new))
        else:
            logger.debug(f"Skipping changed user {new.log_name}: still disabled")

    buckets.delete.extend(diff.deleted_user_ids)
    return buckets
