"""Apply classified operations against the identity provider.

Every item is applied on its own: a failure is logged and counted, and the
next item is processed. There is no rollback. In a dry run every mutating
call is replaced with an info log; read-only lookups still run so that the
log reflects what a real run would do.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, Final, List, Set, Tuple

from idsync.directory.client import (
    DirectoryClient,
    Email,
    Idp,
    ImportHumanUserRequest,
    Phone,
    Profile,
)
from idsync.entities.models import User, UserId, UserIdKind
from idsync.exceptions import ProviderError, ProviderNotFoundError, StatusCode, UserNotFoundError
from idsync.metrics.metrics import OPERATIONS
from idsync.models.config import FeatureFlags, ZitadelConfig
from idsync.sync.classifier import Buckets

logger = logging.getLogger(__name__)

USER_ROLE: Final[str] = "User"
"""Project role granted to every created user."""

CREATE_INVALID_PHONE_MARKER: Final[str] = "PHONE-so0wa"
UPDATE_INVALID_PHONE_MARKER: Final[str] = "PHONE-Ae2qk"

TRACKED_FIELDS: Final[Tuple[str, ...]] = ("email", "first_name", "last_name", "phone", "preferred_username")


class Outcome(str, Enum):
    succeeded = "succeeded"
    failed = "failed"
    skipped = "skipped"
    dry_run = "dry_run"


@dataclass
class ApplyReport:
    """Per-operation outcome counts of one apply run."""

    counts: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def record(self, operation: str, outcome: Outcome) -> None:
        per_op = self.counts.setdefault(operation, {})
        per_op[outcome.value] = per_op.get(outcome.value, 0) + 1
        OPERATIONS.labels(operation=operation, status=outcome.value).inc()

    def count(self, operation: str, outcome: Outcome) -> int:
        return self.counts.get(operation, {}).get(outcome.value, 0)

    @property
    def failed(self) -> int:
        return sum(per_op.get(Outcome.failed.value, 0) for per_op in self.counts.values())

    def merge(self, other: "ApplyReport") -> None:
        for operation, per_op in other.counts.items():
            target = self.counts.setdefault(operation, {})
            for outcome, n in per_op.items():
                target[outcome] = target.get(outcome, 0) + n


def is_invalid_phone_error(error: Exception, marker: str) -> bool:
    """Whether the provider rejected a request because of the phone number."""
    return (
        isinstance(error, ProviderError)
        and error.code == StatusCode.INVALID_ARGUMENT
        and marker in error.message
    )


def changed_fields(old: User, new: User) -> List[str]:
    return [name for name in TRACKED_FIELDS if getattr(old, name) != getattr(new, name)]


class ApplyEngine:
    """Executes create, update and delete operations for one sync pass."""

    def __init__(self, client: DirectoryClient, config: ZitadelConfig, feature_flags: FeatureFlags):
        self.client = client
        self.config = config
        self.feature_flags = feature_flags

    @property
    def org_id(self) -> str:
        return self.config.organization_id

    @property
    def dry_run(self) -> bool:
        return self.feature_flags.dry_run

    async def apply(self, buckets: Buckets) -> ApplyReport:
        """Apply all buckets in order: create, disable, enable, update, delete."""
        if self.feature_flags.deactivate_only:
            suppressed = len(buckets.create) + len(buckets.enable) + len(buckets.update)
            if suppressed:
                logger.info(f"Deactivate-only mode: skipping {suppressed} create/enable/update operations")
            buckets = buckets.deactivate_only()

        report = ApplyReport()
        await self.import_users(buckets.create, report)
        await self.disable_users(buckets.disable, report)
        await self.import_users(buckets.enable, report, operation="enable")
        await self.update_users(buckets.update, report)
        await self.delete_users(buckets.delete, report)
        return report

    async def _run(
        self, report: ApplyReport, operation: str, name: str, action: Callable[[], Awaitable[Outcome]]
    ) -> None:
        try:
            outcome = await action()
        except Exception as e:
            logger.error(f"Failed to {operation} user `{name}`: {e}")
            outcome = Outcome.failed
        report.record(operation, outcome)

    async def import_users(self, users: List[User], report: ApplyReport, operation: str = "create") -> None:
        for user in users:
            await self._run(report, operation, user.log_name, lambda user=user: self.create_user_with_fallback(user))

    async def disable_users(self, users: List[User], report: ApplyReport) -> None:
        for user in users:
            target = UserId.nick(str(user.external_user_id))
            await self._run(report, "disable", user.log_name, lambda target=target: self.delete_user(target))

    async def update_users(self, pairs: List[Tuple[User, User]], report: ApplyReport) -> None:
        for old, new in pairs:
            await self._run(report, "update", new.log_name, lambda old=old, new=new: self.update_user(old, new))

    async def delete_users(self, user_ids: List[UserId], report: ApplyReport) -> None:
        for user_id in user_ids:
            await self._run(report, "delete", str(user_id), lambda user_id=user_id: self.delete_user(user_id))

    def build_import_request(self, user: User) -> ImportHumanUserRequest:
        flags = self.feature_flags
        idps = []
        if flags.sso_login_enabled:
            idps.append(
                Idp(
                    config_id=self.config.idp_id,
                    external_user_id=str(user.external_user_id),
                    display_name=user.display_name,
                )
            )

        return ImportHumanUserRequest(
            user_name=str(user.email),
            profile=self._profile(user),
            email=Email(email=str(user.email), is_email_verified=not flags.require_email_verification),
            phone=(
                Phone(phone=str(user.phone), is_phone_verified=not flags.require_phone_verification)
                if user.phone is not None
                else None
            ),
            password_change_required=False,
            request_passwordless_registration=True,
            idps=idps,
        )

    @staticmethod
    def _profile(user: User) -> Profile:
        return Profile(
            first_name=str(user.first_name),
            last_name=str(user.last_name),
            display_name=user.display_name,
            nick_name=str(user.external_user_id),
        )

    async def create_user(self, user: User) -> Outcome:
        """Create a user, then set its metadata and grant the user role."""
        if self.dry_run:
            logger.info(f"Would have created user {user.log_name}: {user.redacted()}")
            return Outcome.dry_run

        user_id = await self.client.create_human_user(self.org_id, self.build_import_request(user))
        await self.client.set_user_metadata(self.org_id, user_id, "preferred_username", str(user.preferred_username))
        await self.client.set_user_metadata(self.org_id, user_id, "localpart", str(user.link_id))
        await self.client.add_user_grant(self.org_id, user_id, self.config.project_id, [USER_ROLE])

        logger.info(f"Created user {user.log_name} with id {user_id}")
        return Outcome.succeeded

    async def create_user_with_fallback(self, user: User) -> Outcome:
        """Create a user, retrying once without phone if the provider rejects the number."""
        try:
            return await self.create_user(user)
        except ProviderError as e:
            if not is_invalid_phone_error(e, CREATE_INVALID_PHONE_MARKER):
                raise
            logger.warning(f"Invalid phone number for user {user.log_name}, retrying without phone: {e}")

        try:
            outcome = await self.create_user(user.without_phone())
        except Exception as e:
            logger.error(f"Retry without phone failed for user {user.log_name}: {e}")
            raise
        logger.info(f"Created user {user.log_name} without phone number")
        return outcome

    async def update_user(self, old: User, new: User) -> Outcome:
        """Update only the fields that changed between the two states."""
        existing = await self.client.get_user_by_login_name(str(old.email))
        if existing is None:
            raise UserNotFoundError(f"Could not find user with login name {old.email}")

        fields = changed_fields(old, new)
        if not fields:
            logger.debug(f"No tracked changes for user {new.log_name}")
            return Outcome.skipped

        if self.dry_run:
            logger.info(
                f"Would have updated user {new.log_name} ({', '.join(fields)}): "
                f"before={old.redacted()} after={new.redacted()}"
            )
            return Outcome.dry_run

        completed: Set[str] = set()
        try:
            await self._apply_changes(existing.id, old, new, completed)
        except ProviderError as e:
            if not is_invalid_phone_error(e, UPDATE_INVALID_PHONE_MARKER):
                raise
            logger.warning(f"Invalid phone number for user {new.log_name}, retrying without phone: {e}")
            try:
                await self._apply_changes(existing.id, old, new.without_phone(), completed)
            except Exception as retry_error:
                logger.error(f"Retry without phone failed for user {new.log_name}: {retry_error}")
                raise
            logger.info(f"Updated user {new.log_name} without phone number")
            return Outcome.succeeded

        logger.info(f"Updated user {new.log_name} ({', '.join(fields)})")
        return Outcome.succeeded

    async def _apply_changes(self, user_id: str, old: User, new: User, completed: Set[str]) -> None:
        """Issue one provider call per changed field, in a fixed order.

        Steps already in `completed` are not sent again, so a retry resumes
        at the step that failed. The provider rejects writes that change nothing.
        """
        flags = self.feature_flags

        if "user_name" not in completed and old.email != new.email:
            logger.warning(f"Email of user {old.log_name} changed to {new.email}, changing login name")
            await self.client.update_human_user_name(self.org_id, user_id, str(new.email))
        completed.add("user_name")

        if "profile" not in completed and (old.first_name != new.first_name or old.last_name != new.last_name):
            await self.client.update_human_user_profile(self.org_id, user_id, self._profile(new))
        completed.add("profile")

        if "phone" not in completed and old.phone != new.phone:
            if new.phone is None:
                await self.client.remove_human_user_phone(self.org_id, user_id)
            else:
                phone = Phone(phone=str(new.phone), is_phone_verified=not flags.require_phone_verification)
                await self.client.update_human_user_phone(self.org_id, user_id, phone)
        completed.add("phone")

        if "email" not in completed and old.email != new.email:
            email = Email(email=str(new.email), is_email_verified=not flags.require_email_verification)
            await self.client.update_human_user_email(self.org_id, user_id, email)
        completed.add("email")

        if "preferred_username" not in completed and old.preferred_username != new.preferred_username:
            await self.client.set_user_metadata(
                self.org_id, user_id, "preferred_username", str(new.preferred_username)
            )
        completed.add("preferred_username")

    async def delete_user(self, user_id: UserId) -> Outcome:
        """Remove the user addressed by an identity token.

        Users that cannot be found by login or nick name are already gone and
        are skipped. A direct id that does not exist is an error.
        """
        if user_id.kind == UserIdKind.DIRECTORY_ID:
            if self.dry_run:
                logger.info(f"Would have deleted user {user_id}")
                return Outcome.dry_run
            await self.client.remove_user(user_id.value)
            logger.info(f"Deleted user {user_id}")
            return Outcome.succeeded

        if user_id.kind == UserIdKind.LOGIN:
            existing = await self.client.get_user_by_login_name(user_id.value)
        else:
            existing = await self.client.get_user_by_nick_name(self.org_id, user_id.value)

        if existing is None:
            logger.info(f"User {user_id} not found, nothing to delete")
            return Outcome.skipped

        if self.dry_run:
            logger.info(f"Would have deleted user {user_id} (id {existing.id}, login {existing.user_name})")
            return Outcome.dry_run

        try:
            await self.client.remove_user(existing.id)
        except ProviderNotFoundError:
            logger.info(f"User {user_id} disappeared before it could be deleted")
            return Outcome.skipped

        logger.info(f"Deleted user {user_id}")
        return Outcome.succeeded
