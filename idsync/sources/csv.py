"""CSV source: users listed in an exported CSV file.

The file must have the header `email,first_name,last_name,phone`. Every
row is reported as a new, enabled user whose email doubles as preferred
username and external id. Changes and removals are not detected.
"""

import csv
import logging
from pathlib import Path
from time import perf_counter
from typing import Dict, Final, List, Optional

from pydantic import Field

from idsync.entities.models import AttributeValue, SourceDiff, User
from idsync.exceptions import SourceError
from idsync.metrics.metrics import SOURCE_DIFF_ITEMS, SOURCE_SYNC_LATENCY
from idsync.models.source_config import BaseSourceConfig
from idsync.sources.source import Source

logger = logging.getLogger(__name__)


class CsvSourceConfig(BaseSourceConfig):
    """Configuration for the CSV source."""

    file_path: Path = Field(..., description="Path to the CSV file")


class CsvSource(Source[CsvSourceConfig]):
    """CSV source implementation."""

    NAME = "CSV"
    COLUMNS: Final[tuple] = ("email", "first_name", "last_name", "phone")

    async def get_diff(self) -> SourceDiff:
        op_start = perf_counter()
        new_users = self.read_csv()
        elapsed = perf_counter() - op_start
        SOURCE_SYNC_LATENCY.labels(source=self.NAME, source_id=self.source_id).observe(elapsed)
        SOURCE_DIFF_ITEMS.labels(source=self.NAME, source_id=self.source_id).observe(len(new_users))
        return SourceDiff(new_users=new_users)

    def read_csv(self) -> List[User]:
        """Get the list of users from the CSV file."""
        file_path = self.config.file_path
        try:
            f = open(file_path, "r", encoding="utf-8", newline="")
        except OSError as e:
            raise SourceError(f"Failed to open CSV file {file_path}: {e}") from e

        users: List[User] = []
        with f:
            reader = csv.DictReader(f, skipinitialspace=True)
            for line, row in enumerate(reader, start=2):
                user = self._to_user(row)
                if user is None:
                    logger.error(f"Failed to deserialize line {line} of {file_path}: expected columns {self.COLUMNS}")
                    continue
                users.append(user)

        logger.info(f"Read {len(users)} users from {file_path}")
        return users

    def _to_user(self, row: Dict[Optional[str], Optional[str]]) -> Optional[User]:
        values = {column: row.get(column) for column in self.COLUMNS}
        if any(value is None for value in values.values()):
            return None

        email = str(values["email"]).strip()
        phone = str(values["phone"]).strip()
        return User(
            first_name=AttributeValue.text(str(values["first_name"]).strip()),
            last_name=AttributeValue.text(str(values["last_name"]).strip()),
            preferred_username=AttributeValue.text(email),
            email=AttributeValue.text(email),
            external_user_id=AttributeValue.text(email),
            phone=AttributeValue.text(phone) if phone else None,
            enabled=True,
        )
