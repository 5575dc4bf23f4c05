from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Optional

from psycopg_pool import ConnectionPool

from cruso.config import DatabaseConfig
from cruso.db import schema
from cruso.db.types import DatabaseInterface
from cruso.db.queries import accounts as account_q
from cruso.db.queries import calendar as cal_q
from cruso.db.queries import exchange as exchange_q
from cruso.db.queries import preferences as pref_q
from cruso.db.queries import schedules as schedule_q
from cruso.db.queries import users as user_q

logger = logging.getLogger(__name__)


class PostgresDatabase(DatabaseInterface):
    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "cruso",
        user: str = "cruso",
        password: str = "",
        ssl_mode: str = "prefer",
    ):
        super().__init__()

        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.ssl_mode = ssl_mode
        self._pool: Any = None

    def _get_connection_string(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}?sslmode={self.ssl_mode}"

    def initialize(self) -> None:
        self._pool = ConnectionPool(
            self._get_connection_string(), min_size=1, max_size=10
        )

        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                schema.initialize(cur)
                conn.commit()
        logger.info(f"Database initialized: {self.host}:{self.port}/{self.database}")

    @contextmanager
    def connection(self) -> Iterator[Any]:
        if not self._pool:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        with self._pool.connection() as conn:
            yield conn

    def close(self) -> None:
        if self._pool:
            self._pool.close()
            self._pool = None

    # Users and sessions

    def get_user(self, user_id: str) -> Optional[dict[str, Any]]:
        return user_q.get_user(self, user_id)

    def get_user_by_email(self, email: str) -> Optional[dict[str, Any]]:
        return user_q.get_user_by_email(self, email)

    def get_user_by_session_token(self, token: str) -> Optional[dict[str, Any]]:
        return user_q.get_user_by_session_token(self, token)

    # Accounts

    def get_account(
        self, account_id: str, user_id: Optional[str] = None
    ) -> Optional[dict[str, Any]]:
        return account_q.get_account(self, account_id, user_id)

    def list_accounts(self, user_id: str) -> list[dict[str, Any]]:
        return account_q.list_accounts(self, user_id)

    def update_account_tokens(
        self, account_id: str, access_token: str, expires_at: Optional[datetime]
    ) -> None:
        return account_q.update_account_tokens(self, account_id, access_token, expires_at)

    # Calendar connections

    def get_active_connections(
        self, user_id: str, availability_only: bool = False
    ) -> list[dict[str, Any]]:
        return cal_q.get_active_connections(self, user_id, availability_only)

    def list_connections(self, user_id: str) -> list[dict[str, Any]]:
        return cal_q.list_connections(self, user_id)

    def get_connection(
        self, user_id: str, connection_id: int
    ) -> Optional[dict[str, Any]]:
        return cal_q.get_connection(self, user_id, connection_id)

    def get_connection_by_calendar_id(
        self, user_id: str, calendar_id: str
    ) -> Optional[dict[str, Any]]:
        return cal_q.get_connection_by_calendar_id(self, user_id, calendar_id)

    def get_primary_connection(self, user_id: str) -> Optional[dict[str, Any]]:
        return cal_q.get_primary_connection(self, user_id)

    def upsert_connection(
        self,
        user_id: str,
        account_id: str,
        calendar_id: str,
        calendar_name: Optional[str],
        is_primary: bool = False,
    ) -> dict[str, Any]:
        return cal_q.upsert_connection(
            self, user_id, account_id, calendar_id, calendar_name, is_primary
        )

    def update_connection(
        self,
        user_id: str,
        connection_id: int,
        include_in_availability: Optional[bool] = None,
        is_active: Optional[bool] = None,
        is_primary: Optional[bool] = None,
    ) -> Optional[dict[str, Any]]:
        return cal_q.update_connection(
            self, user_id, connection_id, include_in_availability, is_active, is_primary
        )

    def deactivate_account_connections(self, user_id: str, account_id: str) -> int:
        return cal_q.deactivate_account_connections(self, user_id, account_id)

    # Preferences

    def get_preferences(self, user_id: str) -> Optional[dict[str, Any]]:
        return pref_q.get_preferences(self, user_id)

    def upsert_preferences(self, user_id: str, values: dict[str, Any]) -> dict[str, Any]:
        return pref_q.upsert_preferences(self, user_id, values)

    def delete_preferences(self, user_id: str) -> bool:
        return pref_q.delete_preferences(self, user_id)

    # Working hours / availability schedules

    def list_schedule_entries(self, kind: str, user_id: str) -> list[dict[str, Any]]:
        return schedule_q.list_schedule_entries(self, kind, user_id)

    def get_schedule_entry(
        self, kind: str, user_id: str, entry_id: int
    ) -> Optional[dict[str, Any]]:
        return schedule_q.get_schedule_entry(self, kind, user_id, entry_id)

    def create_schedule_entry(
        self,
        kind: str,
        user_id: str,
        days: list[int],
        start_time: str,
        end_time: str,
        timezone: Optional[str],
    ) -> dict[str, Any]:
        return schedule_q.create_schedule_entry(
            self, kind, user_id, days, start_time, end_time, timezone
        )

    def update_schedule_entry(
        self, kind: str, user_id: str, entry_id: int, values: dict[str, Any]
    ) -> Optional[dict[str, Any]]:
        return schedule_q.update_schedule_entry(self, kind, user_id, entry_id, values)

    def delete_schedule_entry(self, kind: str, user_id: str, entry_id: int) -> bool:
        return schedule_q.delete_schedule_entry(self, kind, user_id, entry_id)

    def replace_schedule_entries(
        self, kind: str, user_id: str, records: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        return schedule_q.replace_schedule_entries(self, kind, user_id, records)

    # Exchanges

    def get_exchange_message(self, message_id: str) -> Optional[dict[str, Any]]:
        return exchange_q.get_exchange_message(self, message_id)

    def insert_exchange_message(
        self,
        exchange_id: str,
        message_id: str,
        previous_message_id: Optional[str],
        sender: Optional[str],
        recipients: list[str],
        subject: Optional[str],
        body: Optional[str],
        timestamp: datetime,
        message_type: str,
        owner_id: Optional[str] = None,
    ) -> dict[str, Any]:
        return exchange_q.insert_exchange_message(
            self,
            exchange_id,
            message_id,
            previous_message_id,
            sender,
            recipients,
            subject,
            body,
            timestamp,
            message_type,
            owner_id,
        )

    def list_exchange_messages(self, exchange_id: str) -> list[dict[str, Any]]:
        return exchange_q.list_exchange_messages(self, exchange_id)

    def get_latest_exchange_message(self, exchange_id: str) -> Optional[dict[str, Any]]:
        return exchange_q.get_latest_exchange_message(self, exchange_id)

    def count_exchange_messages(self, exchange_id: str) -> int:
        return exchange_q.count_exchange_messages(self, exchange_id)

    def set_exchange_owner(self, exchange_id: str, owner_id: str) -> int:
        return exchange_q.set_exchange_owner(self, exchange_id, owner_id)

    def get_exchange_owner(self, exchange_id: str) -> Optional[str]:
        return exchange_q.get_exchange_owner(self, exchange_id)

    def list_exchanges(self, owner_id: str) -> list[dict[str, Any]]:
        return exchange_q.list_exchanges(self, owner_id)


def create_database(config: DatabaseConfig) -> PostgresDatabase:
    pg = config.postgres
    return PostgresDatabase(
        host=pg.host,
        port=pg.port,
        database=pg.database,
        user=pg.user,
        password=pg.password,
        ssl_mode=pg.ssl_mode,
    )
