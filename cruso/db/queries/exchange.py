"""Email exchange (thread) storage."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from psycopg.rows import dict_row

from cruso.db.types import DatabaseInterface


def get_exchange_message(
    db: DatabaseInterface, message_id: str
) -> Optional[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT * FROM exchange_data WHERE message_id = %s", (message_id,)
            )
            return cur.fetchone()


def insert_exchange_message(
    db: DatabaseInterface,
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
    """Store a message. A message_id already stored returns the existing row."""
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                INSERT INTO exchange_data (
                    exchange_id, exchange_owner_id, message_id, previous_message_id,
                    sender, recipients, subject, body, timestamp, type
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (message_id) DO NOTHING
                RETURNING *
                """,
                (
                    exchange_id,
                    owner_id,
                    message_id,
                    previous_message_id,
                    sender,
                    json.dumps(recipients or []),
                    subject,
                    body,
                    timestamp,
                    message_type,
                ),
            )
            row = cur.fetchone()
            if row is None:
                cur.execute(
                    "SELECT * FROM exchange_data WHERE message_id = %s", (message_id,)
                )
                row = cur.fetchone()
            conn.commit()
            return row


def list_exchange_messages(
    db: DatabaseInterface, exchange_id: str
) -> list[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT * FROM exchange_data WHERE exchange_id = %s
                ORDER BY timestamp ASC, id ASC
                """,
                (exchange_id,),
            )
            return cur.fetchall()


def get_latest_exchange_message(
    db: DatabaseInterface, exchange_id: str
) -> Optional[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT * FROM exchange_data WHERE exchange_id = %s
                ORDER BY timestamp DESC, id DESC LIMIT 1
                """,
                (exchange_id,),
            )
            return cur.fetchone()


def count_exchange_messages(db: DatabaseInterface, exchange_id: str) -> int:
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "SELECT COUNT(*) FROM exchange_data WHERE exchange_id = %s",
                (exchange_id,),
            )
            row = cur.fetchone()
            return int(row[0]) if row else 0


def set_exchange_owner(db: DatabaseInterface, exchange_id: str, owner_id: str) -> int:
    """Claim an exchange for a user. Rows that already have an owner are kept."""
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE exchange_data SET exchange_owner_id = %s
                WHERE exchange_id = %s AND exchange_owner_id IS NULL
                """,
                (owner_id, exchange_id),
            )
            updated = cur.rowcount
            conn.commit()
            return updated


def get_exchange_owner(db: DatabaseInterface, exchange_id: str) -> Optional[str]:
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT exchange_owner_id FROM exchange_data
                WHERE exchange_id = %s AND exchange_owner_id IS NOT NULL
                ORDER BY timestamp ASC LIMIT 1
                """,
                (exchange_id,),
            )
            row = cur.fetchone()
            return row[0] if row else None


def list_exchanges(db: DatabaseInterface, owner_id: str) -> list[dict[str, Any]]:
    """Exchanges owned by a user, most recently active first."""
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT exchange_id,
                       COUNT(*) AS message_count,
                       MIN(timestamp) AS started_at,
                       MAX(timestamp) AS last_message_at,
                       (ARRAY_AGG(subject ORDER BY timestamp ASC))[1] AS subject
                FROM exchange_data
                WHERE exchange_owner_id = %s
                GROUP BY exchange_id
                ORDER BY MAX(timestamp) DESC
                """,
                (owner_id,),
            )
            return cur.fetchall()
