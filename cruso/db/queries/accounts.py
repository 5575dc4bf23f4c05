"""Linked Google accounts."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from psycopg.rows import dict_row

from cruso.db.types import DatabaseInterface


def get_account(
    db: DatabaseInterface, account_id: str, user_id: Optional[str] = None
) -> Optional[dict[str, Any]]:
    query = "SELECT * FROM accounts WHERE id = %s"
    params: list[Any] = [account_id]
    if user_id is not None:
        query += " AND user_id = %s"
        params.append(user_id)

    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(query, params)
            return cur.fetchone()


def list_accounts(
    db: DatabaseInterface, user_id: str, provider_id: str = "google"
) -> list[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT * FROM accounts
                WHERE user_id = %s AND provider_id = %s
                ORDER BY created_at
                """,
                (user_id, provider_id),
            )
            return cur.fetchall()


def update_account_tokens(
    db: DatabaseInterface,
    account_id: str,
    access_token: str,
    expires_at: Optional[datetime],
) -> None:
    """Persist a refreshed access token. Naive expiries are UTC."""
    if expires_at is not None and expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)

    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE accounts SET access_token = %s,
                    access_token_expires_at = %s, updated_at = NOW()
                WHERE id = %s
                """,
                (access_token, expires_at, account_id),
            )
            conn.commit()
