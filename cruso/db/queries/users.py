"""User and session lookups."""

from __future__ import annotations

from typing import Any, Optional

from psycopg.rows import dict_row

from cruso.db.types import DatabaseInterface


def get_user(db: DatabaseInterface, user_id: str) -> Optional[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT * FROM users WHERE id = %s", (user_id,))
            return cur.fetchone()


def get_user_by_email(db: DatabaseInterface, email: str) -> Optional[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT * FROM users WHERE lower(email) = lower(%s)", (email,))
            return cur.fetchone()


def get_user_by_session_token(
    db: DatabaseInterface, token: str
) -> Optional[dict[str, Any]]:
    """Resolve a bearer token to its user, ignoring expired sessions."""
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT u.* FROM sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.token = %s AND s.expires_at > NOW()
                """,
                (token,),
            )
            return cur.fetchone()
