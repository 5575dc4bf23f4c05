"""Calendar connection queries."""

from __future__ import annotations

from typing import Any, Optional

from psycopg.rows import dict_row

from cruso.db.types import DatabaseInterface

_CONNECTION_COLUMNS = """
    c.id, c.user_id, c.account_id, c.calendar_id, c.calendar_name,
    c.is_primary, c.include_in_availability, c.is_active,
    c.created_at, c.updated_at, a.email AS account_email
"""


def get_active_connections(
    db: DatabaseInterface, user_id: str, availability_only: bool = False
) -> list[dict[str, Any]]:
    """Active connections of a user, joined with their Google account."""
    conditions = ["c.user_id = %s", "c.is_active = TRUE"]
    if availability_only:
        conditions.append("c.include_in_availability = TRUE")

    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {_CONNECTION_COLUMNS}
                FROM calendar_connections c
                JOIN accounts a ON a.id = c.account_id
                WHERE {' AND '.join(conditions)}
                ORDER BY c.is_primary DESC, c.id
                """,
                (user_id,),
            )
            return cur.fetchall()


def list_connections(db: DatabaseInterface, user_id: str) -> list[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {_CONNECTION_COLUMNS}
                FROM calendar_connections c
                JOIN accounts a ON a.id = c.account_id
                WHERE c.user_id = %s
                ORDER BY c.is_primary DESC, c.calendar_name
                """,
                (user_id,),
            )
            return cur.fetchall()


def get_connection(
    db: DatabaseInterface, user_id: str, connection_id: int
) -> Optional[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {_CONNECTION_COLUMNS}
                FROM calendar_connections c
                JOIN accounts a ON a.id = c.account_id
                WHERE c.user_id = %s AND c.id = %s
                """,
                (user_id, connection_id),
            )
            return cur.fetchone()


def get_connection_by_calendar_id(
    db: DatabaseInterface, user_id: str, calendar_id: str
) -> Optional[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {_CONNECTION_COLUMNS}
                FROM calendar_connections c
                JOIN accounts a ON a.id = c.account_id
                WHERE c.user_id = %s AND c.calendar_id = %s AND c.is_active = TRUE
                """,
                (user_id, calendar_id),
            )
            return cur.fetchone()


def get_primary_connection(
    db: DatabaseInterface, user_id: str
) -> Optional[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                SELECT {_CONNECTION_COLUMNS}
                FROM calendar_connections c
                JOIN accounts a ON a.id = c.account_id
                WHERE c.user_id = %s AND c.is_primary = TRUE AND c.is_active = TRUE
                LIMIT 1
                """,
                (user_id,),
            )
            return cur.fetchone()


def upsert_connection(
    db: DatabaseInterface,
    user_id: str,
    account_id: str,
    calendar_id: str,
    calendar_name: Optional[str],
    is_primary: bool = False,
) -> dict[str, Any]:
    """Insert a connection or refresh its name. Existing flags are preserved."""
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            if is_primary:
                cur.execute(
                    """
                    UPDATE calendar_connections SET is_primary = FALSE, updated_at = NOW()
                    WHERE user_id = %s AND calendar_id <> %s AND is_primary = TRUE
                    """,
                    (user_id, calendar_id),
                )
            cur.execute(
                """
                INSERT INTO calendar_connections (
                    user_id, account_id, calendar_id, calendar_name, is_primary
                ) VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (user_id, calendar_id) DO UPDATE SET
                    account_id = EXCLUDED.account_id,
                    calendar_name = EXCLUDED.calendar_name,
                    is_primary = calendar_connections.is_primary OR EXCLUDED.is_primary,
                    is_active = TRUE,
                    updated_at = NOW()
                RETURNING *
                """,
                (user_id, account_id, calendar_id, calendar_name, is_primary),
            )
            row = cur.fetchone()
            conn.commit()
            return row


def update_connection(
    db: DatabaseInterface,
    user_id: str,
    connection_id: int,
    include_in_availability: Optional[bool] = None,
    is_active: Optional[bool] = None,
    is_primary: Optional[bool] = None,
) -> Optional[dict[str, Any]]:
    """Update connection flags. Making one connection primary clears the others."""
    assignments = ["updated_at = NOW()"]
    params: list[Any] = []
    if include_in_availability is not None:
        assignments.append("include_in_availability = %s")
        params.append(include_in_availability)
    if is_active is not None:
        assignments.append("is_active = %s")
        params.append(is_active)
    if is_primary is not None:
        assignments.append("is_primary = %s")
        params.append(is_primary)
    params.extend([user_id, connection_id])

    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            if is_primary:
                cur.execute(
                    """
                    UPDATE calendar_connections SET is_primary = FALSE, updated_at = NOW()
                    WHERE user_id = %s AND id <> %s
                    """,
                    (user_id, connection_id),
                )
            cur.execute(
                f"""
                UPDATE calendar_connections SET {', '.join(assignments)}
                WHERE user_id = %s AND id = %s
                RETURNING *
                """,
                params,
            )
            row = cur.fetchone()
            conn.commit()
            return row


def deactivate_account_connections(
    db: DatabaseInterface, user_id: str, account_id: str
) -> int:
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE calendar_connections
                SET is_active = FALSE, is_primary = FALSE, updated_at = NOW()
                WHERE user_id = %s AND account_id = %s
                """,
                (user_id, account_id),
            )
            updated = cur.rowcount
            conn.commit()
            return updated
