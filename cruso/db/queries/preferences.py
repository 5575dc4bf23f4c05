"""Per-user scheduling preferences."""

from __future__ import annotations

from typing import Any, Optional

from psycopg.rows import dict_row

from cruso.db.types import DatabaseInterface

PREFERENCE_COLUMNS = (
    "document",
    "display_name",
    "nickname",
    "signature",
    "timezone",
    "min_notice_minutes",
    "max_days_ahead",
    "default_meeting_duration_minutes",
    "buffer_before_minutes",
    "buffer_after_minutes",
    "in_person_buffer_before_minutes",
    "in_person_buffer_after_minutes",
    "back_to_back_limit_minutes",
    "back_to_back_buffer_minutes",
    "travel_buffer_minutes",
    "cluster_meetings",
)


def get_preferences(db: DatabaseInterface, user_id: str) -> Optional[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute("SELECT * FROM preferences WHERE user_id = %s", (user_id,))
            return cur.fetchone()


def upsert_preferences(
    db: DatabaseInterface, user_id: str, values: dict[str, Any]
) -> dict[str, Any]:
    """Insert or update preferences. Only known columns are written."""
    columns = [name for name in PREFERENCE_COLUMNS if name in values]
    params = [user_id] + [values[name] for name in columns]
    placeholders = ", ".join(["%s"] * len(params))
    if columns:
        updates = ", ".join(f"{name} = EXCLUDED.{name}" for name in columns)
    else:
        updates = "user_id = EXCLUDED.user_id"

    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                INSERT INTO preferences (user_id{''.join(', ' + c for c in columns)})
                VALUES ({placeholders})
                ON CONFLICT (user_id) DO UPDATE SET {updates}, updated_at = NOW()
                RETURNING *
                """,
                params,
            )
            row = cur.fetchone()
            conn.commit()
            return row


def delete_preferences(db: DatabaseInterface, user_id: str) -> bool:
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM preferences WHERE user_id = %s", (user_id,))
            deleted = cur.rowcount
            conn.commit()
            return deleted > 0
