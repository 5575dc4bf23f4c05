"""Weekly schedule records, shared by the working_hours and availability tables."""

from __future__ import annotations

from typing import Any, Optional

from psycopg.rows import dict_row

from cruso.db.schema import SCHEDULE_TABLES
from cruso.db.types import DatabaseInterface

_COLUMNS = "id, user_id, days, start_time, end_time, timezone, created_at, updated_at"


def _table(kind: str) -> str:
    if kind not in SCHEDULE_TABLES:
        raise ValueError(f"Unknown schedule table '{kind}'")
    return kind


def list_schedule_entries(
    db: DatabaseInterface, kind: str, user_id: str
) -> list[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM {_table(kind)} WHERE user_id = %s ORDER BY id",
                (user_id,),
            )
            return cur.fetchall()


def get_schedule_entry(
    db: DatabaseInterface, kind: str, user_id: str, entry_id: int
) -> Optional[dict[str, Any]]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"SELECT {_COLUMNS} FROM {_table(kind)} WHERE user_id = %s AND id = %s",
                (user_id, entry_id),
            )
            return cur.fetchone()


def create_schedule_entry(
    db: DatabaseInterface,
    kind: str,
    user_id: str,
    days: list[int],
    start_time: str,
    end_time: str,
    timezone: Optional[str],
) -> dict[str, Any]:
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                INSERT INTO {_table(kind)} (user_id, days, start_time, end_time, timezone)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING {_COLUMNS}
                """,
                (user_id, days, start_time, end_time, timezone),
            )
            row = cur.fetchone()
            conn.commit()
            return row


def update_schedule_entry(
    db: DatabaseInterface,
    kind: str,
    user_id: str,
    entry_id: int,
    values: dict[str, Any],
) -> Optional[dict[str, Any]]:
    columns = [
        name for name in ("days", "start_time", "end_time", "timezone") if name in values
    ]
    assignments = [f"{name} = %s" for name in columns] + ["updated_at = NOW()"]
    params = [values[name] for name in columns] + [user_id, entry_id]

    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                f"""
                UPDATE {_table(kind)} SET {', '.join(assignments)}
                WHERE user_id = %s AND id = %s
                RETURNING {_COLUMNS}
                """,
                params,
            )
            row = cur.fetchone()
            conn.commit()
            return row


def delete_schedule_entry(
    db: DatabaseInterface, kind: str, user_id: str, entry_id: int
) -> bool:
    with db.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                f"DELETE FROM {_table(kind)} WHERE user_id = %s AND id = %s",
                (user_id, entry_id),
            )
            deleted = cur.rowcount
            conn.commit()
            return deleted > 0


def replace_schedule_entries(
    db: DatabaseInterface,
    kind: str,
    user_id: str,
    records: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Swap a user's whole weekly schedule in one transaction."""
    table = _table(kind)
    created: list[dict[str, Any]] = []
    with db.connection() as conn:
        with conn.cursor(row_factory=dict_row) as cur:
            cur.execute(f"DELETE FROM {table} WHERE user_id = %s", (user_id,))
            for record in records:
                cur.execute(
                    f"""
                    INSERT INTO {table} (user_id, days, start_time, end_time, timezone)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING {_COLUMNS}
                    """,
                    (
                        user_id,
                        record["days"],
                        record["start_time"],
                        record["end_time"],
                        record.get("timezone"),
                    ),
                )
                created.append(cur.fetchone())
            conn.commit()
    return created
