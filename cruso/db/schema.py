"""Postgres schema. Every statement is idempotent."""

from typing import Any

SCHEDULE_TABLES = ("working_hours", "availability")


def initialize_user_schema(cur: Any) -> None:
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            name TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS sessions (
            token TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            expires_at TIMESTAMPTZ NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS accounts (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            provider_id TEXT NOT NULL DEFAULT 'google',
            provider_account_id TEXT,
            email TEXT,
            access_token TEXT,
            refresh_token TEXT,
            access_token_expires_at TIMESTAMPTZ,
            scope TEXT,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
        """
    )


def initialize_calendar_schema(cur: Any) -> None:
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS calendar_connections (
            id SERIAL PRIMARY KEY,
            user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            account_id TEXT NOT NULL REFERENCES accounts(id) ON DELETE CASCADE,
            calendar_id TEXT NOT NULL,
            calendar_name TEXT,
            is_primary BOOLEAN NOT NULL DEFAULT FALSE,
            include_in_availability BOOLEAN NOT NULL DEFAULT TRUE,
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            UNIQUE (user_id, calendar_id)
        )
        """
    )


def initialize_preferences_schema(cur: Any) -> None:
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS preferences (
            id SERIAL PRIMARY KEY,
            user_id TEXT NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
            document TEXT,
            display_name VARCHAR(255),
            nickname VARCHAR(255),
            signature TEXT,
            timezone VARCHAR(100),
            min_notice_minutes INTEGER DEFAULT 120,
            max_days_ahead INTEGER DEFAULT 60,
            default_meeting_duration_minutes INTEGER DEFAULT 30,
            buffer_before_minutes INTEGER DEFAULT 0,
            buffer_after_minutes INTEGER DEFAULT 0,
            in_person_buffer_before_minutes INTEGER DEFAULT 15,
            in_person_buffer_after_minutes INTEGER DEFAULT 15,
            back_to_back_limit_minutes INTEGER,
            back_to_back_buffer_minutes INTEGER,
            travel_buffer_minutes INTEGER DEFAULT 0,
            cluster_meetings BOOLEAN DEFAULT FALSE,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
        """
    )


def initialize_schedule_schema(cur: Any) -> None:
    for table in SCHEDULE_TABLES:
        cur.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id SERIAL PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                days INTEGER[] NOT NULL,
                start_time TIME NOT NULL,
                end_time TIME NOT NULL,
                timezone VARCHAR(100),
                created_at TIMESTAMPTZ DEFAULT NOW(),
                updated_at TIMESTAMPTZ DEFAULT NOW()
            )
            """
        )


def initialize_exchange_schema(cur: Any) -> None:
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS exchange_data (
            id SERIAL PRIMARY KEY,
            exchange_id UUID NOT NULL,
            exchange_owner_id TEXT REFERENCES users(id) ON DELETE SET NULL,
            message_id TEXT NOT NULL UNIQUE,
            previous_message_id TEXT,
            sender TEXT,
            recipients JSONB DEFAULT '[]'::jsonb,
            subject TEXT,
            body TEXT,
            timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            type VARCHAR(16) NOT NULL CHECK (type IN ('inbound', 'outbound'))
        )
        """
    )


def create_indexes(cur: Any) -> None:
    cur.execute("CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id)")
    cur.execute("CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id)")
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_connections_user ON calendar_connections(user_id, is_active)"
    )
    for table in SCHEDULE_TABLES:
        cur.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_user ON {table}(user_id)"
        )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_exchange_id ON exchange_data(exchange_id, timestamp)"
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_exchange_owner ON exchange_data(exchange_owner_id)"
    )


def initialize(cur: Any) -> None:
    initialize_user_schema(cur)
    initialize_calendar_schema(cur)
    initialize_preferences_schema(cur)
    initialize_schedule_schema(cur)
    initialize_exchange_schema(cur)
    create_indexes(cur)
