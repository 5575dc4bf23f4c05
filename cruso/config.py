"""Configuration handling for the Cruso calendar assistant."""

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

import yaml  # type: ignore
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


# .env values never override variables already set in the environment
load_dotenv()

DEFAULT_TIMEZONE = "America/New_York"

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


@dataclass
class GoogleOAuthConfig:
    """OAuth2 client used to refresh linked Google accounts."""

    client_id: str = ""
    client_secret: str = ""
    token_uri: str = GOOGLE_TOKEN_URI
    scopes: List[str] = field(default_factory=lambda: list(GOOGLE_CALENDAR_SCOPES))

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GoogleOAuthConfig":
        return cls(
            client_id=data.get("client_id") or os.environ.get("GOOGLE_CLIENT_ID", ""),
            client_secret=data.get("client_secret")
            or os.environ.get("GOOGLE_CLIENT_SECRET", ""),
            token_uri=data.get("token_uri", GOOGLE_TOKEN_URI),
            scopes=data.get("scopes") or list(GOOGLE_CALENDAR_SCOPES),
        )


@dataclass
class WorkingHoursConfig:
    """Fallback working hours used when a user has none stored.

    Days follow the calendar convention 0=Sunday ... 6=Saturday.
    """

    start: str = "09:00"
    end: str = "17:00"
    days: List[int] = field(default_factory=lambda: [1, 2, 3, 4, 5])

    def __post_init__(self):
        for name in ("start", "end"):
            value = getattr(self, name)
            if not _TIME_PATTERN.match(value):
                raise ValueError(f"working_hours.{name} '{value}' is not a HH:MM time")

        # Zero-padded HH:MM strings compare in clock order.
        if self.start >= self.end:
            raise ValueError(
                f"working_hours.start must be before end time ({self.start} >= {self.end})"
            )

        if not self.days:
            raise ValueError("days must contain at least one day")

        for day in self.days:
            if not (0 <= day <= 6):
                raise ValueError(
                    f"Invalid day: {day}. days must be between 0 and 6 (0=Sunday, 6=Saturday)"
                )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkingHoursConfig":
        return cls(
            start=data.get("start", "09:00"),
            end=data.get("end", "17:00"),
            days=data.get("days", [1, 2, 3, 4, 5]),
        )


class DatabaseBackend(Enum):
    """Database backend type."""

    POSTGRES = "postgres"

    @classmethod
    def from_string(cls, value: str) -> "DatabaseBackend":
        normalized = value.lower().strip()
        if normalized in ("postgres", "postgresql"):
            return cls.POSTGRES
        raise ValueError(f"Invalid database backend '{value}'. Must be 'postgres'.")


@dataclass
class PostgresConfig:
    """PostgreSQL database configuration."""

    host: str = "localhost"
    port: int = 5432
    database: str = "cruso"
    user: str = "cruso"
    password: str = ""
    ssl_mode: str = "prefer"

    @property
    def connection_string(self) -> str:
        return f"postgresql://{self.user}:{self.password}@{self.host}:{self.port}/{self.database}?sslmode={self.ssl_mode}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PostgresConfig":
        return cls(
            host=data.get("host") or os.environ.get("POSTGRES_HOST", "localhost"),
            port=int(data.get("port") or os.environ.get("POSTGRES_PORT", "5432")),
            database=data.get("database")
            or os.environ.get("POSTGRES_DATABASE", "cruso"),
            user=data.get("user") or os.environ.get("POSTGRES_USER", "cruso"),
            password=data.get("password") or os.environ.get("POSTGRES_PASSWORD", ""),
            ssl_mode=data.get("ssl_mode", "prefer"),
        )


@dataclass
class DatabaseConfig:
    """Database configuration."""

    postgres: PostgresConfig = field(default_factory=PostgresConfig)

    @property
    def backend(self) -> DatabaseBackend:
        return DatabaseBackend.POSTGRES

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DatabaseConfig":
        backend = DatabaseBackend.from_string(data.get("backend", "postgres"))
        if backend is not DatabaseBackend.POSTGRES:
            raise ValueError("Only postgres is supported")

        return cls(postgres=PostgresConfig.from_dict(data.get("postgres", {})))


@dataclass
class SpamFilterConfig:
    """Thresholds applied to Mailgun's spam headers on inbound mail."""

    max_spam_score: float = 0.5
    max_individual_spam_point: float = 5.0
    require_dkim: bool = True
    require_spf: bool = True
    allow_high_risk_rules: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpamFilterConfig":
        return cls(
            max_spam_score=float(data.get("max_spam_score", 0.5)),
            max_individual_spam_point=float(data.get("max_individual_spam_point", 5.0)),
            require_dkim=data.get("require_dkim", True),
            require_spf=data.get("require_spf", True),
            allow_high_risk_rules=data.get("allow_high_risk_rules", True),
        )


@dataclass
class MailgunConfig:
    """Mailgun sending and inbound webhook configuration."""

    api_key: str = ""
    domain: str = ""
    webhook_signing_key: str = ""
    from_address: str = ""
    base_url: str = "https://api.mailgun.net/v3"
    spam: SpamFilterConfig = field(default_factory=SpamFilterConfig)

    @property
    def can_send(self) -> bool:
        return bool(self.api_key and self.domain and self.from_address)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MailgunConfig":
        return cls(
            api_key=data.get("api_key") or os.environ.get("MAILGUN_API_KEY", ""),
            domain=data.get("domain") or os.environ.get("MAILGUN_DOMAIN", ""),
            webhook_signing_key=data.get("webhook_signing_key")
            or os.environ.get("MAILGUN_WEBHOOK_SIGNING_KEY", ""),
            from_address=data.get("from_address")
            or os.environ.get("MAIN_EMAIL_ADDRESS", ""),
            base_url=data.get("base_url", "https://api.mailgun.net/v3"),
            spam=SpamFilterConfig.from_dict(data.get("spam", {})),
        )


@dataclass
class SchedulingConfig:
    """Limits used by slot search and exchange handling."""

    slot_step_minutes: int = 15
    max_range_days: int = 90
    max_suggested_slots: int = 3
    max_emails_in_exchange: int = 25
    engagement_window_days: int = 30
    assistant_name: str = "Cruso"

    def __post_init__(self):
        if self.slot_step_minutes <= 0:
            raise ValueError("slot_step_minutes must be positive")
        if self.max_range_days <= 0:
            raise ValueError("max_range_days must be positive")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchedulingConfig":
        return cls(
            slot_step_minutes=data.get("slot_step_minutes", 15),
            max_range_days=data.get("max_range_days", 90),
            max_suggested_slots=data.get("max_suggested_slots", 3),
            max_emails_in_exchange=data.get("max_emails_in_exchange", 25),
            engagement_window_days=data.get("engagement_window_days", 30),
            assistant_name=data.get("assistant_name", "Cruso"),
        )


@dataclass
class ServerConfig:
    """Top-level server configuration."""

    timezone: str = DEFAULT_TIMEZONE
    working_hours: WorkingHoursConfig = field(default_factory=WorkingHoursConfig)
    google: GoogleOAuthConfig = field(default_factory=GoogleOAuthConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    mailgun: MailgunConfig = field(default_factory=MailgunConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)

    def __post_init__(self):
        """Validate server configuration."""
        try:
            ZoneInfo(self.timezone)
        except Exception as e:
            raise ValueError(
                f"Invalid timezone '{self.timezone}': {e}. "
                "Must be a valid IANA timezone (e.g., 'America/New_York')"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerConfig":
        """Create configuration from dictionary."""
        return cls(
            timezone=data.get("timezone")
            or os.environ.get("CRUSO_TIMEZONE", DEFAULT_TIMEZONE),
            working_hours=WorkingHoursConfig.from_dict(data.get("working_hours", {})),
            google=GoogleOAuthConfig.from_dict(data.get("google", {})),
            database=DatabaseConfig.from_dict(data.get("database", {})),
            mailgun=MailgunConfig.from_dict(data.get("mailgun", {})),
            scheduling=SchedulingConfig.from_dict(data.get("scheduling", {})),
        )


def _config_from_env() -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "timezone": os.environ.get("CRUSO_TIMEZONE", DEFAULT_TIMEZONE),
        "working_hours": {
            "start": os.environ.get("WORKING_HOURS_START", "09:00"),
            "end": os.environ.get("WORKING_HOURS_END", "17:00"),
            "days": list(
                map(int, os.environ.get("WORKING_HOURS_DAYS", "1,2,3,4,5").split(","))
            ),
        },
    }
    if os.environ.get("DATABASE_BACKEND"):
        data["database"] = {"backend": os.environ["DATABASE_BACKEND"]}
    return data


CONFIG_SEARCH_PATHS = (
    "config/config.yaml",
    "config/config.yml",
    "config.yaml",
    "config.yml",
    "~/.config/cruso/config.yaml",
    "/etc/cruso/config.yaml",
)


def _read_yaml(path: Path) -> Dict[str, Any]:
    with path.open("r") as f:
        return yaml.safe_load(f) or {}


def load_config(config_path: Optional[str] = None) -> ServerConfig:
    """Build the server config from YAML, falling back to the environment.

    An explicit ``config_path`` that does not exist is logged and ignored.
    Without one, the first existing file in ``CONFIG_SEARCH_PATHS`` wins.
    """
    if config_path:
        candidates = [Path(config_path).expanduser()]
    else:
        candidates = [Path(p).expanduser() for p in CONFIG_SEARCH_PATHS]

    data: Dict[str, Any] = {}
    for candidate in candidates:
        if candidate.is_file():
            data = _read_yaml(candidate)
            logger.info(f"Config read from {candidate}")
            break
    else:
        if config_path:
            logger.warning(f"Config file {config_path} does not exist")

    if not data:
        logger.info("No config file found, reading settings from the environment")
        data = _config_from_env()

    try:
        return ServerConfig.from_dict(data)
    except KeyError as e:
        raise ValueError(f"Missing required config key: {e}")
