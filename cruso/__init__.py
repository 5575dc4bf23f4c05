"""Calendar assistant backend over Google Calendar, Postgres and Mailgun."""

__version__ = "0.1.0"
