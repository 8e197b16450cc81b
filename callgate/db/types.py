"""Custom SQLAlchemy types for UTC timestamps and encrypted tokens."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.types import DateTime, Text, TypeDecorator

from callgate.core.encryption import decrypt_token, encrypt_token


class UTCDateTime(TypeDecorator):
    """Store UTC, always hand back timezone-aware UTC datetimes.

    SQLite has no timezone support, so values are written there as naive UTC
    and re-tagged on read. Naive inputs are assumed to already be UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class EncryptedToken(TypeDecorator):
    """Encrypt/decrypt OAuth tokens transparently."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value == "":
            return ""
        return encrypt_token(value)

    def process_result_value(self, value, dialect):
        if value is None or value == "":
            return value
        return decrypt_token(value)
