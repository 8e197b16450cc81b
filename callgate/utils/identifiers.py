"""Identifier normalization.

Every service entry point funnels ids through normalize_id so that
"was this DM invited by this rep" compares canonical UUID values,
never a raw id against its string form.
"""

from uuid import UUID

from callgate.core.errors import InvalidIdentifierError


def normalize_id(value: UUID | str | None) -> UUID:
    """Return the canonical UUID for a UUID or its string representation."""
    if isinstance(value, UUID):
        return value
    if value is None:
        raise InvalidIdentifierError("Identifier is required")
    if not isinstance(value, str):
        raise InvalidIdentifierError(f"Unsupported identifier type: {type(value).__name__}")
    try:
        return UUID(value.strip())
    except ValueError:
        raise InvalidIdentifierError(f"Invalid identifier: {value!r}")


def normalize_optional_id(value: UUID | str | None) -> UUID | None:
    """Like normalize_id, but passes None through."""
    if value is None:
        return None
    return normalize_id(value)


def same_id(left: UUID | str | None, right: UUID | str | None) -> bool:
    """Compare two identifiers by canonical value."""
    if left is None or right is None:
        return False
    try:
        return normalize_id(left) == normalize_id(right)
    except InvalidIdentifierError:
        return False


def normalize_email(email: str | None) -> str | None:
    """Lowercase and trim an email address."""
    if not email:
        return None
    return email.strip().lower()
