"""Pure field checks for registration input."""

from __future__ import annotations

import re

from email_validator import EmailNotValidError, validate_email as _validate_email_syntax

from .errors import FieldError

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
PASSWORD_MIN_LENGTH = 8

_PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]{8,}$")

_PASSWORD_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[a-z]"), "Password must contain a lowercase letter"),
    (re.compile(r"[A-Z]"), "Password must contain an uppercase letter"),
    (re.compile(r"\d"), "Password must contain a digit"),
)


def validate_email(email: str | None) -> FieldError | None:
    if not email:
        return FieldError("email", "Email is required", "REQUIRED")
    try:
        _validate_email_syntax(email, check_deliverability=False)
    except EmailNotValidError:
        return FieldError("email", "Invalid email format")
    return None


def validate_name(name: str | None) -> FieldError | None:
    if not name or not name.strip():
        return FieldError("name", "Name is required", "REQUIRED")
    length = len(name.strip())
    if length < NAME_MIN_LENGTH:
        return FieldError("name", f"Name must be at least {NAME_MIN_LENGTH} characters long", "TOO_SHORT")
    if length > NAME_MAX_LENGTH:
        return FieldError("name", f"Name must be at most {NAME_MAX_LENGTH} characters long", "TOO_LONG")
    return None


def validate_phone(phone: str | None) -> FieldError | None:
    """Phone is optional; only a present value is checked."""
    if not phone:
        return None
    if not _PHONE_PATTERN.match(phone):
        return FieldError("phone", "Invalid phone number format")
    return None


def password_violations(password: str | None) -> list[str]:
    """Return every password rule the candidate breaks, in a stable order."""
    password = password or ""
    violations: list[str] = []
    if len(password) < PASSWORD_MIN_LENGTH:
        violations.append(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
    for pattern, message in _PASSWORD_RULES:
        if not pattern.search(password):
            violations.append(message)
    return violations


def validate_registration(
    *, email: str | None, name: str | None, phone: str | None, password: str | None
) -> list[FieldError]:
    """Run all registration checks and collect every failure."""
    errors = [
        error
        for error in (validate_email(email), validate_name(name), validate_phone(phone))
        if error is not None
    ]
    errors.extend(
        FieldError("password", message, "WEAK_PASSWORD") for message in password_violations(password)
    )
    return errors
