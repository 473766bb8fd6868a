from __future__ import annotations

import pytest

from identity_roles.domain.validation import (
    password_violations,
    validate_email,
    validate_name,
    validate_phone,
    validate_registration,
)


@pytest.mark.parametrize("email", ["a@x.com", "first.last+tag@example.co.uk"])
def test_validate_email_accepts_well_formed_addresses(email):
    assert validate_email(email) is None


@pytest.mark.parametrize("email", ["not-an-email", "a@", "@x.com", "a b@x.com"])
def test_validate_email_rejects_malformed_addresses(email):
    error = validate_email(email)
    assert error is not None
    assert error.field == "email"
    assert error.code == "INVALID_FORMAT"


def test_validate_email_requires_a_value():
    assert validate_email("").code == "REQUIRED"


def test_validate_name_bounds():
    assert validate_name("Al") is None
    assert validate_name("x" * 100) is None
    assert validate_name("A").code == "TOO_SHORT"
    assert validate_name("x" * 101).code == "TOO_LONG"
    assert validate_name("   ").code == "REQUIRED"


def test_phone_is_optional_but_checked_when_present():
    assert validate_phone(None) is None
    assert validate_phone("") is None
    assert validate_phone("+852 9999 0000") is None
    assert validate_phone("(020) 555-1234") is None
    error = validate_phone("call me")
    assert error is not None and error.field == "phone"


def test_password_violations_reports_every_broken_rule():
    assert password_violations("Aa12345!") == []
    violations = password_violations("abc")
    assert len(violations) == 3
    assert any("8 characters" in message for message in violations)
    assert any("uppercase" in message for message in violations)
    assert any("digit" in message for message in violations)
    assert len(password_violations("")) == 4


def test_validate_registration_collects_all_field_errors():
    errors = validate_registration(email="bad", name="A", phone="??", password="short")
    fields = [error.field for error in errors]
    assert fields[:3] == ["email", "name", "phone"]
    password_errors = [error for error in errors if error.field == "password"]
    assert len(password_errors) == 3
    assert {error.code for error in password_errors} == {"WEAK_PASSWORD"}


def test_validate_registration_passes_clean_input():
    assert validate_registration(email="a@x.com", name="Ann A", phone=None, password="Aa12345!") == []
