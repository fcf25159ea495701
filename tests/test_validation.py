"""
tests/test_validation.py -- Unit tests for auth/validation.py.

Covers:
  - Well-formed signup/login payloads normalize (email lower-cased, names stripped)
  - Every violated field is reported, keyed by its form name
  - Password policy applies to signup only
  - Unknown kind is a programming error (ValueError)
  - Non-mapping payloads behave like an empty form
"""

from __future__ import annotations

import pytest

from auth.errors import ValidationError
from auth.models import LoginRequest, SignupRequest
from auth.validation import PasswordPolicy, validate

_GOOD_SIGNUP = {
    "firstName": "  Ada ",
    "lastName": "Lovelace",
    "email": " Ada@Example.COM ",
    "password": "analytical1",
}


class TestSignupValidation:
    def test_valid_payload_is_normalized(self) -> None:
        result = validate("signup", _GOOD_SIGNUP)
        assert result.ok
        assert result.value == SignupRequest(
            first_name="Ada",
            last_name="Lovelace",
            email="ada@example.com",
            password="analytical1",
        )

    def test_snake_case_field_names_are_accepted(self) -> None:
        payload = {"first_name": "Ada", "last_name": "Lovelace", "email": "ada@example.com", "password": "analytical1"}
        assert validate("signup", payload).ok

    def test_empty_payload_reports_every_field(self) -> None:
        result = validate("signup", {})
        assert not result.ok
        assert isinstance(result.error, ValidationError)
        assert set(result.error.fields) == {"firstName", "lastName", "email", "password"}
        assert result.error.as_dict()["email"] == ["is required"]

    def test_blank_names_are_rejected(self) -> None:
        result = validate("signup", {**_GOOD_SIGNUP, "firstName": "   "})
        assert result.error is not None
        assert result.error.as_dict() == {"firstName": ["must not be empty"]}

    def test_malformed_email(self) -> None:
        result = validate("signup", {**_GOOD_SIGNUP, "email": "not-an-email"})
        assert result.error.as_dict() == {"email": ["must be a valid email address"]}

    def test_weak_password_lists_every_broken_rule(self) -> None:
        result = validate("signup", {**_GOOD_SIGNUP, "password": "abc"})
        messages = result.error.as_dict()["password"]
        assert "must be at least 8 characters" in messages
        assert "must contain at least one digit" in messages

    def test_password_over_bcrypt_limit(self) -> None:
        result = validate("signup", {**_GOOD_SIGNUP, "password": "a1" * 40})
        assert result.error.as_dict()["password"] == ["must be at most 72 bytes"]

    def test_custom_policy(self) -> None:
        policy = PasswordPolicy(min_length=4, require_digit=False)
        assert validate("signup", {**_GOOD_SIGNUP, "password": "abcd"}, policy).ok

    def test_password_whitespace_is_preserved(self) -> None:
        result = validate("signup", {**_GOOD_SIGNUP, "password": " analytical1 "})
        assert result.value.password == " analytical1 "

    def test_error_kind_names_the_form(self) -> None:
        assert validate("signup", {}).error.kind == "signup"


class TestLoginValidation:
    def test_valid_payload(self) -> None:
        result = validate("login", {"email": "ADA@example.com", "password": "x"})
        assert result.value == LoginRequest(email="ada@example.com", password="x")

    def test_policy_does_not_apply_to_login(self) -> None:
        assert validate("login", {"email": "ada@example.com", "password": "short"}).ok

    def test_missing_password(self) -> None:
        result = validate("login", {"email": "ada@example.com"})
        assert result.error.as_dict() == {"password": ["is required"]}
        assert result.error.kind == "login"

    def test_non_text_field(self) -> None:
        result = validate("login", {"email": "ada@example.com", "password": 12345})
        assert result.error.as_dict() == {"password": ["must be text"]}


def test_unknown_kind_raises_value_error() -> None:
    with pytest.raises(ValueError):
        validate("reset", {})


def test_non_mapping_payload_is_an_empty_form() -> None:
    result = validate("login", None)
    assert set(result.error.fields) == {"email", "password"}


def test_policy_check_accepts_strong_password() -> None:
    assert PasswordPolicy().check("analytical1") == []
