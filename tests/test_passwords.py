"""Unit tests for auth/passwords.py -- bcrypt helpers and PasswordPolicy."""

import pytest

from auth.passwords import DUMMY_HASH, PasswordPolicy, hash_password, verify_password


class TestHashing:
    def test_round_trip(self):
        hashed = hash_password("Passw0rd!")
        assert hashed != "Passw0rd!"
        assert verify_password("Passw0rd!", hashed) is True
        assert verify_password("passw0rd!", hashed) is False

    def test_salted(self):
        assert hash_password("Passw0rd!") != hash_password("Passw0rd!")

    def test_garbage_hash_is_a_mismatch_not_an_error(self):
        assert verify_password("Passw0rd!", "not-a-bcrypt-hash") is False

    def test_dummy_hash_matches_nothing_a_user_would_type(self):
        assert verify_password("Passw0rd!", DUMMY_HASH) is False


class TestPasswordPolicy:
    def test_strong_password_passes(self):
        assert PasswordPolicy().validate("Passw0rd!") == []

    @pytest.mark.parametrize(
        ("password", "fragment"),
        [
            ("Pa0!", "at least 6 characters"),
            ("Passw0rd", "non alphanumeric"),
            ("Password!", "digit"),
            ("PASSW0RD!", "lowercase"),
            ("passw0rd!", "uppercase"),
            ("Aa0!" + "x" * 70, "at most 72 bytes"),
        ],
    )
    def test_each_rule_reports_itself(self, password, fragment):
        errors = PasswordPolicy().validate(password)
        assert any(fragment in e for e in errors), errors

    def test_reports_every_violation_at_once(self):
        assert len(PasswordPolicy().validate("abc")) == 4  # length, non-alnum, digit, uppercase

    @pytest.mark.parametrize(
        ("password", "fragment"),
        [
            ("Passw\u0663rd!", "digit"),
            ("PASSW0RD\u00e9!", "lowercase"),
            ("passw0rd\u00c9!", "uppercase"),
        ],
    )
    def test_character_classes_are_ascii(self, password, fragment):
        errors = PasswordPolicy().validate(password)
        assert any(fragment in e for e in errors), errors

    def test_non_ascii_letter_counts_as_symbol(self):
        assert PasswordPolicy().validate("Passw0rd\u00e9") == []

    def test_relaxed_policy(self):
        policy = PasswordPolicy(
            min_length=4,
            require_digit=False,
            require_lowercase=False,
            require_uppercase=False,
            require_non_alphanumeric=False,
        )
        assert policy.validate("abcd") == []
