"""Tests for the registry error hierarchy."""

from __future__ import annotations

import pytest

from runregistry.core.errors import (
    BadStateChangeError,
    ConflictError,
    CredentialError,
    ErrorCategory,
    InvalidCredentialError,
    NoCredentialError,
    NotificationError,
    RegistryError,
    StorageError,
    UnknownRunError,
)


class TestRegistryError:
    def test_defaults(self):
        err = RegistryError("boom")
        assert err.message == "boom"
        assert err.category == ErrorCategory.INTERNAL
        assert err.retryable is False
        assert str(err) == "boom"

    def test_cause_is_chained(self):
        cause = OSError("disk gone")
        err = StorageError("write failed", cause=cause)
        assert err.cause is cause
        assert err.__cause__ is cause

    def test_with_context_fills_known_fields_and_metadata(self):
        err = ConflictError("taken").with_context(run_id="r1", principal="bob", attempt=2)
        assert err.context.run_id == "r1"
        assert err.context.principal == "bob"
        assert err.context.metadata == {"attempt": 2}

    def test_to_dict(self):
        err = StorageError("commit failed", cause=ValueError("x")).with_context(run_id="r1")
        data = err.to_dict()
        assert data["error_type"] == "StorageError"
        assert data["category"] == "STORAGE"
        assert data["retryable"] is True
        assert data["context"]["run_id"] == "r1"
        assert data["cause"] == "ValueError: x"

    def test_to_dict_omits_empty_context(self):
        assert "context" not in RegistryError("plain").to_dict()


class TestSubclasses:
    def test_unknown_run_message_does_not_leak_existence(self):
        missing = UnknownRunError("r-missing")
        hidden = UnknownRunError("r-hidden")
        assert str(missing) == str(hidden)
        assert missing.context.run_id == "r-missing"
        assert missing.category == ErrorCategory.NOT_FOUND

    def test_credential_errors_share_a_base(self):
        assert isinstance(InvalidCredentialError("bad"), CredentialError)
        err = NoCredentialError("c1")
        assert isinstance(err, CredentialError)
        assert err.category == ErrorCategory.SECURITY

    @pytest.mark.parametrize(
        "error, retryable",
        [
            (StorageError("x"), True),
            (NotificationError("x"), True),
            (ConflictError("x"), False),
            (BadStateChangeError("x"), False),
        ],
    )
    def test_retryable_defaults(self, error, retryable):
        assert error.retryable is retryable
