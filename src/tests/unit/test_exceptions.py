"""Unit tests for the service exception hierarchy."""

import pytest

from src.services.exceptions import (
    BackupFileError,
    IntegrityViolation,
    MigrationFailed,
    PayloadTooLarge,
    RecipeNotFound,
    RollbackError,
    SchemaVersionError,
    ServiceError,
    ShareEncodeError,
    ValidationError,
)


@pytest.mark.parametrize(
    "error",
    [
        RecipeNotFound("r1"),
        ValidationError(["bad"]),
        ShareEncodeError("no id"),
        PayloadTooLarge(3000, 2048),
        SchemaVersionError(5, 3),
        MigrationFailed(2, "boom"),
        RollbackError(None, "nope"),
        IntegrityViolation(["count"]),
        BackupFileError("/tmp/x.json", "missing"),
    ],
)
def test_all_are_service_errors(error):
    assert isinstance(error, ServiceError)


def test_payload_too_large_is_encode_error():
    error = PayloadTooLarge(3100, 2048)
    assert isinstance(error, ShareEncodeError)
    assert str(error) == "Recipe data too large for sharing (3100 > 2048 bytes)"


def test_messages_carry_context():
    assert str(RecipeNotFound("r1")) == "Recipe with ID r1 not found"
    assert str(ValidationError(["a", "b"])) == "Validation failed: a; b"
    assert str(MigrationFailed(2, "boom")) == "Migration 2 failed: boom"
    assert "newer than this app supports (3)" in str(SchemaVersionError(5, 3))
    assert str(IntegrityViolation(["x", "y"])) == "Backup validation failed: x, y"
    assert str(BackupFileError("/tmp/x.json", "missing")) == "/tmp/x.json: missing"


def test_rollback_error_defaults():
    error = RollbackError(3, "no reverse")
    assert error.version == 3
    assert error.rolled_back == []
