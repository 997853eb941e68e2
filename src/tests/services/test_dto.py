"""Tests for import pipeline value types."""

from src.services.dto import STATUS_MESSAGES, ImportOutcome, ImportStage, ImportStatus


class TestImportOutcome:
    def test_default_message_per_status(self):
        """Every status has a default message."""
        for status in ImportStatus:
            outcome = ImportOutcome(status=status, stage=ImportStage.FORMAT)
            assert outcome.message == STATUS_MESSAGES[status]

    def test_explicit_message_kept(self):
        outcome = ImportOutcome.rejected(ImportStatus.CORRUPTED, ImportStage.SIZE, message="This backup is damaged")
        assert outcome.message == "This backup is damaged"
        assert not outcome.is_valid

    def test_only_valid_is_valid(self):
        assert ImportOutcome(status=ImportStatus.VALID, stage=ImportStage.ACCEPTED).is_valid
        assert not ImportOutcome(status=ImportStatus.DUPLICATE, stage=ImportStage.DUPLICATE).is_valid

    def test_errors_not_shared(self):
        first = ImportOutcome(status=ImportStatus.VALID, stage=ImportStage.FORMAT)
        second = ImportOutcome(status=ImportStatus.VALID, stage=ImportStage.FORMAT)
        first.errors.append("x")
        assert second.errors == []

    def test_status_values_are_wire_names(self):
        assert ImportStatus("update_required") is ImportStatus.UPDATE_REQUIRED
        assert ImportStatus.SIZE_EXCEEDED == "size_exceeded"
