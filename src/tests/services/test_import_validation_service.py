"""Tests for the import validation pipeline.

Share links: format -> size -> version -> migration -> duplicate.
Backups: integrity -> checksum -> version -> migration.
"""

import base64
import copy
import json

import pytest

from src.services import recipe_service
from src.services.backup_service import compute_checksum
from src.services.compatibility_service import MSG_NEWER_PRODUCER, MSG_OLDER_PRODUCER
from src.services.dto import ImportStage, ImportStatus
from src.services.import_validation_service import (
    ShareImportService,
    find_duplicate,
    validate_backup_snapshot,
    validate_backup_text,
    validate_share_token,
)
from src.services.migration_service import MIGRATION_STEPS, MigrationLadder
from src.services.record_migration_service import RECORD_TRANSFORMS
from src.services.sharing_service import Transport, encode_legacy_share_link, encode_share_link
from src.utils.constants import DEEP_LINK_PREFIX, MSG_BACKUP_DAMAGED, MSG_UPDATE_REQUIRED


def _versioned_link(version, recipe):
    data = {"v": version, "ts": 1700000000000, "app": "9.0.0", "recipe": recipe}
    raw = json.dumps(data, separators=(",", ":")).encode("utf-8")
    return DEEP_LINK_PREFIX + base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _make_snapshot(records, schema, count=None, preferences=None):
    snapshot = {
        "database": records,
        "preferences": preferences or {},
        "version": 1,
        "timestamp": 1700000000000,
        "compressed": True,
        "metadata": {
            "created": 1700000000000,
            "app": "1.0.0",
            "schema": schema,
            "count": len(records) if count is None else count,
        },
    }
    snapshot["checksum"] = compute_checksum(snapshot)
    return snapshot


@pytest.fixture
def importer(database, ladder):
    """Share importer bound to a migrated store."""
    return ShareImportService(database, ladder)


class TestFindDuplicate:
    """Tests for the content-based duplicate check."""

    def test_matches_on_content_not_id(self, tea_recipe):
        """Same title, ingredients and instructions under another id is a duplicate."""
        stored = dict(tea_recipe, id="someone-else")
        assert find_duplicate(tea_recipe, [stored]) is stored

    def test_any_text_difference_is_not_duplicate(self, tea_recipe):
        """A change to any compared field breaks the match."""
        for key in ("title", "ingredients", "instructions"):
            stored = dict(tea_recipe, **{key: tea_recipe[key] + " (mine)"})
            assert find_duplicate(tea_recipe, [stored]) is None, key

    def test_missing_equals_empty(self):
        """A missing field and an empty string compare equal."""
        assert find_duplicate({"title": "Tea"}, [{"title": "Tea", "ingredients": None, "instructions": ""}])

    def test_no_stored_recipes(self, tea_recipe):
        assert find_duplicate(tea_recipe, []) is None


class TestValidateShareToken:
    """Tests for validate_share_token()."""

    def test_current_version_link_is_valid(self, tea_recipe):
        """A link at the reader's version is accepted unchanged."""
        outcome = validate_share_token(encode_share_link(tea_recipe), 3, lambda: [])

        assert outcome.status == ImportStatus.VALID
        assert outcome.stage == ImportStage.ACCEPTED
        assert outcome.share_version == 3
        assert outcome.current_version == 3
        assert not outcome.data_loss
        assert outcome.migrated == outcome.recipe

    def test_legacy_v1_link_is_migrated(self, tea_recipe):
        """A legacy v1 link read by a v3 store is migrated without loss."""
        link = encode_legacy_share_link(tea_recipe, version=1)

        outcome = validate_share_token(link, current_version=3, load_existing=lambda: [])

        assert outcome.status == ImportStatus.VALID
        assert outcome.legacy
        assert outcome.share_version == 1
        assert outcome.current_version == 3
        assert not outcome.data_loss
        assert outcome.migrated["cooking_method"] is None
        assert outcome.migrated["source_type"] == "manual"
        assert outcome.migrated["nutrition"] is None
        assert "checksum" not in outcome.migrated
        assert "version" not in outcome.migrated

    def test_older_versioned_link_is_migrated(self, full_recipe):
        """A v1 link gains the v2 and v3 fields with defaults."""
        outcome = validate_share_token(encode_share_link(full_recipe, version=1), 3, lambda: [])

        assert outcome.is_valid
        assert set(outcome.recipe) == {"id", "title", "ingredients", "instructions"}
        assert outcome.migrated["source_type"] == "manual"
        assert outcome.migrated["nutrition"] is None

    def test_newer_producer_requires_update(self, tea_recipe):
        """A v5 link read by a v3 store is blocked."""
        outcome = validate_share_token(_versioned_link(5, tea_recipe), current_version=3, load_existing=lambda: [])

        assert outcome.status == ImportStatus.UPDATE_REQUIRED
        assert outcome.stage == ImportStage.VERSION
        assert outcome.message == MSG_UPDATE_REQUIRED
        assert outcome.share_version == 5
        assert outcome.data_loss
        assert outcome.migrated is None

    def test_duplicate_despite_different_id(self, tea_recipe):
        """Content matching a stored recipe is a duplicate even under another id.

        Two distinct recipes with identical text are also reported, which is
        accepted behaviour of the heuristic.
        """
        stored = dict(tea_recipe, id="stored-id")

        outcome = validate_share_token(encode_share_link(tea_recipe), 3, lambda: [stored])

        assert outcome.status == ImportStatus.DUPLICATE
        assert outcome.stage == ImportStage.DUPLICATE
        assert outcome.migrated is not None
        assert "stored-id" in outcome.errors[0]

    def test_format_failures_pass_through(self):
        """Rejections from parsing keep their status and gain the reader version."""
        outcome = validate_share_token("myrecipebox://import/%%%", 3, lambda: [])
        assert outcome.status == ImportStatus.CORRUPTED
        assert outcome.current_version == 3

    def test_transport_selects_ceiling(self, tea_recipe):
        """The size stage uses the given transport."""
        tea_recipe["ingredients"] = "x" * 1500
        link = encode_share_link(tea_recipe, transport=Transport.QR)

        assert validate_share_token(link, 3, lambda: []).status == ImportStatus.SIZE_EXCEEDED
        assert validate_share_token(link, 3, lambda: [], Transport.QR).is_valid

    def test_migration_error_is_reported(self, tea_recipe, monkeypatch):
        """A failing record transform ends in migration_failed naming its version."""

        def broken(record):
            raise KeyError("cooking_method")

        monkeypatch.setitem(RECORD_TRANSFORMS, 2, broken)

        outcome = validate_share_token(encode_share_link(tea_recipe, version=1), 3, lambda: [])
        assert outcome.status == ImportStatus.MIGRATION_FAILED
        assert outcome.stage == ImportStage.MIGRATION
        assert outcome.failed_version == 2
        assert "cooking_method" in outcome.errors[0]

    def test_stored_recipes_read_only_at_duplicate_stage(self, tea_recipe):
        """Links stopped by an earlier stage never read the store."""

        def must_not_load():
            raise AssertionError("stored recipes were read")

        for link in ["not a link", "myrecipebox://import/%%%", _versioned_link(5, tea_recipe)]:
            assert not validate_share_token(link, 3, must_not_load).is_valid

    def test_every_outcome_is_terminal(self, tea_recipe):
        """Each input ends in exactly one status."""
        links = [
            "not a link",
            "myrecipebox://import/%%%",
            encode_share_link(tea_recipe),
            _versioned_link(9, tea_recipe),
        ]
        for link in links:
            outcome = validate_share_token(link, 3, lambda: [])
            assert isinstance(outcome.status, ImportStatus)
            assert outcome.message


class TestShareImportService:
    """Tests for importing into a store."""

    def test_import_stores_under_fresh_id(self, importer, database, tea_recipe):
        """An accepted recipe is stored with a new id and cleaned fields."""
        outcome = importer.import_recipe(encode_share_link(tea_recipe))

        assert outcome.is_valid
        assert outcome.recipe_id
        assert outcome.recipe_id != "r1"

        stored = recipe_service.get_recipe(database, outcome.recipe_id)
        assert stored["title"] == "Tea"
        assert stored["source_type"] == "manual"
        assert stored["is_favorite"] is False
        assert stored["source_url"] is None

    def test_second_import_is_duplicate(self, importer, database, tea_recipe):
        """Importing the same link twice is caught by the duplicate stage."""
        link = encode_share_link(tea_recipe)
        importer.import_recipe(link)

        outcome = importer.import_recipe(link)

        assert outcome.status == ImportStatus.DUPLICATE
        assert outcome.recipe_id is None
        assert recipe_service.count_recipes(database) == 1

    def test_allow_duplicate_stores_anyway(self, importer, database, tea_recipe):
        """The user can import a duplicate on purpose."""
        link = encode_share_link(tea_recipe)
        importer.import_recipe(link)

        outcome = importer.import_recipe(link, allow_duplicate=True)

        assert outcome.status == ImportStatus.DUPLICATE
        assert outcome.recipe_id is not None
        assert recipe_service.count_recipes(database) == 2

    def test_rejected_link_writes_nothing(self, importer, database, tea_recipe):
        """A blocked import leaves the store untouched."""
        outcome = importer.import_recipe(_versioned_link(5, tea_recipe))

        assert outcome.status == ImportStatus.UPDATE_REQUIRED
        assert recipe_service.count_recipes(database) == 0

    def test_decode_does_not_write(self, importer, database, tea_recipe):
        """decode() validates against the store only."""
        assert importer.decode(encode_share_link(tea_recipe)).is_valid
        assert recipe_service.count_recipes(database) == 0

    def test_wrong_typed_payload_writes_nothing(self, importer, database):
        """A payload with fields of the wrong type is rejected before the store is touched."""
        recipe = {"id": "a", "title": {"x": 1}, "ingredients": ["a"], "instructions": "steep"}

        outcome = importer.import_recipe(_versioned_link(3, recipe))

        assert outcome.status == ImportStatus.INVALID_FORMAT
        assert outcome.stage == ImportStage.FORMAT
        assert outcome.recipe_id is None
        assert recipe_service.count_recipes(database) == 0



class TestImportIntoOlderStore:
    """Share imports into a store below the latest schema version."""

    @pytest.fixture
    def open_store(self, database):
        """Migrate the store to the given version and return an importer for it."""

        def _open(version):
            MigrationLadder(database, steps=MIGRATION_STEPS[:version]).apply_pending()
            return ShareImportService(database, MigrationLadder(database))

        return _open

    def test_v1_store_imports_v1_link(self, open_store, database, tea_recipe):
        importer = open_store(1)
        link = encode_share_link(tea_recipe, version=1)

        assert importer.decode(link).is_valid
        outcome = importer.import_recipe(link)

        assert outcome.is_valid
        assert outcome.current_version == 1
        stored = recipe_service.get_recipe(database, outcome.recipe_id)
        assert stored["title"] == "Tea"
        assert "cooking_method" not in stored
        assert "nutrition" not in stored

    def test_garbage_stops_at_format_stage(self, open_store):
        outcome = open_store(2).decode("http://nope")

        assert outcome.status == ImportStatus.INVALID_FORMAT
        assert outcome.stage == ImportStage.FORMAT
        assert outcome.current_version == 2

    def test_newer_link_requires_update(self, open_store, tea_recipe):
        outcome = open_store(2).import_recipe(encode_share_link(tea_recipe))

        assert outcome.status == ImportStatus.UPDATE_REQUIRED
        assert outcome.share_version == 3
        assert outcome.current_version == 2

    def test_duplicate_check_on_older_store(self, open_store, database, full_recipe):
        importer = open_store(2)
        link = encode_share_link(full_recipe, version=2)

        first = importer.import_recipe(link)
        second = importer.import_recipe(link)

        assert first.is_valid
        assert recipe_service.get_recipe(database, first.recipe_id)["cooking_method"] == "Baking"
        assert second.status == ImportStatus.DUPLICATE
        assert recipe_service.count_recipes(database) == 1

class TestValidateBackup:
    """Tests for the backup snapshot pipeline."""

    def test_unparseable_text_is_damaged(self):
        outcome = validate_backup_text("{not json", 3)
        assert outcome.status == ImportStatus.CORRUPTED
        assert outcome.message == MSG_BACKUP_DAMAGED

    def test_non_object_is_invalid(self):
        assert validate_backup_text("[1, 2]", 3).status == ImportStatus.INVALID_FORMAT

    def test_count_mismatch_is_integrity_violation(self):
        """Metadata claiming more records than present is rejected."""
        records = [{"id": f"r{i}", "title": f"Recipe {i}"} for i in range(9)]
        snapshot = _make_snapshot(records, schema=3, count=10)

        outcome = validate_backup_snapshot(snapshot, 3)

        assert outcome.status == ImportStatus.INTEGRITY_VIOLATION
        assert outcome.message == MSG_BACKUP_DAMAGED
        assert "Recipe count mismatch: metadata says 10, found 9" in outcome.errors

    def test_tampered_record_is_corrupted(self):
        """Editing a record after the checksum was computed is detected."""
        snapshot = _make_snapshot([{"id": "a", "title": "Soup"}], schema=3)
        snapshot["database"][0]["title"] = "Stew"

        outcome = validate_backup_snapshot(snapshot, 3)
        assert outcome.status == ImportStatus.CORRUPTED
        assert outcome.message == MSG_BACKUP_DAMAGED

    def test_newer_schema_requires_update(self):
        """A backup from a newer schema is blocked."""
        outcome = validate_backup_snapshot(_make_snapshot([], schema=5), 3)

        assert outcome.status == ImportStatus.UPDATE_REQUIRED
        assert outcome.message == MSG_NEWER_PRODUCER
        assert outcome.share_version == 5
        assert outcome.data_loss

    def test_older_schema_is_migrated(self):
        """A v1 backup is accepted with records upgraded to v3."""
        snapshot = _make_snapshot(
            [{"id": "a", "title": "Soup", "source_url": "https://example.com/soup"}], schema=1
        )
        original = copy.deepcopy(snapshot)

        outcome = validate_backup_snapshot(snapshot, 3)

        assert outcome.is_valid
        assert outcome.message == MSG_OLDER_PRODUCER
        record = outcome.snapshot["database"][0]
        assert record["source_type"] == "url"
        assert record["cooking_method"] is None
        assert record["nutrition"] is None
        assert snapshot == original

    def test_text_round_trip(self):
        """Serialized snapshots validate from text."""
        snapshot = _make_snapshot([{"id": "a", "title": "Crème"}], schema=3, preferences={"theme": "dark"})
        outcome = validate_backup_text(json.dumps(snapshot, ensure_ascii=False), 3)
        assert outcome.is_valid
        assert outcome.snapshot["preferences"] == {"theme": "dark"}
