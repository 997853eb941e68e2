"""Tests for backup snapshots: metadata, integrity, files and restore."""

import json

import pytest

from src.services import preferences_service, recipe_service
from src.services.backup_service import (
    BackupMetadata,
    BackupService,
    RestoreMode,
    check_compatibility,
    cleanup_old_backups,
    compute_checksum,
    create_backup_filename,
    create_snapshot,
    list_backups,
    migrate_backup_data,
    parse_backup_filename,
    read_backup_file,
    restore_snapshot,
    stamp_metadata,
    validate_integrity,
    verify_checksum,
    write_backup_file,
)
from src.services.dto import ImportStatus
from src.services.exceptions import (
    BackupFileError,
    IntegrityViolation,
    MigrationFailed,
    SchemaVersionError,
    ValidationError,
)
from src.services.migration_service import MIGRATION_STEPS, MigrationLadder
from src.services.record_migration_service import RECORD_TRANSFORMS

CREATED_MS = 1700000000000  # 2023-11-14 UTC


def _snapshot_with(records, count=None, schema=3):
    snapshot = {
        "database": records,
        "preferences": {},
        "version": 1,
        "timestamp": CREATED_MS,
        "compressed": True,
        "metadata": {
            "created": CREATED_MS,
            "app": "1.3.0",
            "schema": schema,
            "count": len(records) if count is None else count,
        },
    }
    snapshot["checksum"] = compute_checksum(snapshot)
    return snapshot


class TestMetadata:
    """Tests for the version stamp."""

    def test_stamp_metadata(self):
        metadata = stamp_metadata(4, 3, created_ms=CREATED_MS)
        assert metadata == BackupMetadata(created=CREATED_MS, app="1.3.0", schema=3, count=4)
        assert BackupMetadata.from_dict(metadata.to_dict()) == metadata

    def test_check_compatibility(self):
        """Compatibility follows the shared version policy."""
        older = check_compatibility(stamp_metadata(0, 1, created_ms=CREATED_MS), 3)
        newer = check_compatibility(stamp_metadata(0, 4, created_ms=CREATED_MS), 3)

        assert older.compatible and older.migrate
        assert newer.requires_update and newer.data_loss

    def test_migrate_backup_data_leaves_metadata(self):
        """Records are upgraded; metadata still describes the source."""
        snapshot = _snapshot_with([{"id": "a", "title": "Soup"}], schema=1)

        migrated = migrate_backup_data(snapshot, 1, 3)

        assert migrated["database"][0]["source_type"] == "manual"
        assert migrated["metadata"]["schema"] == 1
        assert "source_type" not in snapshot["database"][0]


class TestChecksum:
    """Tests for compute_checksum() and verify_checksum()."""

    def test_key_order_does_not_matter(self):
        """The checksum is over key-sorted JSON."""
        a = {"b": 1, "a": [1, 2], "checksum": "x"}
        b = {"a": [1, 2], "b": 1}
        assert compute_checksum(a) == compute_checksum(b)
        assert len(compute_checksum(a)) == 64

    def test_verify(self):
        snapshot = _snapshot_with([{"id": "a", "title": "Soup"}])
        assert verify_checksum(snapshot)

        snapshot["preferences"]["theme"] = "dark"
        assert not verify_checksum(snapshot)


class TestValidateIntegrity:
    """Tests for validate_integrity()."""

    def test_well_formed_snapshot(self):
        assert validate_integrity(_snapshot_with([{"id": "a", "title": "Soup"}])).valid

    def test_count_mismatch_scenario(self):
        """Metadata saying 10 with 9 records present fails with a count error."""
        records = [{"id": str(i), "title": f"Recipe {i}"} for i in range(9)]

        result = validate_integrity(_snapshot_with(records, count=10))

        assert not result.valid
        assert result.errors == ["Recipe count mismatch: metadata says 10, found 9"]

    def test_all_problems_collected(self):
        """Every violation is reported, not just the first."""
        result = validate_integrity({"database": "nope", "metadata": {"schema": "3"}})

        assert not result.valid
        assert "Invalid or missing recipe database" in result.errors
        assert "Invalid or missing preferences" in result.errors
        assert "Invalid or missing timestamp" in result.errors
        assert "Invalid or missing checksum" in result.errors
        assert "Invalid metadata: missing or invalid schema version" in result.errors
        assert "Invalid metadata: missing or invalid recipe count" in result.errors
        assert len(result.errors) >= 8

    def test_missing_metadata(self):
        snapshot = _snapshot_with([])
        del snapshot["metadata"]
        assert "Missing backup metadata" in validate_integrity(snapshot).errors

    def test_non_record_entries(self):
        snapshot = _snapshot_with(["just a string"])
        assert "Recipe database contains entries that are not records" in validate_integrity(snapshot).errors

    def test_booleans_are_not_versions(self):
        snapshot = _snapshot_with([])
        snapshot["metadata"]["schema"] = True
        assert not validate_integrity(snapshot).valid

    def test_not_an_object(self):
        assert validate_integrity([]).errors == ["Backup is not a JSON object"]


class TestFilenames:
    """Tests for backup filename conventions."""

    def test_create_filename(self):
        metadata = BackupMetadata(created=CREATED_MS, app="1.3.0", schema=3, count=0)
        assert create_backup_filename(metadata) == "backup_v3_2023-11-14_1700000000000.json"

    def test_parse_versioned_filename(self):
        info = parse_backup_filename("backup_v2_2023-11-14_1700000000000.json")
        assert info == {"version": 2, "date": "2023-11-14", "timestamp": 1700000000000}

    def test_legacy_filename_is_version_one(self):
        info = parse_backup_filename("backup_2023-11-14_1700000000000.json")
        assert info == {"version": 1, "date": "2023-11-14", "timestamp": 1700000000000}

    @pytest.mark.parametrize("name", ["notes.txt", "backup_v3.json", "backup_vX_2023-11-14_1.json"])
    def test_other_names_rejected(self, name):
        assert parse_backup_filename(name) is None


class TestSnapshotFiles:
    """Tests for creating, writing, listing and pruning snapshots."""

    def test_create_snapshot(self, database, stored_recipe):
        """A snapshot holds every recipe, the backed-up preferences and metadata."""
        preferences_service.write_preference(database, "theme", "dark")
        preferences_service.write_preference(database, "lastBackup", "123")

        snapshot = create_snapshot(database, 3, created_ms=CREATED_MS)

        assert snapshot["database"] == [stored_recipe]
        assert snapshot["preferences"] == {"theme": "dark"}
        assert snapshot["version"] == 1
        assert snapshot["compressed"] is True
        assert snapshot["timestamp"] == CREATED_MS
        assert snapshot["metadata"] == {"created": CREATED_MS, "app": "1.3.0", "schema": 3, "count": 1}
        assert verify_checksum(snapshot)
        assert validate_integrity(snapshot).valid

    def test_write_and_read(self, tmp_path):
        snapshot = _snapshot_with([{"id": "a", "title": "Crème brûlée"}])

        path = write_backup_file(snapshot, tmp_path / "backups")

        assert path.name == "backup_v3_2023-11-14_1700000000000.json"
        assert json.loads(read_backup_file(path)) == snapshot

    def test_write_failure(self, tmp_path):
        """A directory path that is a file cannot be written to."""
        blocker = tmp_path / "not_a_dir"
        blocker.write_text("x")

        with pytest.raises(BackupFileError):
            write_backup_file(_snapshot_with([]), blocker)

    def test_read_missing_file(self, tmp_path):
        with pytest.raises(BackupFileError):
            read_backup_file(tmp_path / "missing.json")

    def test_list_newest_first(self, tmp_path):
        (tmp_path / "backup_v3_2023-11-14_1700000000000.json").write_text("{}")
        (tmp_path / "backup_2023-11-15_1700090000000.json").write_text("{}")
        (tmp_path / "backup_v2_2023-11-13_1699900000000.json").write_text("{}")
        (tmp_path / "backup_notes.json").write_text("{}")

        backups = list_backups(tmp_path)

        assert [b["timestamp"] for b in backups] == [1700090000000, 1700000000000, 1699900000000]
        assert [b["version"] for b in backups] == [1, 3, 2]
        assert backups[0]["size"] == 2

    def test_list_missing_directory(self, tmp_path):
        assert list_backups(tmp_path / "nowhere") == []

    def test_cleanup_keeps_newest(self, tmp_path):
        for i in range(4):
            (tmp_path / f"backup_v3_2023-11-14_{CREATED_MS + i}.json").write_text("{}")

        assert cleanup_old_backups(tmp_path, keep_count=2) == 2

        remaining = [b["timestamp"] for b in list_backups(tmp_path)]
        assert remaining == [CREATED_MS + 3, CREATED_MS + 2]


class TestRestoreSnapshot:
    """Tests for restore_snapshot()."""

    def test_merge_restores_missing_recipes(self, database, stored_recipe):
        snapshot = create_snapshot(database, 3, created_ms=CREATED_MS)
        recipe_service.delete_recipe(database, stored_recipe["id"])

        result = restore_snapshot(database, snapshot, RestoreMode.MERGE)

        assert result.restored == 1
        assert recipe_service.get_recipe(database, stored_recipe["id"]) == stored_recipe

    def test_merge_is_idempotent(self, database, stored_recipe):
        """Restoring the same snapshot twice does not duplicate recipes."""
        snapshot = create_snapshot(database, 3, created_ms=CREATED_MS)

        first = restore_snapshot(database, snapshot)
        second = restore_snapshot(database, snapshot)

        assert first.skipped == 1 and first.restored == 0
        assert second.skipped == 1
        assert recipe_service.count_recipes(database) == 1

    def test_replace_deletes_existing(self, database, stored_recipe):
        snapshot = create_snapshot(database, 3, created_ms=CREATED_MS)
        recipe_service.persist_recipe(database, {"id": "extra", "title": "Extra"})

        result = restore_snapshot(database, snapshot, RestoreMode.REPLACE)

        assert result.deleted == 2
        assert result.restored == 1
        assert [r["id"] for r in recipe_service.fetch_all_recipes(database)] == [stored_recipe["id"]]

    def test_preferences_restored(self, database, ladder):
        snapshot = _snapshot_with([])
        snapshot["preferences"] = {"theme": "dark", "autoBackup": "true"}

        result = restore_snapshot(database, snapshot)

        assert result.preferences_restored == 2
        assert preferences_service.read_preference(database, "theme") == "dark"
        assert preferences_service.read_preference(database, "autoBackup") == "true"

    def test_bad_record_writes_nothing(self, database, ladder):
        """A record that cannot be stored rolls back the whole restore."""
        snapshot = _snapshot_with([{"id": "good", "title": "Good"}, {"id": "bad", "title": ""}])

        with pytest.raises(ValidationError):
            restore_snapshot(database, snapshot)

        assert recipe_service.count_recipes(database) == 0


class TestBackupService:
    """Tests for BackupService."""

    @pytest.fixture
    def service(self, database, ladder, tmp_path):
        return BackupService(database, ladder, tmp_path / "backups", max_backups=2)

    def test_create_backup(self, service, database, stored_recipe):
        path = service.create_backup(created_ms=CREATED_MS)

        assert path.exists()
        assert parse_backup_filename(path.name)["version"] == 3
        assert preferences_service.get_last_backup_time(database) == CREATED_MS

    def test_create_backup_prunes(self, service, stored_recipe):
        for i in range(3):
            service.create_backup(created_ms=CREATED_MS + i)

        assert len(list_backups(service.backup_dir)) == 2

    def test_prepare_and_restore(self, service, database, stored_recipe):
        path = service.create_backup(created_ms=CREATED_MS)
        recipe_service.delete_recipe(database, stored_recipe["id"])

        outcome = service.prepare_restore(path)
        assert outcome.is_valid
        assert recipe_service.count_recipes(database) == 0

        result = service.restore(path)
        assert result.restored == 1
        assert recipe_service.get_recipe(database, stored_recipe["id"])["title"] == "Shortbread"

    def test_damaged_file_refused(self, service, database, stored_recipe):
        path = service.create_backup(created_ms=CREATED_MS)
        data = json.loads(path.read_text(encoding="utf-8"))
        data["database"][0]["title"] = "Tampered"
        path.write_text(json.dumps(data), encoding="utf-8")

        assert service.prepare_restore(path).status == ImportStatus.CORRUPTED
        with pytest.raises(IntegrityViolation):
            service.restore(path, RestoreMode.REPLACE)
        assert recipe_service.get_recipe(database, stored_recipe["id"])["title"] == "Shortbread"

    def test_newer_schema_is_an_update_not_damage(self, service, database, tmp_path):
        """A backup from a newer schema is refused with a version error."""
        snapshot = _snapshot_with([{"id": "a", "title": "Soup"}], schema=5)
        path = write_backup_file(snapshot, tmp_path / "incoming")

        with pytest.raises(SchemaVersionError) as exc_info:
            service.restore(path)

        assert exc_info.value.current_version == 5
        assert exc_info.value.latest_version == 3
        assert "newer" in str(exc_info.value)
        assert recipe_service.count_recipes(database) == 0

    def test_failed_migration_names_the_version(self, service, database, tmp_path, monkeypatch):
        """A record transform that fails is reported with its version."""

        def broken(record):
            raise ValueError("bad nutrition")

        monkeypatch.setitem(RECORD_TRANSFORMS, 3, broken)
        snapshot = _snapshot_with([{"id": "a", "title": "Soup"}], schema=1)
        path = write_backup_file(snapshot, tmp_path / "incoming")

        with pytest.raises(MigrationFailed) as exc_info:
            service.restore(path)

        assert exc_info.value.version == 3
        assert "bad nutrition" in str(exc_info.value)
        assert recipe_service.count_recipes(database) == 0


class TestOlderStore:
    """Snapshots of a store below the latest schema version."""

    @pytest.fixture
    def v2_ladder(self, database):
        ladder = MigrationLadder(database, steps=MIGRATION_STEPS[:2])
        ladder.apply_pending()
        return ladder

    def test_snapshot_carries_only_stored_fields(self, database, v2_ladder):
        recipe_service.persist_recipe(database, {"id": "a", "title": "Soup", "nutrition": {"calories": 90}})

        snapshot = create_snapshot(database, v2_ladder.current_version(), created_ms=CREATED_MS)

        assert snapshot["metadata"]["schema"] == 2
        assert snapshot["database"][0]["title"] == "Soup"
        assert "cooking_method" in snapshot["database"][0]
        assert "nutrition" not in snapshot["database"][0]
        assert validate_integrity(snapshot).valid

    def test_create_backup(self, database, v2_ladder, tmp_path):
        recipe_service.persist_recipe(database, {"id": "a", "title": "Soup"})

        path = BackupService(database, v2_ladder, tmp_path).create_backup(created_ms=CREATED_MS)

        assert path.name == "backup_v2_2023-11-14_1700000000000.json"
