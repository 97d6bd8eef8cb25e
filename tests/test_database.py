"""Tests for database module."""
import sqlite3
import tempfile
import threading
from pathlib import Path

import pytest

from newsmirror.models import LocalEntity


def test_database_creates_tables():
    """Database should create all required tables on init."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")

        tables = db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        table_names = {row[0] for row in tables}

        assert {
            "channels",
            "entities",
            "categories",
            "term_translations",
            "entity_categories",
            "entity_channels",
            "sync_runs",
            "sync_skips",
        } <= table_names


def test_identity_key_is_unique():
    """Two rows for one (type, api_id, translation_id) are rejected."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        db.create_entity(LocalEntity(id=None, entity_type="actu", api_id="1", translation_id=""))

        with pytest.raises(sqlite3.IntegrityError):
            db.create_entity(LocalEntity(id=None, entity_type="actu", api_id="1", translation_id=""))


def test_create_save_and_load_entity():
    """Entities round-trip through create/save/load_by_identity."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        category = db.add_category("Research", "3")

        entity = db.create_entity(LocalEntity(
            id=None, entity_type="actu", api_id="1", translation_id="10",
            categories=[category.id],
        ))
        entity.title = "Hello"
        entity.meta = {"youtube_id": "abc123"}
        db.save_entity(entity)

        loaded = db.load_by_identity("actu", "1", "10")
        assert loaded.id == entity.id
        assert loaded.title == "Hello"
        assert loaded.meta == {"youtube_id": "abc123"}
        assert loaded.categories == [category.id]
        assert db.load_by_identity("actu", "1", "11") is None


def test_save_entity_requires_id():
    """Saving an entity that was never created is an error."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")

        with pytest.raises(ValueError):
            db.save_entity(LocalEntity(id=None, entity_type="actu", api_id="1", translation_id=""))


def test_create_entity_with_channel_is_atomic():
    """A failed insert leaves neither the row nor its ownership behind."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        channel = db.add_channel("https://actu.epfl.ch/api/sti", "STI")

        entity = db.create_entity(
            LocalEntity(id=None, entity_type="actu", api_id="1", translation_id=""),
            channel_id=channel.id,
        )
        assert db.entity_ids_for_channel(channel.id) == {entity.id}

        with pytest.raises(sqlite3.Error):
            db.create_entity(
                LocalEntity(id=None, entity_type="actu", api_id="2", translation_id="", categories=[object()]),
                channel_id=channel.id,
            )

        assert db.count_entities() == 1
        assert db.load_by_identity("actu", "2", "") is None
        assert db.entity_ids_for_channel(channel.id) == {entity.id}


def test_database_is_usable_from_other_threads():
    """Worker threads share the connection opened by the main thread."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        errors = []

        def worker(api_id):
            try:
                db.create_entity(LocalEntity(id=None, entity_type="actu", api_id=api_id, translation_id=""))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(str(i),)) for i in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        assert db.count_entities() == 4


def test_terms_by_metadata_in_creation_order():
    """Candidates come back ordered by id."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        a = db.add_category("A", "3")
        db.add_category("B", "4")
        c = db.add_category("C", "3")

        assert [t.id for t in db.terms_by_metadata("3")] == [a.id, c.id]
        assert [t.id for t in db.terms_by_metadata(3)] == [a.id, c.id]
        assert db.terms_by_metadata("5") == []


def test_remove_channel_keeps_entities():
    """Removing a channel orphans its entities instead of deleting them."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        sti = db.add_channel("https://actu.epfl.ch/api/sti", "STI")
        ic = db.add_channel("https://actu.epfl.ch/api/ic", "IC")
        shared = db.create_entity(LocalEntity(id=None, entity_type="actu", api_id="1", translation_id=""))
        only_sti = db.create_entity(LocalEntity(id=None, entity_type="actu", api_id="2", translation_id=""))
        db.set_ownership(shared.id, sti.id)
        db.set_ownership(shared.id, ic.id)
        db.set_ownership(only_sti.id, sti.id)

        assert db.entity_ids_for_channel(sti.id) == {shared.id, only_sti.id}
        assert db.remove_channel(sti.url) is True
        assert db.remove_channel(sti.url) is False

        assert db.count_entities() == 2
        assert db.orphaned_entity_ids() == [only_sti.id]

        assert db.delete_entities(db.orphaned_entity_ids()) == 1
        assert db.count_entities() == 1


def test_set_channel_active():
    """Disabled channels drop out of the active listing."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        sti = db.add_channel("https://actu.epfl.ch/api/sti", "STI")
        ic = db.add_channel("https://actu.epfl.ch/api/ic", "IC")

        assert db.set_channel_active(sti.url, False) is True
        assert [c.url for c in db.list_channels(active_only=True)] == [ic.url]
        assert db.get_channel(sti.url).is_active is False
        assert len(db.list_channels()) == 2

        assert db.set_channel_active(sti.url, True) is True
        assert db.get_channel(sti.url).is_active is True
        assert db.set_channel_active("https://unknown.example/api", False) is False


def test_record_run_lifecycle_with_skips():
    """Sync runs should be trackable from start to completion."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        channel = db.add_channel("https://actu.epfl.ch/api/sti")

        run_id = db.record_run_start(channel.id)
        db.record_skip(run_id, 3, None, "Missing required field 'news_id'")
        db.record_run_complete(run_id, fetched=5, created=4, updated=0, skipped=1)

        run = db.get_last_run()
        assert run["status"] == "completed"
        assert run["channel_url"] == channel.url
        assert run["items_created"] == 4
        assert run["skips"] == [
            {"position": 3, "api_id": None, "error": "Missing required field 'news_id'"}
        ]


def test_record_run_start_fails_stale_runs():
    """An interrupted run is marked failed when the next one starts."""
    from newsmirror.database import Database

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        channel = db.add_channel("https://actu.epfl.ch/api/sti")

        stale = db.record_run_start(channel.id)
        db.record_run_start(channel.id)

        row = db.execute("SELECT * FROM sync_runs WHERE id = ?", (stale,)).fetchone()
        assert row["status"] == "failed"
        assert row["error"] == "interrupted"


def test_format_timestamp():
    """UTC timestamps are shown in local time."""
    from newsmirror.database import format_timestamp

    assert format_timestamp("2024-01-15 12:00:00") == "2024-01-15 13:00:00"
    assert format_timestamp("") == "N/A"
