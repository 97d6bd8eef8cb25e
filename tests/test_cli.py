"""Tests for the command line interface."""
import tempfile
from pathlib import Path
from unittest.mock import MagicMock

from click.testing import CliRunner

CHANNEL_URL = "https://actu.epfl.ch/api/jahia/channels/sti/news/en/?format=json"


def _use_db(monkeypatch, db):
    import newsmirror.main

    monkeypatch.setattr(newsmirror.main, "get_db", lambda: db)


def test_channels_add_list_remove(monkeypatch):
    """Channels can be managed from the CLI."""
    from newsmirror.database import Database
    from newsmirror.main import cli

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        _use_db(monkeypatch, db)
        runner = CliRunner()

        result = runner.invoke(cli, ["channels", "add", CHANNEL_URL, "--name", "STI"])
        assert result.exit_code == 0
        assert "Added: STI" in result.output

        result = runner.invoke(cli, ["channels", "add", CHANNEL_URL])
        assert result.exit_code == 1
        assert "already exists" in result.output

        result = runner.invoke(cli, ["channels", "list"])
        assert "STI" in result.output
        assert CHANNEL_URL in result.output

        result = runner.invoke(cli, ["channels", "remove", CHANNEL_URL])
        assert result.exit_code == 0
        assert db.list_channels() == []

        result = runner.invoke(cli, ["channels", "remove", CHANNEL_URL])
        assert result.exit_code == 1


def test_channels_disable_and_enable(monkeypatch):
    """Disabled channels show as inactive until enabled again."""
    from newsmirror.database import Database
    from newsmirror.main import cli

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        _use_db(monkeypatch, db)
        db.add_channel(CHANNEL_URL, "STI")
        runner = CliRunner()

        result = runner.invoke(cli, ["channels", "disable", CHANNEL_URL])
        assert result.exit_code == 0
        assert "Disabled" in result.output
        assert db.list_channels(active_only=True) == []
        assert "(inactive)" in runner.invoke(cli, ["channels", "list"]).output

        result = runner.invoke(cli, ["channels", "enable", CHANNEL_URL])
        assert result.exit_code == 0
        assert [c.url for c in db.list_channels(active_only=True)] == [CHANNEL_URL]
        assert "(inactive)" not in runner.invoke(cli, ["channels", "list"]).output

        result = runner.invoke(cli, ["channels", "disable", "https://unknown.example/api"])
        assert result.exit_code == 1
        assert "unknown channel" in result.output


def test_categories_add_and_list(monkeypatch):
    """Categories are linked to known remote ids."""
    from newsmirror.database import Database
    from newsmirror.main import cli

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        _use_db(monkeypatch, db)
        runner = CliRunner()

        result = runner.invoke(cli, ["categories", "add", "Recherche", "--remote-id", "3"])
        assert result.exit_code == 0
        assert "→ Research" in result.output

        result = runner.invoke(cli, ["categories", "add", "Bogus", "--remote-id", "99"])
        assert result.exit_code != 0

        result = runner.invoke(cli, ["categories", "translate", "1", "en", "1"])
        assert result.exit_code == 0
        assert db.get_translation(1, "en") == 1

        result = runner.invoke(cli, ["categories", "list"])
        assert "[1] Recherche (remote: Research)" in result.output


def test_status_no_runs(monkeypatch):
    """status should say so when nothing ran yet."""
    from newsmirror.database import Database
    from newsmirror.main import cli

    with tempfile.TemporaryDirectory() as tmpdir:
        _use_db(monkeypatch, Database(Path(tmpdir) / "test.db"))

        result = CliRunner().invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "No sync runs found" in result.output


def test_run_then_status(monkeypatch):
    """run mirrors every channel; status reports the skipped items."""
    from newsmirror.config import DEFAULT_CONFIG
    from newsmirror.database import Database
    from newsmirror.main import cli

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        db.add_channel(CHANNEL_URL, "STI")
        _use_db(monkeypatch, db)

        fetcher = MagicMock()
        fetcher.fetch.return_value = [
            {"news_id": 1, "translation_id": 10, "title": "One"},
            {"title": "no id"},
        ]
        monkeypatch.setattr("newsmirror.main.get_config", lambda: DEFAULT_CONFIG)
        monkeypatch.setattr("newsmirror.logging_config.setup_logging", lambda *args: None)
        monkeypatch.setattr("newsmirror.sync.ApiFetcher", lambda **kwargs: fetcher)
        runner = CliRunner()

        result = runner.invoke(cli, ["run"])
        assert result.exit_code == 0
        assert "created 1, updated 0, skipped 1" in result.output

        result = runner.invoke(cli, ["status"])
        assert result.exit_code == 0
        assert "Status: Completed" in result.output
        assert "Created: 1" in result.output
        assert "Skipped Items:" in result.output
        assert "#2 (no id)" in result.output
        assert "Missing required field 'news_id'" in result.output


def test_run_fetch_failure_exits_nonzero(monkeypatch):
    """A channel that cannot be fetched makes run exit with 1."""
    from newsmirror.config import DEFAULT_CONFIG
    from newsmirror.database import Database
    from newsmirror.fetcher import FetchError
    from newsmirror.main import cli

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        db.add_channel(CHANNEL_URL)
        _use_db(monkeypatch, db)

        fetcher = MagicMock()
        fetcher.fetch.side_effect = FetchError("HTTP 500", CHANNEL_URL)
        monkeypatch.setattr("newsmirror.main.get_config", lambda: DEFAULT_CONFIG)
        monkeypatch.setattr("newsmirror.logging_config.setup_logging", lambda *args: None)
        monkeypatch.setattr("newsmirror.sync.ApiFetcher", lambda **kwargs: fetcher)
        runner = CliRunner()

        result = runner.invoke(cli, ["run"])
        assert result.exit_code == 1
        assert "HTTP 500" in result.output

        result = runner.invoke(cli, ["run", "--channel", CHANNEL_URL])
        assert result.exit_code == 1

        result = runner.invoke(cli, ["run", "--channel", "https://unknown.example"])
        assert result.exit_code == 1
        assert "unknown channel" in result.output


def test_prune_deletes_orphans(monkeypatch):
    """prune removes entities of removed channels only."""
    from newsmirror.database import Database
    from newsmirror.main import cli
    from newsmirror.models import LocalEntity

    with tempfile.TemporaryDirectory() as tmpdir:
        db = Database(Path(tmpdir) / "test.db")
        channel = db.add_channel(CHANNEL_URL)
        kept = db.create_entity(LocalEntity(id=None, entity_type="actu", api_id="1", translation_id=""))
        db.create_entity(LocalEntity(id=None, entity_type="actu", api_id="2", translation_id=""))
        db.set_ownership(kept.id, channel.id)
        _use_db(monkeypatch, db)
        runner = CliRunner()

        result = runner.invoke(cli, ["prune"], input="n\n")
        assert result.exit_code == 1
        assert db.count_entities() == 2

        result = runner.invoke(cli, ["prune", "--yes"])
        assert result.exit_code == 0
        assert "Deleted 1 entities" in result.output
        assert db.get_entity(kept.id) is not None

        result = runner.invoke(cli, ["prune", "--yes"])
        assert "Nothing to prune" in result.output
