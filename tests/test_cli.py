"""Tests for the repotree CLI (tree, sync, cached, invalidate, sweep, config)."""

from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import yaml
from typer.testing import CliRunner

from repotree import cli
from repotree.cache import FileCacheStore
from repotree.cli import app
from repotree.errors import NotFoundError, RateLimitedError
from repotree.sync import SyncEngine

from conftest import FakeClock, tree_fetch

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path) -> Path:
    path = tmp_path / "repotree.yaml"
    path.write_text(
        yaml.dump({"cache": {"directory": str(tmp_path / "cache"), "ttl": 600}})
    )
    return path


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    """Keep the CLI from reconfiguring the root logger under pytest."""
    fake = MagicMock()
    monkeypatch.setattr(cli, "init_logging", fake)
    return fake


@pytest.fixture
def wired(monkeypatch, mock_vcs_provider):
    """Route the CLI's engine through the mock provider."""
    clock = FakeClock()

    def _create_engine(config, provider=None, store=None):
        return SyncEngine(
            mock_vcs_provider,
            FileCacheStore(config.cache.directory, clock=clock),
            ttl=config.cache.ttl,
            max_cache_age=config.cache.max_age,
            clock=clock,
        )

    monkeypatch.setattr(cli, "create_engine", _create_engine)
    return clock


def _invoke(config_file, *args):
    return runner.invoke(app, ["--config", str(config_file), *args])


# ── repotree tree ───────────────────────────────────────────────────


class TestTreeCommand:
    def test_prints_tree(self, config_file, wired, mock_vcs_provider):
        result = _invoke(config_file, "tree", "acme/widget@main")

        assert result.exit_code == 0, result.output
        assert "acme/widget@main" in result.output
        assert "fetched" in result.output
        assert "README.md" in result.output
        assert "main.py" in result.output

    def test_second_call_is_served_from_cache(self, config_file, wired, mock_vcs_provider):
        _invoke(config_file, "tree", "acme/widget@main")
        result = _invoke(config_file, "tree", "acme/widget@main")

        assert result.exit_code == 0
        assert "cached" in result.output
        assert mock_vcs_provider.fetch_tree.await_count == 1

    def test_depth_limits_output(self, config_file, wired):
        result = _invoke(config_file, "tree", "acme/widget", "--depth", "0")
        assert result.exit_code == 0
        assert "main.py" not in result.output
        assert "more" in result.output

    def test_stale_warning_printed(self, config_file, wired, mock_vcs_provider):
        _invoke(config_file, "tree", "acme/widget@main")
        wired.advance(hours=1)
        mock_vcs_provider.fetch_tree.side_effect = RateLimitedError("limit", retry_at=None)

        result = _invoke(config_file, "tree", "acme/widget@main")
        assert result.exit_code == 0
        assert "Warning" in result.output
        assert "rate limited" in result.output

    def test_not_found_exits_1(self, config_file, wired, mock_vcs_provider):
        mock_vcs_provider.fetch_tree.side_effect = NotFoundError()
        result = _invoke(config_file, "tree", "acme/ghost")
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_bad_identifier_exits_1(self, config_file, wired):
        result = _invoke(config_file, "tree", "not-a-repo")
        assert result.exit_code == 1
        assert "owner/repo" in result.output

    def test_verbose_enables_debug_logging(self, config_file, wired, quiet_logging):
        _invoke(config_file, "--verbose", "tree", "acme/widget")
        quiet_logging.assert_called_once_with("debug", "text")


# ── repotree sync / cached ──────────────────────────────────────────


class TestSyncCommands:
    def test_sync_account(self, config_file, wired, mock_vcs_provider):
        result = _invoke(config_file, "sync", "acme")
        assert result.exit_code == 0, result.output
        assert "widget-api" in result.output
        assert mock_vcs_provider.fetch_tree.await_count == 3

    def test_sync_with_failures_exits_1(self, config_file, wired, mock_vcs_provider):
        async def _fetch(ref, validator=None):
            if ref.name == "legacy":
                raise NotFoundError()
            return tree_fetch()

        mock_vcs_provider.fetch_tree.side_effect = _fetch
        result = _invoke(config_file, "sync", "acme")
        assert result.exit_code == 1
        assert "SyncNotFoundError" in result.output

    def test_cached_lists_records(self, config_file, wired):
        _invoke(config_file, "sync", "acme")
        result = _invoke(config_file, "cached", "acme")
        assert result.exit_code == 0
        assert "widget-api" in result.output
        assert "trunk" in result.output

    def test_cached_empty(self, config_file):
        result = _invoke(config_file, "cached", "nobody")
        assert result.exit_code == 0
        assert "Nothing cached" in result.output


# ── repotree invalidate / sweep ─────────────────────────────────────


class TestMaintenanceCommands:
    def test_invalidate_single_ref(self, config_file, wired, mock_vcs_provider):
        _invoke(config_file, "tree", "acme/widget@main")
        result = _invoke(config_file, "invalidate", "acme/widget@main")
        assert result.exit_code == 0
        assert "Removed 1" in result.output

        _invoke(config_file, "tree", "acme/widget@main")
        assert mock_vcs_provider.fetch_tree.await_count == 2

    def test_invalidate_whole_repository(self, config_file, wired):
        _invoke(config_file, "tree", "acme/widget@main")
        _invoke(config_file, "tree", "acme/widget@dev")
        result = _invoke(config_file, "invalidate", "acme/widget")
        assert "Removed 2" in result.output

    def test_sweep(self, config_file, wired):
        _invoke(config_file, "tree", "acme/widget@main")
        wired.advance(days=2)
        result = _invoke(config_file, "sweep", "--max-age", str(int(timedelta(days=1).total_seconds())))
        assert result.exit_code == 0
        assert "Swept 1" in result.output


# ── repotree config ─────────────────────────────────────────────────


class TestConfigCommands:
    def test_show_masks_token(self, tmp_path):
        path = tmp_path / "c.yaml"
        path.write_text("github:\n  token: supersecret\n")
        result = runner.invoke(app, ["--config", str(path), "config", "show"])
        assert result.exit_code == 0
        assert "supersecret" not in result.output
        assert "***" in result.output

    def test_init_writes_template(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        result = runner.invoke(app, ["config", "init"])
        assert result.exit_code == 0
        assert (tmp_path / "repotree.yaml").exists()

    def test_init_refuses_to_overwrite(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / "repotree.yaml").write_text("log_level: info\n")
        result = runner.invoke(app, ["config", "init"])
        assert result.exit_code == 1
        assert "already exists" in result.output

        result = runner.invoke(app, ["config", "init", "--force"])
        assert result.exit_code == 0

    def test_invalid_config_exits_1(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("log_format: xml\n")
        result = runner.invoke(app, ["--config", str(path), "config", "show"])
        assert result.exit_code == 1
        assert "Error" in result.output
