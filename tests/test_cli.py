"""Tests for the statesync command line."""

import json

import pytest
from typer.testing import CliRunner

from statesync.cli import app

runner = CliRunner()


@pytest.fixture
def store_args(tmp_path):
    return ["--store", str(tmp_path)]


def invoke(store_args, *args):
    return runner.invoke(app, [*store_args, *args])


class TestShow:
    def test_summary(self, store_args):
        result = invoke(store_args, "show")

        assert result.exit_code == 0, result.output
        assert "lastUpdated: -" in result.output
        assert "seen: 0 entries" in result.output
        assert 'page: "home"' in result.output

    def test_default_command_is_show(self, store_args):
        result = invoke(store_args)

        assert result.exit_code == 0, result.output
        assert "seen: 0 entries" in result.output

    def test_json(self, store_args):
        result = invoke(store_args, "--json", "show")

        assert result.exit_code == 0, result.output
        state = json.loads(result.output)
        assert state["page"] == "home"
        assert state["seen"] == {}

    def test_creates_config(self, store_args, tmp_path):
        invoke(store_args, "show")

        assert (tmp_path / "statesync.toml").exists()


class TestSetGet:
    def test_set_then_get(self, store_args):
        result = invoke(store_args, "set", "feedHideRead", "true")
        assert result.exit_code == 0, result.output

        result = invoke(store_args, "get", "feedHideRead")

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) is True

    def test_plain_string_value(self, store_args):
        invoke(store_args, "set", "page", "profile")

        result = invoke(store_args, "get", "page")

        assert json.loads(result.output) == "profile"

    def test_set_updates_last_updated(self, store_args):
        invoke(store_args, "set", "page", "profile")

        result = invoke(store_args, "get", "lastUpdated")

        assert json.loads(result.output) is not None

    def test_last_updated_is_read_only(self, store_args):
        result = invoke(store_args, "set", "lastUpdated", "2024-01-01T00:00:00Z")

        assert result.exit_code == 1

    def test_get_missing_key(self, store_args):
        result = invoke(store_args, "get", "nope")

        assert result.exit_code == 1


class TestSeen:
    def test_toggle(self, store_args):
        result = invoke(store_args, "seen", "p1")
        assert "p1: read" in result.output

        result = invoke(store_args, "seen", "p1")
        assert "p1: unread" in result.output

    def test_explicit_read(self, store_args):
        invoke(store_args, "seen", "p1", "--read")
        invoke(store_args, "seen", "p1", "--read")

        result = invoke(store_args, "--json", "get", "seen")

        assert json.loads(result.output)["p1"] is not None


class TestPrune:
    def test_prune_uses_configured_limit(self, store_args):
        for i in range(4):
            invoke(store_args, "seen", f"p{i}", "--read")
        invoke(store_args, "config", "--max-entries", "2")

        result = invoke(store_args, "prune")

        assert result.exit_code == 0, result.output
        assert "4 -> 2" in result.output
        seen = json.loads(invoke(store_args, "get", "seen").output)
        assert set(seen) == {"p2", "p3"}


class TestConfig:
    def test_show(self, store_args):
        result = invoke(store_args, "--json", "config")

        info = json.loads(result.output)
        assert info["backend"] == "sqlite"
        assert info["sync_enabled"] is False
        assert info["remote"] is None

    def test_invalid_limit(self, store_args):
        result = invoke(store_args, "config", "--max-entries", "0")

        assert result.exit_code == 1


class TestRemoteCommands:
    def test_push_without_sync(self, store_args):
        result = invoke(store_args, "push")

        assert result.exit_code == 1
        assert "not enabled" in result.output

    def test_pull_without_sync(self, store_args):
        result = invoke(store_args, "pull")

        assert result.exit_code == 1

    def test_status_without_sync(self, store_args):
        result = invoke(store_args, "--json", "status")

        info = json.loads(result.output)
        assert info["sync_enabled"] is False
        assert info["remote_updated"] is None


class TestReset:
    def test_reset(self, store_args):
        invoke(store_args, "set", "page", "profile")

        result = invoke(store_args, "reset", "--yes")

        assert result.exit_code == 0, result.output
        assert json.loads(invoke(store_args, "get", "page").output) == "home"
