"""Tests for the command line interface."""

from unittest.mock import patch

import httpx
import pytest

from testpad_rounds import cli
from testpad_rounds.client import TestpadClient
from testpad_rounds.config import ServiceConfig, TestpadConfig, ThrottleConfig
from testpad_rounds.credentials import MemoryCredentialStore


@pytest.fixture
def credentials():
    return MemoryCredentialStore("test-key")


@pytest.fixture
def run_cli(fake_testpad, credentials):
    """Call ``cli.main`` against the fake Testpad API."""
    config = ServiceConfig(
        testpad=TestpadConfig(credential_path=None),
        throttle=ThrottleConfig(after_folder=0, after_read=0, after_create=0),
    )

    def make_client(testpad_config, store):
        return TestpadClient(testpad_config, store, transport=httpx.MockTransport(fake_testpad.handler))

    def run(*argv):
        with patch.object(cli, "load_config", return_value=config), \
                patch.object(cli, "create_credential_store", return_value=credentials), \
                patch.object(cli, "TestpadClient", side_effect=make_client):
            return cli.main(list(argv))

    return run


class TestCommands:
    def test_projects(self, run_cli, capsys):
        assert run_cli("projects") == 0
        assert "Webshop" in capsys.readouterr().out

    def test_folders(self, run_cli, capsys):
        assert run_cli("folders", "--project", "42") == 0
        out = capsys.readouterr().out
        assert "📁 Regression  (f1)" in out
        assert "  📁 Checkout  (f2)" in out

    def test_duplicate(self, run_cli, capsys, fake_testpad):
        code = run_cli(
            "duplicate", "--project", "42", "--folder", "f1", "--name", "Sprint 15",
            "-t", "alice", "-t", "bob", "--build", "v2.5.0", "--seed", "1",
        )
        out = capsys.readouterr().out
        assert code == 0
        assert "[1/4] Fetching source folder..." in out
        assert "✅ Round created: 3 scripts with 3 runs" in out
        headers = fake_testpad.created_scripts[0]["runs"][0]["headers"]
        assert headers["build"] == "v2.5.0"

    def test_duplicate_partial_failure(self, run_cli, capsys, fake_testpad):
        fake_testpad.fail_get_script = {102}
        code = run_cli("duplicate", "--project", "42", "--folder", "f1", "--name", "R", "-t", "a")
        out = capsys.readouterr().out
        assert code == 1
        assert "partial" in out
        assert "create_script_Cart" in out

    def test_duplicate_requires_options(self, run_cli):
        with pytest.raises(SystemExit):
            run_cli("duplicate", "--project", "42")

    def test_summary(self, run_cli, capsys):
        assert run_cli("summary", "--project", "42", "--folder", "f1") == 0
        out = capsys.readouterr().out
        assert "Bob" in out
        assert "[FAIL] Login / Submit wrong password (Bob)" in out

    def test_remind(self, run_cli, capsys):
        assert run_cli("remind", "--project", "42", "--tester", "Alice") == 0
        assert capsys.readouterr().out.startswith("Hi Alice,")

    def test_remind_unknown_tester(self, run_cli):
        assert run_cli("remind", "--project", "42", "--tester", "Nobody") == 1

    def test_dashboard(self, run_cli, capsys):
        assert run_cli("dashboard") == 0
        assert "Projects: 1  Scripts: 3" in capsys.readouterr().out


class TestCredentials:
    def test_disconnect(self, run_cli, credentials):
        assert run_cli("disconnect") == 0
        assert credentials.get() is None

    def test_connect(self, run_cli, credentials, capsys):
        credentials.clear()
        assert run_cli("connect", "--api-key", "fresh") == 0
        assert credentials.get() == "fresh"

    def test_rejected_key_is_cleared(self, run_cli, credentials, fake_testpad, capsys):
        fake_testpad.reject_all = True
        assert run_cli("projects") == 1
        assert credentials.get() is None
        assert "Invalid API key" in capsys.readouterr().out

    def test_not_connected(self, run_cli, credentials, capsys):
        credentials.clear()
        assert run_cli("projects") == 1
        assert "Run 'connect' first" in capsys.readouterr().out
