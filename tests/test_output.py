"""Tests for output module."""

import json
from pathlib import Path

import pytest

from mcp_authkit.oauth import AuthStatus
from mcp_authkit.output import OutputHandler, status_label, to_json


class TestToJson:
    """Tests for to_json function."""

    def test_non_serializable_values_use_str(self):
        """Test that unknown objects are rendered with str()."""
        parsed = json.loads(to_json({"path": Path("mcp.json"), "n": 1}))
        assert parsed == {"path": "mcp.json", "n": 1}


class TestStatusLabel:
    """Tests for status_label function."""

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (AuthStatus("a", "u", authenticated=True), "authorized"),
            (AuthStatus("a", "u", authenticated=True, expired=True), "expired"),
            (AuthStatus("a", "u", url_mismatch=True), "stale (URL changed)"),
            (AuthStatus("a", "u"), "not authorized"),
        ],
    )
    def test_labels(self, status, expected):
        """Test each authorization state."""
        assert status_label(status) == expected


class TestOutputHandler:
    """Tests for OutputHandler class."""

    def test_success_human(self, capsys):
        """Test human success message."""
        OutputHandler(json_mode=False).success({"a": 1}, message="Done.")
        assert capsys.readouterr().out.strip() == "Done."

    def test_success_human_without_message(self, capsys):
        """Test that data is pretty-printed when no message is given."""
        OutputHandler(json_mode=False).success({"a": 1})
        assert json.loads(capsys.readouterr().out) == {"a": 1}

    def test_success_json(self, capsys):
        """Test JSON success envelope."""
        OutputHandler(json_mode=True).success({"a": 1}, message="Done.")
        assert json.loads(capsys.readouterr().out) == {"success": True, "data": {"a": 1}}

    def test_error_human(self, capsys):
        """Test that errors go to stderr and exit with status 1."""
        with pytest.raises(SystemExit) as exc_info:
            OutputHandler(json_mode=False).error(RuntimeError("boom"), help_text="hint")
        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert "Error: boom" in captured.err
        assert "hint" in captured.err

    def test_error_json(self, capsys):
        """Test JSON error envelope."""
        with pytest.raises(SystemExit):
            OutputHandler(json_mode=True).error(ValueError("bad"), error_type="ServerNotFound", help_text="try")
        parsed = json.loads(capsys.readouterr().out)
        assert parsed == {
            "success": False,
            "error": {"type": "ServerNotFound", "message": "bad", "help": "try"},
        }

    def test_table(self, capsys):
        """Test table rendering with aligned columns."""
        OutputHandler().table(["NAME", "URL"], [["notion", "https://x"], ["a", "b"]])
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "NAME    URL"
        assert lines[1] == "-" * len("notion  https://x")
        assert lines[2] == "notion  https://x"
        assert lines[3] == "a       b"

    def test_statuses_empty(self, capsys):
        """Test the message when nothing is configured."""
        OutputHandler().statuses([])
        assert "No remote servers configured" in capsys.readouterr().out

    def test_statuses_json(self, capsys):
        """Test JSON list of statuses."""
        OutputHandler(json_mode=True).statuses([AuthStatus("notion", "https://x")])
        parsed = json.loads(capsys.readouterr().out)
        assert parsed["data"][0]["server_name"] == "notion"

    def test_status_expired(self, capsys):
        """Test detail view of an expired server."""
        OutputHandler().status(AuthStatus("notion", "https://x", authenticated=True, expired=True))
        out = capsys.readouterr().out
        assert "Expired" in out
        assert "Refresh token: no" in out
