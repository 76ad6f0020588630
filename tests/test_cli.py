# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Tests for the CLI: argument handling, top-level error handler, serve forwarding."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pagecapture import cli
from pagecapture.errors import LaunchError, NavigationError


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("pagecapture.logging_config.configure") as configure:
        yield configure


class TestCapture:
    def test_default_output_and_temp_dir(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        capture = AsyncMock()
        with patch.object(cli, "_capture", capture):
            cli.main(["capture", "https://drive.google.com/file/d/1/view"])

        capture.assert_awaited_once()
        url, output, work_dir = capture.await_args.args
        assert url == "https://drive.google.com/file/d/1/view"
        assert output == Path("converted.pdf")
        assert work_dir.name.startswith("pagecapture-")
        assert capture.await_args.kwargs == {"headful": False, "no_sandbox": False}

    def test_work_dir_and_flags(self, tmp_path):
        capture = AsyncMock()
        work = tmp_path / "work"
        out = tmp_path / "out" / "doc.pdf"
        with patch.object(cli, "_capture", capture):
            cli.main(["capture", "https://x.test/d", "-o", str(out), "--work-dir", str(work), "--no-sandbox"])

        _, output, work_dir = capture.await_args.args
        assert output == out
        assert work_dir == work
        assert work.is_dir()
        assert out.parent.is_dir()
        assert capture.await_args.kwargs["no_sandbox"] is True

    def test_invalid_url_exits_1(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["capture", "ftp://example.com/doc"])
        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert err.startswith("Error:")
        assert "Hint:" in err

    def test_navigation_failure_is_friendly(self, capsys, tmp_path):
        exc = NavigationError("Navigation failed: net::ERR_NAME_NOT_RESOLVED at https://nope.example/")
        with patch.object(cli, "_capture", AsyncMock(side_effect=exc)), pytest.raises(SystemExit) as exc_info:
            cli.main(["capture", "https://nope.example/", "--work-dir", str(tmp_path)])
        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "Could not resolve domain name 'nope.example'" in err
        assert "Traceback" not in err

    def test_launch_failure_hint(self, capsys, tmp_path):
        with (
            patch.object(cli, "_capture", AsyncMock(side_effect=LaunchError("Chromium failed to launch"))),
            pytest.raises(SystemExit),
        ):
            cli.main(["capture", "https://x.test/d", "--work-dir", str(tmp_path)])
        assert "playwright install chromium" in capsys.readouterr().err

    def test_keyboard_interrupt_exits_130(self, tmp_path):
        with (
            patch.object(cli, "_capture", AsyncMock(side_effect=KeyboardInterrupt)),
            pytest.raises(SystemExit) as exc_info,
        ):
            cli.main(["capture", "https://x.test/d", "--work-dir", str(tmp_path)])
        assert exc_info.value.code == 130

    def test_unknown_argument_rejected(self):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(["capture", "https://x.test/d", "--bogus"])
        assert exc_info.value.code == 2

    def test_verbose_sets_debug_level(self, _no_logging_setup, tmp_path):
        with patch.object(cli, "_capture", AsyncMock()):
            cli.main(["-v", "capture", "https://x.test/d", "--work-dir", str(tmp_path)])
        _no_logging_setup.assert_called_once_with(json_output=False, level="DEBUG")


class TestServe:
    def test_forwards_remaining_args(self, _no_logging_setup):
        server_main = MagicMock()
        with patch("pagecapture.server.main", server_main):
            cli.main(["serve", "--port", "8080", "--no-sandbox"])
        server_main.assert_called_once_with(argv=["--port", "8080", "--no-sandbox"])
        _no_logging_setup.assert_not_called()
