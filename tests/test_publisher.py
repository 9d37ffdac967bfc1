"""Tests for app.integrations.publisher (write modes, vault detection, path safety)."""

import json
import subprocess
from pathlib import Path
from unittest import mock

import pytest

from app.integrations.publisher import (
    WRITE_MODE_HANDLERS,
    PublishError,
    PublishErrorCode,
    detect_vault_from_app_config,
    note_file_name,
    publish_note,
    resolve_vault_path,
    write_note_direct,
)
from app.schemas import SettingsPayload, WriteMode

MARKDOWN = "---\ntitle: \"[AI Capture] Trip\"\n---\n\n## Key Insights\n"


def make_settings(vault: Path | str = "", mode=WriteMode.CLI_FALLBACK, cli="obsidian"):
    return SettingsPayload(
        vault_path=str(vault),
        publisher_cli_path=cli,
        summary_model="gemini-2.5-flash",
        write_mode=mode,
    )


def ok_runner(*args, **kwargs):
    return subprocess.CompletedProcess(args[0], 0, stdout="", stderr="")


def failing_runner(*args, **kwargs):
    return subprocess.CompletedProcess(args[0], 1, stdout="", stderr="vault not open")


@pytest.fixture
def vault(tmp_dir):
    path = tmp_dir / "vault"
    path.mkdir()
    return path


class TestNoteFileName:
    def test_spaces_become_dashes(self):
        assert note_file_name("  Trip to Lisbon ") == "Trip-to-Lisbon.md"

    def test_separators_replaced(self):
        name = note_file_name("../../etc/passwd")
        assert "/" not in name
        assert name == ".._.._etc_passwd.md"

    def test_empty_title(self):
        assert note_file_name("   ") == "untitled.md"


class TestVaultDetection:
    """Tests for detect_vault_from_app_config / resolve_vault_path."""

    def test_prefers_open_vault(self, tmp_dir):
        config = tmp_dir / "obsidian.json"
        config.write_text(
            json.dumps(
                {
                    "vaults": {
                        "a1": {"path": "/vaults/old", "ts": 1},
                        "b2": {"path": "/vaults/current", "ts": 2, "open": True},
                    }
                }
            )
        )
        assert detect_vault_from_app_config(config) == Path("/vaults/current")

    def test_first_vault_when_none_open(self, tmp_dir):
        config = tmp_dir / "obsidian.json"
        config.write_text(json.dumps({"vaults": {"a1": {"path": "/vaults/only"}}}))
        assert detect_vault_from_app_config(config) == Path("/vaults/only")

    @pytest.mark.parametrize("content", ["not json", "{}", '{"vaults": {}}', "[]"])
    def test_unusable_config(self, tmp_dir, content):
        config = tmp_dir / "obsidian.json"
        config.write_text(content)
        assert detect_vault_from_app_config(config) is None

    def test_missing_config(self, tmp_dir):
        assert detect_vault_from_app_config(tmp_dir / "nope.json") is None

    def test_appdata_location(self, tmp_dir, monkeypatch):
        app_dir = tmp_dir / "appdata" / "obsidian"
        app_dir.mkdir(parents=True)
        (app_dir / "obsidian.json").write_text(
            json.dumps({"vaults": {"x": {"path": "/vaults/win", "open": True}}})
        )
        monkeypatch.setenv("APPDATA", str(tmp_dir / "appdata"))

        assert detect_vault_from_app_config() == Path("/vaults/win")

    def test_explicit_setting_wins(self, vault):
        assert resolve_vault_path(make_settings(vault)) == vault

    def test_no_vault_anywhere(self, tmp_dir, monkeypatch):
        monkeypatch.delenv("APPDATA", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_dir / "empty-config"))
        monkeypatch.setattr(Path, "home", classmethod(lambda cls: tmp_dir / "home"))

        with pytest.raises(PublishError) as exc_info:
            resolve_vault_path(make_settings(""))
        assert exc_info.value.error_code == PublishErrorCode.VAULT_NOT_FOUND


class TestWriteNoteDirect:
    """Tests for write_note_direct."""

    def test_writes_into_captures_folder(self, vault):
        path = write_note_direct(vault, "Trip to Lisbon", MARKDOWN)

        assert path == (vault / "AI Captures" / "Trip-to-Lisbon.md").resolve()
        assert path.read_text(encoding="utf-8") == MARKDOWN
        assert list((vault / "AI Captures").glob("*.tmp")) == []

    def test_traversal_title_stays_inside(self, vault):
        path = write_note_direct(vault, "../../../escape", MARKDOWN)
        assert path.is_relative_to((vault / "AI Captures").resolve())

    def test_symlinked_captures_folder_rejected(self, vault, tmp_dir):
        outside = tmp_dir / "outside"
        outside.mkdir()
        (vault / "AI Captures").symlink_to(outside, target_is_directory=True)

        with pytest.raises(PublishError) as exc_info:
            write_note_direct(vault, "Trip", MARKDOWN)

        assert exc_info.value.error_code == PublishErrorCode.PATH_ESCAPE
        assert list(outside.iterdir()) == []

    def test_missing_vault(self, tmp_dir):
        with pytest.raises(PublishError) as exc_info:
            write_note_direct(tmp_dir / "missing", "Trip", MARKDOWN)
        assert exc_info.value.error_code == PublishErrorCode.VAULT_NOT_FOUND

    def test_write_failure(self, vault):
        with mock.patch(
            "app.integrations.publisher.atomic_write_text", side_effect=OSError("read-only")
        ):
            with pytest.raises(PublishError) as exc_info:
                write_note_direct(vault, "Trip", MARKDOWN)
        assert exc_info.value.error_code == PublishErrorCode.WRITE_FAILED


class TestPublishNote:
    """One handler per write mode."""

    def test_every_mode_has_a_handler(self):
        assert set(WRITE_MODE_HANDLERS) == set(WriteMode)

    def test_filesystem_only_never_runs_cli(self, vault):
        runner = mock.Mock()

        settings = make_settings(vault, WriteMode.FILESYSTEM_ONLY)

        result = publish_note(settings, "Trip", MARKDOWN, runner)

        runner.assert_not_called()
        assert result.method == "filesystem"
        assert Path(result.note_path).read_text(encoding="utf-8") == MARKDOWN

    def test_cli_only_success(self, vault):
        runner = mock.Mock(side_effect=ok_runner)

        result = publish_note(
            make_settings(vault, WriteMode.CLI_ONLY, cli=" /opt/obsidian "),
            "My Trip",
            MARKDOWN,
            runner,
        )

        assert result.method == "cli"
        assert result.note_path == str(vault / "AI Captures" / "My-Trip.md")
        command = runner.call_args.args[0]
        assert command[:3] == ["/opt/obsidian", "note", "create"]
        assert command[command.index("--vault") + 1] == str(vault)
        assert command[command.index("--name") + 1] == "My Trip"
        assert command[command.index("--content") + 1] == MARKDOWN
        assert not (vault / "AI Captures").exists()

    def test_cli_only_failure_is_error(self, vault):
        with pytest.raises(PublishError) as exc_info:
            publish_note(make_settings(vault, WriteMode.CLI_ONLY), "Trip", MARKDOWN, failing_runner)

        assert exc_info.value.error_code == PublishErrorCode.CLI_FAILED
        assert "vault not open" in exc_info.value.message
        assert not (vault / "AI Captures").exists()

    def test_empty_cli_path_uses_default(self, vault):
        runner = mock.Mock(side_effect=ok_runner)

        publish_note(make_settings(vault, WriteMode.CLI_ONLY, cli=""), "Trip", MARKDOWN, runner)

        assert runner.call_args.args[0][0] == "obsidian"

    def test_fallback_uses_cli_when_it_works(self, vault):
        result = publish_note(make_settings(vault), "Trip", MARKDOWN, ok_runner)
        assert result.method == "cli"

    def test_fallback_on_nonzero_exit(self, vault):
        result = publish_note(make_settings(vault), "Trip", MARKDOWN, failing_runner)

        assert result.method == "filesystem_fallback"
        assert Path(result.note_path).read_text(encoding="utf-8") == MARKDOWN

    def test_fallback_when_cli_missing(self, vault):
        runner = mock.Mock(side_effect=FileNotFoundError("obsidian"))

        result = publish_note(make_settings(vault), "Trip", MARKDOWN, runner)

        assert result.method == "filesystem_fallback"

    def test_fallback_on_timeout(self, vault):
        runner = mock.Mock(side_effect=subprocess.TimeoutExpired("obsidian", 60))

        result = publish_note(make_settings(vault), "Trip", MARKDOWN, runner)

        assert result.method == "filesystem_fallback"
