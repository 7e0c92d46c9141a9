"""
Tests for CLI module - commands, output modes and exit codes.

Commands:
    - status: Startup detection summary
    - preview: Analysis and merge preview for one domain
    - accept / keep / dismiss: User decisions
    - history: Last decision and dismissed versions
    - validate: Config validation
    - main callback: Version flag and help output

Output Modes:
    - Human mode (--format text): Rich tables and panels
    - Agent mode (--format json): Valid JSON on stdout
    - Quiet mode (--quiet): Tab-separated output

Exit Codes:
    - 0: Success
    - 1: Configuration error
    - 2: Storage error
    - 3: Migration failure

Every test runs against a store file under tmp_path.
"""

import json

import pytest
import yaml
from typer.testing import CliRunner

from rhythm_schema.cli import (
    EXIT_CONFIG_ERROR,
    EXIT_MIGRATION_FAILED,
    EXIT_STORAGE_ERROR,
    EXIT_SUCCESS,
    app,
)
from rhythm_schema.defaults import loader
from rhythm_schema.migration.models import DomainState, UserChoice
from rhythm_schema.storage.persistence import SQLitePersistence

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cli_runner():
    """Return CliRunner for testing Typer apps."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_output_mode():
    """Reset global output_mode after each test."""
    from rhythm_schema.utils.console import output_mode

    original_format = output_mode.format
    original_quiet = output_mode.quiet
    output_mode._json_buffer.clear()

    yield

    output_mode.format = original_format
    output_mode.quiet = original_quiet
    output_mode._json_buffer.clear()


@pytest.fixture(autouse=True)
def isolated_user_defaults(tmp_path, monkeypatch):
    monkeypatch.setattr(loader, "_get_user_defaults_dir", lambda: tmp_path / "no-user-defaults")


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "data" / "rhythm.db"


@pytest.fixture
def config_file(tmp_path, db_path):
    path = tmp_path / "rhythm-schema.yaml"
    path.write_text(yaml.safe_dump({"storage": {"db_path": str(db_path)}}), encoding="utf-8")
    return path


@pytest.fixture
def stale_songs(db_path):
    """Songs stored at 2.1.0: an edited Kassa and a custom song."""
    persistence = SQLitePersistence(db_path)
    persistence.save_domain_state(
        "songs",
        DomainState(
            version="2.1.0",
            data=[
                {
                    "id": "user-kassa",
                    "title": "Kassa",
                    "tempo": 95,
                    "links": [],
                    "displayOrder": 0,
                    "sections": [],
                },
                {
                    "id": "user-groove",
                    "title": "Evening Groove",
                    "tempo": 100,
                    "links": [],
                    "displayOrder": 1,
                    "sections": [],
                },
            ],
        ),
    )
    return persistence


def _json_output(result):
    """Parse the JSON document the CLI printed, ignoring any log lines."""
    text = result.stdout
    return json.loads(text[text.index("{\n") :])


# ============================================================================
# status
# ============================================================================


class TestStatus:
    def test_first_run_all_current(self, cli_runner, config_file, db_path):
        result = cli_runner.invoke(app, ["status", "--config", str(config_file), "--format", "json"])

        assert result.exit_code == EXIT_SUCCESS
        data = _json_output(result)
        assert [d["domain"] for d in data["domains"]] == ["songs", "instruments", "preferences"]
        assert all(d["status"] == "none" for d in data["domains"])
        assert db_path.exists()

    def test_pending_songs(self, cli_runner, config_file, stale_songs):
        result = cli_runner.invoke(app, ["status", "--config", str(config_file), "--format", "json"])

        assert result.exit_code == EXIT_SUCCESS
        songs = _json_output(result)["domains"][0]
        assert songs == {
            "domain": "songs",
            "stored_version": "2.1.0",
            "target_version": "2.2.0",
            "status": "pending",
            "forced_reset": False,
        }

    def test_human_output(self, cli_runner, config_file, stale_songs):
        result = cli_runner.invoke(app, ["status", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert "Schema Status" in result.stdout
        assert "migration pending" in result.stdout

    def test_quiet_output(self, cli_runner, config_file, stale_songs):
        result = cli_runner.invoke(app, ["status", "--config", str(config_file), "--quiet"])

        assert result.exit_code == EXIT_SUCCESS
        assert "songs\t2.1.0\t2.2.0\tpending" in result.stdout

    def test_unparseable_stored_note_resets_songs(self, cli_runner, config_file, db_path):
        song = {
            "id": "user-kassa",
            "title": "Kassa",
            "tempo": 95,
            "links": [],
            "displayOrder": 0,
            "sections": [{"measures": [{"tracks": [{"instrument": "djembe", "notes": [None]}]}]}],
        }
        SQLitePersistence(db_path).save_domain_state("songs", DomainState(version="2.1.0", data=[song]))

        result = cli_runner.invoke(app, ["status", "--config", str(config_file), "--format", "json"])

        assert result.exit_code == EXIT_SUCCESS
        assert all(d["status"] == "none" for d in _json_output(result)["domains"])
        stored = SQLitePersistence(db_path).load_domain_state("songs")
        assert stored.version == "2.2.0"
        assert "user-kassa" not in [s["id"] for s in stored.data]

    def test_invalid_defaults_file(self, cli_runner, tmp_path, db_path):
        defaults_dir = tmp_path / "my-defaults"
        defaults_dir.mkdir()
        (defaults_dir / "songs.json").write_text("[{", encoding="utf-8")
        config = tmp_path / "custom-defaults.yaml"
        config.write_text(
            yaml.safe_dump({"storage": {"db_path": str(db_path), "defaults_dir": str(defaults_dir)}})
        )

        result = cli_runner.invoke(app, ["status", "--config", str(config), "--format", "json"])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert _json_output(result)["error"].startswith("Bundled defaults unavailable")

    def test_without_config_uses_defaults(self, cli_runner, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        result = cli_runner.invoke(app, ["status", "--format", "json"])

        assert result.exit_code == EXIT_SUCCESS
        assert (tmp_path / "data" / "rhythm.db").exists()

    def test_missing_config(self, cli_runner, tmp_path):
        result = cli_runner.invoke(app, ["status", "--config", str(tmp_path / "nope.yaml")])
        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_invalid_format(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["status", "--config", str(config_file), "--format", "xml"])
        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_unusable_store(self, cli_runner, tmp_path):
        config = tmp_path / "bad-store.yaml"
        config.write_text(yaml.safe_dump({"storage": {"db_path": str(tmp_path)}}))

        result = cli_runner.invoke(app, ["status", "--config", str(config)])

        assert result.exit_code == EXIT_STORAGE_ERROR


# ============================================================================
# preview
# ============================================================================


class TestPreview:
    def test_preview_shows_analysis_and_merge(self, cli_runner, config_file, stale_songs):
        result = cli_runner.invoke(
            app, ["preview", "songs", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        data = _json_output(result)
        assert data["analysis"]["total_steps"] == 1
        assert data["analysis"]["descriptions"] == [
            "2.1.0 → 2.2.0: Added multi-cycle tracks and visual grid"
        ]
        preview = data["merge_preview"]
        assert preview["conflicts"] == ["Kassa"]
        assert preview["added"] == ["Sofa", "Yankadi"]
        assert "Evening Groove" in preview["preserved"]
        assert preview["policy"]["update_modified"] is False

    def test_policy_flags_override_config(self, cli_runner, config_file, stale_songs):
        result = cli_runner.invoke(
            app,
            [
                "preview",
                "songs",
                "--config",
                str(config_file),
                "--update-modified",
                "--drop-user-data",
                "--format",
                "json",
            ],
        )

        preview = _json_output(result)["merge_preview"]
        assert preview["updated"] == ["Kassa"]
        assert "Evening Groove" not in preview["preserved"]
        assert preview["policy"]["preserve_user_data"] is False

    def test_remove_deleted_is_recorded_without_changing_merge(
        self, cli_runner, config_file, stale_songs
    ):
        args = ["preview", "songs", "--config", str(config_file), "--format", "json"]
        plain = _json_output(cli_runner.invoke(app, args))["merge_preview"]

        flagged = _json_output(cli_runner.invoke(app, [*args, "--remove-deleted"]))["merge_preview"]

        assert flagged["policy"]["remove_deleted"] is True
        assert "Evening Groove" in flagged["preserved"]
        assert flagged["counts"] == plain["counts"]

    def test_preview_writes_nothing(self, cli_runner, config_file, stale_songs):
        cli_runner.invoke(app, ["preview", "songs", "--config", str(config_file)])
        assert stale_songs.load_domain_state("songs").version == "2.1.0"

    def test_nothing_pending(self, cli_runner, config_file):
        result = cli_runner.invoke(
            app, ["preview", "instruments", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        assert "No pending migration" in _json_output(result)["message"]

    def test_unknown_domain(self, cli_runner, config_file):
        result = cli_runner.invoke(app, ["preview", "rhythms", "--config", str(config_file)])
        assert result.exit_code == EXIT_CONFIG_ERROR


# ============================================================================
# Decisions
# ============================================================================


class TestDecisions:
    def test_accept_merges(self, cli_runner, config_file, stale_songs):
        result = cli_runner.invoke(
            app, ["accept", "songs", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        assert _json_output(result)["status"] == "success"
        stored = stale_songs.load_domain_state("songs")
        assert stored.version == "2.2.0"
        titles = {s["title"] for s in stored.data}
        assert titles == {"Kassa", "Sofa", "Yankadi", "Evening Groove"}
        kassa = next(s for s in stored.data if s["title"] == "Kassa")
        assert kassa["tempo"] == 95
        record = stale_songs.load_last_migration_record("songs")
        assert record.user_choice is UserChoice.ACCEPTED

    def test_accept_update_modified_with_yes(self, cli_runner, config_file, stale_songs):
        result = cli_runner.invoke(
            app,
            ["accept", "songs", "--config", str(config_file), "--update-modified", "--yes"],
        )

        assert result.exit_code == EXIT_SUCCESS
        kassa = next(
            s for s in stale_songs.load_domain_state("songs").data if s["title"] == "Kassa"
        )
        assert kassa["tempo"] == 120

    def test_accept_update_modified_cancelled(self, cli_runner, config_file, stale_songs):
        result = cli_runner.invoke(
            app,
            ["accept", "songs", "--config", str(config_file), "--update-modified"],
            input="n\n",
        )

        assert result.exit_code == EXIT_SUCCESS
        assert stale_songs.load_domain_state("songs").version == "2.1.0"

    def test_keep(self, cli_runner, config_file, stale_songs):
        result = cli_runner.invoke(app, ["keep", "songs", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert stale_songs.load_domain_state("songs").version == "2.1.0"
        assert (
            stale_songs.load_last_migration_record("songs").user_choice is UserChoice.KEPT_DATA
        )

    def test_dismiss_silences_status(self, cli_runner, config_file, stale_songs):
        result = cli_runner.invoke(app, ["dismiss", "songs", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert stale_songs.load_dismissal_ledger("songs") == ("2.2.0",)

        status = cli_runner.invoke(
            app, ["status", "--config", str(config_file), "--format", "json"]
        )
        assert _json_output(status)["domains"][0]["status"] == "none"

    def test_accept_without_pending(self, cli_runner, config_file):
        result = cli_runner.invoke(
            app, ["accept", "songs", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_MIGRATION_FAILED
        assert "No pending migration" in _json_output(result)["error"]

    def test_accept_preferences_transform(self, cli_runner, config_file, db_path):
        persistence = SQLitePersistence(db_path)
        persistence.save_domain_state(
            "preferences", DomainState(version="1.0.0", data={"instrumentFocus": []})
        )

        result = cli_runner.invoke(app, ["accept", "preferences", "--config", str(config_file)])

        assert result.exit_code == EXIT_SUCCESS
        assert persistence.load_domain_state("preferences") == DomainState(
            version="1.1.0", data={"instrumentFocus": ["djembe"]}
        )

    def test_accept_without_path(self, cli_runner, config_file, db_path):
        persistence = SQLitePersistence(db_path)
        persistence.save_domain_state(
            "preferences", DomainState(version="5.0.0", data={"instrumentFocus": ["djembe"]})
        )

        result = cli_runner.invoke(
            app, ["accept", "preferences", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_MIGRATION_FAILED
        assert "No migration path available" in _json_output(result)["error"]
        assert persistence.load_domain_state("preferences").version == "5.0.0"


# ============================================================================
# history / validate / callback
# ============================================================================


def test_history(cli_runner, config_file, stale_songs):
    cli_runner.invoke(app, ["keep", "songs", "--config", str(config_file)])
    stale_songs.save_dismissal_ledger("preferences", ["1.1.0"])

    result = cli_runner.invoke(app, ["history", "--config", str(config_file), "--format", "json"])

    assert result.exit_code == EXIT_SUCCESS
    history = {row["domain"]: row for row in _json_output(result)["history"]}
    assert history["songs"]["last_migration"]["user_choice"] == "kept-data"
    assert history["instruments"]["last_migration"] is None
    assert history["preferences"]["dismissed_versions"] == ["1.1.0"]


def test_validate_valid_config(cli_runner, tmp_path):
    config = tmp_path / "rhythm-schema.yaml"
    config.write_text(yaml.safe_dump({"domains": {"preferences": {"enabled": False}}}))

    result = cli_runner.invoke(app, ["validate", "--config", str(config), "--format", "json"])

    assert result.exit_code == EXIT_SUCCESS
    data = _json_output(result)
    assert [d["domain"] for d in data["domains"]] == ["songs", "instruments"]


def test_validate_invalid_config(cli_runner, tmp_path):
    config = tmp_path / "rhythm-schema.yaml"
    config.write_text(yaml.safe_dump({"domains": {"songs": {"floor_version": "9.0.0"}}}))

    result = cli_runner.invoke(app, ["validate", "--config", str(config)])

    assert result.exit_code == EXIT_CONFIG_ERROR


def test_version_flag(cli_runner):
    result = cli_runner.invoke(app, ["--version"])

    assert result.exit_code == EXIT_SUCCESS
    assert "rhythm-schema" in result.stdout


def test_no_command_shows_hint(cli_runner):
    result = cli_runner.invoke(app, [])

    assert result.exit_code == EXIT_SUCCESS
    assert "--help" in result.stdout
