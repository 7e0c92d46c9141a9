"""
Tests for migration/session.py.

The session is exercised end to end over InMemoryPersistence with an
in-test defaults provider, so every read and write is observable:
- First run and malformed data fall back to bundled defaults
- Forced resets are persisted without prompting
- Accept / keep / dismiss write exactly what they should
- Failures are reported in the outcome and leave storage untouched
"""

import json
import logging
from dataclasses import replace

import pytest
from freezegun import freeze_time

from rhythm_schema.exceptions import NoPendingMigrationError
from rhythm_schema.migration.detector import MigrationStatus
from rhythm_schema.migration.models import DomainState, MergePolicy, MigrationStep, UserChoice
from rhythm_schema.migration.registry import DOMAINS, SONGS
from rhythm_schema.migration.session import MigrationSession
from rhythm_schema.storage.persistence import InMemoryPersistence, state_key


def _song(title, order, tempo=120):
    return {
        "id": f"id-{title.lower()}",
        "title": title,
        "tempo": tempo,
        "links": [],
        "displayOrder": order,
        "sections": [],
    }


BUNDLED = {
    "songs": [_song("Kassa", 0), _song("Sofa", 1, tempo=110)],
    "instruments": [
        {"key": "djembe", "name": "Djembe", "availableNotes": [".", "B", "T", "S"], "displayOrder": 0}
    ],
    "preferences": {"instrumentFocus": ["djembe"]},
}


def _provider(domain):
    return json.loads(json.dumps(BUNDLED[domain]))


@pytest.fixture
def persistence():
    return InMemoryPersistence()


@pytest.fixture
def session(persistence):
    return MigrationSession(persistence, defaults_provider=_provider)


def _seed(persistence, domain, version, data):
    persistence.save_domain_state(domain, DomainState(version=version, data=data))


def _seed_current(persistence):
    for name, domain in DOMAINS.items():
        _seed(persistence, name, domain.target_version, _provider(name))


class TestStart:
    def test_first_run_writes_bundled_defaults(self, session, persistence):
        detections = session.start()

        assert [d.domain for d in detections] == ["songs", "instruments", "preferences"]
        assert all(d.status is MigrationStatus.NONE for d in detections)
        stored = persistence.load_domain_state("songs")
        assert stored == DomainState(version="2.2.0", data=BUNDLED["songs"])
        assert session.pending() == {}

    def test_current_data_untouched(self, session, persistence):
        _seed_current(persistence)
        before = dict(persistence.entries)

        session.start()

        assert persistence.entries == before

    def test_older_songs_pending(self, session, persistence):
        _seed_current(persistence)
        _seed(persistence, "songs", "2.0.0", [{"id": "x", "title": "Kassa", "tempo": 120, "sections": []}])
        before = persistence.entries[state_key("songs")]

        session.start()

        pending = session.pending()
        assert list(pending) == ["songs"]
        assert pending["songs"].analysis.total_steps == 2
        # Detection never writes pending state
        assert persistence.entries[state_key("songs")] == before

    def test_malformed_json_falls_back_to_defaults(self, session, persistence):
        _seed_current(persistence)
        persistence.entries[state_key("songs")] = "{not json"

        detections = session.start()

        assert detections[0].status is MigrationStatus.NONE
        assert persistence.load_domain_state("songs").data == BUNDLED["songs"]

    def test_structurally_invalid_records_fall_back(self, session, persistence):
        _seed_current(persistence)
        _seed(persistence, "songs", "2.1.0", [{"title": "no id or sections"}])

        session.start()

        assert persistence.load_domain_state("songs") == DomainState(
            version="2.2.0", data=BUNDLED["songs"]
        )
        assert "songs" not in session.pending()

    @pytest.mark.parametrize("bad_note", [None, 3, {"type": "flam", "grace": "b"}])
    def test_unparseable_note_falls_back(self, session, persistence, bad_note):
        _seed_current(persistence)
        song = _song("Sofa", 0, tempo=140)
        song["sections"] = [
            {"name": "Intro", "measures": [{"tracks": [{"instrument": "djembe", "notes": [bad_note]}]}]}
        ]
        _seed(persistence, "songs", "2.1.0", [song])

        detections = session.start()

        assert detections[0].status is MigrationStatus.NONE
        assert persistence.load_domain_state("songs") == DomainState(
            version="2.2.0", data=BUNDLED["songs"]
        )
        # Other domains are still checked
        assert [d.domain for d in detections] == ["songs", "instruments", "preferences"]

    def test_missing_version_uses_domain_default(self, session, persistence):
        _seed_current(persistence)
        persistence.entries[state_key("preferences")] = json.dumps(
            {"data": {"instrumentFocus": []}}
        )

        session.start()

        detection = session.pending()["preferences"]
        assert detection.stored_version == "1.0.0"

    def test_below_floor_is_reset_without_prompt(self, persistence):
        _seed_current(persistence)
        _seed(persistence, "songs", "2.0.0", [_song("Custom", 0)])
        strict = replace(SONGS, floor_version="2.1.0")
        session = MigrationSession(
            persistence,
            defaults_provider=_provider,
            domains=[strict, DOMAINS["instruments"], DOMAINS["preferences"]],
        )

        detections = session.start()

        assert detections[0].forced_reset
        assert session.pending() == {}
        assert persistence.load_domain_state("songs") == DomainState(
            version="2.2.0", data=BUNDLED["songs"]
        )

    def test_dismissed_version_not_pending(self, session, persistence):
        _seed_current(persistence)
        _seed(persistence, "preferences", "1.0.0", {"instrumentFocus": ["sangban"]})
        persistence.save_dismissal_ledger("preferences", ["1.1.0"])

        session.start()

        assert session.pending() == {}

    def test_subset_of_domains(self, persistence):
        session = MigrationSession(
            persistence, defaults_provider=_provider, domains=[DOMAINS["preferences"]]
        )

        detections = session.start()

        assert [d.domain for d in detections] == ["preferences"]
        assert persistence.load_domain_state("songs") is None


class TestDecide:
    @pytest.fixture
    def pending_songs(self, session, persistence):
        _seed_current(persistence)
        _seed(persistence, "songs", "2.1.0", [_song("Sofa", 0, tempo=140), _song("My Groove", 1)])
        session.start()
        return session

    @freeze_time("2026-03-01 09:15:00")
    def test_accept_persists_state_and_record(self, pending_songs, persistence):
        outcome = pending_songs.decide("songs", UserChoice.ACCEPTED)

        assert outcome.success
        assert outcome.status is MigrationStatus.ACCEPTED
        stored = persistence.load_domain_state("songs")
        assert stored.version == "2.2.0"
        assert {s["title"] for s in stored.data} == {"Kassa", "Sofa", "My Groove"}
        record = persistence.load_last_migration_record("songs")
        assert record.user_choice is UserChoice.ACCEPTED
        assert record.from_version == "2.1.0"
        assert record.to_version == "2.2.0"
        assert record.timestamp == "2026-03-01T09:15:00Z"
        assert pending_songs.pending() == {}

    def test_accept_with_edited_policy(self, pending_songs, persistence):
        outcome = pending_songs.decide(
            "songs",
            UserChoice.ACCEPTED,
            MergePolicy(preserve_user_data=False, update_modified=True),
        )

        assert outcome.success
        stored = persistence.load_domain_state("songs")
        assert [(s["title"], s["tempo"]) for s in stored.data] == [("Kassa", 120), ("Sofa", 110)]

    def test_keep_leaves_data(self, pending_songs, persistence):
        before = persistence.entries[state_key("songs")]

        outcome = pending_songs.decide("songs", UserChoice.KEPT_DATA)

        assert outcome.success
        assert outcome.status is MigrationStatus.KEPT
        assert persistence.entries[state_key("songs")] == before
        assert persistence.load_last_migration_record("songs").user_choice is UserChoice.KEPT_DATA

    def test_keep_prompts_again_next_start(self, pending_songs):
        pending_songs.decide("songs", UserChoice.KEPT_DATA)

        pending_songs.start()

        assert "songs" in pending_songs.pending()

    def test_dismiss_updates_ledger_only(self, pending_songs, persistence):
        before = persistence.entries[state_key("songs")]

        outcome = pending_songs.decide("songs", UserChoice.DISMISSED)

        assert outcome.success
        assert persistence.load_dismissal_ledger("songs") == ("2.2.0",)
        assert persistence.load_last_migration_record("songs") is None
        assert persistence.entries[state_key("songs")] == before

        pending_songs.start()
        assert pending_songs.pending() == {}

    def test_decide_without_pending(self, session, persistence):
        _seed_current(persistence)
        session.start()

        outcome = session.decide("songs", UserChoice.ACCEPTED)

        assert not outcome.success
        assert "No pending migration" in outcome.error

    def test_decide_unknown_domain(self, session):
        outcome = session.decide("rhythms", UserChoice.ACCEPTED)

        assert not outcome.success
        assert "Unknown domain" in outcome.error

    def test_failing_step_leaves_store_untouched(self, persistence, caplog):
        def explode(songs):
            raise RuntimeError("grid rebuild failed")

        broken = replace(
            SONGS,
            migrations=(
                MigrationStep(
                    from_version="2.1.0",
                    to_version="2.2.0",
                    transform=explode,
                    description="Broken",
                ),
            ),
        )
        _seed_current(persistence)
        _seed(persistence, "songs", "2.1.0", [_song("Sofa", 0)])
        session = MigrationSession(persistence, defaults_provider=_provider, domains=[broken])
        session.start()
        before = dict(persistence.entries)

        with caplog.at_level(logging.ERROR, logger="rhythm_schema.migration.session"):
            outcome = session.decide("songs", UserChoice.ACCEPTED)

        assert not outcome.success
        assert outcome.status is MigrationStatus.PENDING
        assert outcome.error == "grid rebuild failed"
        assert persistence.entries == before
        # Still pending: the user can keep or dismiss instead
        assert "songs" in session.pending()
        failure = next(r for r in caplog.records if r.name == "rhythm_schema.migration.session")
        assert failure.context["error_type"] == "StepFailureError"
        assert failure.context["from_version"] == "2.1.0"

    def test_preferences_transform(self, session, persistence):
        _seed_current(persistence)
        _seed(persistence, "preferences", "1.0.0", {"instrumentFocus": [], "theme": "dark"})
        session.start()

        outcome = session.decide("preferences", UserChoice.ACCEPTED)

        assert outcome.success
        assert persistence.load_domain_state("preferences") == DomainState(
            version="1.1.0", data={"instrumentFocus": ["djembe"], "theme": "dark"}
        )


class TestPreview:
    def test_preview_under_other_policy(self, session, persistence):
        _seed_current(persistence)
        _seed(persistence, "songs", "2.1.0", [_song("Sofa", 0, tempo=140)])
        session.start()

        default_preview = session.preview("songs")
        update_preview = session.preview("songs", MergePolicy(update_modified=True))

        assert default_preview.updated == ()
        assert len(update_preview.updated) == 1
        # Previewing never writes
        assert persistence.load_domain_state("songs").version == "2.1.0"

    def test_preview_transform_domain_is_none(self, session, persistence):
        _seed_current(persistence)
        _seed(persistence, "preferences", "1.0.0", {"instrumentFocus": []})
        session.start()

        assert session.preview("preferences") is None

    def test_preview_requires_pending(self, session):
        session.start()

        with pytest.raises(NoPendingMigrationError):
            session.preview("songs")
