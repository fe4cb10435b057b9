"""
Tests for the SessionCache and StatsTracker.

Background work runs on a ManualExecutor and foreground callbacks are
drained by hand, so every interleaving here is deterministic.

Run with: python -m pytest tests/test_session_cache.py -v
"""

import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from engine import PlayerSession
from persistence.record import StatsRecord


def alice():
    return PlayerSession(session_id="s1", display_name="Alice", external_id="uuid-alice")


def bob():
    return PlayerSession(session_id="s2", display_name="Bob", external_id="uuid-bob")


class TestLoading:
    """Lazy loading and the one-load-in-flight rule"""

    def test_get_before_load_is_absent(self, tracker):
        tracker.on_join(alice())
        assert tracker.cache.get("s1") is None
        assert tracker.cache.is_loading("s1")

    def test_load_attaches_fresh_record(self, tracker, settle):
        assert tracker.on_join(alice())
        settle()

        record = tracker.cache.get("s1")
        assert record is not None
        assert record.is_new
        assert record.kills == 0
        assert record.display_name == "Alice"
        assert record.external_id == "uuid-alice"
        assert not record.is_modified
        assert not tracker.cache.is_loading("s1")

    def test_two_touches_one_lookup(self, tracker, repository, settle):
        cache = tracker.cache
        cache.open_session(alice())

        assert cache.request_load("s1")
        assert not cache.request_load("s1")
        settle()

        assert repository.load_calls == ["uuid-alice"]
        assert cache.get("s1") is not None

    def test_no_reload_once_attached(self, tracker, repository, settle):
        tracker.on_join(alice())
        settle()
        assert not tracker.cache.request_load("s1")
        assert len(repository.load_calls) == 1

    def test_load_for_unknown_session_is_ignored(self, tracker, repository):
        assert not tracker.cache.request_load("nobody")
        assert repository.load_calls == []

    def test_result_discarded_after_quit(self, tracker, settle):
        tracker.on_join(alice())
        tracker.on_quit("s1")
        settle()

        assert tracker.cache.get("s1") is None
        assert not tracker.cache.is_loading("s1")
        assert len(tracker.cache) == 0

    def test_quick_rejoin_reuses_pending_load(self, tracker, repository, settle):
        tracker.on_join(alice())
        tracker.on_quit("s1")
        # Old load still in flight, so rejoining must not start another one
        assert not tracker.on_join(alice())
        settle()

        assert repository.load_calls == ["uuid-alice"]
        assert tracker.cache.get("s1") is not None

    def test_lookup_by_name(self, tracker, repository, settle):
        repository.use_external_id = False
        tracker.on_join(alice())
        settle()
        assert repository.load_calls == ["Alice"]

    def test_disabled_persistence_never_loads(self, tracker, repository):
        repository.close()
        assert not tracker.on_join(alice())
        assert not tracker.cache.is_loading("s1")

    def test_failed_load_clears_marker(self, tracker, repository, settle):
        repository.load_one = lambda key: None
        tracker.on_join(alice())
        settle()

        assert tracker.cache.get("s1") is None
        assert not tracker.cache.is_loading("s1")
        # A later touch may try again
        assert tracker.cache.request_load("s1")

    def test_stored_record_seen_on_attach(self, tracker, repository, settle):
        stored = StatsRecord(display_name="Alice", external_id="uuid-alice", last_seen=1000)
        stored.kills = 1
        repository.save_batch([stored])
        assert repository.load_one("uuid-alice").last_seen == 1000

        tracker.on_join(alice())
        settle()

        record = tracker.cache.get("s1")
        assert record.last_seen > 1000
        # Being online is no reason to write the row
        assert not record.is_modified

    def test_renamed_player_gets_new_name(self, tracker, repository, settle):
        stored = StatsRecord()
        stored.bind_identity("uuid-alice", "OldAlice")
        stored.kills = 3
        repository.save_batch([stored])

        tracker.on_join(alice())
        settle()

        record = tracker.cache.get("s1")
        assert record.kills == 3
        assert record.display_name == "Alice"
        assert record.is_modified


    def test_rejoin_while_quit_save_is_queued(self, tracker, repository, executor, settle):
        tracker.on_join(alice())
        settle()
        tracker.stats_for("s1").on_kill()

        quit_record = tracker.on_quit("s1")
        assert quit_record.is_new
        assert len(executor.pending) == 1

        # Comes straight back with the unsaved record, no stale lookup
        assert not tracker.on_join(alice())
        assert tracker.stats_for("s1") is quit_record

        tracker.on_join(bob())
        # Bob's load runs before Alice's insert
        executor.pending.reverse()
        settle()

        quit_record.on_kill()
        tracker.stats_for("s2").on_kill()
        assert tracker.scheduler.sweep() == 2
        assert repository.load_calls == ["uuid-alice", "uuid-bob"]
        assert repository.load_one("uuid-alice").kills == 2
        assert not repository.load_one("uuid-bob").is_new

    def test_rejoin_after_quit_save_loads_again(self, tracker, repository, settle):
        tracker.on_join(alice())
        settle()
        tracker.stats_for("s1").on_kill()
        tracker.on_quit("s1")
        settle()

        assert tracker.on_join(alice())
        settle()
        assert repository.load_calls == ["uuid-alice", "uuid-alice"]
        assert tracker.stats_for("s1").kills == 1


class TestCounters:
    """Combat events routed through the tracker"""

    def test_kill_updates_both_players(self, tracker, settle):
        tracker.on_join(alice())
        tracker.on_join(bob())
        settle()

        tracker.on_kill(killer_id="s1", victim_id="s2")

        killer = tracker.stats_for("s1")
        victim = tracker.stats_for("s2")
        assert killer.kills == 1
        assert killer.streak == 1
        assert victim.deaths == 1
        assert victim.streak == 0
        assert killer.is_modified and victim.is_modified

    def test_suicide_only_counts_death(self, tracker, settle):
        tracker.on_join(alice())
        settle()
        tracker.on_kill(killer_id="s1", victim_id="s1")

        record = tracker.stats_for("s1")
        assert record.kills == 0
        assert record.deaths == 1

    def test_environment_death(self, tracker, settle):
        tracker.on_join(alice())
        settle()
        tracker.stats_for("s1").on_kill()
        tracker.on_death("s1")

        record = tracker.stats_for("s1")
        assert record.deaths == 1
        assert record.streak == 0

    def test_aux_kill(self, tracker, settle):
        tracker.on_join(alice())
        settle()
        tracker.on_aux_kill("s1")
        assert tracker.stats_for("s1").aux_kills == 1

    def test_events_while_loading_are_dropped(self, tracker, settle):
        tracker.on_join(alice())
        tracker.on_join(bob())
        tracker.on_kill(killer_id="s1", victim_id="s2")
        settle()

        assert tracker.stats_for("s1").kills == 0
        assert tracker.stats_for("s2").deaths == 0


class TestSaving:
    """Quit saves and explicit saves"""

    def test_quit_saves_in_background(self, tracker, repository, settle):
        tracker.on_join(alice())
        settle()
        tracker.stats_for("s1").on_kill()

        record = tracker.on_quit("s1")
        assert record is not None
        assert tracker.cache.get("s1") is None
        # Not written yet, the save is queued
        assert record.is_modified

        settle()
        assert not record.is_modified
        assert not record.is_new
        assert repository.load_one("uuid-alice").kills == 1

    def test_quit_unknown_session(self, tracker):
        assert tracker.on_quit("nobody") is None

    def test_mark_dirty_and_save(self, tracker, repository, settle):
        tracker.on_join(alice())
        settle()
        record = tracker.stats_for("s1")

        tracker.cache.mark_dirty_and_save(record)
        assert record.is_modified
        settle()

        assert not record.is_modified
        assert repository.load_one("uuid-alice").id == record.id

    def test_dirty_records_only_lists_modified(self, tracker, settle):
        tracker.on_join(alice())
        tracker.on_join(bob())
        settle()
        tracker.on_aux_kill("s2")

        assert tracker.cache.dirty_records() == [tracker.stats_for("s2")]
