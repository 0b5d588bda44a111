"""
Integration test for the hunt lifecycle:
a pack is configured, hunts are driven through the board with a file-backed
registry, the hunts file is reloaded by a second registry, and the team report
is computed from the persisted document.
"""

import json
import tempfile
from pathlib import Path

import pytest

from packhunt import AnalyticsEngine, ConcurrentModificationError, FileHuntStore, HuntRegistry, HuntStatus, TeamRoster
from packhunt.packhunt_logging import HUNT_EVENTS, ObservabilityHooks
from packhunt.storage import ANALYTICS_FILENAME, HUNTS_FILENAME, TEAM_FILENAME, resolve_storage_dir


def at(hour, minute=0):
    return f"2025-01-06T{hour:02d}:{minute:02d}:00.000Z"


class TestHuntLifecycleIntegration:
    """Integration tests for registry, file storage and analytics together."""

    @pytest.fixture
    def temp_project_dir(self):
        """Create a temporary project directory for integration testing."""
        with tempfile.TemporaryDirectory() as temp_dir:
            yield Path(temp_dir)

    @pytest.fixture
    def full_pack(self, temp_project_dir):
        """A four member pack saved to the project's team file."""
        roster = TeamRoster("wolves")
        roster.add_member("alice", "requirements")
        roster.add_member("bob", "spec")
        roster.add_member("carol", "implementation")
        roster.add_member("dave", "testing")
        roster.save(resolve_storage_dir(temp_project_dir) / TEAM_FILENAME)
        return roster

    @pytest.fixture
    def events(self):
        hooks = ObservabilityHooks()
        hooks.received = []
        for event_type in HUNT_EVENTS:
            hooks.register_hook(
                event_type,
                lambda event_type=event_type, **payload: hooks.received.append((event_type, payload)),
            )
        return hooks

    def test_full_pack_workflow(self, temp_project_dir, full_pack, events):
        """
        Given: a full pack and an empty project
        When: a hunt is driven from requirements to testing and completed
        Then: the hunts file holds the completed hunt and every event was emitted in order
        """
        roster = TeamRoster.load(resolve_storage_dir(temp_project_dir) / TEAM_FILENAME)
        registry = HuntRegistry.open("wolves", temp_project_dir, events=events)
        assert registry.hunts == []

        hunt = registry.start_hunt("Checkout flow", "Cart to payment", roster, at=at(9))
        registry.advance_hunt(hunt.id, roster, at=at(10))
        registry.advance_hunt(hunt.id, roster, at=at(12))
        registry.advance_hunt(hunt.id, roster, at=at(16))
        done = registry.complete_hunt(hunt.id, at=at(17))

        assert done.status == HuntStatus.COMPLETED
        assert [r.assignee for r in done.phase_history] == ["alice", "bob", "carol", "dave"]
        assert [r.duration for r in done.phase_history] == [60, 120, 240, 60]

        hunts_path = resolve_storage_dir(temp_project_dir) / HUNTS_FILENAME
        stored = json.loads(hunts_path.read_text(encoding="utf-8"))
        assert stored[0]["status"] == "completed"
        assert stored[0]["completedAt"] == at(17)
        assert stored[0]["metrics"]["totalDuration"] == 480

        assert [event for event, _ in events.received] == [
            "hunt:created",
            "hunt:phase-changed",
            "hunt:phase-changed",
            "hunt:phase-changed",
            "hunt:completed",
        ]
        assert events.received[-1][1]["totalDurationMinutes"] == 480

    def test_reload_round_trip(self, temp_project_dir, full_pack):
        """
        Given: a registry with an active and a completed hunt saved to disk
        When: another registry opens the same project
        Then: it loads an identical hunts array
        """
        registry = HuntRegistry.open("wolves", temp_project_dir)
        first = registry.start_hunt("Checkout flow", "", full_pack, at=at(9))
        registry.start_hunt("Search", "", full_pack, at=at(9, 30))
        registry.transition_hunt(first.id, "spec", "bob", at=at(10))

        reopened = HuntRegistry.open("wolves", temp_project_dir)

        assert [h.to_dict() for h in reopened.hunts] == [h.to_dict() for h in registry.hunts]

    def test_concurrent_writers_are_detected(self, temp_project_dir, full_pack):
        """
        Given: two registries opened on the same hunts file
        When: both mutate without reloading
        Then: the second save is refused and its in-memory state is untouched
        """
        dashboard = HuntRegistry.open("wolves", temp_project_dir)
        cli = HuntRegistry.open("wolves", temp_project_dir)

        dashboard.start_hunt("Checkout flow", "", full_pack)
        with pytest.raises(ConcurrentModificationError):
            cli.start_hunt("Search", "", full_pack)

        assert cli.hunts == []
        cli.load()
        cli.start_hunt("Search", "", full_pack)
        assert len(HuntRegistry.open("wolves", temp_project_dir).hunts) == 2

    def test_unloaded_registry_keeps_existing_hunts(self, temp_project_dir, full_pack):
        """
        Given: a hunts file written by one registry
        When: a registry that never loaded it starts a hunt on the same file
        Then: the save is refused and the existing hunt survives
        """
        HuntRegistry.open("wolves", temp_project_dir).start_hunt("Existing", "", full_pack)
        stranger = HuntRegistry("wolves", FileHuntStore.for_project(temp_project_dir))

        with pytest.raises(ConcurrentModificationError):
            stranger.start_hunt("New", "", full_pack)

        names = [h.feature_name for h in HuntRegistry.open("wolves", temp_project_dir).hunts]
        assert names == ["Existing"]

    def test_team_report_from_persisted_hunts(self, temp_project_dir, full_pack):
        """
        Given: completed hunts with a slow implementation phase
        When: the team report is computed from a reloaded registry
        Then: implementation is reported as the bottleneck and the metrics document is saved
        """
        registry = HuntRegistry.open("wolves", temp_project_dir)
        for name in ("Checkout flow", "Search"):
            hunt = registry.start_hunt(name, "", full_pack, at=at(8))
            registry.advance_hunt(hunt.id, full_pack, at=at(8, 30))
            registry.advance_hunt(hunt.id, full_pack, at=at(9))
            registry.advance_hunt(hunt.id, full_pack, at=at(13))
            registry.complete_hunt(hunt.id, at=at(13, 30))

        snapshot = HuntRegistry.open("wolves", temp_project_dir).snapshot()
        engine = AnalyticsEngine.from_hunts("wolves", snapshot)
        report = engine.generate_team_report()

        assert report["summary"]["completed_hunts"] == 2
        assert report["quality"]["average_duration"] == 330
        assert [b["role"] for b in report["bottlenecks"]] == ["implementation"]
        assert report["utilization"]["testing"]["tasks_completed"] == 2

        path = engine.save(resolve_storage_dir(temp_project_dir) / ANALYTICS_FILENAME)
        assert AnalyticsEngine.load("wolves", path).metrics == engine.metrics
