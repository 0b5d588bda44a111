"""Unit tests for the PackHunt hunt registry.

The registry is backed by an in-memory store and a private set of
observability hooks, so events can be captured per test.
"""

import pytest

from packhunt.errors import (
    HuntNotFound,
    InvalidStateTransition,
    PhaseSequenceViolation,
    StorageError,
    ValidationError,
)
from packhunt.models import HuntStatus
from packhunt.packhunt_logging import (
    HUNT_COMPLETED,
    HUNT_CREATED,
    HUNT_EVENTS,
    HUNT_PHASE_CHANGED,
    HUNT_UPDATED,
    ObservabilityHooks,
)
from packhunt.registry import HuntRegistry
from packhunt.roster import TeamRoster
from packhunt.storage import InMemoryHuntStore

T0 = "2025-01-06T09:00:00.000Z"
T1 = "2025-01-06T10:00:00.000Z"
T2 = "2025-01-06T11:00:00.000Z"
T3 = "2025-01-06T12:00:00.000Z"
T4 = "2025-01-06T13:00:00.000Z"


class FailingStore(InMemoryHuntStore):
    """In-memory store whose saves can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail = False

    def save(self, hunts):
        if self.fail:
            raise StorageError("disk full")
        super().save(hunts)


@pytest.fixture
def roster():
    roster = TeamRoster("wolves")
    roster.add_member("alice", "requirements")
    roster.add_member("bob", "spec")
    roster.add_member("carol", "implementation")
    return roster


@pytest.fixture
def events():
    hooks = ObservabilityHooks()
    received = []
    for event_type in HUNT_EVENTS:
        hooks.register_hook(event_type, lambda event_type=event_type, **payload: received.append((event_type, payload)))
    hooks.received = received
    return hooks


@pytest.fixture
def store():
    return FailingStore()


@pytest.fixture
def registry(store, events):
    return HuntRegistry("wolves", store=store, events=events)


def finish(registry, hunt_id):
    for moment in (T1, T2, T3):
        registry.advance_hunt(hunt_id, at=moment)
    return registry.complete_hunt(hunt_id, at=T4)


class TestStartHunt:
    """Test cases for starting hunts."""

    def test_start_hunt(self, registry, roster, events, store):
        """Test a hunt starts on the first column with its assignee."""
        hunt = registry.start_hunt("Checkout flow", "Cart to payment", roster, at=T0)

        assert hunt.current_phase == "requirements"
        assert hunt.current_role == "alice"
        assert hunt.owner == "alice"
        assert hunt.team_size == 3
        assert registry.get_hunt(hunt.id) is hunt
        assert store.save_count == 1
        assert events.received == [(HUNT_CREATED, {
            "id": hunt.id,
            "featureName": "Checkout flow",
            "owner": "alice",
            "createdAt": T0,
        })]

    def test_ids_are_unique(self, registry, roster):
        """Test hunts started in the same millisecond get distinct ids."""
        ids = {registry.start_hunt(f"Feature {i}", "", roster).id for i in range(5)}

        assert len(ids) == 5
        assert all(hunt_id.startswith("hunt-") for hunt_id in ids)

    def test_empty_feature_name(self, registry, roster):
        """Test a feature name is required."""
        with pytest.raises(ValidationError):
            registry.start_hunt("  ", "", roster)

    def test_explicit_owner(self, registry, roster):
        """Test the owner can differ from the first assignee."""
        hunt = registry.start_hunt("Checkout flow", "", roster, owner="bob")

        assert hunt.owner == "bob"


class TestTransitions:
    """Test cases for moving hunts along the board."""

    def test_transition_hunt(self, registry, roster, events):
        """Test a handoff persists and emits phase-changed."""
        hunt = registry.start_hunt("Checkout flow", "", roster, at=T0)

        moved = registry.transition_hunt(hunt.id, "spec", "bob", at=T1)

        assert moved.current_phase == "spec"
        assert moved.phase_history[0].duration == 60
        assert events.received[-1] == (HUNT_PHASE_CHANGED, {
            "id": hunt.id,
            "previousPhase": "requirements",
            "newPhase": "spec",
            "changedAt": T1,
        })

    def test_transition_unknown_hunt(self, registry):
        """Test mutations on unknown ids raise HuntNotFound."""
        with pytest.raises(HuntNotFound):
            registry.transition_hunt("hunt-missing", "spec", "bob")

    def test_transition_violation_emits_nothing(self, registry, roster, events, store):
        """Test a rejected handoff leaves the registry untouched."""
        hunt = registry.start_hunt("Checkout flow", "", roster, at=T0)

        with pytest.raises(PhaseSequenceViolation):
            registry.transition_hunt(hunt.id, "testing", "alice", at=T1)

        assert registry.get_hunt(hunt.id).current_phase == "requirements"
        assert store.save_count == 1
        assert len(events.received) == 1

    def test_advance_hunt_uses_roster(self, registry, roster):
        """Test advancing assigns the next column's member."""
        hunt = registry.start_hunt("Checkout flow", "", roster, at=T0)
        registry.advance_hunt(hunt.id, roster, at=T1)
        registry.advance_hunt(hunt.id, roster, at=T2)

        moved = registry.advance_hunt(hunt.id, roster, at=T3)

        assert moved.current_phase == "testing"
        assert moved.current_role == "alice"

    def test_advance_past_final_column(self, registry, roster):
        """Test advancing from the last column is rejected."""
        hunt = registry.start_hunt("Checkout flow", "", roster, at=T0)
        for moment in (T1, T2, T3):
            registry.advance_hunt(hunt.id, roster, at=moment)

        with pytest.raises(InvalidStateTransition):
            registry.advance_hunt(hunt.id, roster)


class TestCompletion:
    """Test cases for completing hunts."""

    def test_complete_hunt(self, registry, roster, events):
        """Test completing emits the total duration."""
        hunt = registry.start_hunt("Checkout flow", "", roster, at=T0)

        done = finish(registry, hunt.id)

        assert done.status == HuntStatus.COMPLETED
        assert events.received[-1] == (HUNT_COMPLETED, {
            "id": hunt.id,
            "totalDurationMinutes": 240,
            "completedAt": T4,
        })
        assert [event for event, _ in events.received] == [
            HUNT_CREATED,
            HUNT_PHASE_CHANGED,
            HUNT_PHASE_CHANGED,
            HUNT_PHASE_CHANGED,
            HUNT_COMPLETED,
        ]

    def test_complete_early(self, registry, roster):
        """Test completing before the terminal column is rejected."""
        hunt = registry.start_hunt("Checkout flow", "", roster, at=T0)

        with pytest.raises(InvalidStateTransition):
            registry.complete_hunt(hunt.id, at=T1)


class TestUpdates:
    """Test cases for block, unblock and edits."""

    def test_block_and_unblock(self, registry, roster, events):
        """Test blocking emits hunt:updated."""
        hunt = registry.start_hunt("Checkout flow", "", roster)

        blocked = registry.block_hunt(hunt.id, "waiting on payment sandbox")

        assert blocked.status == HuntStatus.BLOCKED
        event_type, payload = events.received[-1]
        assert event_type == HUNT_UPDATED
        assert payload["changedFields"] == ["status", "blockedReason"]
        assert payload["updatedAt"].endswith("Z")

        assert registry.unblock_hunt(hunt.id).status == HuntStatus.ACTIVE

    def test_update_hunt(self, registry, roster, events):
        """Test editing descriptive fields."""
        hunt = registry.start_hunt("Checkout flow", "", roster)

        updated = registry.update_hunt(hunt.id, description="Cart to payment")

        assert updated.description == "Cart to payment"
        assert events.received[-1][1]["changedFields"] == ["description"]

    def test_noop_update(self, registry, roster, events, store):
        """Test an edit that changes nothing neither saves nor emits."""
        hunt = registry.start_hunt("Checkout flow", "", roster)

        registry.update_hunt(hunt.id, feature_name="Checkout flow")

        assert store.save_count == 1
        assert len(events.received) == 1


class TestPersistenceFailure:
    """Test cases for failed saves."""

    def test_failed_save_rolls_back(self, registry, roster, events, store):
        """Test a failed save leaves state unchanged and emits nothing."""
        hunt = registry.start_hunt("Checkout flow", "", roster, at=T0)
        store.fail = True

        with pytest.raises(StorageError):
            registry.transition_hunt(hunt.id, "spec", "bob", at=T1)

        current = registry.get_hunt(hunt.id)
        assert current.current_phase == "requirements"
        assert current.phase_history[0].is_open
        assert len(events.received) == 1

    def test_failed_start_is_not_registered(self, registry, roster, events, store):
        """Test a hunt whose first save fails is not kept."""
        store.fail = True

        with pytest.raises(StorageError):
            registry.start_hunt("Checkout flow", "", roster)

        assert registry.hunts == []
        assert events.received == []

    def test_failing_hook_does_not_undo_mutation(self, registry, roster, events):
        """Test a listener error is logged, not raised."""
        def broken(**payload):
            raise RuntimeError("socket closed")

        events.register_hook(HUNT_CREATED, broken)

        hunt = registry.start_hunt("Checkout flow", "", roster)

        assert registry.get_hunt(hunt.id) is not None


class TestQueries:
    """Test cases for registry queries."""

    @pytest.fixture
    def populated(self, registry, roster):
        first = registry.start_hunt("Checkout flow", "", roster, at=T0)
        second = registry.start_hunt("Search", "", roster, owner="bob", at=T0)
        third = registry.start_hunt("Wishlist", "", roster, at=T0)
        finish(registry, first.id)
        registry.block_hunt(third.id, "waiting")
        return registry, first, second, third

    def test_status_queries(self, populated):
        """Test active, completed and status filters."""
        registry, first, second, third = populated

        assert [h.id for h in registry.get_completed_hunts()] == [first.id]
        assert [h.id for h in registry.get_active_hunts()] == [second.id, third.id]
        assert [h.id for h in registry.get_hunts_by_status("blocked")] == [third.id]

    def test_invalid_status(self, registry):
        """Test filtering by an unknown status."""
        with pytest.raises(ValidationError):
            registry.get_hunts_by_status("archived")

    def test_get_missing_hunt(self, registry):
        """Test lookups of unknown ids."""
        assert registry.get_hunt("hunt-missing") is None
        with pytest.raises(HuntNotFound):
            registry.require_hunt("hunt-missing")

    def test_list_hunts(self, populated):
        """Test filtering and paging the dashboard list."""
        registry, first, second, third = populated

        assert [h["id"] for h in registry.list_hunts(owner="bob")] == [second.id]
        assert [h["id"] for h in registry.list_hunts(status="completed")] == [first.id]
        assert [h["id"] for h in registry.list_hunts(limit=1, offset=1)] == [second.id]
        assert registry.list_hunts(status="completed")[0]["progress"] == 100

    def test_list_hunts_negative_paging(self, registry):
        """Test paging arguments must be non-negative."""
        with pytest.raises(ValidationError):
            registry.list_hunts(limit=-1)

    def test_timeline(self, populated):
        """Test the timeline of a completed hunt."""
        registry, first, _, _ = populated

        timeline = registry.get_hunt_timeline(first.id)

        assert [entry["phase"] for entry in timeline] == ["requirements", "spec", "implement", "testing"]
        assert all(entry["duration"] == 60 for entry in timeline)

    def test_statistics(self, populated):
        """Test aggregate counts and durations."""
        registry, _, _, _ = populated

        assert registry.get_statistics() == {
            "total": 3,
            "active": 2,
            "completed": 1,
            "blocked": 1,
            "total_duration": 240,
            "average_duration": 240,
        }

    def test_snapshot_is_independent(self, populated):
        """Test snapshots do not share state with the registry."""
        registry, first, _, _ = populated

        snapshot = registry.snapshot()
        snapshot[0].feature_name = "changed"

        assert registry.get_hunt(first.id).feature_name == "Checkout flow"


class TestLoad:
    """Test cases for loading the hunt document."""

    def test_load_round_trip(self, registry, roster, store):
        """Test a second registry loads identical hunts."""
        hunt = registry.start_hunt("Checkout flow", "", roster, at=T0)
        registry.transition_hunt(hunt.id, "spec", "bob", at=T1)

        other = HuntRegistry("wolves", store=store)
        other.load()

        assert [h.to_dict() for h in other.hunts] == [h.to_dict() for h in registry.hunts]

    def test_load_empty(self):
        """Test an empty store yields an empty registry."""
        registry = HuntRegistry("wolves")

        assert registry.load() == []

    def test_load_malformed_entry(self):
        """Test entries without an id raise StorageError."""
        registry = HuntRegistry("wolves", store=InMemoryHuntStore([{"featureName": "no id"}]))

        with pytest.raises(StorageError):
            registry.load()
