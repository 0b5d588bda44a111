"""Hunt registry for PackHunt.

This module owns the pack's collection of hunts. Every mutation follows the
same commit sequence: copy the affected hunt, apply the change to the copy,
save the whole document, swap the copy in, and only then emit the hunt
event. A failed save leaves the registry exactly as it was.
"""

from __future__ import annotations

import copy
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .errors import HuntNotFound, InvalidStateTransition, StorageError, ValidationError
from .hunt import HuntCycle, Moment
from .models import HuntStatus, format_timestamp, round_half_up
from .packhunt_logging import (
    HUNT_COMPLETED,
    HUNT_CREATED,
    HUNT_PHASE_CHANGED,
    HUNT_UPDATED,
    ObservabilityHooks,
    log_error_with_context,
    log_operation,
    log_performance,
    observability_hooks,
)
from .roster import TeamRoster
from .storage import FileHuntStore, HuntStore, InMemoryHuntStore
from .topology import WorkflowTopology

logger = logging.getLogger("packhunt.registry")

DEFAULT_PAGE_SIZE = 100


class HuntRegistry:
    """Create, query and advance the hunts of one pack."""

    def __init__(
        self,
        pack_name: str,
        store: Optional[HuntStore] = None,
        events: Optional[ObservabilityHooks] = None,
    ):
        self.pack_name = pack_name
        self.store = store if store is not None else InMemoryHuntStore()
        self.events = events if events is not None else observability_hooks
        self.hunts: List[HuntCycle] = []
        self._last_id_ms = 0

    @classmethod
    def open(cls, pack_name: str, root: Path | str, events: Optional[ObservabilityHooks] = None) -> "HuntRegistry":
        """Registry backed by the project's hunts file, already loaded."""
        registry = cls(pack_name, FileHuntStore.for_project(root), events)
        registry.load()
        return registry

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> List[HuntCycle]:
        """Replace the in-memory hunts with the stored document."""
        documents = self.store.load()
        try:
            hunts = [HuntCycle.from_dict(entry) for entry in documents]
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Stored hunt document is malformed: {e}") from e
        self.hunts = hunts
        logger.info(f"Loaded {len(hunts)} hunts for pack {self.pack_name}")
        return self.hunts

    def save(self) -> None:
        self._commit(self.hunts)

    def _commit(self, hunts: List[HuntCycle]) -> None:
        self.store.save([hunt.to_dict() for hunt in hunts])
        self.hunts = hunts

    def _mutate(self, hunt_id: str, operation: str, change: Callable[[HuntCycle], Any]) -> HuntCycle:
        current = self.require_hunt(hunt_id)
        updated = copy.deepcopy(current)
        change(updated)

        replaced = [updated if hunt.id == hunt_id else hunt for hunt in self.hunts]
        try:
            self._commit(replaced)
        except StorageError as e:
            log_error_with_context(e, {"operation": operation, "hunt_id": hunt_id})
            raise
        return updated

    def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        self.events.emit(event_type, payload)

    def _generate_id(self) -> str:
        now_ms = int(time.time() * 1000)
        candidate = max(now_ms, self._last_id_ms + 1)
        existing = {hunt.id for hunt in self.hunts}
        while f"hunt-{candidate}" in existing:
            candidate += 1
        self._last_id_ms = candidate
        return f"hunt-{candidate}"

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    @log_performance("start_hunt")
    def start_hunt(
        self,
        feature_name: str,
        description: str,
        roster: TeamRoster,
        owner: Optional[str] = None,
        at: Moment = None,
    ) -> HuntCycle:
        """Start a hunt on the first column of the roster's board."""
        if not feature_name or not feature_name.strip():
            raise ValidationError("Feature name cannot be empty")

        team_size = roster.validate()
        first_phase, assignee = roster.first_assignment()

        hunt = HuntCycle(
            id=self._generate_id(),
            feature_name=feature_name.strip(),
            description=description or "",
            pack_name=self.pack_name,
            team_size=team_size,
            owner=owner or assignee,
        )
        hunt.start(first_phase, assignee, at=at)

        with log_operation("start_hunt", hunt_id=hunt.id, team_size=team_size):
            self._commit(self.hunts + [hunt])

        logger.info(f"Started hunt {hunt.id}: {hunt.feature_name} ({first_phase} → {assignee})")
        self._emit(HUNT_CREATED, {
            "id": hunt.id,
            "featureName": hunt.feature_name,
            "owner": hunt.owner,
            "createdAt": hunt.started_at,
        })
        return hunt

    @log_performance("transition_hunt")
    def transition_hunt(
        self,
        hunt_id: str,
        next_phase: str,
        next_assignee: Optional[str],
        at: Moment = None,
    ) -> HuntCycle:
        """Hand a hunt over to the next column."""
        previous_phase = self.require_hunt(hunt_id).current_phase
        hunt = self._mutate(
            hunt_id,
            "transition_hunt",
            lambda h: h.transition_to(next_phase, next_assignee, at=at),
        )

        logger.info(f"Hunt {hunt_id} moved {previous_phase} → {hunt.current_phase}")
        self._emit(HUNT_PHASE_CHANGED, {
            "id": hunt.id,
            "previousPhase": previous_phase,
            "newPhase": hunt.current_phase,
            "changedAt": hunt.phase_history[-1].start_time,
        })
        return hunt

    def advance_hunt(self, hunt_id: str, roster: Optional[TeamRoster] = None, at: Moment = None) -> HuntCycle:
        """Move a hunt to the next column, assigned from the roster."""
        hunt = self.require_hunt(hunt_id)
        if hunt.status != HuntStatus.ACTIVE:
            raise InvalidStateTransition(hunt.id, hunt.status.value, "advance")

        next_phase = WorkflowTopology.get_next_column(
            WorkflowTopology.validate_team_size(hunt.team_size), hunt.current_phase
        )
        if next_phase is None:
            raise InvalidStateTransition(hunt.id, f"on final phase {hunt.current_phase}", "advance")

        assignee = None
        if roster is not None and roster.team_size == hunt.team_size:
            assignee = roster.column_assignments().get(next_phase)
        return self.transition_hunt(hunt_id, next_phase, assignee, at=at)

    @log_performance("complete_hunt")
    def complete_hunt(self, hunt_id: str, at: Moment = None) -> HuntCycle:
        """Close the final phase of a hunt."""
        hunt = self._mutate(hunt_id, "complete_hunt", lambda h: h.complete(at=at))

        total = hunt.get_total_duration()
        logger.info(f"Completed hunt {hunt_id} in {total} minutes")
        self._emit(HUNT_COMPLETED, {
            "id": hunt.id,
            "totalDurationMinutes": total,
            "completedAt": hunt.completed_at,
        })
        return hunt

    def block_hunt(self, hunt_id: str, reason: str) -> HuntCycle:
        hunt = self._mutate(hunt_id, "block_hunt", lambda h: h.block(reason))
        logger.warning(f"Hunt {hunt_id} blocked: {reason}")
        self._emit_updated(hunt, ["status", "blockedReason"])
        return hunt

    def unblock_hunt(self, hunt_id: str) -> HuntCycle:
        hunt = self._mutate(hunt_id, "unblock_hunt", lambda h: h.unblock())
        logger.info(f"Hunt {hunt_id} unblocked")
        self._emit_updated(hunt, ["status", "blockedReason"])
        return hunt

    def update_hunt(
        self,
        hunt_id: str,
        feature_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> HuntCycle:
        """Edit a hunt's descriptive fields; a no-op edit neither saves nor emits."""
        current = self.require_hunt(hunt_id)
        changes: Dict[str, str] = {}
        if feature_name is not None:
            if not feature_name.strip():
                raise ValidationError("Feature name cannot be empty")
            if feature_name.strip() != current.feature_name:
                changes["featureName"] = feature_name.strip()
        if description is not None and description != current.description:
            changes["description"] = description
        if not changes:
            return current

        def apply(hunt: HuntCycle) -> None:
            hunt.feature_name = changes.get("featureName", hunt.feature_name)
            hunt.description = changes.get("description", hunt.description)

        hunt = self._mutate(hunt_id, "update_hunt", apply)
        self._emit_updated(hunt, list(changes))
        return hunt

    def _emit_updated(self, hunt: HuntCycle, changed_fields: List[str]) -> None:
        self._emit(HUNT_UPDATED, {
            "id": hunt.id,
            "changedFields": changed_fields,
            "updatedAt": format_timestamp(),
        })

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_hunt(self, hunt_id: str) -> Optional[HuntCycle]:
        return next((hunt for hunt in self.hunts if hunt.id == hunt_id), None)

    def require_hunt(self, hunt_id: str) -> HuntCycle:
        hunt = self.get_hunt(hunt_id)
        if hunt is None:
            raise HuntNotFound(hunt_id)
        return hunt

    def get_active_hunts(self) -> List[HuntCycle]:
        """Hunts that are not completed yet, blocked ones included."""
        return [hunt for hunt in self.hunts if hunt.status != HuntStatus.COMPLETED]

    def get_completed_hunts(self) -> List[HuntCycle]:
        return self.get_hunts_by_status(HuntStatus.COMPLETED)

    def get_hunts_by_status(self, status: HuntStatus | str) -> List[HuntCycle]:
        try:
            wanted = HuntStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")
        return [hunt for hunt in self.hunts if hunt.status == wanted]

    def get_hunt_timeline(self, hunt_id: str) -> List[Dict[str, Any]]:
        return self.require_hunt(hunt_id).get_timeline()

    def list_hunts(
        self,
        owner: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """Dashboard summaries, optionally filtered by owner and status."""
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must be non-negative")

        hunts = self.get_hunts_by_status(status) if status else list(self.hunts)
        if owner:
            hunts = [hunt for hunt in hunts if hunt.owner == owner]

        return [
            {
                "id": hunt.id,
                "featureName": hunt.feature_name,
                "description": hunt.description,
                "owner": hunt.owner,
                "status": hunt.status.value,
                "currentPhase": hunt.current_phase,
                "currentRole": hunt.current_role,
                "active": hunt.status != HuntStatus.COMPLETED,
                "createdAt": hunt.started_at,
                "completedAt": hunt.completed_at,
                "progress": hunt.progress(),
            }
            for hunt in hunts[offset:offset + limit]
        ]

    def snapshot(self) -> List[HuntCycle]:
        """Independent copy of the hunts, for consistent analytics."""
        return copy.deepcopy(self.hunts)

    def get_statistics(self) -> Dict[str, Any]:
        """Hunt counts plus total and average duration of completed hunts."""
        completed = self.get_completed_hunts()
        total_duration = sum(hunt.get_total_duration() for hunt in completed)
        average = round_half_up(total_duration / len(completed)) if completed else 0
        return {
            "total": len(self.hunts),
            "active": len(self.get_active_hunts()),
            "completed": len(completed),
            "blocked": len(self.get_hunts_by_status(HuntStatus.BLOCKED)),
            "total_duration": total_duration,
            "average_duration": average,
        }
