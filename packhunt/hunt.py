"""Hunt cycle state machine.

A hunt moves ``pending → active → completed`` and can be parked as
``blocked`` while active. While active it walks the board columns of the
topology it was created under, one column at a time, and every phase it
enters is appended to ``phase_history`` with its timing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from .errors import InvalidStateTransition, PhaseSequenceViolation
from .models import (
    HuntMetrics,
    HuntStatus,
    PhaseRecord,
    format_timestamp,
    minutes_between,
    parse_timestamp,
)
from .topology import TOPOLOGIES, WorkflowTopology

Moment = Union[datetime, str, None]


def _stamp(at: Moment) -> str:
    if at is None:
        return format_timestamp()
    if isinstance(at, datetime):
        return format_timestamp(at)
    parsed = parse_timestamp(at)
    if parsed is None:
        raise ValueError(f"Invalid timestamp: {at}")
    return format_timestamp(parsed)


def infer_team_size(phases: List[str]) -> Optional[int]:
    """Smallest team size whose column sequence starts with ``phases``."""
    for team_size in sorted(TOPOLOGIES):
        sequence = WorkflowTopology.get_column_sequence(team_size)
        if sequence[:len(phases)] == phases:
            return team_size
    return None


@dataclass(slots=True)
class HuntCycle:
    """One feature moving through the pack's pipeline."""

    id: str
    feature_name: str
    description: str
    pack_name: str
    team_size: Optional[int]
    owner: Optional[str] = None
    status: HuntStatus = HuntStatus.PENDING
    current_phase: Optional[str] = None
    current_role: Optional[str] = None  # username of the current assignee
    started_at: str = field(default_factory=format_timestamp)
    completed_at: Optional[str] = None
    blocked_reason: Optional[str] = None
    phase_history: List[PhaseRecord] = field(default_factory=list)
    metrics: HuntMetrics = field(default_factory=HuntMetrics)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _require_status(self, operation: str, *allowed: HuntStatus) -> None:
        if self.status not in allowed:
            raise InvalidStateTransition(self.id, self.status.value, operation)

    def start(self, first_phase: str, assignee: Optional[str], at: Moment = None) -> PhaseRecord:
        """Enter the first column of the board."""
        self._require_status("start", HuntStatus.PENDING)
        team_size = WorkflowTopology.validate_team_size(self.team_size)
        WorkflowTopology.get_column(team_size, first_phase)
        expected = WorkflowTopology.get_first_column(team_size)
        if first_phase != expected:
            raise PhaseSequenceViolation(self.id, None, first_phase, expected)

        start_time = _stamp(at)
        record = PhaseRecord(phase=first_phase, assignee=assignee, start_time=start_time)
        self.phase_history.append(record)
        self.current_phase = first_phase
        self.current_role = assignee
        self.started_at = start_time
        self.status = HuntStatus.ACTIVE
        return record

    def transition_to(self, next_phase: str, next_assignee: Optional[str], at: Moment = None) -> PhaseRecord:
        """Close the current phase and open the next column.

        ``next_phase`` must be the column directly after the current one.
        """
        self._require_status("transition", HuntStatus.ACTIVE)
        team_size = WorkflowTopology.validate_team_size(self.team_size)
        WorkflowTopology.get_column(team_size, next_phase)
        expected = WorkflowTopology.get_next_column(team_size, self.current_phase)
        if next_phase != expected:
            raise PhaseSequenceViolation(self.id, self.current_phase, next_phase, expected)

        moment = _stamp(at)
        self.phase_history[-1].close(moment)
        record = PhaseRecord(phase=next_phase, assignee=next_assignee, start_time=moment)
        self.phase_history.append(record)
        self.current_phase = next_phase
        self.current_role = next_assignee
        return record

    def complete(self, at: Moment = None) -> None:
        """Close the final phase and mark the hunt completed.

        Allowed on the last column, or on any column after which only
        optional columns remain.
        """
        self._require_status("complete", HuntStatus.ACTIVE)
        team_size = WorkflowTopology.validate_team_size(self.team_size)
        if not WorkflowTopology.is_terminal(team_size, self.current_phase):
            raise InvalidStateTransition(
                self.id, f"{self.status.value} in phase {self.current_phase}", "complete"
            )

        moment = _stamp(at)
        self.phase_history[-1].close(moment)
        self.status = HuntStatus.COMPLETED
        self.completed_at = moment
        self.metrics.total_duration = self.get_total_duration()

    def block(self, reason: str) -> None:
        self._require_status("block", HuntStatus.ACTIVE)
        self.status = HuntStatus.BLOCKED
        self.blocked_reason = reason

    def unblock(self) -> None:
        self._require_status("unblock", HuntStatus.BLOCKED)
        self.status = HuntStatus.ACTIVE
        self.blocked_reason = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_completed(self) -> bool:
        return self.status == HuntStatus.COMPLETED

    def get_total_duration(self, now: Moment = None) -> int:
        """Minutes from start to completion, or to ``now`` while running."""
        end = self.completed_at or _stamp(now)
        return minutes_between(self.started_at, end)

    def get_timeline(self, now: Moment = None) -> List[Dict[str, Any]]:
        """Phase records annotated with their column, open phases timed to now."""
        timeline = []
        for record in self.phase_history:
            column = WorkflowTopology.describe_column(record.phase, self.team_size)
            if record.is_open:
                elapsed = minutes_between(record.start_time, _stamp(now))
            else:
                elapsed = record.duration or 0
            timeline.append({
                "phase": record.phase,
                "name": column.display_name if column else record.phase,
                "emoji": column.emoji if column else "",
                "assignee": record.assignee,
                "startTime": record.start_time,
                "endTime": record.end_time,
                "duration": elapsed,
                "completed": not record.is_open,
            })
        return timeline

    def progress(self) -> int:
        """Percentage of board columns this hunt has finished."""
        if self.team_size not in TOPOLOGIES:
            return 0
        total = len(WorkflowTopology.get_column_sequence(self.team_size))
        done = sum(1 for record in self.phase_history if not record.is_open)
        return round(done / total * 100) if total else 0

    def handoff_summary(self) -> Optional[Dict[str, Any]]:
        """What the current assignee receives from the previous phase."""
        if len(self.phase_history) < 2:
            return None
        previous = self.phase_history[-2]
        column = WorkflowTopology.describe_column(self.current_phase, self.team_size)
        title = f"Ready for {column.display_name if column else self.current_phase}"
        return {
            "title": title,
            "huntId": self.id,
            "feature": self.feature_name,
            "toPhase": self.current_phase,
            "toAssignee": self.current_role,
            "previousPhase": previous.phase,
            "previousAssignee": previous.assignee,
            "previousDuration": previous.duration,
        }

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted hunt document entry."""
        return {
            "id": self.id,
            "featureName": self.feature_name,
            "description": self.description,
            "packName": self.pack_name,
            "owner": self.owner,
            "teamSize": self.team_size,
            "status": self.status.value,
            "currentPhase": self.current_phase,
            "currentRole": self.current_role,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "blockedReason": self.blocked_reason,
            "phaseHistory": [record.to_dict() for record in self.phase_history],
            "metrics": self.metrics.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HuntCycle":
        """Restore a hunt from its persisted document entry."""
        history = [PhaseRecord.from_dict(record) for record in data.get("phaseHistory") or []]
        team_size = data.get("teamSize")
        if team_size is None:
            team_size = infer_team_size([record.phase for record in history])
        return cls(
            id=data["id"],
            feature_name=data.get("featureName", ""),
            description=data.get("description", ""),
            pack_name=data.get("packName", ""),
            team_size=team_size,
            owner=data.get("owner"),
            status=HuntStatus(data.get("status", HuntStatus.PENDING.value)),
            current_phase=data.get("currentPhase"),
            current_role=data.get("currentRole"),
            started_at=data.get("startedAt") or format_timestamp(),
            completed_at=data.get("completedAt"),
            blocked_reason=data.get("blockedReason"),
            phase_history=history,
            metrics=HuntMetrics.from_dict(data.get("metrics")),
        )
