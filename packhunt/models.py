"""Data models for PackHunt workflow tracking.

This module contains the core data structures shared by the topology,
the hunt state machine, the registry and the analytics engine: roles,
board columns, team members, phase records and hunt metrics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class Role(str, Enum):
    """The four specialized hunt roles, in hunt-cycle order."""

    REQUIREMENTS = "requirements"
    SPEC = "spec"
    IMPLEMENTATION = "implementation"
    TESTING = "testing"

    @classmethod
    def parse(cls, value: Any) -> Optional["Role"]:
        """Return the matching role, or None for an unknown value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None

    @classmethod
    def sequence(cls) -> List["Role"]:
        return list(cls)


ROLE_INFO: Dict[Role, Dict[str, str]] = {
    Role.REQUIREMENTS: {
        "name": "Requirements Hunter",
        "emoji": "🔍",
        "description": "Analyzes requirements and defines scope",
    },
    Role.SPEC: {
        "name": "Specification Refiner",
        "emoji": "📋",
        "description": "Creates specifications and prepares issues",
    },
    Role.IMPLEMENTATION: {
        "name": "Implementation Hunter",
        "emoji": "🎯",
        "description": "Codes features based on specifications",
    },
    Role.TESTING: {
        "name": "QA & Testing Specialist",
        "emoji": "✅",
        "description": "Tests and validates implementation",
    },
}


def role_name(role: Role) -> str:
    return ROLE_INFO[role]["name"]


class HuntStatus(str, Enum):
    """Lifecycle states of a hunt."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    BLOCKED = "blocked"


# ------------------------------------------------------------------
# Timestamps
# ------------------------------------------------------------------

def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Format a moment as ISO-8601 UTC with a trailing ``Z``."""
    moment = moment or utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a stored timestamp; returns None for empty or malformed values."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value >= 0:
        return int(value + 0.5)
    return -int(-value + 0.5)


def minutes_between(start: Any, end: Any) -> int:
    """Whole minutes between two timestamps, 0 if either is unreadable."""
    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)
    if start_dt is None or end_dt is None:
        return 0
    return round_half_up((end_dt - start_dt).total_seconds() / 60)


# ------------------------------------------------------------------
# Topology entities
# ------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Column:
    """A board column: one stage of the pipeline for a given team size."""

    id: str
    display_name: str
    emoji: str
    roles: Tuple[Role, ...]
    position: int
    description: str
    merged: bool = False
    optional: bool = False
    # Roles whose member staffs this column when nobody holds one of ``roles``
    fallback_roles: Tuple[Role, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "display_name": self.display_name,
            "emoji": self.emoji,
            "roles": [role.value for role in self.roles],
            "position": self.position,
            "description": self.description,
            "merged": self.merged,
            "optional": self.optional,
            "fallback_roles": [role.value for role in self.fallback_roles],
        }


@dataclass(slots=True)
class TeamMember:
    """A pack member holding one role."""

    username: str
    role: Role
    joined_at: str = field(default_factory=format_timestamp)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "username": self.username,
            "role": self.role.value,
            "joinedAt": self.joined_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TeamMember":
        """Create from dictionary representation.

        The role is kept as given when it is not a known role, so that
        ``TeamRoster`` can report it instead of failing here.
        """
        role = Role.parse(data.get("role"))
        return cls(
            username=data["username"],
            role=role if role is not None else data.get("role"),
            joined_at=data.get("joinedAt") or data.get("joined_at") or format_timestamp(),
        )

    def validate(self) -> List[str]:
        """Validate the member and return any issues."""
        issues = []
        if not self.username or not str(self.username).strip():
            issues.append("Username is required")
        if not isinstance(self.role, Role):
            issues.append(f"Invalid role: {self.role}")
        return issues


# ------------------------------------------------------------------
# Hunt entities
# ------------------------------------------------------------------

@dataclass(slots=True)
class PhaseRecord:
    """Timing record for one phase of a hunt."""

    phase: str
    assignee: Optional[str]
    start_time: str
    end_time: Optional[str] = None
    duration: Optional[int] = None  # minutes, set when the phase closes

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def close(self, end_time: Optional[str] = None) -> None:
        """Close the phase and compute its duration in minutes."""
        self.end_time = end_time or format_timestamp()
        self.duration = minutes_between(self.start_time, self.end_time)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted representation."""
        return {
            "phase": self.phase,
            "assignee": self.assignee,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PhaseRecord":
        """Create from the persisted representation."""
        return cls(
            phase=data["phase"],
            assignee=data.get("assignee"),
            start_time=data.get("startTime") or "",
            end_time=data.get("endTime"),
            duration=data.get("duration"),
        )


@dataclass(slots=True)
class HuntMetrics:
    """Quality counters attached to a hunt."""

    total_duration: int = 0
    test_coverage: float = 0
    quality_score: float = 0
    bugs_found: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted representation."""
        return {
            "totalDuration": self.total_duration,
            "testCoverage": self.test_coverage,
            "qualityScore": self.quality_score,
            "bugsFound": self.bugs_found,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "HuntMetrics":
        """Create from the persisted representation."""
        data = data or {}
        return cls(
            total_duration=data.get("totalDuration", 0),
            test_coverage=data.get("testCoverage", 0),
            quality_score=data.get("qualityScore", 0),
            bugs_found=data.get("bugsFound", 0),
        )
