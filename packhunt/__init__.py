"""PackHunt - adaptive workflow phase tracking for small feature teams."""

from .analytics import AnalyticsEngine
from .errors import (
    ConcurrentModificationError,
    HuntError,
    HuntNotFound,
    InvalidRoster,
    InvalidStateTransition,
    InvalidTeamSize,
    PhaseSequenceViolation,
    RoleCountMismatch,
    StorageError,
    UnknownColumn,
    ValidationError,
)
from .hunt import HuntCycle
from .models import Column, HuntMetrics, HuntStatus, PhaseRecord, Role, TeamMember
from .registry import HuntRegistry
from .roster import TeamRoster
from .storage import FileHuntStore, HuntStore, InMemoryHuntStore
from .topology import WorkflowTopology

__all__ = [
    "AnalyticsEngine",
    "Column",
    "ConcurrentModificationError",
    "FileHuntStore",
    "HuntCycle",
    "HuntError",
    "HuntMetrics",
    "HuntNotFound",
    "HuntRegistry",
    "HuntStatus",
    "HuntStore",
    "InMemoryHuntStore",
    "InvalidRoster",
    "InvalidStateTransition",
    "InvalidTeamSize",
    "PhaseRecord",
    "PhaseSequenceViolation",
    "Role",
    "RoleCountMismatch",
    "StorageError",
    "TeamMember",
    "TeamRoster",
    "UnknownColumn",
    "ValidationError",
    "WorkflowTopology",
]
