"""Error types for PackHunt.

Every error carries a ``status_code`` so adapters can translate it into a
transport response without inspecting the message: validation problems map
to 400, unknown hunts to 404 and persistence failures to 500.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class HuntError(Exception):
    """Base class for all PackHunt errors."""

    status_code = 500

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the error payload returned by adapters."""
        return {
            "error": str(self),
            "error_type": type(self).__name__,
            "status_code": self.status_code,
        }


class ValidationError(HuntError, ValueError):
    """Raised when a request violates a topology or state machine rule."""

    status_code = 400


class InvalidTeamSize(ValidationError):
    """Raised when a team size falls outside the supported 1-4 range."""

    def __init__(self, team_size: Any) -> None:
        self.team_size = team_size
        super().__init__(f"Team size must be 1-4 people, got: {team_size}")


class RoleCountMismatch(ValidationError):
    """Raised when the member count does not match the topology's team size."""

    def __init__(self, member_count: int, team_size: int) -> None:
        self.member_count = member_count
        self.team_size = team_size
        super().__init__(
            f"Member count ({member_count}) does not match team size ({team_size})"
        )


class UnknownColumn(ValidationError):
    """Raised when a column id is not part of a team size's topology."""

    def __init__(self, column_id: Any, team_size: int) -> None:
        self.column_id = column_id
        self.team_size = team_size
        super().__init__(f"Column {column_id} not found for team size {team_size}")


class InvalidStateTransition(ValidationError):
    """Raised when an operation is not allowed from the hunt's current status."""

    def __init__(self, hunt_id: str, status: str, operation: str) -> None:
        self.hunt_id = hunt_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} hunt {hunt_id} while it is {status}")


class PhaseSequenceViolation(ValidationError):
    """Raised when a hunt is moved to a phase that is not the next column."""

    def __init__(self, hunt_id: str, current_phase: Optional[str], requested_phase: str,
                 expected_phase: Optional[str]) -> None:
        self.hunt_id = hunt_id
        self.current_phase = current_phase
        self.requested_phase = requested_phase
        self.expected_phase = expected_phase
        super().__init__(
            f"Invalid handoff for hunt {hunt_id}: {current_phase} → {requested_phase}. "
            f"Expected {current_phase} → {expected_phase}"
        )


class InvalidRoster(ValidationError):
    """Raised when a team roster has duplicate or unknown role assignments."""


class HuntNotFound(HuntError, LookupError):
    """Raised when a hunt id is not present in the registry."""

    status_code = 404

    def __init__(self, hunt_id: str) -> None:
        self.hunt_id = hunt_id
        super().__init__(f"Hunt not found: {hunt_id}")


class StorageError(HuntError, RuntimeError):
    """Raised when the hunt document cannot be read or written."""

    status_code = 500


class ConcurrentModificationError(StorageError):
    """Raised when the stored document changed since it was last read."""
