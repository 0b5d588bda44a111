"""Team roster management for PackHunt.

A roster holds the pack's members and their roles. Its size selects the
workflow topology, and its role assignments decide who works each column.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import InvalidRoster, InvalidTeamSize, StorageError
from .models import Column, Role, TeamMember, format_timestamp
from .topology import MAX_TEAM_SIZE, WorkflowTopology

logger = logging.getLogger("packhunt.roster")


class TeamRoster:
    """Members of one pack and the roles they hold."""

    def __init__(self, pack_name: str, members: Optional[Iterable[TeamMember]] = None):
        self.pack_name = pack_name
        self.members: List[TeamMember] = []
        self.created_at = format_timestamp()
        self.updated_at = self.created_at
        for member in members or []:
            self._append(member)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    @property
    def team_size(self) -> int:
        return len(self.members)

    def _append(self, member: TeamMember) -> None:
        issues = member.validate()
        if issues:
            raise InvalidRoster("; ".join(issues))
        if len(self.members) >= MAX_TEAM_SIZE:
            raise InvalidTeamSize(len(self.members) + 1)
        if self.get_member_by_username(member.username):
            raise InvalidRoster(f"Member already in pack: {member.username}")
        holder = self.get_member_by_role(member.role)
        if holder:
            raise InvalidRoster(f"Role {member.role.value} is already held by {holder.username}")
        self.members.append(member)

    def add_member(self, username: str, role: Role | str) -> TeamMember:
        """Add a member holding ``role``."""
        parsed = Role.parse(role)
        member = TeamMember(username=username, role=parsed if parsed is not None else role)
        self._append(member)
        self.updated_at = format_timestamp()
        logger.info(f"Added {username} to pack {self.pack_name} as {member.role.value}")
        return member

    def remove_member(self, username: str) -> TeamMember:
        member = self.get_member_by_username(username)
        if member is None:
            raise InvalidRoster(f"Member not found: {username}")
        self.members.remove(member)
        self.updated_at = format_timestamp()
        return member

    def assign_role(self, username: str, role: Role | str) -> TeamMember:
        """Move a member to a different role."""
        member = self.get_member_by_username(username)
        if member is None:
            raise InvalidRoster(f"Member not found: {username}")
        parsed = Role.parse(role)
        if parsed is None:
            raise InvalidRoster(f"Invalid role: {role}")
        holder = self.get_member_by_role(parsed)
        if holder and holder is not member:
            raise InvalidRoster(f"Role {parsed.value} is already held by {holder.username}")
        member.role = parsed
        self.updated_at = format_timestamp()
        return member

    def get_member_by_role(self, role: Role | str) -> Optional[TeamMember]:
        parsed = Role.parse(role)
        return next((m for m in self.members if m.role == parsed), None)

    def get_member_by_username(self, username: str) -> Optional[TeamMember]:
        return next((m for m in self.members if m.username == username), None)

    # ------------------------------------------------------------------
    # Topology
    # ------------------------------------------------------------------

    def validate(self) -> int:
        """Check the roster can drive a workflow and return its team size."""
        return WorkflowTopology.validate_team_size(self.team_size)

    def get_columns(self) -> List[Column]:
        return WorkflowTopology.get_columns(self.validate())

    def get_column_sequence(self) -> List[str]:
        return WorkflowTopology.get_column_sequence(self.validate())

    def column_assignments(self) -> Dict[str, str]:
        return WorkflowTopology.map_members_to_columns(self.validate(), self.members)

    def assignee_for(self, column_id: str) -> Optional[str]:
        """Username working ``column_id``; None for unstaffed columns."""
        team_size = self.validate()
        WorkflowTopology.get_column(team_size, column_id)
        return self.column_assignments().get(column_id)

    def first_assignment(self) -> Tuple[str, Optional[str]]:
        """The first column of the board and who works it."""
        first = WorkflowTopology.get_first_column(self.validate())
        return first, self.assignee_for(first)

    def next_assignment(self, column_id: str) -> Optional[Tuple[str, Optional[str]]]:
        """The column after ``column_id`` and its assignee, or None at the end."""
        next_column = WorkflowTopology.get_next_column(self.validate(), column_id)
        if next_column is None:
            return None
        return next_column, self.assignee_for(next_column)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the team configuration document."""
        return {
            "packName": self.pack_name,
            "members": [member.to_dict() for member in self.members],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TeamRoster":
        """Create from the team configuration document."""
        roster = cls(
            data.get("packName") or data.get("pack_name") or "pack",
            [TeamMember.from_dict(member) for member in data.get("members", [])],
        )
        roster.created_at = data.get("createdAt", roster.created_at)
        roster.updated_at = data.get("updatedAt", roster.updated_at)
        return roster

    @classmethod
    def load(cls, path: Path | str) -> "TeamRoster":
        """Load a roster from a team configuration file."""
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            raise StorageError(f"Pack not initialized: no team configuration at {path}")
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Could not read team configuration {path}: {e}") from e
        return cls.from_dict(data)

    def save(self, path: Path | str) -> Path:
        """Write the roster to a team configuration file."""
        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(self.to_dict(), indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Could not write team configuration {path}: {e}") from e
        return path
