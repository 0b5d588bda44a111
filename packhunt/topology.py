"""Adaptive workflow topologies for PackHunt.

The pipeline a hunt moves through depends on how many people are in the
pack. A solo developer works through three merged columns; a full pack of
four gets one column per role plus an optional deploy column. Everything
here is a pure function of the team size.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .errors import InvalidTeamSize, RoleCountMismatch, UnknownColumn
from .models import Column, Role, TeamMember

MIN_TEAM_SIZE = 1
MAX_TEAM_SIZE = 4

SOLO_MODE = "solo"
TEAM_MODE = "team"

_REQUIREMENTS = Column(
    id="requirements",
    display_name="🔍 Requirements",
    emoji="🔍",
    roles=(Role.REQUIREMENTS,),
    position=1,
    description="Analyze scope and acceptance criteria",
)

_SPEC = Column(
    id="spec",
    display_name="📋 Specification",
    emoji="📋",
    roles=(Role.SPEC,),
    position=2,
    description="Design architecture and break tasks",
)

TOPOLOGIES: Dict[int, Dict[str, Any]] = {
    1: {
        "mode": SOLO_MODE,
        "description": "Single developer - roles merged for speed",
        "columns": (
            Column(
                id="design",
                display_name="📋 Design & Requirements",
                emoji="📋",
                roles=(Role.REQUIREMENTS, Role.SPEC),
                position=1,
                description="Define requirements and design simultaneously",
                merged=True,
            ),
            Column(
                id="implement",
                display_name="🎯 Implementation",
                emoji="🎯",
                roles=(Role.IMPLEMENTATION,),
                position=2,
                description="Code feature with full test coverage",
            ),
            Column(
                id="merge",
                display_name="✅ Testing & Merge",
                emoji="✅",
                roles=(Role.TESTING,),
                position=3,
                description="Run tests and merge to main",
                merged=True,
            ),
        ),
    },
    2: {
        "mode": TEAM_MODE,
        "description": "Two developers - split specialized work",
        "columns": (
            _REQUIREMENTS,
            Column(
                id="spec-impl",
                display_name="📋 Design & Implement",
                emoji="📋",
                roles=(Role.SPEC, Role.IMPLEMENTATION),
                position=2,
                description="Design architecture and code feature",
                merged=True,
            ),
            Column(
                id="testing",
                display_name="✅ Testing & Merge",
                emoji="✅",
                roles=(Role.TESTING,),
                position=3,
                description="Validate and merge to main",
                fallback_roles=(Role.REQUIREMENTS,),
            ),
        ),
    },
    3: {
        "mode": TEAM_MODE,
        "description": "Three developers - specialized roles",
        "columns": (
            _REQUIREMENTS,
            _SPEC,
            Column(
                id="implement",
                display_name="🎯 Implementation",
                emoji="🎯",
                roles=(Role.IMPLEMENTATION,),
                position=3,
                description="Code features with test coverage",
            ),
            Column(
                id="testing",
                display_name="✅ Testing & Merge",
                emoji="✅",
                roles=(Role.TESTING,),
                position=4,
                description="Validate quality and merge",
                fallback_roles=(Role.REQUIREMENTS,),
            ),
        ),
    },
    4: {
        "mode": TEAM_MODE,
        "description": "Full pack - all specialized roles",
        "columns": (
            _REQUIREMENTS,
            _SPEC,
            Column(
                id="implement",
                display_name="🎯 Implementation",
                emoji="🎯",
                roles=(Role.IMPLEMENTATION,),
                position=3,
                description="Code features with full coverage",
            ),
            Column(
                id="testing",
                display_name="✅ Testing & Review",
                emoji="✅",
                roles=(Role.TESTING,),
                position=4,
                description="Validate quality and approvals",
            ),
            Column(
                id="deploy",
                display_name="🚀 Deploy",
                emoji="🚀",
                roles=(),
                position=5,
                description="Final merge and deployment",
                optional=True,
            ),
        ),
    },
}

_RECOMMENDATIONS: Dict[int, List[str]] = {
    1: [
        "✓ Solo mode: Merged roles for maximum speed",
        "✓ Minimum columns: Focus on delivery",
        "→ Can upgrade to team mode as you grow",
    ],
    2: [
        "✓ Efficient pair: Clear role separation",
        "✓ Daily sync recommended",
        "→ Critical: Spec-to-Implementation handoff",
    ],
    3: [
        "✓ Balanced pack: Good parallelization",
        "✓ Typical bottleneck: Implementation phase",
        "→ Consider adding fourth member for faster delivery",
    ],
    4: [
        "✓ Full pack: All specializations active",
        "✓ Maximum parallelization achieved",
        "→ Optimal for complex features",
    ],
}


def _member_fields(member: Any) -> Tuple[str, Optional[Role]]:
    if isinstance(member, TeamMember):
        return member.username, Role.parse(member.role)
    if isinstance(member, Mapping):
        return member["username"], Role.parse(member.get("role"))
    raise TypeError(f"Unsupported member type: {type(member).__name__}")


class WorkflowTopology:
    """Derive board columns and assignments from a team size."""

    @staticmethod
    def validate_team_size(team_size: Any) -> int:
        if isinstance(team_size, bool) or not isinstance(team_size, int):
            raise InvalidTeamSize(team_size)
        if team_size not in TOPOLOGIES:
            raise InvalidTeamSize(team_size)
        return team_size

    @classmethod
    def get_config(cls, team_size: int) -> Dict[str, Any]:
        return TOPOLOGIES[cls.validate_team_size(team_size)]

    @classmethod
    def get_mode(cls, team_size: int) -> str:
        return cls.get_config(team_size)["mode"]

    @classmethod
    def get_columns(cls, team_size: int) -> List[Column]:
        """Return the board columns for a team size, ordered by position."""
        columns = cls.get_config(team_size)["columns"]
        return sorted(columns, key=lambda column: column.position)

    @classmethod
    def get_column_sequence(cls, team_size: int) -> List[str]:
        """Return the ordered column ids a hunt moves through."""
        return [column.id for column in cls.get_columns(team_size)]

    @classmethod
    def get_column(cls, team_size: int, column_id: str) -> Column:
        for column in cls.get_columns(team_size):
            if column.id == column_id:
                return column
        raise UnknownColumn(column_id, team_size)

    @classmethod
    def get_roles_for_column(cls, team_size: int, column_id: str) -> List[Role]:
        return list(cls.get_column(team_size, column_id).roles)

    @classmethod
    def get_first_column(cls, team_size: int) -> str:
        return cls.get_column_sequence(team_size)[0]

    @classmethod
    def get_next_column(cls, team_size: int, column_id: str) -> Optional[str]:
        """Return the column after ``column_id``, or None at the end of the board."""
        sequence = cls.get_column_sequence(team_size)
        if column_id not in sequence:
            raise UnknownColumn(column_id, team_size)
        index = sequence.index(column_id)
        if index == len(sequence) - 1:
            return None
        return sequence[index + 1]

    @classmethod
    def is_terminal(cls, team_size: int, column_id: str) -> bool:
        """True when every column after ``column_id`` is optional."""
        sequence = cls.get_column_sequence(team_size)
        if column_id not in sequence:
            raise UnknownColumn(column_id, team_size)
        remaining = cls.get_columns(team_size)[sequence.index(column_id) + 1:]
        return all(column.optional for column in remaining)

    @classmethod
    def map_members_to_columns(cls, team_size: int, members: Iterable[Any]) -> Dict[str, str]:
        """Map each staffed column id to the username working it.

        Members may be ``TeamMember`` objects or ``{"username", "role"}``
        mappings. A solo developer staffs every column. Larger teams staff a
        column with the member holding one of its roles, falling back to the
        column's ``fallback_roles``. Columns without roles stay unmapped.
        """
        columns = cls.get_columns(team_size)
        members = list(members)
        if len(members) != team_size:
            raise RoleCountMismatch(len(members), team_size)

        fields = [_member_fields(member) for member in members]

        if team_size == 1:
            username = fields[0][0]
            return {column.id: username for column in columns if column.roles}

        by_role = {role: username for username, role in fields if role is not None}
        mapping: Dict[str, str] = {}
        for column in columns:
            if not column.roles:
                continue
            for role in column.roles + column.fallback_roles:
                if role in by_role:
                    mapping[column.id] = by_role[role]
                    break
        return mapping

    @classmethod
    def roles_for_phase(cls, phase: str, team_size: Optional[int] = None) -> List[Role]:
        """Resolve the roles a recorded phase counts towards.

        Uses the hunt's own topology when its team size is known, then a
        plain role name, then the first topology that defines the column.
        Unknown phases count towards no role.
        """
        if team_size in TOPOLOGIES:
            for column in TOPOLOGIES[team_size]["columns"]:
                if column.id == phase:
                    return list(column.roles)

        role = Role.parse(phase)
        if role is not None:
            return [role]

        for size in sorted(TOPOLOGIES):
            for column in TOPOLOGIES[size]["columns"]:
                if column.id == phase:
                    return list(column.roles)
        return []

    @classmethod
    def describe_column(cls, phase: str, team_size: Optional[int] = None) -> Optional[Column]:
        """Find the column definition for a phase id, if any topology has it."""
        sizes = [team_size] if team_size in TOPOLOGIES else []
        sizes.extend(size for size in sorted(TOPOLOGIES) if size != team_size)
        for size in sizes:
            for column in TOPOLOGIES[size]["columns"]:
                if column.id == phase:
                    return column
        return None

    @classmethod
    def get_recommendations(cls, team_size: int) -> Dict[str, Any]:
        """Summarize the workflow shape and give advice for the team size."""
        config = cls.get_config(team_size)
        columns = cls.get_columns(team_size)
        return {
            "team_size": team_size,
            "mode": config["mode"],
            "column_count": len(columns),
            "description": config["description"],
            "parallelizable": [c.display_name for c in columns if len(c.roles) > 1],
            "recommendations": list(_RECOMMENDATIONS[team_size]),
        }

    @classmethod
    def get_board_setup(cls, team_size: int, members: Iterable[Any]) -> Dict[str, Any]:
        """Board columns with assignees and ordered setup steps."""
        config = cls.get_config(team_size)
        columns = cls.get_columns(team_size)
        mapping = cls.map_members_to_columns(team_size, members)

        setup = [
            "1. Create a project board for your repository",
            f"2. Create {len(columns)} columns with these names:",
        ]
        setup.extend(f"   - {column.display_name}" for column in columns)
        setup.append("3. Set column automation:")
        setup.extend(f"   - {column.id}: Move to column on workflow change" for column in columns)
        setup.append("4. Assign team members to columns:")
        setup.extend(
            f"   - {column.display_name}: {mapping[column.id]}"
            for column in columns
            if column.id in mapping
        )

        return {
            "team_size": team_size,
            "mode": config["mode"],
            "column_count": len(columns),
            "columns": [
                {
                    "id": column.id,
                    "name": column.display_name,
                    "description": column.description,
                    "assignee": mapping.get(column.id, "Unassigned"),
                    "roles": [role.value for role in column.roles],
                    "optional": column.optional,
                }
                for column in columns
            ],
            "setup": setup,
        }
