"""Unit tests for the PackHunt team roster."""

import json
import logging
import tempfile
from pathlib import Path

import pytest

from packhunt.errors import InvalidRoster, InvalidTeamSize, StorageError, UnknownColumn
from packhunt.models import Role
from packhunt.roster import TeamRoster


@pytest.fixture
def trio():
    roster = TeamRoster("wolves")
    roster.add_member("alice", "requirements")
    roster.add_member("bob", Role.SPEC)
    roster.add_member("carol", "implementation")
    return roster


class TestMembership:
    """Test cases for adding and changing members."""

    def test_add_member(self, trio):
        """Test members are added with parsed roles."""
        assert trio.team_size == 3
        assert trio.get_member_by_role("spec").username == "bob"
        assert trio.get_member_by_username("carol").role is Role.IMPLEMENTATION

    def test_add_member_logs_role_value(self, caplog):
        """Test the join message names the role by its value."""
        roster = TeamRoster("wolves")

        with caplog.at_level(logging.INFO, logger="packhunt.roster"):
            roster.add_member("alice", "requirements")

        assert "Added alice to pack wolves as requirements" in caplog.text
        assert "Role." not in caplog.text

    def test_duplicate_role(self, trio):
        """Test a role can only be held once."""
        with pytest.raises(InvalidRoster, match="already held by bob"):
            trio.add_member("erin", "spec")

    def test_duplicate_username(self, trio):
        """Test a username can only appear once."""
        with pytest.raises(InvalidRoster):
            trio.add_member("alice", "testing")

    def test_unknown_role(self):
        """Test unknown roles are rejected."""
        roster = TeamRoster("wolves")

        with pytest.raises(InvalidRoster, match="Invalid role"):
            roster.add_member("alice", "wizard")

    def test_fifth_member(self, trio):
        """Test a pack cannot grow beyond four members."""
        trio.add_member("dave", "testing")

        with pytest.raises(InvalidTeamSize):
            trio.add_member("erin", "requirements")

    def test_remove_member(self, trio):
        """Test removing a member shrinks the pack."""
        removed = trio.remove_member("bob")

        assert removed.username == "bob"
        assert trio.team_size == 2
        with pytest.raises(InvalidRoster):
            trio.remove_member("bob")

    def test_assign_role(self, trio):
        """Test moving a member to a free role."""
        trio.assign_role("carol", "testing")

        assert trio.get_member_by_role(Role.TESTING).username == "carol"
        assert trio.get_member_by_role(Role.IMPLEMENTATION) is None

    def test_assign_taken_role(self, trio):
        """Test a held role cannot be assigned to someone else."""
        with pytest.raises(InvalidRoster):
            trio.assign_role("carol", "spec")


class TestTopology:
    """Test cases for the roster's board."""

    def test_empty_roster_is_invalid(self):
        """Test an empty pack has no workflow."""
        with pytest.raises(InvalidTeamSize):
            TeamRoster("wolves").validate()

    def test_columns_follow_team_size(self, trio):
        """Test the board matches the pack size."""
        assert trio.validate() == 3
        assert trio.get_column_sequence() == ["requirements", "spec", "implement", "testing"]

    def test_first_and_next_assignment(self, trio):
        """Test who works the first and following columns."""
        assert trio.first_assignment() == ("requirements", "alice")
        assert trio.next_assignment("spec") == ("implement", "carol")
        assert trio.next_assignment("implement") == ("testing", "alice")
        assert trio.next_assignment("testing") is None

    def test_assignee_for_unknown_column(self, trio):
        """Test asking for a column outside the board fails."""
        with pytest.raises(UnknownColumn):
            trio.assignee_for("deploy")


class TestPersistence:
    """Test cases for the team configuration file."""

    def test_save_and_load(self, trio):
        """Test a roster survives a save and load."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = trio.save(Path(temp_dir) / ".packhunt" / "team.json")

            loaded = TeamRoster.load(path)

            assert loaded.pack_name == "wolves"
            assert [m.username for m in loaded.members] == ["alice", "bob", "carol"]
            assert loaded.to_dict() == trio.to_dict()

    def test_load_missing_file(self):
        """Test loading before the pack is initialized."""
        with tempfile.TemporaryDirectory() as temp_dir:
            with pytest.raises(StorageError, match="Pack not initialized"):
                TeamRoster.load(Path(temp_dir) / "team.json")

    def test_load_invalid_json(self):
        """Test a corrupt team file raises StorageError."""
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "team.json"
            path.write_text("{not json", encoding="utf-8")

            with pytest.raises(StorageError):
                TeamRoster.load(path)

    def test_document_shape(self, trio):
        """Test the stored team document uses camelCase keys."""
        data = json.loads(json.dumps(trio.to_dict()))

        assert data["packName"] == "wolves"
        assert data["members"][0] == {
            "username": "alice",
            "role": "requirements",
            "joinedAt": trio.members[0].joined_at,
        }
