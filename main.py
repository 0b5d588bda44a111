"""MCP server exposing PackHunt hunt tracking and team analytics tools."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from mcp.server.fastmcp import FastMCP

from packhunt import (
    AnalyticsEngine,
    HuntError,
    HuntRegistry,
    TeamRoster,
    WorkflowTopology,
)
from packhunt.packhunt_logging import log_error_with_context, setup_logging
from packhunt.storage import ANALYTICS_FILENAME, DEFAULT_STORAGE_DIR, TEAM_FILENAME, resolve_storage_dir

mcp = FastMCP("packhunt")

logger = logging.getLogger("packhunt.server")

PROJECT_ROOT_ENV = "PACKHUNT_PROJECT_ROOT"


def _candidate_bases() -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd]
    bases.extend(cwd.parents)
    seen: set[Path] = set()
    ordered: List[Path] = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def _locate_project_root() -> Optional[Path]:
    marker = os.getenv("PACKHUNT_STORAGE_DIR") or DEFAULT_STORAGE_DIR
    for base in _candidate_bases():
        if (base / marker).exists():
            return base
    return None


def _resolve_root(root: Optional[str]) -> Path:
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = _locate_project_root()
    if detected_root:
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )


def _roster(root: Path) -> TeamRoster:
    return TeamRoster.load(resolve_storage_dir(root) / TEAM_FILENAME)


def _registry(root: Path, roster: Optional[TeamRoster] = None) -> HuntRegistry:
    roster = roster or _roster(root)
    return HuntRegistry.open(roster.pack_name, root)


def _respond(operation: str, action: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
    """Run a tool body, turning PackHunt errors into status-coded payloads."""
    try:
        return action()
    except HuntError as e:
        if e.status_code >= 500:
            log_error_with_context(e, {"operation": operation})
        else:
            logger.info(f"{operation} rejected: {e}")
        return e.to_dict()


# ------------------------------------------------------------------
# Team setup
# ------------------------------------------------------------------

@mcp.tool()
def init_pack(pack_name: str, members: List[Dict[str, str]], root: Optional[str] = None) -> Dict[str, Any]:
    """Create or replace the pack's team configuration.
    `members` is a list of {"username", "role"} entries with roles from
    requirements, spec, implementation, testing. The member count (1-4)
    selects the workflow board."""

    def action() -> Dict[str, Any]:
        resolved = _resolve_root(root)
        roster = TeamRoster(pack_name)
        for member in members:
            roster.add_member(member["username"], member.get("role", ""))
        team_size = roster.validate()
        path = roster.save(resolve_storage_dir(resolved) / TEAM_FILENAME)
        return {
            "team_path": str(path),
            "pack": roster.to_dict(),
            "workflow": WorkflowTopology.get_recommendations(team_size),
            "board": WorkflowTopology.get_board_setup(team_size, roster.members),
            "next_suggested_step": "start_hunt",
        }

    return _respond("init_pack", action)


@mcp.tool()
def get_workflow(team_size: Optional[int] = None, root: Optional[str] = None) -> Dict[str, Any]:
    """Describe the workflow board for a team size, or for the configured pack."""

    def action() -> Dict[str, Any]:
        if team_size is not None:
            return {
                "columns": [c.to_dict() for c in WorkflowTopology.get_columns(team_size)],
                **WorkflowTopology.get_recommendations(team_size),
            }
        roster = _roster(_resolve_root(root))
        size = roster.validate()
        return {
            "columns": [c.to_dict() for c in roster.get_columns()],
            "assignments": roster.column_assignments(),
            **WorkflowTopology.get_recommendations(size),
        }

    return _respond("get_workflow", action)


# ------------------------------------------------------------------
# Hunts
# ------------------------------------------------------------------

@mcp.tool()
def start_hunt(
    feature_name: str,
    description: str = "",
    owner: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Start a hunt on the first column of the pack's board."""

    def action() -> Dict[str, Any]:
        resolved = _resolve_root(root)
        roster = _roster(resolved)
        hunt = _registry(resolved, roster).start_hunt(feature_name, description, roster, owner=owner)
        return {
            "hunt": hunt.to_dict(),
            "next_suggested_step": "advance_hunt",
            "message": f"Hunt {hunt.id} started in {hunt.current_phase} with {hunt.current_role}",
        }

    return _respond("start_hunt", action)


@mcp.tool()
def list_hunts(
    owner: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """List hunts, optionally filtered by owner and status, with paging."""

    def action() -> Dict[str, Any]:
        hunts = _registry(_resolve_root(root)).list_hunts(owner=owner, status=status, limit=limit, offset=offset)
        return {"hunts": hunts, "count": len(hunts)}

    return _respond("list_hunts", action)


@mcp.tool()
def get_hunt(hunt_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return a hunt with its handoff summary and total duration so far."""

    def action() -> Dict[str, Any]:
        hunt = _registry(_resolve_root(root)).require_hunt(hunt_id)
        return {
            "hunt": hunt.to_dict(),
            "duration": hunt.get_total_duration(),
            "progress": hunt.progress(),
            "handoff": hunt.handoff_summary(),
        }

    return _respond("get_hunt", action)


@mcp.tool()
def get_hunt_timeline(hunt_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return the phase timeline of a hunt."""

    def action() -> Dict[str, Any]:
        return {"hunt_id": hunt_id, "phases": _registry(_resolve_root(root)).get_hunt_timeline(hunt_id)}

    return _respond("get_hunt_timeline", action)


@mcp.tool()
def transition_hunt(
    hunt_id: str,
    next_phase: str,
    next_assignee: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """Hand a hunt to the next column. `next_phase` must directly follow the current column."""

    def action() -> Dict[str, Any]:
        hunt = _registry(_resolve_root(root)).transition_hunt(hunt_id, next_phase, next_assignee)
        return {"hunt": hunt.to_dict(), "handoff": hunt.handoff_summary()}

    return _respond("transition_hunt", action)


@mcp.tool()
def advance_hunt(hunt_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Move a hunt to its next column, assigned to the member who works it."""

    def action() -> Dict[str, Any]:
        resolved = _resolve_root(root)
        roster = _roster(resolved)
        hunt = _registry(resolved, roster).advance_hunt(hunt_id, roster)
        return {"hunt": hunt.to_dict(), "handoff": hunt.handoff_summary()}

    return _respond("advance_hunt", action)


@mcp.tool()
def complete_hunt(hunt_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Close the final phase of a hunt and mark it completed."""

    def action() -> Dict[str, Any]:
        hunt = _registry(_resolve_root(root)).complete_hunt(hunt_id)
        return {
            "hunt": hunt.to_dict(),
            "duration": hunt.get_total_duration(),
            "completed": True,
        }

    return _respond("complete_hunt", action)


@mcp.tool()
def block_hunt(hunt_id: str, reason: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Park an active hunt as blocked."""

    def action() -> Dict[str, Any]:
        return {"hunt": _registry(_resolve_root(root)).block_hunt(hunt_id, reason).to_dict()}

    return _respond("block_hunt", action)


@mcp.tool()
def unblock_hunt(hunt_id: str, root: Optional[str] = None) -> Dict[str, Any]:
    """Return a blocked hunt to active."""

    def action() -> Dict[str, Any]:
        return {"hunt": _registry(_resolve_root(root)).unblock_hunt(hunt_id).to_dict()}

    return _respond("unblock_hunt", action)


# ------------------------------------------------------------------
# Analytics
# ------------------------------------------------------------------

def _analytics(registry: HuntRegistry) -> AnalyticsEngine:
    return AnalyticsEngine.from_hunts(registry.pack_name, registry.snapshot())


@mcp.tool()
def get_statistics(root: Optional[str] = None) -> Dict[str, Any]:
    """Hunt counts and average completed duration."""

    return _respond("get_statistics", lambda: _registry(_resolve_root(root)).get_statistics())


@mcp.tool()
def get_analytics(root: Optional[str] = None) -> Dict[str, Any]:
    """Dashboard overview plus one analytics row per hunt."""

    def action() -> Dict[str, Any]:
        engine = _analytics(_registry(_resolve_root(root)))
        return {"overview": engine.get_overview(), "hunts": engine.get_hunt_analytics()}

    return _respond("get_analytics", action)


@mcp.tool()
def get_team_report(format: str = "markdown", save: bool = False, root: Optional[str] = None) -> Dict[str, Any]:
    """Velocity, utilization, quality and bottleneck report for the pack.
    `format` is "markdown" or "json"; `save` also writes the metrics document."""

    def action() -> Dict[str, Any]:
        resolved = _resolve_root(root)
        engine = _analytics(_registry(resolved))
        report = engine.generate_team_report()
        result: Dict[str, Any] = {"report": report}
        if format == "markdown":
            result["markdown"] = engine.format_report_as_markdown(report)
        if save:
            result["analytics_path"] = str(engine.save(resolve_storage_dir(resolved) / ANALYTICS_FILENAME))
        return result

    return _respond("get_team_report", action)


@mcp.resource("packhunt://hunts")
def resource_hunts() -> str:
    """Resource view listing the pack's hunts."""

    try:
        registry = _registry(_resolve_root(None))
    except (ValueError, HuntError) as e:
        return f"No pack detected: {e}"

    hunts = registry.list_hunts()
    if not hunts:
        return "No hunts have been started yet."

    lines = [f"PackHunt hunts for {registry.pack_name}"]
    for hunt in hunts:
        lines.append("")
        lines.append(f"- {hunt['id']}: {hunt['featureName']} [{hunt['status']}]")
        lines.append(f"  Phase: {hunt['currentPhase']} ({hunt['currentRole']}), {hunt['progress']}% done")
    return "\n".join(lines)


if __name__ == "__main__":
    setup_logging()
    mcp.run(transport="stdio")
