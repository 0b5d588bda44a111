"""Team analytics for PackHunt.

The engine works on metric snapshots recorded from hunts, never on the
registry itself, so a report can be computed from a live registry, a copy
of it or a persisted hunts file alike. Missing fields in a snapshot count
as zero or empty; nothing here raises for incomplete data.
"""

from __future__ import annotations

import json
import logging
import statistics
from collections.abc import Mapping
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .errors import StorageError, ValidationError
from .hunt import HuntCycle
from .models import (
    Role,
    format_timestamp,
    parse_timestamp,
    role_name,
    round_half_up,
    utc_now,
)
from .packhunt_logging import log_performance
from .topology import WorkflowTopology

logger = logging.getLogger("packhunt.analytics")

DAYS_PER_MONTH = 30
BOTTLENECK_FACTOR = 1.5
IMPROVING_PERCENT = 90
DECLINING_PERCENT = 110
LOW_VELOCITY_PER_MONTH = 5
OVERUTILIZED_TASKS = 10

TREND_IMPROVING = "improving"
TREND_DECLINING = "declining"
TREND_STABLE = "stable"
TREND_INSUFFICIENT = "insufficient data"

_TREND_LABELS = {
    TREND_IMPROVING: "📈 improving",
    TREND_DECLINING: "📉 declining",
    TREND_STABLE: "➡️ stable",
    TREND_INSUFFICIENT: "insufficient data",
}


def _number(value: Any) -> float:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    return 0


def _average(numbers: List[float]) -> int:
    if not numbers:
        return 0
    return round_half_up(sum(numbers) / len(numbers))


def _median(numbers: List[float]) -> float:
    if not numbers:
        return 0
    return statistics.median(numbers)


class AnalyticsEngine:
    """Collect hunt metrics and compute pack performance statistics."""

    def __init__(self, pack_name: str):
        self.pack_name = pack_name
        self.metrics: List[Dict[str, Any]] = []

    @classmethod
    def from_hunts(cls, pack_name: str, hunts: Iterable[Any]) -> "AnalyticsEngine":
        engine = cls(pack_name)
        for hunt in hunts:
            engine.record_hunt_metrics(hunt)
        return engine

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def record_hunt_metrics(self, hunt: Any) -> Dict[str, Any]:
        """Append a metric snapshot of ``hunt``.

        Accepts a ``HuntCycle`` or a persisted hunt entry. Recording the same
        hunt twice counts it twice.
        """
        if isinstance(hunt, HuntCycle):
            data = hunt.to_dict()
            total = hunt.get_total_duration()
        elif isinstance(hunt, Mapping):
            data = hunt
            metrics = data.get("metrics") if isinstance(data.get("metrics"), Mapping) else {}
            total = data.get("totalDurationMinutes", data.get("totalDuration", metrics.get("totalDuration")))
        else:
            data = {}
            total = 0

        team_size = data.get("teamSize")
        history = data.get("phaseHistory")
        phases = []
        for record in history if isinstance(history, list) else []:
            if not isinstance(record, Mapping) or not record.get("phase"):
                continue
            duration = record.get("duration")
            phases.append({
                "phase": record["phase"],
                "roles": [role.value for role in WorkflowTopology.roles_for_phase(record["phase"], team_size)],
                "assignee": record.get("assignee"),
                "duration": duration if isinstance(duration, (int, float)) and not isinstance(duration, bool) else None,
                "startTime": record.get("startTime"),
                "endTime": record.get("endTime"),
            })

        metric = {
            "huntId": data.get("id"),
            "feature": data.get("featureName"),
            "status": data.get("status"),
            "teamSize": team_size,
            "startedAt": data.get("startedAt"),
            "completedAt": data.get("completedAt"),
            "totalDuration": _number(total),
            "phases": phases,
        }
        self.metrics.append(metric)
        return metric

    def _completed(self) -> List[Dict[str, Any]]:
        return [m for m in self.metrics if m.get("status") == "completed"]

    @staticmethod
    def _phases(metric: Dict[str, Any]) -> List[Dict[str, Any]]:
        phases = metric.get("phases")
        if isinstance(phases, Mapping):
            # older documents key phase snapshots by phase id
            phases = [{"phase": key, **value} for key, value in phases.items() if isinstance(value, Mapping)]
        if not isinstance(phases, list):
            return []
        return [phase for phase in phases if isinstance(phase, Mapping)]

    def _role_durations(self, closed_only: bool) -> Dict[Role, List[float]]:
        durations: Dict[Role, List[float]] = {role: [] for role in Role.sequence()}
        for metric in self.metrics:
            for phase in self._phases(metric):
                duration = phase.get("duration")
                if closed_only and duration is None:
                    continue
                roles = phase.get("roles")
                if not isinstance(roles, list):
                    roles = [r.value for r in WorkflowTopology.roles_for_phase(phase.get("phase", ""), metric.get("teamSize"))]
                for role_id in roles:
                    role = Role.parse(role_id)
                    if role is not None:
                        durations[role].append(_number(duration))
        return durations

    # ------------------------------------------------------------------
    # Computations
    # ------------------------------------------------------------------

    def get_pack_velocity(self, months: float = 1, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Completed-hunt throughput over the trailing ``months`` window."""
        if months <= 0:
            raise ValidationError(f"months must be positive, got: {months}")

        now = parse_timestamp(now) if now is not None else utc_now()
        window_days = months * DAYS_PER_MONTH
        cutoff = now - timedelta(days=window_days)

        recent = []
        for metric in self._completed():
            completed_at = parse_timestamp(metric.get("completedAt"))
            if completed_at is not None and completed_at >= cutoff:
                recent.append((completed_at, metric))
        recent.sort(key=lambda item: item[0])
        durations = [_number(metric.get("totalDuration")) for _, metric in recent]

        per_day = len(recent) / window_days
        return {
            "period": f"{months} month(s)",
            "hunts_completed": len(recent),
            "hunts_per_day": round(per_day, 2),
            "hunts_per_week": round(per_day * 7, 2),
            "hunts_per_month": round(per_day * DAYS_PER_MONTH, 2),
            "avg_hunt_duration": _average(durations),
            "trend": self._calculate_trend(durations),
        }

    @staticmethod
    def _calculate_trend(durations: List[float]) -> str:
        """Compare average duration of the later half against the earlier half."""
        if len(durations) < 2:
            return TREND_INSUFFICIENT

        middle = len(durations) // 2
        # Half averages scaled to a common denominator.
        first = sum(durations[:middle]) * (len(durations) - middle)
        second = sum(durations[middle:]) * middle

        if second == first:
            return TREND_STABLE
        if second * 100 <= first * IMPROVING_PERCENT:
            return TREND_IMPROVING
        if second * 100 >= first * DECLINING_PERCENT:
            return TREND_DECLINING
        return TREND_STABLE

    def get_role_utilization(self) -> Dict[str, Dict[str, Any]]:
        """Phase counts and time per role, open phases included."""
        utilization = {}
        for role, durations in self._role_durations(closed_only=False).items():
            total = sum(durations)
            utilization[role.value] = {
                "role": role_name(role),
                "tasks_completed": len(durations),
                "total_time": total,
                "average_time": _average(durations),
            }
        return utilization

    def get_quality_metrics(self) -> Dict[str, Any]:
        """Duration statistics over completed hunts."""
        totals = [_number(metric.get("totalDuration")) for metric in self._completed()]
        return {
            "hunts_completed": len(totals),
            "average_duration": _average(totals),
            "fastest_hunt": min(totals) if totals else 0,
            "slowest_hunt": max(totals) if totals else 0,
            "median_duration": _median(totals),
        }

    def get_phase_analysis(self) -> Dict[str, Dict[str, Any]]:
        """Per-role statistics over closed phase records."""
        analysis = {}
        for role, durations in self._role_durations(closed_only=True).items():
            analysis[role.value] = {
                "phase": role_name(role),
                "count": len(durations),
                "total_time": sum(durations),
                "average_time": _average(durations),
                "min_time": min(durations) if durations else 0,
                "max_time": max(durations) if durations else 0,
            }
        return analysis

    def identify_bottlenecks(self) -> List[Dict[str, Any]]:
        """Roles averaging more than 1.5x the mean of all role averages.

        Only roles with at least one closed phase take part.
        """
        averages = {
            role: sum(durations) / len(durations)
            for role, durations in self._role_durations(closed_only=True).items()
            if durations
        }
        if not averages:
            return []

        overall = sum(averages.values()) / len(averages)
        if overall <= 0:
            return []

        bottlenecks = []
        for role, average in averages.items():
            if average > overall * BOTTLENECK_FACTOR:
                slower = round_half_up(average / overall * 100 - 100)
                bottlenecks.append({
                    "role": role.value,
                    "role_name": role_name(role),
                    "average_time": round_half_up(average),
                    "severity": "high",
                    "recommendation": (
                        f"{role_name(role)} is {slower}% slower than average. "
                        "Consider pairing or additional resources."
                    ),
                })
        return bottlenecks

    def get_overview(self) -> Dict[str, Any]:
        """Headline numbers for the dashboard."""
        completed = self._completed()
        return {
            "total_hunts": len(self.metrics),
            "completed_hunts": len(completed),
            "active_hunts": len(self.metrics) - len(completed),
            "blocked_hunts": sum(1 for m in self.metrics if m.get("status") == "blocked"),
            "average_duration": _average([_number(m.get("totalDuration")) for m in completed]),
            "timestamp": format_timestamp(),
        }

    def get_hunt_analytics(self) -> List[Dict[str, Any]]:
        """One row per recorded hunt."""
        return [
            {
                "hunt_id": metric.get("huntId"),
                "feature": metric.get("feature"),
                "status": metric.get("status"),
                "phases": len(self._phases(metric)),
                "duration": _number(metric.get("totalDuration")),
                "started_at": metric.get("startedAt"),
                "completed_at": metric.get("completedAt"),
            }
            for metric in self.metrics
        ]

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    @log_performance("generate_team_report")
    def generate_team_report(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Bundle every statistic into one report."""
        velocity = self.get_pack_velocity(1, now=now)
        utilization = self.get_role_utilization()
        bottlenecks = self.identify_bottlenecks()
        completed = len(self._completed())

        return {
            "timestamp": format_timestamp(now),
            "pack_name": self.pack_name,
            "summary": {
                "total_hunts": len(self.metrics),
                "completed_hunts": completed,
                "active_hunts": len(self.metrics) - completed,
            },
            "velocity": velocity,
            "utilization": utilization,
            "quality": self.get_quality_metrics(),
            "phase_analysis": self.get_phase_analysis(),
            "bottlenecks": bottlenecks,
            "recommendations": self._generate_recommendations(velocity, utilization, bottlenecks),
        }

    @staticmethod
    def _generate_recommendations(
        velocity: Dict[str, Any],
        utilization: Dict[str, Dict[str, Any]],
        bottlenecks: List[Dict[str, Any]],
    ) -> List[str]:
        recommendations = []
        if velocity["hunts_per_month"] < LOW_VELOCITY_PER_MONTH:
            recommendations.append("📌 Velocity is low. Consider analyzing blockers and optimizing handoffs.")
        if bottlenecks:
            recommendations.append("⚠️ Identified bottlenecks. See section above for recommendations.")
        if any(stat["tasks_completed"] > OVERUTILIZED_TASKS for stat in utilization.values()):
            recommendations.append("👥 Some roles are overutilized. Consider role rotation or team expansion.")
        return recommendations

    @staticmethod
    def format_report_as_markdown(report: Dict[str, Any]) -> str:
        """Render a team report as a markdown document."""
        velocity = report.get("velocity", {})
        quality = report.get("quality", {})
        summary = report.get("summary", {})

        lines = [
            "# 🦁 PackHunt Team Report",
            "",
            f"**Pack:** {report.get('pack_name', '')}",
            f"**Generated:** {report.get('timestamp', '')}",
            "",
            "## 📊 Summary",
            "",
            f"- Total Hunts: {summary.get('total_hunts', 0)}",
            f"- Completed: {summary.get('completed_hunts', 0)}",
            "",
            "## 🚀 Velocity",
            "",
            f"- Hunts/Month: **{velocity.get('hunts_per_month', 0):.2f}**",
            f"- Avg Duration: {velocity.get('avg_hunt_duration', 0)} min",
            f"- Trend: {_TREND_LABELS.get(velocity.get('trend'), velocity.get('trend', ''))}",
            "",
            "## ✨ Quality",
            "",
            f"- Avg Duration: {quality.get('average_duration', 0)} min",
            f"- Median: {quality.get('median_duration', 0)} min",
            f"- Fastest: {quality.get('fastest_hunt', 0)} min",
            f"- Slowest: {quality.get('slowest_hunt', 0)} min",
            "",
            "## 👥 Role Utilization",
            "",
            "| Role | Tasks | Avg Time | Total Time |",
            "|------|-------|----------|------------|",
        ]
        for stat in report.get("utilization", {}).values():
            lines.append(
                f"| {stat['role']} | {stat['tasks_completed']} | {stat['average_time']}m | {stat['total_time']}m |"
            )
        lines.append("")

        phase_analysis = report.get("phase_analysis", {})
        if any(p["count"] for p in phase_analysis.values()):
            lines.extend([
                "## ⏱️ Phase Durations",
                "",
                "| Phase | Count | Avg | Min | Max |",
                "|-------|-------|-----|-----|-----|",
            ])
            for p in phase_analysis.values():
                lines.append(
                    f"| {p['phase']} | {p['count']} | {p['average_time']}m | {p['min_time']}m | {p['max_time']}m |"
                )
            lines.append("")

        bottlenecks = report.get("bottlenecks", [])
        if bottlenecks:
            lines.extend(["## ⚠️ Bottlenecks", ""])
            for b in bottlenecks:
                lines.append(f"- **{b['role_name']}** ({b['severity']}): {b['recommendation']}")
            lines.append("")

        recommendations = report.get("recommendations", [])
        if recommendations:
            lines.extend(["## 💡 Recommendations", ""])
            lines.extend(f"- {rec}" for rec in recommendations)
            lines.append("")

        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path | str) -> Path:
        """Write the recorded metrics to an analytics document."""
        path = Path(path)
        document = {
            "packName": self.pack_name,
            "metrics": self.metrics,
            "generatedAt": format_timestamp(),
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(document, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Could not write analytics to {path}: {e}") from e
        return path

    @classmethod
    def load(cls, pack_name: str, path: Path | str) -> "AnalyticsEngine":
        """Read an analytics document; a missing or unreadable one yields no metrics."""
        engine = cls(pack_name)
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return engine
        except json.JSONDecodeError as e:
            logger.warning(f"Could not load analytics from {path}: {e}")
            return engine
        except OSError as e:
            raise StorageError(f"Could not read analytics from {path}: {e}") from e

        metrics = data.get("metrics") if isinstance(data, dict) else None
        engine.metrics = [m for m in metrics if isinstance(m, dict)] if isinstance(metrics, list) else []
        return engine
