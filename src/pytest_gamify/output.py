"""Terminal reporter and structured output for a gamified build."""

from __future__ import annotations

import json

from pytest_gamify import constants
from pytest_gamify.lifecycle import Project
from pytest_gamify.models import BuildSummary, UserSummary


def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _user_line(user: UserSummary) -> str:
    if user.failed:
        return f"  {user.user_id:<30s} FAILED (see log)"
    parts = [
        f"{user.solved} solved",
        f"{user.generated} new",
    ]
    if user.unsolvable:
        parts.append(f"{user.unsolvable} unsolvable")
    if user.quests_solved or user.quest_steps_solved:
        parts.append(f"{user.quest_steps_solved} quest steps ({user.quests_solved} quests) solved")
    return f"  {user.user_id:<30s} {', '.join(parts)}  score {user.score}"


def format_terminal_report(summary: BuildSummary) -> str:
    """Format a terminal-friendly summary of the build's game results."""
    lines: list[str] = []

    lines.append("")
    lines.append("=" * 70)
    lines.append("gamify challenges")
    lines.append("=" * 70)
    lines.append(
        f"Project: {summary.project_name}  build #{summary.build_number} ({summary.result.value})"
    )
    lines.append(f"Participants: {len(summary.users)}")
    lines.append("")

    for user in sorted(summary.users, key=lambda u: u.user_id):
        lines.append(_user_line(user))
        for title in user.achievements:
            lines.append(f"    achievement unlocked: {title}")

    lines.append("")
    lines.append(
        f"Overall: {_plural(summary.solved, 'challenge')} solved, "
        f"{summary.generated} generated, {summary.unsolvable} unsolvable "
        f"in {summary.wall_time_seconds:.1f}s"
    )
    if summary.failed:
        lines.append(f"  ({_plural(len(summary.failed), 'participant')} could not be processed)")
    lines.append("")

    return "\n".join(lines)


def format_json_report(summary: BuildSummary) -> str:
    """Format a JSON summary of the build's game results."""
    data = {
        "project": summary.project_name,
        "build_number": summary.build_number,
        "result": summary.result.value,
        "generated": summary.generated,
        "solved": summary.solved,
        "unsolvable": summary.unsolvable,
        "notifications_sent": summary.notifications_sent,
        "wall_time_seconds": round(summary.wall_time_seconds, 2),
        "users": [
            {
                "id": u.user_id,
                "generated": u.generated,
                "solved": u.solved,
                "unsolvable": u.unsolvable,
                "quests_generated": u.quests_generated,
                "quest_steps_solved": u.quest_steps_solved,
                "quests_solved": u.quests_solved,
                "achievements": u.achievements,
                "score": u.score,
                "failed": u.failed,
            }
            for u in summary.users
        ],
    }
    return json.dumps(data, indent=2)


def rank_participants(project: Project) -> list[tuple[str, str, int]]:
    """(user id, team, score) of every participant, best first."""
    rows = [(user_id, state.team, state.score) for user_id, state in project.states.items()]
    return sorted(rows, key=lambda row: (-row[2], row[0]))


def rank_teams(project: Project) -> list[tuple[str, int]]:
    """Summed score of each team, best first; solo participants are not a team."""
    totals = {team: 0 for team in project.teams}
    for _, team, points in rank_participants(project):
        if team and team != constants.NO_TEAM_TEAM_NAME:
            totals[team] = totals.get(team, 0) + points
    return sorted(totals.items(), key=lambda item: (-item[1], item[0]))


def format_leaderboard(project: Project) -> str:
    lines: list[str] = []

    lines.append("")
    lines.append("=" * 70)
    lines.append("gamify leaderboard")
    lines.append("=" * 70)
    lines.append(f"Project: {project.name}")
    lines.append("")

    for rank, (user_id, team, points) in enumerate(rank_participants(project), start=1):
        team_label = f"  [{team}]" if team and team != constants.NO_TEAM_TEAM_NAME else ""
        lines.append(f"  {rank:>3d}. {user_id:<30s} {points:>6d}{team_label}")

    teams = rank_teams(project)
    if teams:
        lines.append("")
        lines.append("Teams:")
        for rank, (team, points) in enumerate(teams, start=1):
            lines.append(f"  {rank:>3d}. {team:<30s} {points:>6d}")
    lines.append("")

    return "\n".join(lines)
