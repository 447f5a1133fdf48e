import math
from dataclasses import dataclass, field
from typing import Any, List, NamedTuple

DEFAULT_SKILL = 1  # used when a rating is missing or unusable


class RosterPlayer(NamedTuple):
    id: Any
    skill_level: Any = DEFAULT_SKILL


@dataclass
class TeamAssignment:
    team_a: List[Any] = field(default_factory=list)
    team_b: List[Any] = field(default_factory=list)
    is_manual: bool = False


class TeamAssignmentError(ValueError):
    pass


def normalize_skill(value):
    try:
        skill = float(value)
    except (TypeError, ValueError):
        return DEFAULT_SKILL
    if not math.isfinite(skill) or skill <= 0:
        return DEFAULT_SKILL
    return skill


def form_teams(players):
    """Split players into two teams of near-equal size and skill.

    Players are taken strongest first (ties keep their input order). A player
    goes to the smaller team, or, when sizes are equal, to the team with the
    lower running skill total (Team A on a tie). Greedy, single pass.
    """
    ranked = sorted(players, key=lambda p: normalize_skill(p.skill_level), reverse=True)

    assignment = TeamAssignment()
    score_a = 0
    score_b = 0

    for player in ranked:
        skill = normalize_skill(player.skill_level)

        if len(assignment.team_a) < len(assignment.team_b):
            assignment.team_a.append(player.id)
            score_a += skill
        elif len(assignment.team_b) < len(assignment.team_a):
            assignment.team_b.append(player.id)
            score_b += skill
        elif score_a <= score_b:
            assignment.team_a.append(player.id)
            score_a += skill
        else:
            assignment.team_b.append(player.id)
            score_b += skill

    return assignment


def validate_manual_teams(participant_ids, team_a, team_b):
    """Check an organizer-supplied split against the current roster."""
    participants = set(participant_ids)
    combined = list(team_a) + list(team_b)

    if len(combined) != len(participants):
        raise TeamAssignmentError("Each participant must be assigned to exactly one team")

    if len(set(combined)) != len(combined):
        raise TeamAssignmentError("Duplicate participants found in team assignment")

    if any(pid not in participants for pid in combined):
        raise TeamAssignmentError("Team assignment contains non-participant IDs")

    if abs(len(team_a) - len(team_b)) > 1:
        raise TeamAssignmentError("Teams must be split as evenly as possible")

    return TeamAssignment(team_a=list(team_a), team_b=list(team_b), is_manual=True)
