import random

import pytest

from app.teams import RosterPlayer, TeamAssignmentError, form_teams, normalize_skill, validate_manual_teams


def test_empty_roster():
    assignment = form_teams([])
    assert assignment.team_a == []
    assert assignment.team_b == []
    assert assignment.is_manual is False


def test_greedy_example():
    players = [RosterPlayer(1, 5), RosterPlayer(2, 4), RosterPlayer(3, 3), RosterPlayer(4, 1)]
    assignment = form_teams(players)
    assert assignment.team_a == [1, 4]
    assert assignment.team_b == [2, 3]


def test_input_order_does_not_matter_for_distinct_ratings():
    players = [RosterPlayer(4, 1), RosterPlayer(3, 3), RosterPlayer(1, 5), RosterPlayer(2, 4)]
    assignment = form_teams(players)
    assert assignment.team_a == [1, 4]
    assert assignment.team_b == [2, 3]


def test_ties_keep_input_order():
    players = [RosterPlayer("x", 2), RosterPlayer("y", 2), RosterPlayer("z", 2)]
    assignment = form_teams(players)
    assert assignment.team_a == ["x", "z"]
    assert assignment.team_b == ["y"]


@pytest.mark.parametrize("value", [None, "", "abc", float("nan"), float("inf"), 0, -3])
def test_unusable_ratings_count_as_one(value):
    assert normalize_skill(value) == 1


def test_numeric_strings_are_accepted():
    assert normalize_skill("4") == 4
    assert normalize_skill(2.5) == 2.5


def test_missing_ratings_are_placed_last():
    players = [RosterPlayer(1, None), RosterPlayer(2, 3), RosterPlayer(3, "bad"), RosterPlayer(4, 2)]
    assignment = form_teams(players)
    assert assignment.team_a == [2, 3]
    assert assignment.team_b == [4, 1]


def test_accepts_objects_with_skill_level():
    class User:
        def __init__(self, id, skill_level):
            self.id = id
            self.skill_level = skill_level

    assignment = form_teams([User(10, 5), User(11, 1)])
    assert assignment.team_a == [10]
    assert assignment.team_b == [11]


@pytest.mark.parametrize("seed", range(25))
def test_random_rosters_are_balanced(seed):
    rng = random.Random(seed)
    players = [RosterPlayer(i, rng.randint(1, 5)) for i in range(rng.randint(0, 15))]

    assignment = form_teams(players)

    assert set(assignment.team_a).isdisjoint(assignment.team_b)
    assert set(assignment.team_a) | set(assignment.team_b) == {p.id for p in players}
    assert abs(len(assignment.team_a) - len(assignment.team_b)) <= 1

    skills = {p.id: p.skill_level for p in players}
    total_a = sum(skills[i] for i in assignment.team_a)
    total_b = sum(skills[i] for i in assignment.team_b)
    assert abs(total_a - total_b) <= max(skills.values(), default=0)


def test_manual_split_is_accepted():
    assignment = validate_manual_teams([1, 2, 3], [3], [1, 2])
    assert assignment.team_a == [3]
    assert assignment.team_b == [1, 2]
    assert assignment.is_manual is True


@pytest.mark.parametrize("team_a,team_b,message", [
    ([1], [2], "exactly one team"),
    ([1, 1], [2], "Duplicate"),
    ([1, 2], [9], "non-participant"),
    ([1, 2, 3], [], "evenly"),
])
def test_manual_split_rejections(team_a, team_b, message):
    with pytest.raises(TeamAssignmentError, match=message):
        validate_manual_teams([1, 2, 3], team_a, team_b)
