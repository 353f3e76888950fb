from dataclasses import dataclass
from typing import Literal

TeamSide = Literal["A", "B"]

BASE_RATING = 1500.0
NEW_PLAYER_GAMES = 3
K_NEW_PLAYER = 50
K_ESTABLISHED = 30

@dataclass(frozen=True)
class PlayerRatingInput:
    profile_id: str
    pre_rating: float
    pre_rated_games: int

@dataclass(frozen=True)
class PlayerDelta:
    profile_id: str
    team_side: TeamSide
    delta: float
    k_used: int

@dataclass(frozen=True)
class RatingDeltas:
    team_a_rating: float
    team_b_rating: float
    player_deltas: list[PlayerDelta]

def expected_score(r_a: float, r_b: float) -> float:
    return 1.0 / (1.0 + 10 ** ((r_b - r_a) / 400.0))

def actual_score_from_goal_diff(goal_diff: int) -> float:
    if goal_diff > 0:
        return 1.0
    if goal_diff < 0:
        return 0.0
    return 0.5

def goal_diff_multiplier(goal_diff: int) -> float:
    margin = abs(goal_diff)
    if margin <= 2:
        return 1.0
    if margin <= 4:
        return 1.25
    return 1.5

def k_for_rated_games(rated_games: int) -> int:
    return K_NEW_PLAYER if rated_games < NEW_PLAYER_GAMES else K_ESTABLISHED

def _rating_for_average(player: PlayerRatingInput) -> float:
    # an unrated player's stored rating says nothing about their strength yet
    return player.pre_rating if player.pre_rated_games > 0 else BASE_RATING

def average_rating(players: list[PlayerRatingInput]) -> float:
    if not players:
        return BASE_RATING
    return sum(_rating_for_average(p) for p in players) / len(players)

def compute_community_rating_deltas(
    team_a: list[PlayerRatingInput],
    team_b: list[PlayerRatingInput],
    goal_diff: int,
) -> RatingDeltas:
    """
    Team Elo for one completed game. Every player on a side shares the team
    outcome; only their own K differs. goal_diff is team A score minus team B score.
    """
    team_a_rating = average_rating(team_a)
    team_b_rating = average_rating(team_b)
    expected_a = expected_score(team_a_rating, team_b_rating)
    expected_b = 1.0 - expected_a
    actual_a = actual_score_from_goal_diff(goal_diff)
    actual_b = 1.0 - actual_a
    multiplier = goal_diff_multiplier(goal_diff)

    def side_deltas(players: list[PlayerRatingInput], side: TeamSide, actual: float, expected: float) -> list[PlayerDelta]:
        out = []
        for p in players:
            k = k_for_rated_games(p.pre_rated_games)
            out.append(PlayerDelta(
                profile_id=p.profile_id,
                team_side=side,
                delta=k * multiplier * (actual - expected),
                k_used=k,
            ))
        return out

    return RatingDeltas(
        team_a_rating=team_a_rating,
        team_b_rating=team_b_rating,
        player_deltas=side_deltas(team_a, "A", actual_a, expected_a) + side_deltas(team_b, "B", actual_b, expected_b),
    )
