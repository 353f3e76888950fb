from datetime import datetime
from pydantic import BaseModel, Field

class GameRatingPlayerOut(BaseModel):
    profile_id: str
    team_id: str
    team_side: str
    pre_rating: float
    pre_rated_games: int
    k_used: int
    delta: float

class GameRatingOut(BaseModel):
    game_id: str
    community_id: str | None = None
    rated: bool
    team_a_id: str | None = None
    team_b_id: str | None = None
    goal_diff: int | None = None
    team_a_rating: float | None = None
    team_b_rating: float | None = None
    applied_at: datetime | None = None
    invalidated_at: datetime | None = None
    players: list[GameRatingPlayerOut] = Field(default_factory=list)

class LeaderboardRow(BaseModel):
    rank: int
    profile_id: str
    rating: float
    rated_games: int

class LeaderboardOut(BaseModel):
    community_id: str
    rows: list[LeaderboardRow]

class RatingEventOut(BaseModel):
    game_id: str
    delta: float
    rated_games_delta: int
    event_type: str
    created_at: datetime

class RatingEventsOut(BaseModel):
    community_id: str
    profile_id: str
    rows: list[RatingEventOut]
