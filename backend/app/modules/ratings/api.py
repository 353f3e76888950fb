from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_rating_store
from app.core.config import settings
from app.schemas.rating import (
    GameRatingOut, GameRatingPlayerOut,
    LeaderboardOut, LeaderboardRow,
    RatingEventOut, RatingEventsOut,
)
from app.services.community_rating import (
    fetch_rating_snapshot,
    reconcile_community_rating_for_game,
    rollback_community_rating_for_game,
)
from app.services.rating_store import RatingStore

router = APIRouter()


def _normalize_uuid(value: str, field: str) -> str:
    try:
        return str(UUID(value))
    except ValueError:
        raise HTTPException(400, f"{field} must be a valid UUID")


async def _game_rating_out(store: RatingStore, game_id: str) -> GameRatingOut | None:
    rating_row, player_rows = await fetch_rating_snapshot(store, game_id)
    if not rating_row:
        return None
    return GameRatingOut(
        game_id=rating_row["game_id"],
        community_id=rating_row["community_id"],
        rated=rating_row["rated"],
        team_a_id=rating_row["team_a_id"],
        team_b_id=rating_row["team_b_id"],
        goal_diff=rating_row["goal_diff"],
        team_a_rating=rating_row["team_a_rating"],
        team_b_rating=rating_row["team_b_rating"],
        applied_at=rating_row["applied_at"],
        invalidated_at=rating_row["invalidated_at"],
        players=[GameRatingPlayerOut(**p) for p in player_rows],
    )


@router.post("/games/{game_id}/rating/reconcile", response_model=GameRatingOut)
async def reconcile_game_rating(game_id: str, store: RatingStore = Depends(get_rating_store)):
    game_id_norm = _normalize_uuid(game_id, "game_id")
    await reconcile_community_rating_for_game(store, game_id_norm)
    await store.db.commit()
    out = await _game_rating_out(store, game_id_norm)
    return out or GameRatingOut(game_id=game_id_norm, rated=False)


@router.post("/games/{game_id}/rating/rollback", response_model=GameRatingOut)
async def rollback_game_rating(game_id: str, store: RatingStore = Depends(get_rating_store)):
    game_id_norm = _normalize_uuid(game_id, "game_id")
    await rollback_community_rating_for_game(store, game_id_norm)
    await store.db.commit()
    out = await _game_rating_out(store, game_id_norm)
    return out or GameRatingOut(game_id=game_id_norm, rated=False)


@router.get("/games/{game_id}/rating", response_model=GameRatingOut)
async def game_rating(game_id: str, store: RatingStore = Depends(get_rating_store)):
    out = await _game_rating_out(store, _normalize_uuid(game_id, "game_id"))
    if not out:
        raise HTTPException(404, "Game rating not found")
    return out


@router.get("/communities/{community_id}/ratings", response_model=LeaderboardOut)
async def community_leaderboard(
    community_id: str,
    limit: int = Query(default=settings.LEADERBOARD_MAX_ROWS, ge=1, le=settings.LEADERBOARD_MAX_ROWS),
    store: RatingStore = Depends(get_rating_store),
):
    community_id_norm = _normalize_uuid(community_id, "community_id")
    rows = await store.list_leaderboard(community_id_norm, limit)
    return LeaderboardOut(
        community_id=community_id_norm,
        rows=[LeaderboardRow(rank=n, **r) for n, r in enumerate(rows, start=1)],
    )


@router.get("/communities/{community_id}/ratings/{profile_id}/events", response_model=RatingEventsOut)
async def profile_rating_events(
    community_id: str,
    profile_id: str,
    limit: int = Query(default=50, ge=1, le=settings.RATING_EVENTS_MAX_ROWS),
    store: RatingStore = Depends(get_rating_store),
):
    community_id_norm = _normalize_uuid(community_id, "community_id")
    profile_id_norm = _normalize_uuid(profile_id, "profile_id")
    rows = await store.list_profile_rating_events(community_id_norm, profile_id_norm, limit)
    return RatingEventsOut(
        community_id=community_id_norm,
        profile_id=profile_id_norm,
        rows=[RatingEventOut(**r) for r in rows],
    )
