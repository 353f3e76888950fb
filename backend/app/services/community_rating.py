"""
Community rating reconciliation.

A game's effect on community ratings is kept in a snapshot (one row per game plus
one row per rated player). Reconciling a game compares what the game should
contribute right now with what its snapshot says it already contributed, and
writes only the difference:

    snapshot   rated   eligible   action
    none       -       no         nothing
    none       -       yes        apply
    present    yes     no         rollback
    present    yes     yes        adjust (diff against stored deltas)
    present    no      yes        apply
    present    no      no         nothing

Every change to community_ratings is mirrored by a community_rating_events row,
which is what lets a player's rating be reconstructed as of any earlier moment.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

from app.core.clock import now_utc
from app.services.elo import BASE_RATING, PlayerRatingInput, TeamSide, compute_community_rating_deltas
from app.services.rating_store import RatingStore

logger = logging.getLogger(__name__)

RatingEventType = Literal["apply", "adjust", "rollback"]


@dataclass(frozen=True)
class PlayerRating:
    rating: float
    rated_games: int


DEFAULT_PLAYER_RATING = PlayerRating(rating=BASE_RATING, rated_games=0)


@dataclass
class RatingContext:
    community_id: str
    should_rate: bool
    goal_diff: int | None = None
    team_a_id: str | None = None
    team_b_id: str | None = None
    team_a_profile_ids: list[str] = field(default_factory=list)
    team_b_profile_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RatingChange:
    profile_id: str
    rating_delta: float
    rated_games_delta: int


@dataclass(frozen=True)
class PlayerSnapshot:
    profile_id: str
    team_id: str
    team_side: TeamSide
    pre_rating: float
    pre_rated_games: int
    k_used: int
    delta: float


def _not_rated(community_id: str) -> RatingContext:
    return RatingContext(community_id=community_id, should_rate=False)


async def fetch_rating_context(store: RatingStore, game_id: str) -> RatingContext | None:
    """
    Decide whether the game should currently count towards ratings.

    Returns None when the game does not exist. Any state that is "not ready yet"
    (draft unfinished, result unconfirmed, a no-show, ...) yields should_rate=False.
    """
    game = await store.get_game(game_id)
    if not game:
        return None

    community_id = game["community_id"]

    if game["status"] == "cancelled":
        return _not_rated(community_id)
    if game["draft_mode_enabled"] is False:
        return _not_rated(community_id)
    if game["draft_status"] != "completed":
        return _not_rated(community_id)

    teams = await store.list_game_teams(game_id)
    # side A/B must not move between recomputations
    teams.sort(key=lambda t: (t["draft_order"] or 0, t["id"]))
    if len(teams) != 2:
        return _not_rated(community_id)
    team_a, team_b = teams

    members = await store.list_game_team_members(game_id)
    team_a_profile_ids = [m["profile_id"] for m in members if m["profile_id"] and m["game_team_id"] == team_a["id"]]
    team_b_profile_ids = [m["profile_id"] for m in members if m["profile_id"] and m["game_team_id"] == team_b["id"]]
    if not team_a_profile_ids or not team_b_profile_ids:
        return _not_rated(community_id)

    result = await store.get_game_result(game_id)
    if not result or result["status"] != "confirmed":
        return _not_rated(community_id)
    if (
        result["winning_team_id"] is None
        or result["losing_team_id"] is None
        or result["winner_score"] is None
        or result["loser_score"] is None
    ):
        return _not_rated(community_id)

    def score_for_team(team_id: str) -> int | None:
        if team_id == result["winning_team_id"]:
            return result["winner_score"]
        if team_id == result["losing_team_id"]:
            return result["loser_score"]
        return None

    team_a_score = score_for_team(team_a["id"])
    team_b_score = score_for_team(team_b["id"])
    if team_a_score is None or team_b_score is None:
        return _not_rated(community_id)

    # a single no-show voids the whole game
    if await store.has_rostered_no_show(game_id):
        return _not_rated(community_id)

    return RatingContext(
        community_id=community_id,
        should_rate=True,
        goal_diff=int(team_a_score) - int(team_b_score),
        team_a_id=team_a["id"],
        team_b_id=team_b["id"],
        team_a_profile_ids=team_a_profile_ids,
        team_b_profile_ids=team_b_profile_ids,
    )


async def fetch_rating_snapshot(store: RatingStore, game_id: str) -> tuple[dict[str, Any] | None, list[dict[str, Any]]]:
    rating_row = await store.get_game_rating(game_id)
    if not rating_row:
        return None, []
    return rating_row, await store.list_game_rating_players(game_id)


async def fetch_current_ratings(store: RatingStore, community_id: str, profile_ids: list[str]) -> dict[str, PlayerRating]:
    out = {pid: DEFAULT_PLAYER_RATING for pid in profile_ids}
    for row in await store.list_community_ratings(community_id, profile_ids):
        out[row["profile_id"]] = PlayerRating(
            rating=float(row["rating"]) if row["rating"] is not None else BASE_RATING,
            rated_games=int(row["rated_games"]) if row["rated_games"] is not None else 0,
        )
    return out


async def fetch_ratings_at(
    store: RatingStore,
    community_id: str,
    profile_ids: list[str],
    as_of: datetime,
) -> dict[str, PlayerRating]:
    """Current rating minus every event recorded at or after as_of."""
    current = await fetch_current_ratings(store, community_id, profile_ids)
    if not profile_ids:
        return current

    sums: dict[str, list] = {}
    for row in await store.list_rating_events_since(community_id, profile_ids, as_of):
        acc = sums.setdefault(row["profile_id"], [0.0, 0])
        acc[0] += float(row["delta"] or 0)
        acc[1] += int(row["rated_games_delta"] or 0)

    out: dict[str, PlayerRating] = {}
    for pid in profile_ids:
        base = current.get(pid, DEFAULT_PLAYER_RATING)
        delta, rated_games = sums.get(pid, (0.0, 0))
        out[pid] = PlayerRating(
            rating=base.rating - delta,
            rated_games=max(0, base.rated_games - rated_games),
        )
    return out


async def apply_rating_changes(
    store: RatingStore,
    community_id: str,
    game_id: str,
    changes: list[RatingChange],
    event_type: RatingEventType,
    now: datetime,
) -> None:
    meaningful = [c for c in changes if c.rating_delta != 0 or c.rated_games_delta != 0]
    if not meaningful:
        return

    current = await fetch_current_ratings(store, community_id, [c.profile_id for c in meaningful])

    # the 0 floor guards against compounding rollback errors; it is not a
    # state the rating pool is expected to reach
    await store.upsert_community_ratings([
        {
            "community_id": community_id,
            "profile_id": c.profile_id,
            "rating": max(0.0, current[c.profile_id].rating + c.rating_delta),
            "rated_games": max(0, current[c.profile_id].rated_games + c.rated_games_delta),
            "updated_at": now,
        }
        for c in meaningful
    ])

    await store.insert_rating_events([
        {
            "community_id": community_id,
            "game_id": game_id,
            "profile_id": c.profile_id,
            "delta": c.rating_delta,
            "rated_games_delta": c.rated_games_delta,
            "event_type": event_type,
            "created_at": now,
        }
        for c in meaningful
    ])


def build_rating_changes(
    new_deltas: dict[str, float],
    old_deltas: dict[str, float],
    was_rated: bool,
) -> list[RatingChange]:
    union_ids = list(new_deltas) + [pid for pid in old_deltas if pid not in new_deltas]
    changes = []
    for pid in union_ids:
        old_delta = old_deltas.get(pid, 0.0) if was_rated else 0.0
        rating_delta = new_deltas.get(pid, 0.0) - old_delta
        if was_rated:
            rated_games_delta = (1 if pid in new_deltas else 0) - (1 if pid in old_deltas else 0)
        else:
            rated_games_delta = 1 if pid in new_deltas else 0
        if rating_delta != 0 or rated_games_delta != 0:
            changes.append(RatingChange(profile_id=pid, rating_delta=rating_delta, rated_games_delta=rated_games_delta))
    return changes


async def store_rating_snapshot(
    store: RatingStore,
    rating_row: dict[str, Any] | None,
    *,
    game_id: str,
    community_id: str,
    team_a_id: str,
    team_b_id: str,
    goal_diff: int,
    team_a_rating: float,
    team_b_rating: float,
    rated: bool,
    now: datetime,
) -> dict[str, Any]:
    values = {
        "rated": rated,
        "team_a_id": team_a_id,
        "team_b_id": team_b_id,
        "goal_diff": goal_diff,
        "team_a_rating": team_a_rating,
        "team_b_rating": team_b_rating,
        "invalidated_at": None if rated else now,
        "updated_at": now,
    }
    if not rating_row:
        return await store.insert_game_rating({
            **values,
            "game_id": game_id,
            "community_id": community_id,
            "applied_at": now,
        })

    await store.update_game_rating(rating_row["id"], values)
    return rating_row


async def upsert_rating_players(
    store: RatingStore,
    game_rating_id: str,
    community_id: str,
    game_id: str,
    players: list[PlayerSnapshot],
) -> None:
    await store.upsert_game_rating_players([
        {
            "game_rating_id": game_rating_id,
            "community_id": community_id,
            "game_id": game_id,
            **asdict(p),
        }
        for p in players
    ])


async def rollback_from_snapshot(
    store: RatingStore,
    rating_row: dict[str, Any],
    player_rows: list[dict[str, Any]],
    now: datetime,
) -> None:
    if not rating_row["rated"]:
        return

    changes = [
        RatingChange(profile_id=p["profile_id"], rating_delta=-float(p["delta"]), rated_games_delta=-1)
        for p in player_rows
    ]
    await apply_rating_changes(store, rating_row["community_id"], rating_row["game_id"], changes, "rollback", now)
    await store.update_game_rating(rating_row["id"], {"rated": False, "invalidated_at": now, "updated_at": now})
    await store.reset_game_rating_player_deltas(rating_row["game_id"])

    logger.info(
        "community rating rolled back",
        extra={"game_id": rating_row["game_id"], "community_id": rating_row["community_id"], "players": len(changes)},
    )


async def rollback_community_rating_for_game(store: RatingStore, game_id: str, now: datetime | None = None) -> None:
    rating_row, player_rows = await fetch_rating_snapshot(store, game_id)
    if not rating_row or not rating_row["rated"]:
        return
    await rollback_from_snapshot(store, rating_row, player_rows, now or now_utc())


async def reconcile_community_rating_for_game(store: RatingStore, game_id: str, now: datetime | None = None) -> None:
    now = now or now_utc()

    context = await fetch_rating_context(store, game_id)
    if context is None:
        logger.debug("community rating skipped: game not found", extra={"game_id": game_id})
        return

    rating_row, player_rows = await fetch_rating_snapshot(store, game_id)
    community_id = rating_row["community_id"] if rating_row else context.community_id

    if not context.should_rate:
        if rating_row and rating_row["rated"]:
            await rollback_from_snapshot(store, rating_row, player_rows, now)
        else:
            logger.debug("community rating skipped: game not eligible", extra={"game_id": game_id})
        return

    roster_ids = context.team_a_profile_ids + context.team_b_profile_ids
    if not roster_ids or not context.team_a_id or not context.team_b_id or context.goal_diff is None:
        return

    was_rated = bool(rating_row and rating_row["rated"])
    previous = {p["profile_id"]: p for p in player_rows}
    missing_ids = [pid for pid in roster_ids if pid not in previous]

    historical: dict[str, PlayerRating] = {}
    if rating_row and missing_ids:
        # late roster additions are rated from where they stood when the game was first applied
        historical = await fetch_ratings_at(store, rating_row["community_id"], missing_ids, rating_row["applied_at"])
    if not rating_row:
        current = await fetch_current_ratings(store, context.community_id, roster_ids)
        for pid in roster_ids:
            historical.setdefault(pid, current.get(pid, DEFAULT_PLAYER_RATING))

    def resolve_pre_rating(profile_id: str) -> PlayerRating:
        existing = previous.get(profile_id)
        if existing:
            return PlayerRating(rating=float(existing["pre_rating"]), rated_games=int(existing["pre_rated_games"]))
        return historical.get(profile_id, DEFAULT_PLAYER_RATING)

    def inputs(profile_ids: list[str]) -> list[PlayerRatingInput]:
        out = []
        for pid in profile_ids:
            pre = resolve_pre_rating(pid)
            out.append(PlayerRatingInput(profile_id=pid, pre_rating=pre.rating, pre_rated_games=pre.rated_games))
        return out

    deltas = compute_community_rating_deltas(
        inputs(context.team_a_profile_ids),
        inputs(context.team_b_profile_ids),
        context.goal_diff,
    )

    changes = build_rating_changes(
        {d.profile_id: d.delta for d in deltas.player_deltas},
        {pid: float(p["delta"]) for pid, p in previous.items()},
        was_rated,
    )
    event_type: RatingEventType = "adjust" if was_rated else "apply"
    await apply_rating_changes(store, community_id, game_id, changes, event_type, now)

    stored_row = await store_rating_snapshot(
        store,
        rating_row,
        game_id=game_id,
        community_id=community_id,
        team_a_id=context.team_a_id,
        team_b_id=context.team_b_id,
        goal_diff=context.goal_diff,
        team_a_rating=deltas.team_a_rating,
        team_b_rating=deltas.team_b_rating,
        rated=True,
        now=now,
    )

    players = []
    for d in deltas.player_deltas:
        pre = resolve_pre_rating(d.profile_id)
        players.append(PlayerSnapshot(
            profile_id=d.profile_id,
            team_id=context.team_a_id if d.team_side == "A" else context.team_b_id,
            team_side=d.team_side,
            pre_rating=pre.rating,
            pre_rated_games=pre.rated_games,
            k_used=d.k_used,
            delta=d.delta,
        ))
    await upsert_rating_players(store, stored_row["id"], community_id, game_id, players)

    if rating_row:
        roster = set(roster_ids)
        await store.delete_game_rating_players(game_id, [pid for pid in previous if pid not in roster])

    if not changes:
        logger.debug("community rating unchanged", extra={"game_id": game_id, "community_id": community_id})
        return
    logger.info(
        "community rating %s",
        "adjusted" if was_rated else "applied",
        extra={"game_id": game_id, "community_id": community_id, "players": len(changes), "goal_diff": context.goal_diff},
    )
