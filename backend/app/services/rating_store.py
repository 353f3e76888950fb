from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    CommunityGameRating,
    CommunityGameRatingPlayer,
    CommunityRating,
    CommunityRatingEvent,
    Game,
    GameQueueEntry,
    GameResult,
    GameTeam,
    GameTeamMember,
)


class RatingStoreError(RuntimeError):
    """Any read/write failure against the rating tables."""


_GAME_RATING_COLUMNS = (
    CommunityGameRating.id,
    CommunityGameRating.game_id,
    CommunityGameRating.community_id,
    CommunityGameRating.rated,
    CommunityGameRating.team_a_id,
    CommunityGameRating.team_b_id,
    CommunityGameRating.goal_diff,
    CommunityGameRating.team_a_rating,
    CommunityGameRating.team_b_rating,
    CommunityGameRating.applied_at,
    CommunityGameRating.invalidated_at,
)

_GAME_RATING_PLAYER_COLUMNS = (
    CommunityGameRatingPlayer.profile_id,
    CommunityGameRatingPlayer.team_id,
    CommunityGameRatingPlayer.team_side,
    CommunityGameRatingPlayer.pre_rating,
    CommunityGameRatingPlayer.pre_rated_games,
    CommunityGameRatingPlayer.k_used,
    CommunityGameRatingPlayer.delta,
)


@contextmanager
def _store_call(action: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        raise RatingStoreError(f"{action}: {exc}") from exc


class RatingStore:
    """
    Every table access the rating engine performs, over one injected AsyncSession.

    The store never commits: the caller owns the transaction and decides whether
    a reconciliation call is kept or rolled back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _all(self, action: str, stmt) -> list[dict[str, Any]]:
        with _store_call(action):
            rows = (await self.db.execute(stmt)).mappings().all()
        return [dict(r) for r in rows]

    async def _first(self, action: str, stmt) -> dict[str, Any] | None:
        with _store_call(action):
            row = (await self.db.execute(stmt)).mappings().first()
        return dict(row) if row else None

    async def _run(self, action: str, stmt, params=None) -> None:
        with _store_call(action):
            if params is None:
                await self.db.execute(stmt)
            else:
                await self.db.execute(stmt, params)

    def _upsert(self, model, index_elements: list[str], rows: list[dict[str, Any]], update_columns: list[str]):
        dialect = self.db.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = insert(model).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={c: stmt.excluded[c] for c in update_columns},
        )

    # games (application-owned, read only)

    async def get_game(self, game_id: str) -> dict[str, Any] | None:
        return await self._first("load game", sa.select(
            Game.id, Game.community_id, Game.status, Game.draft_status, Game.draft_mode_enabled,
        ).where(Game.id == game_id))

    async def list_game_teams(self, game_id: str) -> list[dict[str, Any]]:
        return await self._all("load game teams", sa.select(
            GameTeam.id, GameTeam.draft_order,
        ).where(GameTeam.game_id == game_id))

    async def list_game_team_members(self, game_id: str) -> list[dict[str, Any]]:
        return await self._all("load game team members", sa.select(
            GameTeamMember.game_team_id, GameTeamMember.profile_id,
        ).where(GameTeamMember.game_id == game_id).order_by(GameTeamMember.profile_id))

    async def get_game_result(self, game_id: str) -> dict[str, Any] | None:
        return await self._first("load game result", sa.select(
            GameResult.winning_team_id,
            GameResult.losing_team_id,
            GameResult.winner_score,
            GameResult.loser_score,
            GameResult.status,
        ).where(GameResult.game_id == game_id))

    async def has_rostered_no_show(self, game_id: str) -> bool:
        row = await self._first("load game no-shows", sa.select(GameQueueEntry.id).where(
            GameQueueEntry.game_id == game_id,
            GameQueueEntry.status == "rostered",
            GameQueueEntry.no_show_at.is_not(None),
        ).limit(1))
        return row is not None

    async def list_community_game_ids(self, community_id: str) -> list[str]:
        rows = await self._all("load community games", sa.select(Game.id).where(
            Game.community_id == community_id,
        ).order_by(Game.start_time.asc().nulls_last(), Game.id))
        return [r["id"] for r in rows]

    # per-game snapshots

    async def get_game_rating(self, game_id: str) -> dict[str, Any] | None:
        return await self._first(
            "load rating snapshot",
            sa.select(*_GAME_RATING_COLUMNS).where(CommunityGameRating.game_id == game_id),
        )

    async def list_game_rating_players(self, game_id: str) -> list[dict[str, Any]]:
        return await self._all(
            "load rating snapshot players",
            sa.select(*_GAME_RATING_PLAYER_COLUMNS)
            .where(CommunityGameRatingPlayer.game_id == game_id)
            .order_by(CommunityGameRatingPlayer.team_side, CommunityGameRatingPlayer.profile_id),
        )

    async def insert_game_rating(self, values: dict[str, Any]) -> dict[str, Any]:
        with _store_call("store rating snapshot"):
            row = (await self.db.execute(
                sa.insert(CommunityGameRating).values(**values).returning(*_GAME_RATING_COLUMNS)
            )).mappings().first()
        if not row:
            raise RatingStoreError("Unable to store rating snapshot")
        return dict(row)

    async def update_game_rating(self, game_rating_id: str, values: dict[str, Any]) -> None:
        await self._run("update rating snapshot", sa.update(CommunityGameRating).where(
            CommunityGameRating.id == game_rating_id,
        ).values(**values))

    async def upsert_game_rating_players(self, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        await self._run("store rating snapshot players", self._upsert(
            CommunityGameRatingPlayer,
            ["game_id", "profile_id"],
            rows,
            ["game_rating_id", "community_id", "team_id", "team_side", "pre_rating", "pre_rated_games", "k_used", "delta"],
        ))

    async def delete_game_rating_players(self, game_id: str, profile_ids: list[str]) -> None:
        if not profile_ids:
            return
        await self._run("prune rating snapshot players", sa.delete(CommunityGameRatingPlayer).where(
            CommunityGameRatingPlayer.game_id == game_id,
            CommunityGameRatingPlayer.profile_id.in_(profile_ids),
        ))

    async def reset_game_rating_player_deltas(self, game_id: str) -> None:
        await self._run("reset rating snapshot players", sa.update(CommunityGameRatingPlayer).where(
            CommunityGameRatingPlayer.game_id == game_id,
        ).values(delta=0))

    # cumulative ratings and the event log

    async def list_community_ratings(self, community_id: str, profile_ids: list[str]) -> list[dict[str, Any]]:
        if not profile_ids:
            return []
        return await self._all("load community ratings", sa.select(
            CommunityRating.profile_id, CommunityRating.rating, CommunityRating.rated_games,
        ).where(
            CommunityRating.community_id == community_id,
            CommunityRating.profile_id.in_(profile_ids),
        ))

    async def list_rating_events_since(
        self, community_id: str, profile_ids: list[str], as_of: datetime,
    ) -> list[dict[str, Any]]:
        if not profile_ids:
            return []
        return await self._all("load rating events", sa.select(
            CommunityRatingEvent.profile_id,
            CommunityRatingEvent.delta,
            CommunityRatingEvent.rated_games_delta,
            CommunityRatingEvent.created_at,
        ).where(
            CommunityRatingEvent.community_id == community_id,
            CommunityRatingEvent.profile_id.in_(profile_ids),
            CommunityRatingEvent.created_at >= as_of,
        ))

    async def upsert_community_ratings(self, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        await self._run("store community ratings", self._upsert(
            CommunityRating,
            ["community_id", "profile_id"],
            rows,
            ["rating", "rated_games", "updated_at"],
        ))

    async def insert_rating_events(self, rows: list[dict[str, Any]]) -> None:
        if not rows:
            return
        await self._run("store rating events", sa.insert(CommunityRatingEvent), rows)

    # read models

    async def list_leaderboard(self, community_id: str, limit: int) -> list[dict[str, Any]]:
        return await self._all("load leaderboard", sa.select(
            CommunityRating.profile_id, CommunityRating.rating, CommunityRating.rated_games,
        ).where(
            CommunityRating.community_id == community_id,
            CommunityRating.rated_games > 0,
        ).order_by(
            CommunityRating.rating.desc(), CommunityRating.rated_games.desc(), CommunityRating.profile_id,
        ).limit(limit))

    async def list_profile_rating_events(self, community_id: str, profile_id: str, limit: int) -> list[dict[str, Any]]:
        return await self._all("load profile rating events", sa.select(
            CommunityRatingEvent.game_id,
            CommunityRatingEvent.delta,
            CommunityRatingEvent.rated_games_delta,
            CommunityRatingEvent.event_type,
            CommunityRatingEvent.created_at,
        ).where(
            CommunityRatingEvent.community_id == community_id,
            CommunityRatingEvent.profile_id == profile_id,
        ).order_by(CommunityRatingEvent.created_at.desc(), CommunityRatingEvent.id).limit(limit))
