import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, UuidStr, new_uuid

class CommunityGameRating(Base):
    """A game's current effect on community ratings. Rows are never deleted."""

    __tablename__ = "community_game_ratings"

    id: Mapped[str] = mapped_column(UuidStr, primary_key=True, default=new_uuid)
    game_id: Mapped[str] = mapped_column(UuidStr, sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False, unique=True)
    community_id: Mapped[str] = mapped_column(UuidStr, nullable=False)

    rated: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, server_default=sa.true())
    team_a_id: Mapped[str] = mapped_column(UuidStr, nullable=False)
    team_b_id: Mapped[str] = mapped_column(UuidStr, nullable=False)
    goal_diff: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    team_a_rating: Mapped[float] = mapped_column(sa.Float, nullable=False)
    team_b_rating: Mapped[float] = mapped_column(sa.Float, nullable=False)

    applied_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    invalidated_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    updated_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())

    __table_args__ = (
        sa.Index("ix_community_game_ratings_community", "community_id"),
    )

class CommunityGameRatingPlayer(Base):
    __tablename__ = "community_game_rating_players"
    game_id: Mapped[str] = mapped_column(UuidStr, primary_key=True)
    profile_id: Mapped[str] = mapped_column(UuidStr, primary_key=True)
    game_rating_id: Mapped[str] = mapped_column(UuidStr, sa.ForeignKey("community_game_ratings.id", ondelete="CASCADE"), nullable=False)
    community_id: Mapped[str] = mapped_column(UuidStr, nullable=False)

    team_id: Mapped[str] = mapped_column(UuidStr, nullable=False)
    team_side: Mapped[str] = mapped_column(sa.Text, nullable=False)
    pre_rating: Mapped[float] = mapped_column(sa.Float, nullable=False)
    pre_rated_games: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    k_used: Mapped[int] = mapped_column(sa.SmallInteger, nullable=False)
    delta: Mapped[float] = mapped_column(sa.Float, nullable=False, server_default="0")
    __table_args__ = (
        sa.CheckConstraint("team_side in ('A','B')", name="ck_game_rating_player_team_side"),
        sa.Index("ix_community_game_rating_players_rating", "game_rating_id"),
    )
