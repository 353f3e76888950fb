import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, UuidStr, new_uuid

# Application-owned tables. The rating engine only reads them.

class Game(Base):
    __tablename__ = "games"

    id: Mapped[str] = mapped_column(UuidStr, primary_key=True, default=new_uuid)
    community_id: Mapped[str] = mapped_column(UuidStr, nullable=False)

    status: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="scheduled")  # scheduled/completed/cancelled
    draft_status: Mapped[str | None] = mapped_column(sa.Text, nullable=True)  # pending/in_progress/completed
    draft_mode_enabled: Mapped[bool | None] = mapped_column(sa.Boolean, nullable=True, server_default=sa.true())

    start_time: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())

    __table_args__ = (
        sa.Index("ix_games_community_start", "community_id", "start_time"),
    )

class GameTeam(Base):
    __tablename__ = "game_teams"
    id: Mapped[str] = mapped_column(UuidStr, primary_key=True, default=new_uuid)
    game_id: Mapped[str] = mapped_column(UuidStr, sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str | None] = mapped_column(sa.Text, nullable=True)
    draft_order: Mapped[int | None] = mapped_column(sa.SmallInteger, nullable=True)
    __table_args__ = (
        sa.Index("ix_game_teams_game", "game_id"),
    )

class GameTeamMember(Base):
    __tablename__ = "game_team_members"
    id: Mapped[str] = mapped_column(UuidStr, primary_key=True, default=new_uuid)
    game_id: Mapped[str] = mapped_column(UuidStr, sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False)
    game_team_id: Mapped[str | None] = mapped_column(UuidStr, sa.ForeignKey("game_teams.id", ondelete="CASCADE"), nullable=True)
    profile_id: Mapped[str | None] = mapped_column(UuidStr, nullable=True)
    __table_args__ = (
        sa.Index("ix_game_team_members_game", "game_id"),
    )

class GameResult(Base):
    __tablename__ = "game_results"
    game_id: Mapped[str] = mapped_column(UuidStr, sa.ForeignKey("games.id", ondelete="CASCADE"), primary_key=True)
    winning_team_id: Mapped[str | None] = mapped_column(UuidStr, nullable=True)
    losing_team_id: Mapped[str | None] = mapped_column(UuidStr, nullable=True)
    winner_score: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    loser_score: Mapped[int | None] = mapped_column(sa.Integer, nullable=True)
    status: Mapped[str | None] = mapped_column(sa.Text, nullable=True)  # pending/confirmed/disputed
    updated_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())

class GameQueueEntry(Base):
    __tablename__ = "game_queue"
    id: Mapped[str] = mapped_column(UuidStr, primary_key=True, default=new_uuid)
    game_id: Mapped[str] = mapped_column(UuidStr, sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False)
    profile_id: Mapped[str | None] = mapped_column(UuidStr, nullable=True)
    status: Mapped[str] = mapped_column(sa.Text, nullable=False, server_default="rostered")  # rostered/waitlisted/dropped
    no_show_at: Mapped[sa.DateTime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    __table_args__ = (
        sa.Index("ix_game_queue_game_status", "game_id", "status"),
    )
