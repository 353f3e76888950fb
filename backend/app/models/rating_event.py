import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, UuidStr, new_uuid

class CommunityRatingEvent(Base):
    """Append-only audit row; never updated or deleted."""

    __tablename__ = "community_rating_events"

    id: Mapped[str] = mapped_column(UuidStr, primary_key=True, default=new_uuid)
    community_id: Mapped[str] = mapped_column(UuidStr, nullable=False)
    game_id: Mapped[str] = mapped_column(UuidStr, nullable=False)
    profile_id: Mapped[str] = mapped_column(UuidStr, nullable=False)

    delta: Mapped[float] = mapped_column(sa.Float, nullable=False)
    rated_games_delta: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")
    event_type: Mapped[str] = mapped_column(sa.Text, nullable=False)  # apply/adjust/rollback

    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())

    __table_args__ = (
        sa.Index("ix_community_rating_events_profile_created", "community_id", "profile_id", "created_at"),
        sa.Index("ix_community_rating_events_game", "game_id"),
        sa.CheckConstraint("event_type in ('apply','adjust','rollback')", name="ck_community_rating_event_type"),
    )
