import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from app.db.base import Base, UuidStr

class CommunityRating(Base):
    __tablename__ = "community_ratings"

    community_id: Mapped[str] = mapped_column(UuidStr, primary_key=True)
    profile_id: Mapped[str] = mapped_column(UuidStr, primary_key=True)

    rating: Mapped[float] = mapped_column(sa.Float, nullable=False, server_default="1500")
    rated_games: Mapped[int] = mapped_column(sa.Integer, nullable=False, server_default="0")

    created_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
    updated_at: Mapped[sa.DateTime] = mapped_column(sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())

    __table_args__ = (
        sa.Index("ix_community_ratings_rank", "community_id", sa.text("rating DESC"), sa.text("rated_games DESC")),
        sa.CheckConstraint("rating >= 0", name="ck_community_rating_non_negative"),
        sa.CheckConstraint("rated_games >= 0", name="ck_community_rated_games_non_negative"),
    )
