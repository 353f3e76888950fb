"""community rating engine

Revision ID: 0001_community_rating_engine
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_community_rating_engine"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "community_ratings",
        sa.Column("community_id", sa.Uuid(), primary_key=True),
        sa.Column("profile_id", sa.Uuid(), primary_key=True),
        sa.Column("rating", sa.Float(), nullable=False, server_default="1500"),
        sa.Column("rated_games", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("rating >= 0", name="ck_community_rating_non_negative"),
        sa.CheckConstraint("rated_games >= 0", name="ck_community_rated_games_non_negative"),
    )
    op.create_index(
        "ix_community_ratings_rank",
        "community_ratings",
        ["community_id", sa.text("rating DESC"), sa.text("rated_games DESC")],
    )

    op.create_table(
        "community_rating_events",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("community_id", sa.Uuid(), nullable=False),
        sa.Column("game_id", sa.Uuid(), nullable=False),
        sa.Column("profile_id", sa.Uuid(), nullable=False),
        sa.Column("delta", sa.Float(), nullable=False),
        sa.Column("rated_games_delta", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("event_type in ('apply','adjust','rollback')", name="ck_community_rating_event_type"),
    )
    op.create_index(
        "ix_community_rating_events_profile_created",
        "community_rating_events",
        ["community_id", "profile_id", "created_at"],
    )
    op.create_index("ix_community_rating_events_game", "community_rating_events", ["game_id"])

    op.create_table(
        "community_game_ratings",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("game_id", sa.Uuid(), sa.ForeignKey("games.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("community_id", sa.Uuid(), nullable=False),
        sa.Column("rated", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("team_a_id", sa.Uuid(), nullable=False),
        sa.Column("team_b_id", sa.Uuid(), nullable=False),
        sa.Column("goal_diff", sa.Integer(), nullable=False),
        sa.Column("team_a_rating", sa.Float(), nullable=False),
        sa.Column("team_b_rating", sa.Float(), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("invalidated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_community_game_ratings_community", "community_game_ratings", ["community_id"])

    op.create_table(
        "community_game_rating_players",
        sa.Column("game_id", sa.Uuid(), primary_key=True),
        sa.Column("profile_id", sa.Uuid(), primary_key=True),
        sa.Column(
            "game_rating_id",
            sa.Uuid(),
            sa.ForeignKey("community_game_ratings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("community_id", sa.Uuid(), nullable=False),
        sa.Column("team_id", sa.Uuid(), nullable=False),
        sa.Column("team_side", sa.Text(), nullable=False),
        sa.Column("pre_rating", sa.Float(), nullable=False),
        sa.Column("pre_rated_games", sa.Integer(), nullable=False),
        sa.Column("k_used", sa.SmallInteger(), nullable=False),
        sa.Column("delta", sa.Float(), nullable=False, server_default="0"),
        sa.CheckConstraint("team_side in ('A','B')", name="ck_game_rating_player_team_side"),
    )
    op.create_index("ix_community_game_rating_players_rating", "community_game_rating_players", ["game_rating_id"])


def downgrade():
    op.drop_index("ix_community_game_rating_players_rating", table_name="community_game_rating_players")
    op.drop_table("community_game_rating_players")
    op.drop_index("ix_community_game_ratings_community", table_name="community_game_ratings")
    op.drop_table("community_game_ratings")
    op.drop_index("ix_community_rating_events_game", table_name="community_rating_events")
    op.drop_index("ix_community_rating_events_profile_created", table_name="community_rating_events")
    op.drop_table("community_rating_events")
    op.drop_index("ix_community_ratings_rank", table_name="community_ratings")
    op.drop_table("community_ratings")
