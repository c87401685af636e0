"""Create reviews and stations tables

Revision ID: 001
Revises: None
Create Date: 2025-03-01 00:00:00.000000+00:00

reviews: one row per submitted review; soft-deleted rows keep
is_active = false and a deleted_at timestamp.
stations: reference list of serving counters, unique by name.

Rollback: downgrade() drops both tables (destructive).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "reviews",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("food_item", sa.String(200), nullable=False),
        sa.Column("station", sa.String(100), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=False),
        sa.Column(
            "reviewer",
            sa.String(100),
            nullable=False,
            server_default=sa.text("'Anonymous'"),
        ),
        sa.Column("image_url", sa.String(500), nullable=True, comment="Hosted photo URL"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "deleted_at",
            sa.DateTime(timezone=True),
            nullable=True,
            comment="Set when the review is soft-deleted",
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("rating >= 1 AND rating <= 5", name="ck_reviews_rating_range"),
    )

    # Listing filters, the aggregation group-by, and newest-first ordering
    op.create_index("idx_reviews_food_item", "reviews", ["food_item"])
    op.create_index("idx_reviews_station", "reviews", ["station"])
    op.create_index("idx_reviews_station_active", "reviews", ["station", "is_active"])
    op.create_index("idx_reviews_food_item_station", "reviews", ["food_item", "station"])
    op.create_index("idx_reviews_created_at", "reviews", [sa.text("created_at DESC")])

    op.create_table(
        "stations",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name", name="uq_stations_name"),
    )


def downgrade() -> None:
    op.drop_table("stations")
    op.drop_index("idx_reviews_created_at", table_name="reviews")
    op.drop_index("idx_reviews_food_item_station", table_name="reviews")
    op.drop_index("idx_reviews_station_active", table_name="reviews")
    op.drop_index("idx_reviews_station", table_name="reviews")
    op.drop_index("idx_reviews_food_item", table_name="reviews")
    op.drop_table("reviews")
