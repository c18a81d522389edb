"""initial_schema

Revision ID: 3f9d2c71a8b4
Revises:
Create Date: 2026-10-18 10:12:40.118204

"""

from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9d2c71a8b4"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# SQLModel stores enum member names
race_status = sa.Enum("PENDING", "FULL", "RUNNING", "COMPLETED", "CANCELLED", name="racestatus")


def upgrade() -> None:
    """Create rats, races, rat_locks, wallets and processed_events tables."""
    op.create_table(
        "rats",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("token_id", sa.Integer(), nullable=False),
        sa.Column("owner", sa.String(length=42), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("model_index", sa.Integer(), nullable=False),
        sa.Column("color", sa.String(length=20), nullable=False),
        sa.Column("image_url", sa.String(length=500), nullable=False),
        sa.Column("metadata_url", sa.String(length=500), nullable=True),
        sa.Column("stats", sa.JSON(), nullable=False),
        sa.Column("speeds", sa.JSON(), nullable=False),
        sa.Column("gender", sa.String(length=10), nullable=False),
        sa.Column("dob", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archetype", sa.String(length=40), nullable=False),
        sa.Column("power_rating", sa.Integer(), nullable=False),
        sa.Column("rarity_score", sa.Float(), nullable=False),
        sa.Column("wins", sa.Integer(), nullable=False),
        sa.Column("placed", sa.Integer(), nullable=False),
        sa.Column("losses", sa.Integer(), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False),
        sa.Column("xp", sa.Integer(), nullable=False),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("parent1_token_id", sa.Integer(), nullable=True),
        sa.Column("parent2_token_id", sa.Integer(), nullable=True),
        sa.Column("is_purebreed", sa.Boolean(), nullable=False),
        sa.Column("breeding_count", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_rats_token_id"), "rats", ["token_id"], unique=True)
    op.create_index(op.f("ix_rats_owner"), "rats", ["owner"], unique=False)

    op.create_table(
        "races",
        sa.Column("race_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("creator", sa.String(length=42), nullable=False),
        sa.Column("track_id", sa.Integer(), nullable=False),
        sa.Column("entry_token", sa.String(length=42), nullable=False),
        sa.Column("entry_fee", sa.String(length=80), nullable=False),
        sa.Column("status", race_status, nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("participants", sa.JSON(), nullable=False),
        sa.Column("participant_count", sa.Integer(), nullable=False),
        sa.Column("prize_pool", sa.String(length=80), nullable=False),
        sa.Column("results", sa.JSON(), nullable=True),
        sa.Column("winner", sa.JSON(), nullable=True),
        sa.Column("on_chain_prizes", sa.JSON(), nullable=True),
        sa.Column("created_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("start_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("settlement_tx_hash", sa.String(length=66), nullable=True),
        sa.Column("started_by", sa.String(length=42), nullable=True),
        sa.Column("cancelled_by", sa.String(length=42), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("filled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("race_id"),
    )
    op.create_index(op.f("ix_races_creator"), "races", ["creator"], unique=False)
    op.create_index(op.f("ix_races_status"), "races", ["status"], unique=False)

    op.create_table(
        "rat_locks",
        sa.Column("rat_token_id", sa.Integer(), autoincrement=False, nullable=False),
        sa.Column("race_id", sa.Integer(), nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("rat_token_id"),
    )
    op.create_index(op.f("ix_rat_locks_race_id"), "rat_locks", ["race_id"], unique=False)

    op.create_table(
        "wallets",
        sa.Column("address", sa.String(length=42), nullable=False),
        sa.Column("rat_ids", sa.JSON(), nullable=False),
        sa.Column("race_history", sa.JSON(), nullable=False),
        sa.Column("total_wins", sa.Integer(), nullable=False),
        sa.Column("total_races", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("address"),
    )

    op.create_table(
        "processed_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("event_key", sa.String(length=100), nullable=False),
        sa.Column("event_name", sa.String(length=50), nullable=False),
        sa.Column("tx_hash", sa.String(length=66), nullable=True),
        sa.Column("log_index", sa.Integer(), nullable=True),
        sa.Column("block_number", sa.Integer(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_processed_events_event_key"), "processed_events", ["event_key"], unique=True
    )


def downgrade() -> None:
    """Drop all tables and the race status enum."""
    op.drop_index(op.f("ix_processed_events_event_key"), table_name="processed_events")
    op.drop_table("processed_events")
    op.drop_table("wallets")
    op.drop_index(op.f("ix_rat_locks_race_id"), table_name="rat_locks")
    op.drop_table("rat_locks")
    op.drop_index(op.f("ix_races_status"), table_name="races")
    op.drop_index(op.f("ix_races_creator"), table_name="races")
    op.drop_table("races")
    op.drop_index(op.f("ix_rats_owner"), table_name="rats")
    op.drop_index(op.f("ix_rats_token_id"), table_name="rats")
    op.drop_table("rats")
    race_status.drop(op.get_bind(), checkfirst=True)
