"""Progression tables.

Creates user_progress, xp_ledger, badges and user_badge_awards. Deployments
that stop at 001_baseline run without XP; awards become no-ops.

Revision ID: 002_progression_tables
Revises: 001_baseline
Create Date: 2026-09-21
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_progression_tables"
down_revision: str | None = "001_baseline"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- User Progress (level is derived, never stored) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_progress (
            user_id BIGINT PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
            xp BIGINT NOT NULL DEFAULT 0 CHECK (xp >= 0),
            updated_at TIMESTAMPTZ
        )
    """)

    # --- XP Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS xp_ledger (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            amount INTEGER NOT NULL,
            source VARCHAR(32) NOT NULL,
            source_id VARCHAR(128),
            description VARCHAR(256),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            idempotency_key VARCHAR(256) UNIQUE
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_xp_ledger_user
        ON xp_ledger(user_id, created_at DESC)
    """)

    # --- Badge Definitions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badges (
            id BIGSERIAL PRIMARY KEY,
            name VARCHAR(128) UNIQUE NOT NULL,
            description TEXT NOT NULL DEFAULT '',
            criteria TEXT,
            color VARCHAR(16),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Badge Awards ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badge_awards (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id BIGINT NOT NULL REFERENCES badges(id),
            awarded_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            metadata JSONB NOT NULL DEFAULT '{}',
            CONSTRAINT uq_user_badge_awards_user_badge UNIQUE (user_id, badge_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_user_badge_awards_user
        ON user_badge_awards(user_id)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS user_badge_awards CASCADE")
    op.execute("DROP TABLE IF EXISTS badges CASCADE")
    op.execute("DROP TABLE IF EXISTS xp_ledger CASCADE")
    op.execute("DROP TABLE IF EXISTS user_progress CASCADE")
