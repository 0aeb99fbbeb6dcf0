"""Baseline: users, workshops, attendance and notifications.

Revision ID: 001_baseline
Revises: None
Create Date: 2026-09-14
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_baseline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users (mirror of the identity provider) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id BIGSERIAL PRIMARY KEY,
            email VARCHAR(320) UNIQUE NOT NULL,
            first_name VARCHAR(64),
            last_name VARCHAR(64),
            display_name VARCHAR(64),
            role VARCHAR(16) NOT NULL DEFAULT 'member',
            is_banned BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Workshops ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS workshops (
            id BIGSERIAL PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            description TEXT,
            scheduled_at TIMESTAMPTZ NOT NULL,
            host_name VARCHAR(128) NOT NULL,
            created_by BIGINT REFERENCES users(id) ON DELETE SET NULL,
            qr_token VARCHAR(64) UNIQUE,
            qr_expires_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_workshops_scheduled
        ON workshops(scheduled_at)
    """)

    # --- Attendance (one row per workshop + user) ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS workshop_attendance (
            id BIGSERIAL PRIMARY KEY,
            workshop_id BIGINT NOT NULL REFERENCES workshops(id) ON DELETE CASCADE,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            checked_in_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            method VARCHAR(16) NOT NULL CHECK (method IN ('qr', 'manual')),
            recorded_by BIGINT REFERENCES users(id) ON DELETE SET NULL,
            CONSTRAINT uq_workshop_attendance_workshop_user UNIQUE (workshop_id, user_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_workshop_attendance_user
        ON workshop_attendance(user_id)
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id BIGSERIAL PRIMARY KEY,
            user_id BIGINT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            title VARCHAR(256) NOT NULL,
            message TEXT NOT NULL,
            link VARCHAR(256),
            metadata JSONB NOT NULL DEFAULT '{}',
            read BOOLEAN NOT NULL DEFAULT false,
            read_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_user_created
        ON notifications(user_id, created_at DESC)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_user_unread
        ON notifications(user_id) WHERE read = false
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS workshop_attendance CASCADE")
    op.execute("DROP TABLE IF EXISTS workshops CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
