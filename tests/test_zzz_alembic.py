"""Alembic migration tests.

File named test_zzz_alembic.py to sort LAST in pytest collection order.
Runs only against PostgreSQL; the migrations use Postgres DDL.
"""

import os
import subprocess

import pytest

pytestmark = pytest.mark.skipif(
    not os.environ.get("OBELISK_DATABASE_URL", "").startswith("postgresql"),
    reason="Alembic migrations need a PostgreSQL OBELISK_DATABASE_URL",
)


def test_alembic_upgrade_head() -> None:
    """alembic upgrade head succeeds without errors."""
    result = subprocess.run(
        ["alembic", "upgrade", "head"],
        capture_output=True,
        text=True,
    )
    assert result.returncode == 0, f"alembic upgrade failed: {result.stderr}"


def test_alembic_current_shows_head() -> None:
    """alembic current shows the latest revision."""
    result = subprocess.run(
        ["alembic", "current"],
        capture_output=True,
        text=True,
    )
    assert result.returncode == 0
    assert "002_progression_tables" in result.stdout
