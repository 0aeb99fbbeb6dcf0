"""Level and milestone computation.

Level is always derived from cumulative XP and MUST match the frontend's
getLevel()/getProgressToNextLevel():

    level = floor(xp / 500) + 1
"""

from __future__ import annotations

XP_PER_LEVEL = 500

# Absolute XP values that trigger a one-time celebration, ascending.
XP_MILESTONES: tuple[int, ...] = (1000, 5000, 10000, 25000, 50000, 100000)


def level_for(total_xp: int) -> int:
    """Level for a cumulative XP total."""
    if total_xp < 0:
        raise ValueError(f"XP cannot be negative: {total_xp}")
    return total_xp // XP_PER_LEVEL + 1


def compute_level(total_xp: int) -> dict:
    """Compute level info from total XP.

    Must match frontend getProgressToNextLevel() exactly.
    """
    level = level_for(total_xp)
    current_base = (level - 1) * XP_PER_LEVEL
    next_base = level * XP_PER_LEVEL
    xp_into_level = total_xp - current_base

    return {
        "level": level,
        "xp_into_level": xp_into_level,
        "xp_for_level": XP_PER_LEVEL,
        "next_level": level + 1,
        "next_level_xp": next_base,
        "progress": xp_into_level / XP_PER_LEVEL,
    }


def crossed_milestones(
    old_xp: int,
    new_xp: int,
    milestones: tuple[int, ...] = XP_MILESTONES,
) -> list[int]:
    """Milestones reached by moving from old_xp to new_xp.

    A milestone counts when old_xp < milestone <= new_xp, so landing exactly
    on one and jumping past one both fire. Each milestone is reached at most
    once because XP never decreases.
    """
    return [m for m in milestones if old_xp < m <= new_xp]
