"""Progression API endpoints — 4 routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from obelisk.auth.dependencies import get_current_user
from obelisk.database import get_session
from obelisk.db.models import User
from obelisk.gamification.badge_service import get_user_badges, list_badge_definitions
from obelisk.gamification.level_thresholds import compute_level
from obelisk.gamification.progression_service import get_xp, get_xp_history
from obelisk.gamification.schemas import (
    AllBadgesResponse,
    BadgeDefinitionResponse,
    EarnedBadgeResponse,
    UserBadgesResponse,
    XPHistoryEntry,
    XPHistoryResponse,
    XPResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Progression"])


# ── Public endpoints ──


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_session)):
    """Get all badge definitions."""
    definitions = await list_badge_definitions(db)
    return AllBadgesResponse(
        badges=[
            BadgeDefinitionResponse(
                name=b.name,
                description=b.description,
                criteria=b.criteria,
                color=b.color,
            )
            for b in definitions
        ]
    )


# ── Authenticated endpoints ──


@router.get("/users/me/badges", response_model=UserBadgesResponse)
async def get_my_badges(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Get current user's earned badges."""
    earned_badges = await get_user_badges(db, user.id)
    return UserBadgesResponse(
        earned=[
            EarnedBadgeResponse(
                name=ub.badge.name,
                description=ub.badge.description,
                color=ub.badge.color,
                earned_at=ub.awarded_at,
                metadata=ub.award_metadata or {},
            )
            for ub in earned_badges
        ],
        total_earned=len(earned_badges),
    )


@router.get("/users/me/xp", response_model=XPResponse)
async def get_my_xp(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Get current user's XP and level."""
    total_xp = await get_xp(db, user.id)
    level_info = compute_level(total_xp)
    return XPResponse(total_xp=total_xp, **level_info)


@router.get("/users/me/xp/history", response_model=XPHistoryResponse)
async def get_my_xp_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
):
    """Get XP ledger history (paginated)."""
    entries, total = await get_xp_history(db, user.id, page, per_page)

    return XPHistoryResponse(
        entries=[
            XPHistoryEntry(
                amount=e.amount,
                source=e.source,
                source_id=e.source_id,
                description=e.description,
                created_at=e.created_at,
            )
            for e in entries
        ],
        total=total,
        page=page,
        per_page=per_page,
    )
