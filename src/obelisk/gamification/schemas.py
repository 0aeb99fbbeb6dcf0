"""Pydantic response models for progression endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


# --- Badge ---


class BadgeDefinitionResponse(BaseModel):
    name: str
    description: str
    criteria: str | None = None
    color: str | None = None


class AllBadgesResponse(BaseModel):
    badges: list[BadgeDefinitionResponse]


class EarnedBadgeResponse(BaseModel):
    name: str
    description: str
    color: str | None = None
    earned_at: datetime
    metadata: dict = {}


class UserBadgesResponse(BaseModel):
    earned: list[EarnedBadgeResponse]
    total_earned: int


# --- XP ---


class XPResponse(BaseModel):
    total_xp: int
    level: int
    xp_into_level: int
    xp_for_level: int
    next_level: int
    next_level_xp: int
    progress: float


class XPHistoryEntry(BaseModel):
    amount: int
    source: str
    source_id: str | None = None
    description: str | None = None
    created_at: datetime | None = None


class XPHistoryResponse(BaseModel):
    entries: list[XPHistoryEntry]
    total: int
    page: int
    per_page: int
