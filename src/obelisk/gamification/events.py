"""Progression events produced by check-in, XP and badge services.

Services return these instead of notifying inline; the notification
dispatcher consumes them after the primary write has committed.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True)
class ProgressionEvent(ABC):
    """Base event. ``name`` doubles as the pub/sub channel suffix."""

    name: ClassVar[str] = "event"

    user_id: int

    @abstractmethod
    def notification(self) -> dict[str, Any]:
        """Keyword arguments for NotificationDispatcher.notify()."""

    def payload(self) -> dict[str, Any]:
        return {"event": self.name, **asdict(self)}


@dataclass(frozen=True)
class CheckInCompleted(ProgressionEvent):
    name: ClassVar[str] = "checkin_completed"

    workshop_id: int = 0
    workshop_title: str = ""
    method: str = "qr"
    xp_awarded: int = 0

    def notification(self) -> dict[str, Any]:
        message = f'You\'ve successfully checked in for "{self.workshop_title}".'
        if self.xp_awarded:
            message += f" +{self.xp_awarded} XP awarded!"
        return {
            "type_": "achievement",
            "title": "Workshop Attendance Confirmed! ✅",
            "message": message,
            "link": f"/workshops/{self.workshop_id}",
            "metadata": {
                "workshop_id": self.workshop_id,
                "workshop_title": self.workshop_title,
                "xp_awarded": self.xp_awarded,
            },
        }


@dataclass(frozen=True)
class LevelUp(ProgressionEvent):
    name: ClassVar[str] = "level_up"

    old_level: int = 1
    new_level: int = 1
    total_xp: int = 0

    def notification(self) -> dict[str, Any]:
        return {
            "type_": "achievement",
            "title": "Level Up! ⬆️",
            "message": f"You reached level {self.new_level} with {self.total_xp:,} XP.",
            "link": "/profile",
            "metadata": {
                "old_level": self.old_level,
                "new_level": self.new_level,
                "total_xp": self.total_xp,
            },
        }


@dataclass(frozen=True)
class MilestoneReached(ProgressionEvent):
    name: ClassVar[str] = "milestone_reached"

    milestone: int = 0
    total_xp: int = 0

    def notification(self) -> dict[str, Any]:
        return {
            "type_": "achievement",
            "title": "Milestone Reached! \U0001f389",
            "message": f"You passed {self.milestone:,} XP. Keep it up!",
            "link": "/profile",
            "metadata": {"milestone": self.milestone, "total_xp": self.total_xp},
        }


@dataclass(frozen=True)
class BadgeGranted(ProgressionEvent):
    name: ClassVar[str] = "badge_granted"

    badge_name: str = ""
    reason: str = ""
    context: dict[str, Any] = field(default_factory=dict)

    def notification(self) -> dict[str, Any]:
        message = f'You earned the "{self.badge_name}" badge'
        message += f" for {self.reason}!" if self.reason else "!"
        return {
            "type_": "badge",
            "title": "Badge Earned! \U0001f3c6",
            "message": message,
            "link": "/profile",
            "metadata": {"badge_name": self.badge_name, **self.context},
        }


@dataclass(frozen=True)
class CourseCompleted(ProgressionEvent):
    name: ClassVar[str] = "course_completed"

    course_id: int = 0
    course_name: str = ""
    badge_name: str = ""

    def notification(self) -> dict[str, Any]:
        message = f'Congratulations! You completed the course "{self.course_name}"'
        message += f' and earned the "{self.badge_name}" badge!' if self.badge_name else "!"
        return {
            "type_": "course",
            "title": "Course Completed! \U0001f389",
            "message": message,
            "link": f"/academy/courses/{self.course_id}",
            "metadata": {
                "course_id": self.course_id,
                "course_name": self.course_name,
                "badge_name": self.badge_name,
            },
        }
