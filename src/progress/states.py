"""Lesson progress states and per-run outcome records."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class LessonState(str, Enum):
    IDLE = "idle"
    ADVANCING = "advancing"
    WATCHING = "watching"
    COMPLETABLE = "completable"
    COMPLETED = "completed"
    QUIZ_SEARCH = "quiz_search"
    QUIZ_ANSWERING = "quiz_answering"
    SUBMITTED = "submitted"
    DONE = "done"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return self in (LessonState.DONE, LessonState.ABANDONED)


@dataclass
class ItemOutcome:
    index: int
    state: LessonState = LessonState.IDLE
    trace: List[LessonState] = field(default_factory=lambda: [LessonState.IDLE])
    notes: List[str] = field(default_factory=list)

    def move_to(self, state: LessonState) -> None:
        self.state = state
        self.trace.append(state)

    def note(self, message: str) -> None:
        self.notes.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "state": self.state.value,
            "trace": [s.value for s in self.trace],
            "notes": list(self.notes),
        }


@dataclass
class CourseOutcome:
    label: str
    opened: bool = False
    items: List[ItemOutcome] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def status(self) -> str:
        if not self.opened:
            return "skipped"
        done = sum(1 for item in self.items if item.state is LessonState.DONE)
        if self.items and done == len(self.items) and not self.error:
            return "pass"
        if done == 0:
            return "fail"
        return "partial"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "opened": self.opened,
            "status": self.status,
            "error": self.error,
            "items": [item.to_dict() for item in self.items],
        }


@dataclass
class RunReport:
    started_at: datetime.datetime = field(default_factory=datetime.datetime.now)
    finished_at: Optional[datetime.datetime] = None
    strategy: str = "index"
    courses: List[CourseOutcome] = field(default_factory=list)
    error: Optional[str] = None

    def _count(self, state: LessonState) -> int:
        return sum(1 for course in self.courses for item in course.items if item.state is state)

    @property
    def items_done(self) -> int:
        return self._count(LessonState.DONE)

    @property
    def items_abandoned(self) -> int:
        return self._count(LessonState.ABANDONED)

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        finished = self.finished_at or datetime.datetime.now()
        return {
            "run_metadata": {
                "timestamp": self.started_at.isoformat(),
                "duration_seconds": round((finished - self.started_at).total_seconds(), 2),
                "strategy": self.strategy,
                "success": self.succeeded,
            },
            "statistics": {
                "courses_attempted": len(self.courses),
                "courses_opened": sum(1 for c in self.courses if c.opened),
                "items_done": self.items_done,
                "items_abandoned": self.items_abandoned,
            },
            "error": self.error,
            "courses": [course.to_dict() for course in self.courses],
        }
