"""Pure progress calculations. No I/O; callers pass `today`/`now` explicitly."""
from __future__ import annotations

import heapq
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Mapping

WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

SUBJECT_STYLES: dict[str, tuple[str, str]] = {
    "mathematics": ("bg-blue-500", "Calculator"),
    "english": ("bg-green-500", "BookOpen"),
    "science": ("bg-purple-500", "FlaskConical"),
    "history": ("bg-red-500", "Landmark"),
    "geography": ("bg-orange-500", "Globe"),
}
DEFAULT_SUBJECT_STYLE = ("bg-gray-500", "BookOpen")

MILESTONE_ICONS = {
    "lesson-completed": "CheckCircle",
    "quiz-mastered": "Award",
    "task-completed": "Target",
}


def to_utc(moment: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def calendar_day(moment: datetime | date) -> date:
    if isinstance(moment, datetime):
        return to_utc(moment).date()
    return moment


def subject_label(subject: str | None) -> str:
    return (subject or "other").replace("_", " ").replace("-", " ").title()


# ── streak ───────────────────────────────────────────────────────────────────


def calculate_study_streak(moments: Iterable[datetime | date], today: date) -> int:
    """Consecutive calendar days ending today with at least one session; the first gap ends it."""
    days = {calendar_day(m) for m in moments}
    streak = 0
    cursor = today
    while cursor in days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


# ── weekly activity ──────────────────────────────────────────────────────────


def build_weekly_activity(
    sessions: Iterable[tuple[datetime, int]],
    quiz_attempt_times: Iterable[datetime],
    today: date,
) -> list[dict]:
    """Seven entries, oldest first, ending today. Days without activity are zero-filled."""
    window = [today - timedelta(days=offset) for offset in range(6, -1, -1)]
    buckets = {day: {"minutes": 0, "sessions": 0, "questions": 0} for day in window}
    for started_at, duration in sessions:
        bucket = buckets.get(calendar_day(started_at))
        if bucket is not None:
            bucket["minutes"] += int(duration or 0)
            bucket["sessions"] += 1
    for attempted_at in quiz_attempt_times:
        bucket = buckets.get(calendar_day(attempted_at))
        if bucket is not None:
            bucket["questions"] += 1
    return [
        {
            "date": day.isoformat(),
            "day": WEEKDAY_LABELS[day.weekday()],
            "minutes": buckets[day]["minutes"],
            "hours": round(buckets[day]["minutes"] / 60, 1),
            "sessions": buckets[day]["sessions"],
            "questions": buckets[day]["questions"],
        }
        for day in window
    ]


# ── milestones ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Milestone:
    type: str
    title: str
    subject: str
    occurred_at: datetime

    def as_dict(self) -> dict:
        return {
            "type": self.type,
            "title": self.title,
            "subject": self.subject,
            "date": to_utc(self.occurred_at).isoformat(),
            "icon": MILESTONE_ICONS.get(self.type, "Star"),
        }


def merge_milestones(*groups: Iterable[Milestone], limit: int = 10) -> list[Milestone]:
    """Newest first across all sources, capped at `limit`."""
    return heapq.nlargest(
        limit,
        (m for group in groups for m in group),
        key=lambda m: to_utc(m.occurred_at),
    )


# ── subjects ─────────────────────────────────────────────────────────────────


def rollup_subjects(
    completed_by_subject: Mapping[str, int],
    lessons_by_subject: Mapping[str, int],
    minutes_by_subject: Mapping[str, int],
    quiz_by_subject: Mapping[str, tuple[int, float]],
) -> list[dict]:
    """One entry per subject with completed lessons or study time.

    Completion is measured against the lessons of the user's enrolled courses in
    that same subject, never against the user's overall lesson total.
    """
    subjects = sorted(set(completed_by_subject) | set(minutes_by_subject))
    rollup: list[dict] = []
    for subject in subjects:
        completed = int(completed_by_subject.get(subject, 0))
        total = int(lessons_by_subject.get(subject, 0))
        minutes = int(minutes_by_subject.get(subject, 0) or 0)
        attempts, score_sum = quiz_by_subject.get(subject, (0, 0.0))
        progress = min(100, round(completed / total * 100)) if total > 0 else 0
        color, icon = SUBJECT_STYLES.get(subject, DEFAULT_SUBJECT_STYLE)
        rollup.append(
            {
                "id": subject,
                "name": subject_label(subject),
                "progress": progress,
                "total_topics": total,
                "completed_topics": completed,
                "study_time": round(minutes / 60, 1),
                "questions_answered": int(attempts),
                "accuracy": round(float(score_sum) / attempts, 1) if attempts else 0.0,
                "color": color,
                "icon": icon,
            }
        )
    return rollup


# ── achievements ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AchievementFacts:
    quiz_attempts: int = 0
    high_score_attempts: int = 0


QUIZ_CHAMPION_TARGET = 5
WEEK_STREAK_TARGET = 7


def evaluate_achievements(facts: AchievementFacts, streak: int, subjects: list[dict]) -> list[dict]:
    best_subject = max((int(s.get("progress", 0)) for s in subjects), default=0)
    badges = [
        ("first-quiz", "Quiz Beginner", "Complete your first quiz", facts.quiz_attempts, 1),
        ("week-streak", "Week Warrior", "Study for 7 days in a row", streak, WEEK_STREAK_TARGET),
        ("subject-master", "Subject Master", "Complete 100% of any subject", best_subject, 100),
        (
            "quiz-champion",
            "Quiz Champion",
            "Score 90% or higher on 5 quizzes",
            facts.high_score_attempts,
            QUIZ_CHAMPION_TARGET,
        ),
    ]
    return [
        {
            "id": badge_id,
            "title": title,
            "description": description,
            "earned": value >= target,
            "progress": min(value, target),
            "total": target,
        }
        for badge_id, title, description, value, target in badges
    ]
