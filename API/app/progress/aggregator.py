"""Build a student's progress document from independent read-only branches.

Each branch opens its own session and runs concurrently with the others under a
per-branch deadline. A branch that misses its deadline is replaced by an empty
value and named in `degradedSections`; any other branch failure fails the whole
document.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.logging import DOMAIN_PROGRESS, get_domain_logger
from app.core.settings import settings
from app.models.entities import (
    Chapter,
    Course,
    Enrollment,
    Lesson,
    LessonProgress,
    Quiz,
    QuizAttempt,
    StudySession,
    Task,
    User,
    UserSettings,
)
from app.progress.calculations import (
    AchievementFacts,
    Milestone,
    build_weekly_activity,
    calculate_study_streak,
    evaluate_achievements,
    merge_milestones,
    rollup_subjects,
    subject_label,
)
from app.schemas.progress import OverallStats, ProgressData, ProgressUser

logger = get_domain_logger(__name__, DOMAIN_PROGRESS)

Branch = Callable[[AsyncSession, "ProgressContext"], Awaitable[Any]]


@dataclass(frozen=True)
class ProgressContext:
    user_id: uuid.UUID
    now: datetime

    @property
    def today(self) -> date:
        return self.now.date()

    def start_of_day(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProgressAggregator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        branch_timeout_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._session_factory = session_factory
        self.branch_timeout_seconds = (
            branch_timeout_seconds if branch_timeout_seconds is not None else settings.progress_branch_timeout_seconds
        )
        self._clock = clock

    async def find_user(self, provider_user_id: str) -> User | None:
        async with self._session_factory() as db:
            return (
                await db.execute(
                    select(User).where(User.workos_user_id == provider_user_id, User.deleted_at.is_(None)).limit(1)
                )
            ).scalar_one_or_none()

    # ── orchestration ────────────────────────────────────────────────────────

    async def _run_branch(self, name: str, branch: Branch, ctx: ProgressContext, fallback: Any) -> tuple[Any, bool]:
        async def _call():
            # Only the wait_for deadline degrades a section; a timeout raised by the
            # branch itself (pool checkout, driver) is a failure like any other.
            try:
                async with self._session_factory() as db:
                    return await branch(db, ctx)
            except TimeoutError as exc:
                raise RuntimeError(f"Progress branch {name} failed: {exc!r}") from exc

        try:
            return await asyncio.wait_for(_call(), timeout=self.branch_timeout_seconds), False
        except asyncio.TimeoutError:
            logger.warning(
                "Progress branch timed out, serving empty value | branch=%s user_id=%s timeout_s=%s",
                name,
                ctx.user_id,
                self.branch_timeout_seconds,
            )
            return fallback, True

    async def build(self, user: User) -> ProgressData:
        ctx = ProgressContext(user_id=user.id, now=self._clock().astimezone(timezone.utc))
        branches: list[tuple[str, Branch, Any]] = [
            ("overallStats", self._overall_totals, {}),
            ("subjectProgress", self._subject_rollup, []),
            ("weeklyActivity", self._weekly_activity, build_weekly_activity([], [], ctx.today)),
            ("recentMilestones", self._recent_milestones, []),
            ("achievements", self._achievement_facts, AchievementFacts()),
            ("streak", self._study_streak, 0),
            ("dailyGoal", self._daily_goal, settings.default_daily_goal_minutes),
        ]
        tasks = [asyncio.ensure_future(self._run_branch(name, branch, ctx, fallback)) for name, branch, fallback in branches]
        try:
            results = await asyncio.gather(*tasks)
        except Exception:
            for task in tasks:
                task.cancel()
            raise

        degraded = [name for (name, _, _), (_, timed_out) in zip(branches, results) if timed_out]
        totals, subjects, weekly, milestones, facts, streak, daily_goal = (value for value, _ in results)

        stats = OverallStats(
            total_study_time=round(totals.get("total_minutes", 0) / 60, 1),
            weekly_goal=daily_goal,
            weekly_progress=totals.get("week_minutes", 0),
            total_questions=totals.get("quiz_attempts", 0),
            accuracy_rate=round(totals.get("average_score", 0.0), 1),
            streak=streak,
            subjects_studied=totals.get("enrollments", 0),
        )
        if degraded:
            logger.info("Progress served with degraded sections | user_id=%s sections=%s", user.id, degraded)
        return ProgressData(
            user=ProgressUser(id=str(user.id), name=user.display_name, email=user.email, avatar=user.avatar),
            overall_stats=stats,
            subject_progress=subjects,
            weekly_activity=weekly,
            achievements=evaluate_achievements(facts, streak, subjects),
            recent_milestones=[m.as_dict() for m in milestones],
            degraded_sections=degraded,
        )

    # ── branches ─────────────────────────────────────────────────────────────

    async def _overall_totals(self, db: AsyncSession, ctx: ProgressContext) -> dict:
        week_start = ctx.now - timedelta(days=7)
        total_minutes = await db.scalar(
            select(func.coalesce(func.sum(StudySession.duration), 0)).where(StudySession.user_id == ctx.user_id)
        )
        week_minutes = await db.scalar(
            select(func.coalesce(func.sum(StudySession.duration), 0)).where(
                StudySession.user_id == ctx.user_id, StudySession.start_time >= week_start
            )
        )
        attempts, average = (
            await db.execute(
                select(func.count(QuizAttempt.id), func.avg(QuizAttempt.score)).where(
                    QuizAttempt.user_id == ctx.user_id
                )
            )
        ).one()
        enrollments = await db.scalar(select(func.count(Enrollment.id)).where(Enrollment.user_id == ctx.user_id))
        return {
            "total_minutes": int(total_minutes or 0),
            "week_minutes": int(week_minutes or 0),
            "quiz_attempts": int(attempts or 0),
            "average_score": float(average or 0.0),
            "enrollments": int(enrollments or 0),
        }

    async def _subject_rollup(self, db: AsyncSession, ctx: ProgressContext) -> list[dict]:
        completed_rows = await db.execute(
            select(Course.subject, func.count(LessonProgress.id))
            .join(Lesson, LessonProgress.lesson_id == Lesson.id)
            .join(Chapter, Lesson.chapter_id == Chapter.id)
            .join(Course, Chapter.course_id == Course.id)
            .where(LessonProgress.user_id == ctx.user_id, LessonProgress.status == "completed")
            .group_by(Course.subject)
        )
        # Denominator: lessons of the courses this user is enrolled in, per subject.
        lesson_rows = await db.execute(
            select(Course.subject, func.count(Lesson.id))
            .select_from(Enrollment)
            .join(Course, Enrollment.course_id == Course.id)
            .join(Chapter, Chapter.course_id == Course.id)
            .join(Lesson, Lesson.chapter_id == Chapter.id)
            .where(Enrollment.user_id == ctx.user_id)
            .group_by(Course.subject)
        )
        minute_rows = await db.execute(
            select(Course.subject, func.coalesce(func.sum(StudySession.duration), 0))
            .join(Course, StudySession.course_id == Course.id)
            .where(StudySession.user_id == ctx.user_id)
            .group_by(Course.subject)
        )
        quiz_rows = await db.execute(
            select(Course.subject, func.count(QuizAttempt.id), func.coalesce(func.sum(QuizAttempt.score), 0.0))
            .join(Quiz, QuizAttempt.quiz_id == Quiz.id)
            .join(Course, Quiz.course_id == Course.id)
            .where(QuizAttempt.user_id == ctx.user_id)
            .group_by(Course.subject)
        )
        return rollup_subjects(
            completed_by_subject={subject: count for subject, count in completed_rows},
            lessons_by_subject={subject: count for subject, count in lesson_rows},
            minutes_by_subject={subject: minutes for subject, minutes in minute_rows},
            quiz_by_subject={subject: (count, float(total)) for subject, count, total in quiz_rows},
        )

    async def _weekly_activity(self, db: AsyncSession, ctx: ProgressContext) -> list[dict]:
        window_start = ctx.start_of_day(ctx.today - timedelta(days=6))
        sessions = await db.execute(
            select(StudySession.start_time, StudySession.duration).where(
                StudySession.user_id == ctx.user_id, StudySession.start_time >= window_start
            )
        )
        attempts = await db.scalars(
            select(QuizAttempt.created_at).where(
                QuizAttempt.user_id == ctx.user_id, QuizAttempt.created_at >= window_start
            )
        )
        return build_weekly_activity(list(sessions), list(attempts), ctx.today)

    async def _recent_milestones(self, db: AsyncSession, ctx: ProgressContext) -> list[Milestone]:
        since = ctx.now - timedelta(days=settings.milestone_window_days)
        limit = settings.milestone_limit

        lessons = await db.execute(
            select(Lesson.title, Course.subject, LessonProgress.completed_at)
            .join(Lesson, LessonProgress.lesson_id == Lesson.id)
            .join(Chapter, Lesson.chapter_id == Chapter.id)
            .join(Course, Chapter.course_id == Course.id)
            .where(
                LessonProgress.user_id == ctx.user_id,
                LessonProgress.status == "completed",
                LessonProgress.completed_at >= since,
            )
            .order_by(LessonProgress.completed_at.desc())
            .limit(limit)
        )
        quizzes = await db.execute(
            select(Quiz.title, Course.subject, QuizAttempt.created_at)
            .join(Quiz, QuizAttempt.quiz_id == Quiz.id)
            .outerjoin(Course, Quiz.course_id == Course.id)
            .where(
                QuizAttempt.user_id == ctx.user_id,
                QuizAttempt.score >= settings.milestone_score_threshold,
                QuizAttempt.created_at >= since,
            )
            .order_by(QuizAttempt.created_at.desc())
            .limit(limit)
        )
        tasks = await db.execute(
            select(Task.title, Course.subject, Task.completed_at)
            .outerjoin(Course, Task.course_id == Course.id)
            .where(Task.user_id == ctx.user_id, Task.status == "completed", Task.completed_at >= since)
            .order_by(Task.completed_at.desc())
            .limit(limit)
        )
        return merge_milestones(
            [Milestone("lesson-completed", f"Completed: {title}", subject_label(subject), at) for title, subject, at in lessons],
            [Milestone("quiz-mastered", f"Quiz Passed: {title}", subject_label(subject), at) for title, subject, at in quizzes],
            [Milestone("task-completed", f"Task Done: {title}", subject_label(subject), at) for title, subject, at in tasks],
            limit=limit,
        )

    async def _achievement_facts(self, db: AsyncSession, ctx: ProgressContext) -> AchievementFacts:
        attempts = await db.scalar(select(func.count(QuizAttempt.id)).where(QuizAttempt.user_id == ctx.user_id))
        high_scores = await db.scalar(
            select(func.count(QuizAttempt.id)).where(
                QuizAttempt.user_id == ctx.user_id,
                QuizAttempt.score >= settings.milestone_score_threshold,
            )
        )
        return AchievementFacts(quiz_attempts=int(attempts or 0), high_score_attempts=int(high_scores or 0))

    async def _study_streak(self, db: AsyncSession, ctx: ProgressContext) -> int:
        lookback_start = ctx.start_of_day(ctx.today - timedelta(days=settings.streak_lookback_days))
        starts = await db.scalars(
            select(StudySession.start_time).where(
                StudySession.user_id == ctx.user_id, StudySession.start_time >= lookback_start
            )
        )
        return calculate_study_streak(list(starts), ctx.today)

    async def _daily_goal(self, db: AsyncSession, ctx: ProgressContext) -> int:
        goal = await db.scalar(select(UserSettings.daily_goal).where(UserSettings.user_id == ctx.user_id).limit(1))
        return int(goal) if goal is not None else settings.default_daily_goal_minutes
