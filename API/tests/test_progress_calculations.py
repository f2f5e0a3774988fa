from datetime import date, datetime, timedelta, timezone

from app.progress.calculations import (
    AchievementFacts,
    Milestone,
    build_weekly_activity,
    calculate_study_streak,
    evaluate_achievements,
    merge_milestones,
    rollup_subjects,
    to_utc,
)

TODAY = date(2026, 3, 11)


def _at(day: date, hour: int = 12) -> datetime:
    return datetime(day.year, day.month, day.day, hour, tzinfo=timezone.utc)


def test_streak_counts_back_from_today_until_first_gap():
    moments = [_at(TODAY), _at(TODAY - timedelta(days=1)), _at(TODAY - timedelta(days=2)), _at(TODAY - timedelta(days=5))]
    assert calculate_study_streak(moments, TODAY) == 3


def test_streak_is_zero_without_a_session_today():
    assert calculate_study_streak([_at(TODAY - timedelta(days=1))], TODAY) == 0
    assert calculate_study_streak([], TODAY) == 0


def test_streak_counts_each_day_once():
    moments = [_at(TODAY, 8), _at(TODAY, 20), _at(TODAY - timedelta(days=1), 9)]
    assert calculate_study_streak(moments, TODAY) == 2


def test_naive_datetimes_are_treated_as_utc():
    naive = datetime(2026, 3, 11, 23, 30)
    assert to_utc(naive).tzinfo == timezone.utc
    assert calculate_study_streak([naive], TODAY) == 1


def test_weekly_activity_is_seven_days_oldest_first():
    sessions = [(_at(TODAY), 45), (_at(TODAY, 18), 15), (_at(TODAY - timedelta(days=6)), 30), (_at(TODAY - timedelta(days=7)), 90)]
    quizzes = [_at(TODAY - timedelta(days=2))]
    week = build_weekly_activity(sessions, quizzes, TODAY)

    assert len(week) == 7
    assert week[0]["date"] == "2026-03-05"
    assert week[-1]["date"] == "2026-03-11"
    assert week[-1]["day"] == "Wed"
    assert week[-1]["minutes"] == 60
    assert week[-1]["hours"] == 1.0
    assert week[-1]["sessions"] == 2
    assert week[0]["minutes"] == 30
    assert week[4]["questions"] == 1
    assert sum(day["minutes"] for day in week) == 90


def test_weekly_activity_without_data_is_zero_filled():
    week = build_weekly_activity([], [], TODAY)
    assert len(week) == 7
    assert all(day["minutes"] == 0 and day["questions"] == 0 for day in week)


def test_milestones_are_newest_first_and_capped():
    base = _at(TODAY)
    lessons = [Milestone("lesson-completed", f"Completed: L{i}", "Mathematics", base - timedelta(hours=2 * i)) for i in range(8)]
    quizzes = [Milestone("quiz-mastered", f"Quiz Passed: Q{i}", "Science", base - timedelta(hours=2 * i + 1)) for i in range(8)]

    merged = merge_milestones(lessons, quizzes, [], limit=10)
    assert len(merged) == 10
    stamps = [m.occurred_at for m in merged]
    assert stamps == sorted(stamps, reverse=True)
    assert merged[0].title == "Completed: L0"
    assert merged[1].title == "Quiz Passed: Q0"


def test_milestone_dict_shape():
    milestone = Milestone("quiz-mastered", "Quiz Passed: Algebra", "Mathematics", datetime(2026, 3, 10, 9, 0))
    as_dict = milestone.as_dict()
    assert as_dict["icon"] == "Award"
    assert as_dict["date"].startswith("2026-03-10T09:00:00")


def test_subject_rollup_uses_per_subject_denominator():
    rollup = rollup_subjects(
        completed_by_subject={"mathematics": 3, "science": 2},
        lessons_by_subject={"mathematics": 12, "science": 2, "history": 40},
        minutes_by_subject={"mathematics": 90, "english": 30},
        quiz_by_subject={"mathematics": (2, 170.0)},
    )
    by_id = {entry["id"]: entry for entry in rollup}

    assert set(by_id) == {"english", "mathematics", "science"}
    assert by_id["mathematics"]["progress"] == 25
    assert by_id["mathematics"]["study_time"] == 1.5
    assert by_id["mathematics"]["accuracy"] == 85.0
    assert by_id["mathematics"]["color"] == "bg-blue-500"
    assert by_id["science"]["progress"] == 100
    # Study time without enrolled lessons: no denominator, no progress.
    assert by_id["english"]["progress"] == 0
    assert by_id["english"]["total_topics"] == 0


def test_subject_progress_is_capped_at_100():
    rollup = rollup_subjects({"science": 5}, {"science": 3}, {}, {})
    assert rollup[0]["progress"] == 100


def test_subject_rollup_empty_without_activity():
    assert rollup_subjects({}, {"mathematics": 10}, {}, {"mathematics": (1, 80.0)}) == []


def test_achievements_reflect_facts():
    subjects = rollup_subjects({"science": 4}, {"science": 4}, {}, {})
    badges = {
        badge["id"]: badge
        for badge in evaluate_achievements(AchievementFacts(quiz_attempts=3, high_score_attempts=5), 7, subjects)
    }
    assert all(badge["earned"] for badge in badges.values())
    assert badges["quiz-champion"]["progress"] == 5


def test_achievements_for_new_student():
    badges = evaluate_achievements(AchievementFacts(), 0, [])
    assert [badge["id"] for badge in badges] == ["first-quiz", "week-streak", "subject-master", "quiz-champion"]
    assert not any(badge["earned"] for badge in badges)
    assert all(badge["progress"] == 0 for badge in badges)
