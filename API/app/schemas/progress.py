from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProgressUser(_CamelModel):
    id: str
    name: str
    email: str
    avatar: str | None = None


class OverallStats(_CamelModel):
    total_study_time: float = 0.0  # hours
    weekly_goal: int = 60  # minutes per day
    weekly_progress: int = 0  # minutes in the last 7 days
    total_questions: int = 0
    accuracy_rate: float = 0.0  # percentage
    streak: int = 0  # days
    subjects_studied: int = 0


class SubjectProgress(_CamelModel):
    id: str
    name: str
    progress: int
    total_topics: int
    completed_topics: int
    study_time: float
    questions_answered: int
    accuracy: float
    color: str
    icon: str


class DailyActivity(_CamelModel):
    date: str
    day: str
    minutes: int
    hours: float
    sessions: int
    questions: int


class Achievement(_CamelModel):
    id: str
    title: str
    description: str
    earned: bool
    progress: int
    total: int


class RecentMilestone(_CamelModel):
    type: str
    title: str
    subject: str
    date: str
    icon: str


class ProgressData(_CamelModel):
    user: ProgressUser
    overall_stats: OverallStats
    subject_progress: list[SubjectProgress] = Field(default_factory=list)
    weekly_activity: list[DailyActivity] = Field(default_factory=list)
    achievements: list[Achievement] = Field(default_factory=list)
    recent_milestones: list[RecentMilestone] = Field(default_factory=list)
    degraded_sections: list[str] = Field(default_factory=list)


class ProgressResponse(_CamelModel):
    success: bool = True
    data: ProgressData
