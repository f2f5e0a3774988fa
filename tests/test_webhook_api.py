from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from app.api.progress import get_progress_aggregator
from app.core.database import SessionLocal
from app.core.jwt_auth import create_token
from app.core.settings import settings
from app.core.webhook_signature import SIGNATURE_HEADER, build_signature_header
from app.main import app
from app.models.entities import (
    Chapter,
    Course,
    Enrollment,
    Lesson,
    LessonProgress,
    OrganizationMembership,
    StudySession,
    Tenant,
    User,
)
from app.progress.aggregator import ProgressAggregator

WEBHOOK_PATH = "/api/webhooks/workos"
FROZEN_NOW = datetime(2026, 3, 11, 15, 0, tzinfo=timezone.utc)


def _ids(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def _post_event(client, event_type: str, data: dict, *, secret: str | None = None, event_id: str | None = None):
    body = json.dumps(
        {
            "id": event_id or _ids("event"),
            "event": event_type,
            "data": data,
            "created_at": "2026-03-11T10:00:00.000Z",
        }
    )
    header = build_signature_header(body, secret or settings.workos_webhook_secret)
    return client.post(
        WEBHOOK_PATH,
        content=body,
        headers={SIGNATURE_HEADER: header, "content-type": "application/json"},
    )


def _user_row(sync_db, provider_user_id: str) -> User | None:
    with sync_db() as db:
        return db.execute(select(User).where(User.workos_user_id == provider_user_id)).scalar_one_or_none()


def _tenant_row(sync_db, provider_org_id: str) -> Tenant | None:
    with sync_db() as db:
        return db.execute(
            select(Tenant).where(Tenant.workos_organization_id == provider_org_id)
        ).scalar_one_or_none()


def _auth(provider_user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_token(provider_user_id)}"}


def _memberships(sync_db, user_id, tenant_id) -> list[OrganizationMembership]:
    with sync_db() as db:
        return list(
            db.execute(
                select(OrganizationMembership).where(
                    OrganizationMembership.user_id == user_id,
                    OrganizationMembership.organization_id == tenant_id,
                )
            ).scalars()
        )


def test_webhook_health_document(client):
    response = client.get(WEBHOOK_PATH)
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["service"] == "webhook-handler"
    assert body["timestamp"]


def test_missing_signature_is_rejected(client):
    response = client.post(WEBHOOK_PATH, content=b'{"id": "evt", "event": "user.created", "data": {}}')
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_wrong_secret_is_rejected_and_nothing_is_written(client, sync_db, fake_provider):
    user_id = _ids("user")
    response = _post_event(
        client,
        "user.created",
        {"id": user_id, "email": "intruder@example.com"},
        secret="not-the-real-secret",
    )
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid signature"
    assert _user_row(sync_db, user_id) is None


def test_unconfigured_secret_returns_503(client, monkeypatch):
    monkeypatch.setattr(settings, "workos_webhook_secret", "")
    response = client.post(WEBHOOK_PATH, content=b"{}", headers={SIGNATURE_HEADER: "t=1, v1=00"})
    assert response.status_code == 503


def test_malformed_envelope_returns_400(client):
    body = "not json at all"
    header = build_signature_header(body, settings.workos_webhook_secret)
    response = client.post(WEBHOOK_PATH, content=body, headers={SIGNATURE_HEADER: header})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_unknown_event_type_is_acknowledged(client, fake_provider):
    response = _post_event(client, "dsync.group.created", {"id": "group_1"}, event_id="evt_unknown_1")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["eventId"] == "evt_unknown_1"
    assert fake_provider.calls == []


def test_user_created_without_membership_has_no_tenant(client, sync_db, fake_provider):
    user_id = _ids("user")
    response = _post_event(
        client,
        "user.created",
        {"id": user_id, "email": "solo@example.com", "first_name": "Solo", "last_name": "Learner"},
    )
    assert response.status_code == 200
    user = _user_row(sync_db, user_id)
    assert user is not None
    assert user.tenant_id is None
    assert user.email == "solo@example.com"


def test_membership_before_user_and_org_fetches_both(client, sync_db, fake_provider):
    user_id = _ids("user")
    org_id = _ids("org")
    fake_provider.add_user(user_id, "early@example.com", "Early", "Bird")
    fake_provider.add_organization(org_id, "Acme Academy", "acme.example.com")

    response = _post_event(
        client,
        "organization_membership.created",
        {"id": _ids("om"), "user_id": user_id, "organization_id": org_id, "role": {"slug": "admin"}, "status": "active"},
    )
    assert response.status_code == 200, response.text

    tenant = _tenant_row(sync_db, org_id)
    user = _user_row(sync_db, user_id)
    assert tenant is not None and tenant.name == "Acme Academy"
    assert user is not None and user.tenant_id == tenant.id
    memberships = _memberships(sync_db, user.id, tenant.id)
    assert len(memberships) == 1
    assert memberships[0].role == "admin"
    assert ("organization", org_id) in fake_provider.calls
    assert ("user", user_id) in fake_provider.calls

    # The late user.created must not detach the tenant.
    late = _post_event(client, "user.created", {"id": user_id, "email": "early@example.com"})
    assert late.status_code == 200
    assert _user_row(sync_db, user_id).tenant_id == tenant.id


def test_user_first_then_membership_attaches_tenant(client, sync_db, fake_provider):
    user_id = _ids("user")
    org_id = _ids("org")
    fake_provider.add_organization(org_id, "Northfield School")

    assert _post_event(client, "user.created", {"id": user_id, "email": "first@example.com"}).status_code == 200
    assert _user_row(sync_db, user_id).tenant_id is None

    response = _post_event(
        client,
        "organization_membership.created",
        {"id": _ids("om"), "user_id": user_id, "organization_id": org_id, "role": "member"},
    )
    assert response.status_code == 200
    tenant = _tenant_row(sync_db, org_id)
    assert _user_row(sync_db, user_id).tenant_id == tenant.id
    # The user already existed locally, so only the organization was fetched.
    assert fake_provider.calls == [("organization", org_id)]


def test_membership_replay_keeps_one_row(client, sync_db, fake_provider):
    user_id = _ids("user")
    org_id = _ids("org")
    fake_provider.add_user(user_id, "replay@example.com")
    fake_provider.add_organization(org_id, "Replay College")
    data = {"id": _ids("om"), "user_id": user_id, "organization_id": org_id, "role": "member"}

    first = _post_event(client, "organization_membership.created", data, event_id="evt_replay")
    second = _post_event(client, "organization_membership.created", data, event_id="evt_replay")
    assert first.status_code == 200
    assert second.status_code == 200

    user = _user_row(sync_db, user_id)
    tenant = _tenant_row(sync_db, org_id)
    assert len(_memberships(sync_db, user.id, tenant.id)) == 1


def test_update_for_unknown_user_is_absorbed(client, fake_provider):
    response = _post_event(client, "user.updated", {"id": _ids("user"), "email": "ghost@example.com"})
    assert response.status_code == 200
    assert response.json()["success"] is True


def test_membership_created_with_unreachable_provider_returns_500(client, fake_provider):
    # Neither record exists locally and the provider knows nothing about them.
    response = _post_event(
        client,
        "organization_membership.created",
        {"id": _ids("om"), "user_id": _ids("user"), "organization_id": _ids("org")},
        event_id="evt_fatal",
    )
    assert response.status_code == 500
    body = response.json()
    assert body["success"] is False
    assert body["eventId"] == "evt_fatal"
    assert body["error"] == "Webhook processing failed"


def _seed_study_record(sync_db, user_id) -> tuple:
    """One enrolled course with a completed lesson and a study session, dated relative to FROZEN_NOW."""
    with sync_db() as db:
        course = Course(title="GCSE Biology", subject="biology")
        db.add(course)
        db.flush()
        chapter = Chapter(course_id=course.id, title="Cells", order=1)
        db.add(chapter)
        db.flush()
        lesson = Lesson(chapter_id=chapter.id, title="Cell structure", order=0)
        db.add(lesson)
        db.flush()
        enrollment = Enrollment(user_id=user_id, course_id=course.id, progress=50)
        lesson_progress = LessonProgress(
            user_id=user_id,
            lesson_id=lesson.id,
            status="completed",
            completed_at=FROZEN_NOW - timedelta(days=1),
        )
        session = StudySession(
            user_id=user_id, course_id=course.id, start_time=FROZEN_NOW - timedelta(days=1), duration=40
        )
        db.add_all([enrollment, lesson_progress, session])
        db.commit()
        return enrollment.id, lesson_progress.id, session.id


def _study_rows(sync_db, ids: tuple) -> list[tuple]:
    enrollment_id, lesson_progress_id, session_id = ids
    with sync_db() as db:
        enrollment = db.get(Enrollment, enrollment_id)
        lesson_progress = db.get(LessonProgress, lesson_progress_id)
        session = db.get(StudySession, session_id)
        return [
            (enrollment.user_id, enrollment.status, enrollment.progress),
            (lesson_progress.user_id, lesson_progress.status, lesson_progress.completed_at),
            (session.user_id, session.duration, session.start_time),
        ]


def test_organization_deleted_keeps_users_and_their_progress(client, sync_db, fake_provider):
    user_id = _ids("user")
    org_id = _ids("org")
    fake_provider.add_user(user_id, "stays@example.com")
    fake_provider.add_organization(org_id, "Closing School")
    _post_event(
        client,
        "organization_membership.created",
        {"id": _ids("om"), "user_id": user_id, "organization_id": org_id},
    )
    local_user = _user_row(sync_db, user_id)
    study_ids = _seed_study_record(sync_db, local_user.id)
    rows_before = _study_rows(sync_db, study_ids)

    app.dependency_overrides[get_progress_aggregator] = lambda: ProgressAggregator(
        SessionLocal, clock=lambda: FROZEN_NOW
    )
    try:
        progress_before = client.get("/api/progress", headers=_auth(user_id))
        response = _post_event(client, "organization.deleted", {"id": org_id, "name": "Closing School"})
        progress_after = client.get("/api/progress", headers=_auth(user_id))
    finally:
        app.dependency_overrides.pop(get_progress_aggregator, None)

    assert response.status_code == 200
    tenant = _tenant_row(sync_db, org_id)
    user = _user_row(sync_db, user_id)
    assert tenant.deleted_at is not None
    assert user.deleted_at is None
    assert user.tenant_id == tenant.id
    assert len(_memberships(sync_db, user.id, tenant.id)) == 1
    assert _study_rows(sync_db, study_ids) == rows_before

    assert progress_before.status_code == 200
    assert progress_after.status_code == 200
    assert progress_after.json() == progress_before.json()
    data = progress_after.json()["data"]
    assert data["overallStats"]["weeklyProgress"] == 40
    assert [subject["name"] for subject in data["subjectProgress"]] == ["Biology"]


def test_body_that_is_not_utf8_is_rejected_as_unsigned(client):
    body = b'{"id": "evt_bin", "event": "user.created"}\xff\xfe'
    response = client.post(
        WEBHOOK_PATH,
        content=body,
        headers={SIGNATURE_HEADER: "t=1, v1=" + "de" * 32, "content-type": "application/json"},
    )
    assert response.status_code == 401
    assert response.json()["success"] is False


def test_correctly_signed_non_utf8_body_is_a_bad_request(client):
    body = b'{"id": "evt_bin", "event": "user.created"}\xff\xfe'
    header = build_signature_header(body, settings.workos_webhook_secret)
    response = client.post(WEBHOOK_PATH, content=body, headers={SIGNATURE_HEADER: header})
    assert response.status_code == 400
