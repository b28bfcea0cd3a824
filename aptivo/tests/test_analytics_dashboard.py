"""
Tests for analytics series, dashboard formatting helpers and the admin endpoints.
"""
from datetime import date, datetime, timedelta

import pytest

from aptivo.errors import BadRequestError
from aptivo.orm.community import ActivityLog
from aptivo.orm.curriculum import Subject, Subtopic, Topic
from aptivo.orm.practice import PracticeSession
from aptivo.services.activity_logger import ActivityType, log_activity
from aptivo.services.analytics_service import period_days, zero_filled_series
from aptivo.services.dashboard_service import calculate_percentage_change, describe_activity, time_ago
from aptivo.tests.conftest import auth_headers, make_institution, make_user

NOW = datetime(2024, 3, 10, 12, 0, 0)


# ================= ANALYTICS HELPERS =================


@pytest.mark.parametrize("period,days", [("week", 7), ("month", 30), ("year", 365)])
def test_period_days(period, days):
    assert period_days(period) == days


def test_period_days_rejects_unknown_period():
    with pytest.raises(BadRequestError):
        period_days("decade")


def test_zero_filled_series_counts_per_day():
    today = date(2024, 3, 10)
    stamps = [
        datetime(2024, 3, 10, 9, 0),
        datetime(2024, 3, 10, 18, 30),
        datetime(2024, 3, 8, 1, 0),
        datetime(2024, 2, 1, 1, 0),  # outside the window
        None,
    ]

    series = zero_filled_series(stamps, 3, today)

    assert series == [
        {"date": "2024-03-08", "count": 1},
        {"date": "2024-03-09", "count": 0},
        {"date": "2024-03-10", "count": 2},
    ]


def test_zero_filled_series_length_matches_period():
    assert len(zero_filled_series([], 30, date(2024, 3, 10))) == 30


# ================= DASHBOARD HELPERS =================


@pytest.mark.parametrize(
    "old,new,expected",
    [
        (0, 5, "+100%"),
        (0, 0, "0%"),
        (10, 5, "-50%"),
        (10, 10, "0%"),
        (3, 4, "+33%"),
        (8, 9, "+13%"),
    ],
)
def test_calculate_percentage_change(old, new, expected):
    assert calculate_percentage_change(old, new) == expected


@pytest.mark.parametrize(
    "delta,expected",
    [
        (timedelta(seconds=30), "0 minutes ago"),
        (timedelta(minutes=1), "1 minute ago"),
        (timedelta(minutes=45), "45 minutes ago"),
        (timedelta(hours=1), "1 hour ago"),
        (timedelta(hours=5), "5 hours ago"),
        (timedelta(days=1), "1 day ago"),
        (timedelta(days=12), "12 days ago"),
    ],
)
def test_time_ago(delta, expected):
    assert time_ago(NOW - delta, NOW) == expected


def test_describe_known_activity():
    log = ActivityLog(
        activity_type=ActivityType.SUBJECT_CREATED,
        activity_data={"name": "Physics"},
        created_at=NOW - timedelta(minutes=5),
    )

    described = describe_activity(log, NOW)

    assert described["action"] == "New Subject Added"
    assert described["subject"] == "Physics"
    assert described["time"] == "5 minutes ago"


def test_describe_activity_falls_back():
    upload = ActivityLog(activity_type=ActivityType.MCQ_UPLOAD, activity_data={}, created_at=NOW)
    unknown = ActivityLog(activity_type="something_else", activity_data={"name": "x"}, created_at=NOW)

    assert describe_activity(upload, NOW)["subject"] == "Unknown Subject"
    assert describe_activity(unknown, NOW)["action"] == "Activity"
    assert describe_activity(unknown, NOW)["subject"] == "Unknown"


# ================= ENDPOINTS =================


async def test_overview_counts_users(client, super_admin, institution_admin, student):
    response = await client.get("/api/analytics/overview", headers=auth_headers(super_admin))

    assert response.status_code == 200
    stats = response.json()["stats"]
    assert stats["totalUsers"] == 3
    assert stats["totalStudents"] == 1
    assert stats["totalAdmins"] == 2
    assert stats["totalMCQs"] == 0


async def test_overview_requires_super_admin(client, institution_admin):
    response = await client.get("/api/analytics/overview", headers=auth_headers(institution_admin))

    assert response.status_code == 403


async def test_student_growth_series(client, super_admin, student):
    response = await client.get("/api/analytics/student-growth?period=week", headers=auth_headers(super_admin))

    assert response.status_code == 200
    data = response.json()["data"]
    assert len(data) == 7
    assert data[-1]["count"] == 1


async def test_student_growth_invalid_period(client, super_admin):
    response = await client.get("/api/analytics/student-growth?period=decade", headers=auth_headers(super_admin))

    assert response.status_code == 400


async def test_institution_stats_scope(client, db_session, institution, institution_admin, student):
    other = await make_institution(db_session, name="Other College", domain="other.example.com")
    headers = auth_headers(institution_admin)

    own = await client.get(f"/api/analytics/institutions/{institution.id}", headers=headers)
    assert own.status_code == 200
    assert own.json()["stats"]["totalStudents"] == 1
    assert own.json()["stats"]["averageScore"] == 0

    foreign = await client.get(f"/api/analytics/institutions/{other.id}", headers=headers)
    assert foreign.status_code == 403


async def test_institution_stats_unknown_institution(client, super_admin):
    response = await client.get("/api/analytics/institutions/999", headers=auth_headers(super_admin))

    assert response.status_code == 404
    assert response.json()["code"] == "INSTITUTION_NOT_FOUND"


async def test_admin_stats_scoped_to_institution(client, db_session, institution, institution_admin, student):
    other = await make_institution(db_session, name="Other College", domain="other.example.com")
    await make_user(db_session, "outsider@other.example.com", institution_id=other.id)

    response = await client.get("/api/dashboard/admin/stats", headers=auth_headers(institution_admin))

    assert response.status_code == 200
    body = response.json()
    assert body["activeStudents"] == 1
    assert body["changePercentages"]["students"] == "+100%"


async def test_recent_activity_feed(client, db_session, super_admin):
    await log_activity(db_session, super_admin.id, ActivityType.SUBJECT_CREATED, {"name": "Chemistry"})
    await db_session.commit()

    response = await client.get("/api/dashboard/admin/recent-activity", headers=auth_headers(super_admin))

    assert response.status_code == 200
    activities = response.json()["activities"]
    assert len(activities) == 1
    assert activities[0]["action"] == "New Subject Added"
    assert activities[0]["subject"] == "Chemistry"


async def test_student_dashboard_for_new_student(client, student):
    response = await client.get("/api/dashboard/student", headers=auth_headers(student))

    assert response.status_code == 200
    body = response.json()
    assert body["stats"]["questionsSolved"] == 0
    assert body["stats"]["overallAccuracy"] == 0
    assert body["stats"]["currentStreak"] == 0
    assert body["performance"] == []
    assert body["continueLearning"] == []


async def test_student_dashboard_rejects_admin(client, institution_admin):
    response = await client.get("/api/dashboard/student", headers=auth_headers(institution_admin))

    assert response.status_code == 403


async def test_top_students_average_rounds_half_up(client, db_session, super_admin, student):
    subject = Subject(name="Quantitative Aptitude")
    db_session.add(subject)
    await db_session.flush()
    topic = Topic(subject_id=subject.id, name="Percentages")
    db_session.add(topic)
    await db_session.flush()
    subtopic = Subtopic(topic_id=topic.id, name="Basics")
    db_session.add(subtopic)
    await db_session.flush()
    for score in (70.0, 75.0):
        db_session.add(PracticeSession(
            student_id=student.id, subtopic_id=subtopic.id, total_questions=4,
            score_percentage=score, is_completed=True, completed_at=datetime.utcnow(),
        ))
    await db_session.flush()

    response = await client.get("/api/analytics/top-students", headers=auth_headers(super_admin))

    assert response.status_code == 200
    top = response.json()["students"][0]
    assert top["averageScore"] == 73
    assert top["sessions"] == 2
