"""
Hierarchy manager, lessons, search, question bank and the mapped content view.
"""
import pytest_asyncio

from aptivo.orm.curriculum import Subject, Subtopic, Topic
from aptivo.orm.mcq import MCQ
from aptivo.orm.university import UniversityContentAccess
from aptivo.tests.conftest import auth_headers, make_university


@pytest_asyncio.fixture
async def hierarchy(db_session):
    subject = Subject(name="Quantitative Aptitude", display_order=1)
    db_session.add(subject)
    await db_session.flush()
    topic = Topic(subject_id=subject.id, name="Percentages", sequence_order=1)
    db_session.add(topic)
    await db_session.flush()
    first = Subtopic(topic_id=topic.id, name="Basics", content_markdown="# Basics", sequence_order=1)
    second = Subtopic(topic_id=topic.id, name="Profit and Loss", sequence_order=2)
    db_session.add_all([first, second])
    await db_session.flush()
    db_session.add(MCQ(
        subtopic_id=first.id, question="10% of 50?", option_a="5", option_b="10",
        option_c="15", option_d="50", correct_option="A", difficulty="easy",
    ))
    await db_session.flush()
    return subject, topic, first, second


# ================= HIERARCHY =================


async def test_build_hierarchy(client, super_admin):
    headers = auth_headers(super_admin)

    subject = await client.post("/api/curriculum/subjects", json={"name": "Reasoning"}, headers=headers)
    assert subject.status_code == 201
    subject_id = subject.json()["subject"]["id"]

    topic = await client.post(
        f"/api/curriculum/subjects/{subject_id}/topics", json={"name": "Series"}, headers=headers
    )
    assert topic.status_code == 201
    topic_id = topic.json()["topic"]["id"]

    subtopic = await client.post(
        f"/api/curriculum/topics/{topic_id}/subtopics",
        json={"name": "Number series", "content_markdown": "Find the next term."},
        headers=headers,
    )
    assert subtopic.status_code == 201
    assert subtopic.json()["subtopic"]["content_markdown"] == "Find the next term."

    listed = await client.get(f"/api/curriculum/topics/{topic_id}/subtopics", headers=headers)
    assert listed.json()["subtopics"][0]["mcq_count"] == 0

    feed = await client.get("/api/dashboard/admin/recent-activity", headers=headers)
    actions = [a["action"] for a in feed.json()["activities"]]
    assert "New Subject Added" in actions
    assert "Content Updated" in actions


async def test_hierarchy_is_super_admin_only(client, institution_admin):
    response = await client.post(
        "/api/curriculum/subjects", json={"name": "Reasoning"}, headers=auth_headers(institution_admin)
    )

    assert response.status_code == 403


async def test_inactive_subjects_hidden(client, db_session, super_admin, student, hierarchy):
    db_session.add(Subject(name="Retired", is_active=False))
    await db_session.flush()

    student_view = await client.get(
        "/api/curriculum/subjects?include_inactive=true", headers=auth_headers(student)
    )
    assert [s["name"] for s in student_view.json()["subjects"]] == ["Quantitative Aptitude"]

    admin_view = await client.get(
        "/api/curriculum/subjects?include_inactive=true", headers=auth_headers(super_admin)
    )
    assert len(admin_view.json()["subjects"]) == 2


async def test_topics_of_unknown_subject(client, student):
    response = await client.get("/api/curriculum/subjects/999/topics", headers=auth_headers(student))

    assert response.status_code == 404


# ================= LESSONS =================


async def test_lesson_and_mark_read(client, student, hierarchy):
    _, _, first, _ = hierarchy
    headers = auth_headers(student)

    lesson = await client.get(f"/api/curriculum/subtopics/{first.id}/lesson", headers=headers)
    assert lesson.status_code == 200
    body = lesson.json()["lesson"]
    assert body["subject_name"] == "Quantitative Aptitude"
    assert body["topic_name"] == "Percentages"
    assert body["mcq_count"] == 1
    assert body["is_completed"] is False

    read = await client.post(f"/api/curriculum/subtopics/{first.id}/mark-read", headers=headers)
    assert read.json()["is_completed"] is True
    assert read.json()["reading_percentage"] == 100

    again = await client.get(f"/api/curriculum/subtopics/{first.id}/lesson", headers=headers)
    assert again.json()["lesson"]["is_completed"] is True

    streak = await client.get("/api/practice/streak", headers=headers)
    assert streak.json()["streak"] == 1


async def test_mark_read_is_for_students(client, institution_admin, hierarchy):
    _, _, first, _ = hierarchy

    response = await client.post(
        f"/api/curriculum/subtopics/{first.id}/mark-read", headers=auth_headers(institution_admin)
    )

    assert response.status_code == 403


async def test_search(client, db_session, student, hierarchy):
    await make_university(db_session, "Percent State University")
    headers = auth_headers(student)

    response = await client.get("/api/curriculum/search?q=percent", headers=headers)
    results = response.json()["results"]
    assert [u["name"] for u in results["universities"]] == ["Percent State University"]
    assert [t["name"] for t in results["topics"]] == ["Percentages"]
    assert results["subjects"] == []

    too_short = await client.get("/api/curriculum/search?q=p", headers=headers)
    assert too_short.status_code == 400


# ================= QUESTION BANK =================


async def test_mcq_crud(client, super_admin, hierarchy):
    _, _, _, second = hierarchy
    headers = auth_headers(super_admin)
    payload = {
        "question": "Cost 100, sold 120. Profit %?",
        "option_a": "10", "option_b": "20", "option_c": "30", "option_d": "40",
        "correct_option": "b",
    }

    created = await client.post(f"/api/subtopics/{second.id}/mcqs", json=payload, headers=headers)
    assert created.status_code == 201
    mcq = created.json()["mcq"]
    assert mcq["correct_option"] == "B"
    assert mcq["difficulty"] == "medium"

    bad = await client.post(
        f"/api/subtopics/{second.id}/mcqs", json={**payload, "correct_option": "E"}, headers=headers
    )
    assert bad.status_code == 400

    updated = await client.patch(f"/api/mcqs/{mcq['id']}", json={"difficulty": "hard"}, headers=headers)
    assert updated.json()["mcq"]["difficulty"] == "hard"

    bad_difficulty = await client.patch(f"/api/mcqs/{mcq['id']}", json={"difficulty": "brutal"}, headers=headers)
    assert bad_difficulty.status_code == 400

    listed = await client.get(f"/api/subtopics/{second.id}/mcqs?difficulty=hard", headers=headers)
    assert listed.json()["total"] == 1

    deleted = await client.delete(f"/api/mcqs/{mcq['id']}", headers=headers)
    assert deleted.status_code == 200


# ================= UNIVERSITY CONTENT =================


async def test_university_content_uses_institution_mapping(client, db_session, institution, student, hierarchy):
    _, _, first, second = hierarchy
    university = await make_university(db_session)
    db_session.add_all([
        UniversityContentAccess(university_id=university.id, subtopic_id=first.id, session_limit=5),
        UniversityContentAccess(
            university_id=university.id, institution_id=institution.id, subtopic_id=second.id,
            allowed_difficulties=["easy"],
        ),
    ])
    await db_session.flush()

    response = await client.get(f"/api/universities/{university.id}/content", headers=auth_headers(student))

    assert response.status_code == 200
    subjects = response.json()["subjects"]
    assert len(subjects) == 1
    subtopics = subjects[0]["topics"][0]["subtopics"]
    assert [s["name"] for s in subtopics] == ["Profit and Loss"]
    assert subtopics[0]["allowed_difficulties"] == ["easy"]


async def test_university_content_falls_back_to_global_mapping(client, db_session, student, hierarchy):
    _, _, first, _ = hierarchy
    university = await make_university(db_session)
    db_session.add(UniversityContentAccess(university_id=university.id, subtopic_id=first.id, session_limit=5))
    await db_session.flush()

    response = await client.get(f"/api/universities/{university.id}/content", headers=auth_headers(student))

    subtopics = response.json()["subjects"][0]["topics"][0]["subtopics"]
    assert [s["name"] for s in subtopics] == ["Basics"]
    assert subtopics[0]["session_limit"] == 5
    assert subtopics[0]["is_completed"] is False


async def test_university_content_without_mapping(client, db_session, student):
    university = await make_university(db_session)

    response = await client.get(f"/api/universities/{university.id}/content", headers=auth_headers(student))

    assert response.json()["subjects"] == []
