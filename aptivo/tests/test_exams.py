"""
Exam authoring and the student attempt flow through the API.
"""
import pytest_asyncio

from aptivo.orm.user import UserRole
from aptivo.tests.conftest import auth_headers, make_institution, make_university, make_user


@pytest_asyncio.fixture
async def university(db_session):
    return await make_university(db_session)


async def build_exam(client, admin, university_id, **exam_fields):
    """One section, three questions: single choice, multiple choice, true/false."""
    headers = auth_headers(admin)
    body = {"name": "Mock Test 1", "total_duration": 60, "negative_marking": 0.25, **exam_fields}
    response = await client.post(f"/api/exams/university/{university_id}", json=body, headers=headers)
    assert response.status_code == 201, response.text
    exam_id = response.json()["exam"]["id"]

    response = await client.post(f"/api/exams/{exam_id}/sections", json={"name": "Aptitude"}, headers=headers)
    assert response.status_code == 201, response.text
    section_id = response.json()["section"]["id"]

    options = [{"id": "a", "text": "2"}, {"id": "b", "text": "4"}, {"id": "c", "text": "6"}]
    questions = [
        {"question_text": "2 + 2?", "options": options, "correct_answer": "b"},
        {"question_text": "Even numbers?", "question_type": "mcq_multiple",
         "options": options, "correct_answer": ["a", "c"]},
        {"question_text": "4 is prime.", "question_type": "true_false", "correct_answer": "false"},
    ]
    ids = []
    for q in questions:
        response = await client.post(f"/api/exams/sections/{section_id}/questions", json=q, headers=headers)
        assert response.status_code == 201, response.text
        ids.append(response.json()["question"]["id"])
    return exam_id, section_id, ids


class TestExamAuthoring:

    async def test_question_answer_must_match_an_option(self, client, super_admin, university):
        exam_id, section_id, _ = await build_exam(client, super_admin, university.id)
        response = await client.post(
            f"/api/exams/sections/{section_id}/questions",
            json={"question_text": "Pick", "options": [{"id": "a", "text": "x"}, {"id": "b", "text": "y"}],
                  "correct_answer": "z"},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_true_false_gets_default_options(self, client, super_admin, university):
        exam_id, _, _ = await build_exam(client, super_admin, university.id)
        response = await client.get(f"/api/exams/{exam_id}", headers=auth_headers(super_admin))
        assert response.status_code == 200
        section = response.json()["exam"]["sections"][0]
        assert section["num_questions"] == 3
        tf = section["questions"][2]
        assert [o["id"] for o in tf["options"]] == ["true", "false"]

    async def test_institution_admin_is_confined_to_own_exams(self, client, db_session, institution_admin, university):
        exam_id, _, _ = await build_exam(client, institution_admin, university.id)

        other = await make_institution(db_session, name="Other College", domain="other.example.com")
        outsider = await make_user(
            db_session, "admin@other.example.com",
            role=UserRole.institution_admin, institution_id=other.id,
        )
        response = await client.get(f"/api/exams/{exam_id}", headers=auth_headers(outsider))
        assert response.status_code == 403
        assert response.json()["code"] == "SCOPE_VIOLATION"

    async def test_end_must_follow_start(self, client, super_admin, university):
        response = await client.post(
            f"/api/exams/university/{university.id}",
            json={"name": "Bad", "start_time": "2026-05-02T10:00:00", "end_time": "2026-05-01T10:00:00"},
            headers=auth_headers(super_admin),
        )
        assert response.status_code == 400


class TestExamAttempts:

    async def test_full_attempt_is_scored_with_negative_marking(self, client, super_admin, student, university):
        exam_id, _, (q1, q2, q3) = await build_exam(client, super_admin, university.id)
        headers = auth_headers(student)

        response = await client.post(f"/api/exam-attempts/start/{exam_id}", json={}, headers=headers)
        assert response.status_code == 200, response.text
        state = response.json()
        attempt_id = state["attempt"]["id"]
        assert state["resumed"] is False
        assert state["timer"]["time_left"] > 0
        assert all("correct_answer" not in q for q in state["questions"])

        for question_id, answer in ((q1, "b"), (q2, ["c", "a"]), (q3, "true")):
            response = await client.post(
                f"/api/exam-attempts/{attempt_id}/answers",
                json={"question_id": question_id, "answer": answer},
                headers=headers,
            )
            assert response.status_code == 200, response.text

        response = await client.post(f"/api/exam-attempts/{attempt_id}/submit", headers=headers)
        assert response.status_code == 200
        result = response.json()
        assert result["attempt"]["status"] == "completed"
        assert result["score"] == 1.75
        assert result["total_marks"] == 3

        response = await client.get(f"/api/exam-attempts/{attempt_id}/review", headers=headers)
        review = response.json()
        assert review["results_released"] is True
        assert review["percentage"] == 58.33
        assert [q["is_correct"] for q in review["questions"]] == [True, True, False]
        assert review["questions"][0]["correct_answer"] == "b"

    async def test_manual_release_hides_answers_but_keeps_score(self, client, super_admin, student, university):
        exam_id, _, (q1, _, _) = await build_exam(
            client, super_admin, university.id, result_release_setting="manual"
        )
        headers = auth_headers(student)
        attempt_id = (await client.post(f"/api/exam-attempts/start/{exam_id}", headers=headers)).json()["attempt"]["id"]
        await client.post(f"/api/exam-attempts/{attempt_id}/answers",
                          json={"question_id": q1, "answer": "b"}, headers=headers)
        await client.post(f"/api/exam-attempts/{attempt_id}/submit", headers=headers)

        review = (await client.get(f"/api/exam-attempts/{attempt_id}/review", headers=headers)).json()
        assert review["results_released"] is False
        assert review["score"] == 1
        assert review["questions"][0]["is_correct"] is True
        assert "correct_answer" not in review["questions"][0]
        assert "explanation" not in review["questions"][0]

    async def test_starting_again_resumes_open_attempt(self, client, super_admin, student, university):
        exam_id, _, _ = await build_exam(client, super_admin, university.id)
        headers = auth_headers(student)

        first = (await client.post(f"/api/exam-attempts/start/{exam_id}", headers=headers)).json()
        second = (await client.post(f"/api/exam-attempts/start/{exam_id}", headers=headers)).json()

        assert second["resumed"] is True
        assert second["attempt"]["id"] == first["attempt"]["id"]

    async def test_reattempt_blocked_when_disabled(self, client, super_admin, student, university):
        exam_id, _, _ = await build_exam(client, super_admin, university.id, allow_reattempt=False)
        headers = auth_headers(student)

        attempt_id = (await client.post(f"/api/exam-attempts/start/{exam_id}", headers=headers)).json()["attempt"]["id"]
        await client.post(f"/api/exam-attempts/{attempt_id}/submit", headers=headers)

        response = await client.post(f"/api/exam-attempts/start/{exam_id}", headers=headers)
        assert response.status_code == 400
        assert response.json()["code"] == "REATTEMPT_NOT_ALLOWED"

    async def test_answers_rejected_after_submit(self, client, super_admin, student, university):
        exam_id, _, (q1, _, _) = await build_exam(client, super_admin, university.id)
        headers = auth_headers(student)
        attempt_id = (await client.post(f"/api/exam-attempts/start/{exam_id}", headers=headers)).json()["attempt"]["id"]
        await client.post(f"/api/exam-attempts/{attempt_id}/submit", headers=headers)

        response = await client.post(
            f"/api/exam-attempts/{attempt_id}/answers",
            json={"question_id": q1, "answer": "a"},
            headers=headers,
        )
        assert response.status_code == 400
        assert response.json()["code"] == "ALREADY_COMPLETED"

    async def test_other_students_cannot_read_attempt(self, client, db_session, super_admin, student, university):
        exam_id, _, _ = await build_exam(client, super_admin, university.id)
        attempt_id = (await client.post(
            f"/api/exam-attempts/start/{exam_id}", headers=auth_headers(student)
        )).json()["attempt"]["id"]

        intruder = await make_user(db_session, "intruder@example.com")
        response = await client.get(f"/api/exam-attempts/{attempt_id}", headers=auth_headers(intruder))
        assert response.status_code == 403

    async def test_fullscreen_exits_are_counted(self, client, super_admin, student, university):
        exam_id, _, _ = await build_exam(client, super_admin, university.id)
        headers = auth_headers(student)
        attempt_id = (await client.post(f"/api/exam-attempts/start/{exam_id}", headers=headers)).json()["attempt"]["id"]

        for _ in range(2):
            response = await client.post(
                f"/api/exam-attempts/{attempt_id}/events", json={"event": "fullscreen_exit"}, headers=headers
            )
        assert response.json()["fullscreen_exits"] == 2

        response = await client.get(f"/api/exams/{exam_id}/results", headers=auth_headers(super_admin))
        assert response.json()["results"][0]["student_email"] == student.email
