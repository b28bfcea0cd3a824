"""
Content mapper: scope replacement and difficulty normalisation.
"""
import pytest
import pytest_asyncio

from aptivo.errors import BadRequestError
from aptivo.orm.curriculum import Subject, Subtopic, Topic
from aptivo.services.content_mapper_service import (
    get_effective_mapping, get_mapping, normalize_difficulties, parse_scope_param, replace_mapping
)
from aptivo.tests.conftest import auth_headers, make_institution, make_university


class TestNormalizeDifficulties:

    def test_all_expands(self):
        assert normalize_difficulties("all") == ("all", ["easy", "medium", "hard"])

    def test_comma_list(self):
        assert normalize_difficulties("Easy, hard") == ("easy,hard", ["easy", "hard"])

    def test_allowed_list_used_when_no_level(self):
        assert normalize_difficulties(None, ["medium"]) == ("medium", ["medium"])

    def test_defaults_to_everything(self):
        assert normalize_difficulties() == ("all", ["easy", "medium", "hard"])

    def test_three_levels_collapse_to_all(self):
        assert normalize_difficulties("easy,medium,hard")[0] == "all"


class TestScopeParam:

    @pytest.mark.parametrize("raw", [None, "", "null", "None", "undefined"])
    def test_university_wide(self, raw):
        assert parse_scope_param(raw) is None

    def test_number(self):
        assert parse_scope_param(" 12 ") == 12

    def test_garbage(self):
        with pytest.raises(BadRequestError):
            parse_scope_param("twelve")


@pytest_asyncio.fixture
async def catalogue(db_session):
    subject = Subject(name="Mathematics")
    db_session.add(subject)
    await db_session.flush()
    topic = Topic(subject_id=subject.id, name="Algebra")
    db_session.add(topic)
    await db_session.flush()
    subtopics = [Subtopic(topic_id=topic.id, name=f"Part {i}") for i in range(3)]
    db_session.add_all(subtopics)
    await db_session.flush()
    return subject, topic, subtopics


class TestReplaceMapping:

    async def test_replace_only_touches_its_scope(self, db_session, catalogue, institution):
        subject, topic, (s1, s2, s3) = catalogue
        university = await make_university(db_session)
        row = {"subject_id": subject.id, "topic_id": topic.id}

        await replace_mapping(db_session, university.id, None, [{**row, "subtopic_id": s1.id}])
        await replace_mapping(db_session, university.id, institution.id, [{**row, "subtopic_id": s2.id}])
        await replace_mapping(db_session, university.id, None, [
            {**row, "subtopic_id": s2.id, "session_limit": 5},
            {**row, "subtopic_id": s3.id, "difficulty_level": "hard"},
        ])

        global_rows = await get_mapping(db_session, university.id, None)
        assert [r.subtopic_id for r in global_rows] == [s2.id, s3.id]
        assert global_rows[0].session_limit == 5
        assert list(global_rows[1].allowed_difficulties) == ["hard"]

        institution_rows = await get_mapping(db_session, university.id, institution.id)
        assert [r.subtopic_id for r in institution_rows] == [s2.id]

    async def test_effective_mapping_falls_back_to_university(self, db_session, catalogue, institution):
        _, _, (s1, _, _) = catalogue
        university = await make_university(db_session)
        other = await make_institution(db_session, name="Other", domain="other.example.com")
        await replace_mapping(db_session, university.id, None, [{"subtopic_id": s1.id}])

        rows = await get_effective_mapping(db_session, university.id, other.id)
        assert [r.subtopic_id for r in rows] == [s1.id]
        assert rows[0].institution_id is None


class TestContentMapperRoutes:

    async def test_save_and_read_back(self, client, catalogue, super_admin, db_session):
        _, _, (s1, s2, _) = catalogue
        university = await make_university(db_session)
        headers = auth_headers(super_admin)

        response = await client.post("/api/content-mapper", json={
            "university_id": university.id,
            "institution_id": None,
            "rows": [
                {"subtopic_id": s1.id, "difficulty_level": "easy,medium"},
                {"subtopic_id": s2.id, "session_limit": 15},
            ],
        }, headers=headers)
        assert response.status_code == 200, response.text
        assert response.json() == {"success": True, "count": 2}

        response = await client.get(
            f"/api/content-mapper?university_id={university.id}&institution_id=null", headers=headers
        )
        data = response.json()["data"]
        assert [r["subtopic_id"] for r in data] == [s1.id, s2.id]
        assert data[0]["difficulty_level"] == "easy,medium"
        assert data[1]["difficulty_level"] == "all"
        assert data[1]["session_limit"] == 15

    async def test_institution_admin_limited_to_own_scope(self, client, db_session, institution_admin):
        university = await make_university(db_session)
        headers = auth_headers(institution_admin)

        response = await client.post("/api/content-mapper", json={
            "university_id": university.id, "institution_id": None, "rows": [],
        }, headers=headers)
        assert response.status_code == 403

        response = await client.post("/api/content-mapper", json={
            "university_id": university.id, "institution_id": institution_admin.institution_id, "rows": [],
        }, headers=headers)
        assert response.status_code == 200

    async def test_university_required(self, client, super_admin):
        response = await client.get("/api/content-mapper", headers=auth_headers(super_admin))
        assert response.status_code == 400
