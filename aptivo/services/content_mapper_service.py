"""
aptivo/services/content_mapper_service.py
Replace-and-read of a university's content mapping.

A scope is (university_id, institution_id) where institution_id None is the
university-wide mapping. Saving a scope deletes every existing row for
exactly that scope and inserts the new rows; other scopes are untouched.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.errors import BadRequestError, ErrorCode
from aptivo.orm.university import UniversityContentAccess, ALL_DIFFICULTIES

logger = logging.getLogger(__name__)


def normalize_difficulties(
    difficulty_level: Optional[str] = None,
    allowed_difficulties: Optional[Iterable[str]] = None,
) -> Tuple[str, List[str]]:
    """
    Resolve a row's difficulty selection.

    ``difficulty_level`` wins when given: ``"all"`` expands to every level,
    anything else is a comma list. Otherwise ``allowed_difficulties`` is used,
    defaulting to every level. Returns ``(difficulty_level, allowed)`` where the
    stored level is ``"all"`` when all three remain.

    >>> normalize_difficulties("easy,hard")
    ('easy,hard', ['easy', 'hard'])
    """
    if difficulty_level:
        if difficulty_level.strip().lower() == "all":
            allowed = list(ALL_DIFFICULTIES)
        else:
            allowed = [d.strip().lower() for d in difficulty_level.split(",") if d.strip()]
    elif allowed_difficulties:
        allowed = [d.strip().lower() for d in allowed_difficulties if d and d.strip()]
    else:
        allowed = list(ALL_DIFFICULTIES)

    if not allowed:
        allowed = list(ALL_DIFFICULTIES)

    level = "all" if len(allowed) == 3 else ",".join(allowed)
    return level, allowed


def _scope_filter(university_id: int, institution_id: Optional[int]):
    if institution_id is None:
        return (
            UniversityContentAccess.university_id == university_id,
            UniversityContentAccess.institution_id.is_(None),
        )
    return (
        UniversityContentAccess.university_id == university_id,
        UniversityContentAccess.institution_id == institution_id,
    )


async def replace_mapping(
    db: AsyncSession,
    university_id: int,
    institution_id: Optional[int],
    rows: List[Dict[str, Any]],
) -> int:
    """Delete the scope's rows and insert ``rows``. Returns the inserted count."""
    await db.execute(delete(UniversityContentAccess).where(*_scope_filter(university_id, institution_id)))

    for row in rows:
        level, allowed = normalize_difficulties(
            row.get("difficulty_level"),
            row.get("allowed_difficulties"),
        )
        db.add(UniversityContentAccess(
            university_id=university_id,
            institution_id=institution_id,
            subject_id=row.get("subject_id"),
            topic_id=row.get("topic_id"),
            subtopic_id=row.get("subtopic_id"),
            session_limit=row.get("session_limit"),
            difficulty_level=level,
            allowed_difficulties=allowed,
            is_active=row.get("is_active", True),
        ))

    await db.flush()
    logger.info(
        f"Content mapping replaced for university {university_id}, "
        f"institution {institution_id}: {len(rows)} rows"
    )
    return len(rows)


async def get_mapping(
    db: AsyncSession,
    university_id: int,
    institution_id: Optional[int],
) -> List[UniversityContentAccess]:
    result = await db.execute(
        select(UniversityContentAccess)
        .where(*_scope_filter(university_id, institution_id))
        .where(UniversityContentAccess.is_active.is_(True))
        .order_by(UniversityContentAccess.id)
    )
    return list(result.scalars().all())


async def get_effective_mapping(
    db: AsyncSession,
    university_id: int,
    institution_id: Optional[int],
) -> List[UniversityContentAccess]:
    """The institution's own mapping, or the university-wide one when it has none."""
    if institution_id is not None:
        rows = await get_mapping(db, university_id, institution_id)
        if rows:
            return rows
    return await get_mapping(db, university_id, None)


def parse_scope_param(raw: Optional[str]) -> Optional[int]:
    """Query strings carry ``"null"`` or nothing for the university-wide scope."""
    if raw is None:
        return None
    text = raw.strip()
    if text == "" or text.lower() in ("null", "none", "undefined"):
        return None
    if not text.isdigit():
        raise BadRequestError("institution_id must be a number or \"null\"", code=ErrorCode.INVALID_FORMAT)
    return int(text)
