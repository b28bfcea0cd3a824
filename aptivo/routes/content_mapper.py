"""
aptivo/routes/content_mapper.py
Which subjects, topics and subtopics a university (optionally per
institution) exposes to practice, and with what limits.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from aptivo.database import get_db
from aptivo.errors import BadRequestError, NotFoundError, ErrorCode
from aptivo.orm.university import University
from aptivo.orm.user import UserRole
from aptivo.schemas.admin import ContentMapperRequest
from aptivo.security.service_role import PrivilegedCaller, privileged_caller
from aptivo.services import content_mapper_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/content-mapper", tags=["Content Mapper"])

mapper_caller = privileged_caller(UserRole.super_admin, UserRole.institution_admin)


@router.post("")
async def save_mapping(
    body: ContentMapperRequest,
    caller: PrivilegedCaller = Depends(mapper_caller),
    db: AsyncSession = Depends(get_db),
):
    """Replace every row of the (university, institution) scope with ``rows``."""
    if body.university_id is None:
        raise BadRequestError("university_id is required", code=ErrorCode.MISSING_FIELD)
    if await db.get(University, body.university_id) is None:
        raise NotFoundError("University", body.university_id)

    if not caller.is_super_admin:
        # Institution admins can only map content for their own institution
        caller.ensure_institution(body.institution_id)

    count = await content_mapper_service.replace_mapping(
        db,
        body.university_id,
        body.institution_id,
        [row.model_dump() for row in body.rows],
    )
    await db.commit()
    return {"success": True, "count": count}


@router.get("")
async def read_mapping(
    university_id: Optional[int] = None,
    institution_id: Optional[str] = None,
    caller: PrivilegedCaller = Depends(mapper_caller),
    db: AsyncSession = Depends(get_db),
):
    if university_id is None:
        raise BadRequestError("university_id is required", code=ErrorCode.MISSING_FIELD)

    scope = content_mapper_service.parse_scope_param(institution_id)
    if not caller.is_super_admin:
        caller.ensure_institution(scope)

    rows = await content_mapper_service.get_mapping(db, university_id, scope)
    return {"data": [row.to_dict() for row in rows]}
