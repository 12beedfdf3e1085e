"""Admin endpoints. Every route needs a valid bearer token."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from iqps.api.auth import require_admin
from iqps.api.dependencies import get_services
from iqps.api.responses import failure, success
from iqps.domain.errors import ValidationError
from iqps.domain.qp import AuthContext, CatalogPaper, EditRequest, Exam, Semester
from iqps.infrastructure.storage.paths import Paths

router = APIRouter(dependencies=[Depends(require_admin)])


class EditBody(BaseModel):
    id: int
    course_code: Optional[str] = None
    course_name: Optional[str] = None
    year: Optional[int] = None
    semester: Optional[str] = None
    exam: Optional[str] = None
    note: Optional[str] = None
    approve_status: Optional[bool] = None
    replace: List[int] = Field(default_factory=list)


class IdBody(BaseModel):
    id: int


def _with_url(paper: CatalogPaper, paths: Paths) -> dict:
    return paper.with_filelink(paths.url_from_slug(paper.filelink)).to_admin_dict()


@router.get("/profile")
async def profile(auth: AuthContext = Depends(require_admin)):
    return success(
        "Successfully authorized the user.",
        {"token": auth.token, "username": auth.username},
    )


@router.get("/unapproved")
async def unapproved():
    services = get_services()
    papers = await asyncio.to_thread(services.store.fetch_unapproved)
    return success(
        f"Successfully fetched {len(papers)} papers.",
        [_with_url(p, services.paths) for p in papers],
    )


@router.get("/trash")
async def trash():
    services = get_services()
    papers = await asyncio.to_thread(services.store.fetch_soft_deleted)
    return success(
        f"Successfully fetched {len(papers)} papers.",
        [_with_url(p, services.paths) for p in papers],
    )


@router.get("/similar")
async def similar(
    course_code: Optional[str] = None,
    year: Optional[int] = None,
    course_name: Optional[str] = None,
    semester: Optional[str] = None,
    exam: Optional[str] = None,
):
    if not course_code:
        raise ValidationError("`course_code` URL parameter is required.")

    services = get_services()
    papers = await asyncio.to_thread(
        services.store.fetch_similar,
        course_code,
        year=year,
        course_name=course_name,
        semester=Semester.parse(semester) if semester is not None else None,
        exam=Exam.parse(exam) if exam is not None else None,
    )
    return success(
        f"Found {len(papers)} similar papers.",
        [_with_url(p, services.paths) for p in papers],
    )


@router.post("/edit")
async def edit(body: EditBody, auth: AuthContext = Depends(require_admin)):
    services = get_services()
    request = EditRequest(**body.model_dump())
    paper = await asyncio.to_thread(services.coordinator.edit, request, auth)
    return success("Successfully updated paper details.", _with_url(paper, services.paths))


@router.post("/delete")
async def delete(body: IdBody):
    services = get_services()
    deleted = await asyncio.to_thread(services.coordinator.soft_delete, body.id)
    if not deleted:
        return failure(
            "No paper was changed. Either the paper does not exist, is a library paper "
            "(cannot be deleted), or is already deleted.",
            400,
        )
    return success("Successfully deleted the paper.")


@router.post("/permanent_delete")
async def permanent_delete(body: IdBody):
    services = get_services()
    result = await asyncio.to_thread(services.coordinator.permanent_delete, body.id)
    return success(
        "Successfully deleted the paper permanently.",
        {"id": result.paper.id, "file_removed": result.file_removed},
    )
