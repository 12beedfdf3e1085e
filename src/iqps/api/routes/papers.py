"""Public endpoints: health check, search and paper upload."""

from __future__ import annotations

import asyncio
import json
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, File, Form, UploadFile

from iqps.api.dependencies import AppServices, get_services
from iqps.api.responses import success
from iqps.application.services.lifecycle_coordinator import UploadFile as PaperUpload
from iqps.domain.errors import IqpsError, ValidationError
from iqps.domain.qp import ExamFilter
from iqps.utils.logging_config import LogFiles, Logger

router = APIRouter()


@router.get("/healthcheck")
async def healthcheck():
    return success("Hello, World.")


@router.get("/search")
async def search(query: Optional[str] = None, exam: Optional[str] = None):
    if query is None:
        raise ValidationError("`query` URL parameter is required.")
    try:
        exam_filter = ExamFilter.parse(exam)
    except ValidationError:
        raise ValidationError("Invalid `exam` URL parameter.") from None

    services = get_services()
    hits = await asyncio.to_thread(services.ranker.search, query, exam_filter)
    return success(
        f"Successfully fetched {len(hits)} papers.",
        [hit.to_dict() for hit in hits],
    )


def _notify_uploaded(services: AppServices, count: int) -> None:
    try:
        total = services.store.count_unapproved()
    except IqpsError as exc:
        Logger.exception("could not count unapproved papers for notification", exc, file=LogFiles.NOTIFY)
        return
    services.notifier.notify_uploaded(count, total)


@router.post("/upload")
async def upload(
    background_tasks: BackgroundTasks,
    files: List[UploadFile] = File(...),
    file_details: str = Form(...),
):
    try:
        details = json.loads(file_details)
    except json.JSONDecodeError:
        raise ValidationError("`file_details` must be a JSON array.") from None
    if not isinstance(details, list):
        raise ValidationError("`file_details` must be a JSON array.")

    uploads = [
        PaperUpload(filename=f.filename or "", data=await f.read(), content_type=f.content_type)
        for f in files
    ]

    services = get_services()
    statuses = await asyncio.to_thread(services.coordinator.upload, uploads, details)

    stored = sum(1 for s in statuses if s.ok)
    if stored:
        background_tasks.add_task(_notify_uploaded, services, stored)

    return success(
        f"Successfully processed {len(statuses)} files",
        [s.to_dict() for s in statuses],
    )
