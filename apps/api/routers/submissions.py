"""
Daily submission endpoints for goal owners (multipart form data).
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from sqlalchemy.orm import Session

from core.auth import RequestContext, get_request_context
from core.database import get_db
from schemas import SubmissionResponse, SubmissionWriteResponse
from services import submission_review
from services.blob_storage import BlobStorage, get_blob_storage
from services.submission_review import Upload

router = APIRouter(prefix="/submissions", tags=["submissions"])


def _read_upload(file: Optional[UploadFile]) -> Optional[Upload]:
    if file is None or not file.filename:
        return None
    content = file.file.read()
    return Upload(content=content, filename=file.filename, content_type=file.content_type)


@router.post("", response_model=SubmissionWriteResponse, status_code=status.HTTP_201_CREATED)
def create_submission(
    response: Response,
    goal_id: UUID = Form(..., alias="goalId"),
    content: str = Form(""),
    file: Optional[UploadFile] = File(None),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    """
    Post today's evidence for an active goal.

    A second post on the same calendar day overwrites the first and
    answers 200 instead of 201.
    """
    upload = _read_upload(file)
    submission, created = submission_review.submit(db, ctx, goal_id, content, upload, storage=storage)
    if not created:
        response.status_code = status.HTTP_200_OK
    return SubmissionWriteResponse.model_validate(submission).model_copy(update={"created": created})


@router.patch("/{submission_id}", response_model=SubmissionResponse)
def update_submission(
    submission_id: UUID,
    content: str = Form(""),
    file: Optional[UploadFile] = File(None),
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_blob_storage),
):
    upload = _read_upload(file)
    return submission_review.edit_submission(db, ctx, submission_id, content, upload, storage=storage)
