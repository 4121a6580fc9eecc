"""
Self-service account endpoints.
"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import InvalidStateError
from models import Role, User
from schemas import MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/user", tags=["user"])


@router.post("/request-instructor", response_model=MessageResponse)
def request_instructor(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Promote the caller from STUDENT to INSTRUCTOR.

    Instructors get a no-op success; admins cannot demote themselves this way.
    """
    role = Role(current_user.role)
    if role is Role.INSTRUCTOR:
        return {"message": "You are already an instructor"}
    if role is not Role.STUDENT:
        raise InvalidStateError(f"Role {role.value} cannot request instructor access")

    current_user.role = Role.INSTRUCTOR
    db.commit()
    logger.info(
        "User promoted to instructor",
        extra={"extra_fields": {"user_id": str(current_user.id)}},
    )
    return {"message": "Role updated to INSTRUCTOR successfully!"}
