from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime, date
from decimal import Decimal
from uuid import UUID
from typing import Optional, List


# Request bodies accept both snake_case and the camelCase names web clients send.
_REQUEST_CONFIG = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class UserSummary(BaseModel):
    id: UUID
    email: str
    name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserResponse(BaseModel):
    id: UUID
    email: str
    name: Optional[str] = None
    role: str
    timezone: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RegisterRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    email: EmailStr
    password: str
    name: Optional[str] = None
    timezone: Optional[str] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class PaymentResponse(BaseModel):
    id: UUID
    provider: str
    amount: float
    currency: str
    status: str
    type: str
    recipient_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)


class SubmissionResponse(BaseModel):
    id: UUID
    goal_id: UUID
    submission_date: datetime
    submission_day: date
    content: str
    file_url: Optional[str] = None
    status: str
    reviewer_id: Optional[UUID] = None
    reviewer_comment: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SubmissionWriteResponse(SubmissionResponse):
    """Returned by POST /submissions; created is False when today's row was overwritten."""
    created: bool = True


class GoalResponse(BaseModel):
    id: UUID
    title: str
    description: str
    duration_days: int
    stake_amount: float
    start_date: datetime
    started_at: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: str
    user_id: UUID
    instructor_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class GoalDetailResponse(GoalResponse):
    """Owner's view: goal, its submissions, payment and the next day a submission is due."""
    submissions: List[SubmissionResponse] = []
    payment: Optional[PaymentResponse] = None
    next_due_date: Optional[date] = None


class InstructorGoalResponse(GoalResponse):
    user: Optional[UserSummary] = None
    submissions: List[SubmissionResponse] = []


class SubmissionGoalSummary(BaseModel):
    id: UUID
    title: str
    user: Optional[UserSummary] = None

    model_config = ConfigDict(from_attributes=True)


class PendingSubmissionResponse(SubmissionResponse):
    goal: SubmissionGoalSummary


class GoalCreate(BaseModel):
    model_config = _REQUEST_CONFIG

    title: str
    description: str
    duration_days: int = Field(alias="durationDays")
    stake_amount: Decimal = Field(alias="stakeAmount")
    payment_token: str = Field(alias="token")
    provider: Optional[str] = None


class ClaimGoalRequest(BaseModel):
    action: str


class FinalizeGoalRequest(BaseModel):
    status: str


class ReviewSubmissionRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    status: str
    reviewer_comment: Optional[str] = Field(default=None, alias="reviewerComment")


class PayPalOrderRequest(BaseModel):
    model_config = _REQUEST_CONFIG

    stake_amount: Decimal = Field(alias="stakeAmount", gt=0)


class PayPalOrderResponse(BaseModel):
    id: str


class MessageResponse(BaseModel):
    message: str


class AdminUserUpdate(BaseModel):
    model_config = _REQUEST_CONFIG

    email: Optional[EmailStr] = None
    name: Optional[str] = None
    role: Optional[str] = None
    timezone: Optional[str] = None
    reason: Optional[str] = None


class AdminGoalUpdate(BaseModel):
    model_config = _REQUEST_CONFIG

    title: Optional[str] = None
    description: Optional[str] = None
    duration_days: Optional[int] = Field(default=None, alias="durationDays")
    stake_amount: Optional[Decimal] = Field(default=None, alias="stakeAmount")
    status: Optional[str] = None
    instructor_id: Optional[UUID] = Field(default=None, alias="instructorId")
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    reason: Optional[str] = None


class AdminGoalResponse(GoalResponse):
    user: Optional[UserSummary] = None
    instructor: Optional[UserSummary] = None
    payment: Optional[PaymentResponse] = None
