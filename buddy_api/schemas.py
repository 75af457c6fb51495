"""
Pydantic Schemas for API Request/Response Models

This module defines the data models used for API communication between
the web client and the backend.

These schemas provide:
- Type validation
- Automatic documentation in OpenAPI/Swagger
- Clear interface contracts
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


# ============================================================
# User Schemas
# ============================================================

class UserInfo(BaseModel):
    """User information summary."""
    user_id: str = Field(..., description="Local user identifier")
    external_id: Optional[str] = Field(None, description="Identity provider user ID")
    email: Optional[str] = Field(None, description="Primary email address")
    first_name: Optional[str] = Field(None, description="Given name")
    last_name: Optional[str] = Field(None, description="Family name")
    status: str = Field("active", description="'active' or 'pending'")
    created_at: str = Field(..., description="ISO timestamp of creation")

    @classmethod
    def from_record(cls, user: Dict[str, Any]) -> "UserInfo":
        """Build from a store user dictionary."""
        return cls(**{name: user.get(name) for name in cls.model_fields if name in user})


class UserListResponse(BaseModel):
    """Response containing list of users."""
    users: List[UserInfo] = Field(default_factory=list)
    total: int = Field(0, description="Total number of users")


class UserDetailResponse(UserInfo):
    """Detailed user information."""
    has_face_embedding: bool = Field(False, description="Whether a face is enrolled")
    recent_auth_attempts: int = Field(0, description="Number of logged auth attempts")


class DeleteUserResponse(BaseModel):
    """Response from user deletion."""
    success: bool = Field(..., description="Whether deletion was successful")
    user_id: str = Field(..., description="ID of deleted user")
    message: str = Field(..., description="Status message")


# ============================================================
# Authentication Schemas
# ============================================================

class SignInRequest(BaseModel):
    """Password sign-in."""
    email: str = Field(..., min_length=3, description="Account email")
    password: str = Field(..., min_length=1, description="Account password")


class SignUpRequest(BaseModel):
    """Password sign-up."""
    email: str = Field(..., min_length=3, description="Account email")
    password: str = Field(..., min_length=8, description="New password")
    first_name: Optional[str] = Field(None, description="Given name")
    last_name: Optional[str] = Field(None, description="Family name")


class PasswordUpdateRequest(BaseModel):
    """Change the signed-in user's password."""
    new_password: str = Field(..., min_length=8, description="New password")


class SessionResponse(BaseModel):
    """Returned whenever a session is issued."""
    success: bool = Field(True, description="Always true on success")
    user: UserInfo = Field(..., description="The signed-in user")
    method: str = Field(..., description="How the user authenticated: 'password' or 'face'")
    token: str = Field(..., description="Session bearer token (also set as a cookie)")
    similarity: Optional[float] = Field(None, description="Face match similarity, for face sign-in")


class MeResponse(BaseModel):
    """Current session."""
    user: UserInfo
    method: str = Field(..., description="How the session was authenticated")
    has_face_embedding: bool = Field(False, description="Whether a face is enrolled")


class SuccessResponse(BaseModel):
    """Generic acknowledgement."""
    success: bool = True
    message: Optional[str] = None


# ============================================================
# Face Schemas
# ============================================================

class FaceEmbeddingRequest(BaseModel):
    """A face embedding computed client-side from a webcam frame."""
    embedding: List[float] = Field(..., min_length=1, description="Face embedding (128 numbers)")


class FaceLoginRequest(FaceEmbeddingRequest):
    """Face sign-in. With an email, only that user's face is compared (1:1)."""
    email: Optional[str] = Field(None, description="Restrict matching to this account")


class FaceLoginFailure(BaseModel):
    """Body of a 401 face sign-in response."""
    error: str = Field(..., description="Error message")
    similarity: float = Field(..., description="Best similarity seen, below threshold")


class PendingEnrollmentRequest(FaceEmbeddingRequest):
    """Store a face before the account exists."""
    email: str = Field(..., min_length=3, description="Email the sign-up will use")


class PendingEmbeddingResponse(BaseModel):
    """A stored pending face embedding."""
    email: str
    face_embedding: List[float]


class CleanupRequest(BaseModel):
    """Remove pending face sign-ups for an email."""
    email: str = Field(..., min_length=3)


class CleanupResponse(BaseModel):
    success: bool = True
    deleted: int = Field(0, description="Number of pending records removed")


class FaceSignUpRequest(BaseModel):
    """Passwordless sign-up completed with a face."""
    email: str = Field(..., min_length=3, description="Account email")
    first_name: Optional[str] = Field(None, description="Given name")
    last_name: Optional[str] = Field(None, description="Family name")
    embedding: Optional[List[float]] = Field(
        None,
        description="Face embedding; omitted when one was stored via /face/pending"
    )


# ============================================================
# Study Schemas
# ============================================================

class TopicRequest(BaseModel):
    topic: str = Field(..., min_length=1, description="What to study")


class PlanResponse(BaseModel):
    plan: str = Field(..., description="Generated learning plan text")


class QuizQuestionSchema(BaseModel):
    question: str
    choices: List[str]
    answer: str


class QuizResponse(BaseModel):
    quiz: List[QuizQuestionSchema] = Field(
        default_factory=list,
        description="Generated questions; empty if the model output was unusable"
    )


class ExplainRequest(BaseModel):
    question: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1, description="The correct answer")
    user_answer: Optional[str] = Field(None, description="The student's answer")
    topic: str = Field(..., min_length=1)


class ExplainResponse(BaseModel):
    explanation: str


class SavePlanRequest(BaseModel):
    topic: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)


class LearningPlanSchema(BaseModel):
    id: str
    topic: str
    content: str
    created_at: str


class SavePlanResponse(BaseModel):
    plan: LearningPlanSchema


class SaveQuizResultRequest(BaseModel):
    topic: str = Field(..., min_length=1)
    questions: List[QuizQuestionSchema] = Field(..., min_length=1)
    answers: List[Any] = Field(..., description="The user's chosen answers")
    score: float = Field(..., description="Final score")


class QuizResultSchema(BaseModel):
    id: str
    topic: str
    questions: List[QuizQuestionSchema]
    answers: List[Any]
    score: float
    created_at: str


class SaveQuizResultResponse(BaseModel):
    result: QuizResultSchema


class HistoryResponse(BaseModel):
    plans: List[LearningPlanSchema] = Field(default_factory=list)
    quizzes: List[QuizResultSchema] = Field(default_factory=list)


# ============================================================
# Note Schemas
# ============================================================

class NoteCreateRequest(BaseModel):
    title: Optional[str] = Field(None, description="Defaults to 'Untitled Note'")
    content: Optional[str] = Field(None, description="Rich text (HTML)")
    tags: Optional[List[str]] = None


class NoteUpdateRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    title: Optional[str] = None
    content: Optional[str] = None
    tags: Optional[List[str]] = None
    is_pinned: Optional[bool] = None
    is_starred: Optional[bool] = None


class NoteSchema(BaseModel):
    id: str
    title: str
    content: str
    tags: List[str]
    is_pinned: bool
    is_starred: bool
    created_at: str
    updated_at: str


class NoteListResponse(BaseModel):
    notes: List[NoteSchema] = Field(default_factory=list)


class NoteVersionSchema(BaseModel):
    id: str
    note_id: str
    title: str
    content: str
    tags: List[str]
    created_at: str


class NoteVersionListResponse(BaseModel):
    versions: List[NoteVersionSchema] = Field(default_factory=list)


# ============================================================
# Webhook Schemas
# ============================================================

class WebhookResponse(BaseModel):
    received: bool = True
    event_type: Optional[str] = None


# ============================================================
# Health Check Schemas
# ============================================================

class HealthResponse(BaseModel):
    """System health check response."""
    status: str = Field(..., description="Overall status: 'healthy' or 'degraded'")
    database_ok: bool = Field(..., description="Whether the database answered")
    total_users: int = Field(0, description="Number of active users")
    enrolled_faces: int = Field(0, description="Number of users with an enrolled face")
    session_configured: bool = Field(..., description="Whether a session secret is set")
    identity_configured: bool = Field(..., description="Whether the identity provider key is set")
    completion_configured: bool = Field(..., description="Whether the completion API key is set")
