"""Pydantic models for request/response validation."""
from datetime import datetime, timezone
from typing import List, Literal, Optional
from pydantic import BaseModel, Field, field_validator


class VoteRequest(BaseModel):
    """Vote submission request model."""

    option_id: str = Field(..., description="Identifier of the chosen option")
    identity: Optional[str] = Field(
        default=None,
        description="Voter identity (IP address); defaults to the client address"
    )

    @field_validator("option_id")
    @classmethod
    def validate_option_id(cls, v):
        """Validate option_id is not empty."""
        if not v or not v.strip():
            raise ValueError("Option ID cannot be empty")
        return v.strip()

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, v):
        """Blank identities fall back to the client address."""
        if v is None or not v.strip():
            return None
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {
                "option_id": "opt_1",
                "identity": "192.168.1.20"
            }
        }


class ReleaseRequest(BaseModel):
    """Admin request to release an identity's active vote."""

    identity: str = Field(..., description="Identity (IP address) to release")

    @field_validator("identity")
    @classmethod
    def validate_identity(cls, v):
        """Validate identity is not empty."""
        if not v or not v.strip():
            raise ValueError("Identity cannot be empty")
        return v.strip()

    class Config:
        json_schema_extra = {
            "example": {
                "identity": "192.168.1.20"
            }
        }


class OperationResponse(BaseModel):
    """Outcome of a vote or release."""

    success: bool = Field(..., description="Whether the operation was applied")
    message: str = Field(..., description="Human-readable confirmation or error")
    error: Optional[str] = Field(default=None, description="Error code when success is false")
    action: Optional[Literal["VOTE", "REVOTE", "RELEASE"]] = Field(
        default=None, description="Audit action recorded"
    )
    vote_id: Optional[str] = Field(default=None, description="Vote record affected")

    class Config:
        json_schema_extra = {
            "example": {
                "success": True,
                "message": "Vote cast successfully.",
                "action": "VOTE",
                "vote_id": "vote_5f1c..."
            }
        }


class OptionResultResponse(BaseModel):
    """Projected count of one option."""

    id: str
    text: str
    votes: int


class PollResponse(BaseModel):
    """Poll with projected results."""

    id: str = Field(..., description="Poll identifier")
    question: str = Field(..., description="Question text")
    is_active: bool = Field(..., description="Whether the poll accepts votes")
    created_at: str = Field(..., description="Creation timestamp")
    options: List[OptionResultResponse] = Field(..., description="Options with active vote counts")
    total_votes: int = Field(..., description="Total number of active votes")

    class Config:
        json_schema_extra = {
            "example": {
                "id": "poll_1",
                "question": "Which frontend framework do you prefer?",
                "is_active": True,
                "created_at": "2024-01-15T10:30:00Z",
                "options": [
                    {"id": "opt_1", "text": "React", "votes": 3},
                    {"id": "opt_2", "text": "Vue", "votes": 1}
                ],
                "total_votes": 4
            }
        }


class VoteRecordResponse(BaseModel):
    id: str
    poll_id: str
    option_id: str
    identity: str
    timestamp: str
    released: bool


class AuditEntryResponse(BaseModel):
    id: str
    action: Literal["VOTE", "REVOTE", "RELEASE"]
    poll_id: str
    identity: str
    details: str
    timestamp: str


class IdentityStatusResponse(BaseModel):
    identity: str
    status: Literal["locked", "released"]
    last_vote_at: str
    vote_count: int
    active_vote_id: Optional[str] = None


class HistoryResponse(BaseModel):
    """Moderation view of a poll."""

    poll_id: str
    votes: List[VoteRecordResponse] = Field(..., description="Vote records in ledger order")
    audit: List[AuditEntryResponse] = Field(..., description="Audit entries, newest first")
    identities: List[IdentityStatusResponse] = Field(..., description="Per-identity lock status")


class VoterStatusResponse(BaseModel):
    """Lock state of one identity on one poll."""

    poll_id: str
    identity: str
    has_active_vote: bool
    active_vote_id: Optional[str] = None
    active_option_id: Optional[str] = None
    can_vote: bool
    next_vote_is_revote: bool


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Health check timestamp"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "services": {
                    "storage": "connected"
                },
                "timestamp": "2024-01-15T10:30:00"
            }
        }


class ErrorResponse(BaseModel):
    """Error response model."""

    success: bool = Field(default=False)
    message: str = Field(..., description="Error message")
    error: str = Field(..., description="Error type")

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "message": "Poll not found",
                "error": "PollNotFound"
            }
        }
