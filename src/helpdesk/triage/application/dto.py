"""
Triage Application DTOs
========================

Data Transfer Objects for the triage application layer.

Pydantic models validate reviewer and administrator input before it
reaches the domain, and serialise suggestions for callers.
"""

from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Dict, Any, Literal
from datetime import datetime

from helpdesk.triage.domain import Suggestion


# ========== Type Aliases for Literals ==========
TicketCategoryStr = Literal["billing", "tech", "shipping", "other"]
TriageEngineStr = Literal["heuristic", "llm"]


# ========== Request DTOs ==========

class FeedbackRequest(BaseModel):
    """Reviewer feedback on a triage suggestion."""
    accepted: bool = Field(..., description="Whether the agent accepted the draft")
    edited_reply: Optional[str] = Field(None, max_length=5000, description="Agent-edited reply")
    rating: Optional[int] = Field(None, ge=1, le=5, description="Quality rating 1-5")
    notes: Optional[str] = Field(None, max_length=1000, description="Free-text notes")


class ConfigUpdateRequest(BaseModel):
    """Partial update of the helpdesk triage configuration."""
    auto_close_enabled: Optional[bool] = None
    confidence_threshold: Optional[float] = None
    sla_hours: Optional[int] = Field(None, ge=1, le=168)
    engine: Optional[TriageEngineStr] = None

    @field_validator("confidence_threshold")
    @classmethod
    def clamp_threshold(cls, v: Optional[float]) -> Optional[float]:
        """Clamp the threshold into [0, 1]."""
        if v is None:
            return v
        return min(max(v, 0.0), 1.0)

    def to_updates(self) -> Dict[str, Any]:
        """Only the fields the caller actually set."""
        return self.model_dump(exclude_none=True)


# ========== Response DTOs ==========

class ModelInfoDTO(BaseModel):
    model: str
    version: str
    processing_time_ms: int
    tokens_used: int


class FeedbackDTO(BaseModel):
    accepted: bool
    edited_reply: Optional[str] = None
    rating: Optional[int] = None
    notes: Optional[str] = None
    submitted_by: Optional[str] = None
    submitted_at: datetime


class SuggestionDTO(BaseModel):
    """Serialisable view of a suggestion."""
    id: Optional[str]
    ticket_id: str
    trace_id: str
    predicted_category: TicketCategoryStr
    category_confidence: float = Field(..., ge=0.0, le=1.0)
    article_ids: List[str]
    draft_reply: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    auto_closed: bool
    model_info: ModelInfoDTO
    agent_feedback: Optional[FeedbackDTO] = None
    used: bool
    used_at: Optional[datetime] = None
    quality_score: float
    created_at: datetime

    @classmethod
    def from_domain(cls, suggestion: Suggestion) -> "SuggestionDTO":
        """Create from domain entity."""
        feedback = suggestion.agent_feedback
        return cls(
            id=suggestion.id,
            ticket_id=suggestion.ticket_id,
            trace_id=suggestion.trace_id,
            predicted_category=suggestion.predicted_category,
            category_confidence=suggestion.category_confidence,
            article_ids=list(suggestion.article_ids),
            draft_reply=suggestion.draft_reply,
            confidence=suggestion.confidence,
            auto_closed=suggestion.auto_closed,
            model_info=ModelInfoDTO(
                model=suggestion.model_info.model,
                version=suggestion.model_info.version,
                processing_time_ms=suggestion.model_info.processing_time_ms,
                tokens_used=suggestion.model_info.tokens_used,
            ),
            agent_feedback=FeedbackDTO(
                accepted=feedback.accepted,
                edited_reply=feedback.edited_reply,
                rating=feedback.rating,
                notes=feedback.notes,
                submitted_by=feedback.submitted_by,
                submitted_at=feedback.submitted_at,
            ) if feedback else None,
            used=suggestion.used,
            used_at=suggestion.used_at,
            quality_score=round(suggestion.quality_score, 3),
            created_at=suggestion.created_at,
        )
