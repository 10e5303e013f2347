"""
Triage Infrastructure Models
=============================

SQLAlchemy ORM models for the triage module.
"""

from datetime import datetime, timezone
from typing import Optional, List
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON, Boolean, DateTime, Float, Index, Integer, String, Text, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk.infrastructure.database import Base
from helpdesk.config import TicketCategory, ArticleStatus, TriageEngine


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ArticleModel(Base):
    """
    Database model for knowledge base articles.

    Written by the knowledge base module; triage only searches it.
    """
    __tablename__ = "articles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    category: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketCategory.OTHER)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ArticleStatus.DRAFT)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow
    )

    __table_args__ = (
        Index("ix_articles_status_category", "status", "category"),
    )


class SuggestionModel(Base):
    """
    Database model for Suggestion entity.

    ``ticket_id`` is unique: one suggestion per ticket.
    """
    __tablename__ = "agent_suggestions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    trace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Prediction
    predicted_category: Mapped[str] = mapped_column(String(20), nullable=False)
    category_confidence: Mapped[float] = mapped_column(Float, nullable=False)
    article_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    draft_reply: Mapped[str] = mapped_column(Text, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, index=True)
    auto_closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)

    # Model metadata
    model_name: Mapped[str] = mapped_column(String(100), nullable=False, default="stub")
    model_version: Mapped[str] = mapped_column(String(20), nullable=False, default="1.0")
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Reviewer feedback
    feedback_accepted: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    feedback_edited_reply: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    feedback_rating: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    feedback_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    feedback_submitted_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    feedback_submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Usage
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class AuditLogModel(Base):
    """Append-only audit trail."""
    __tablename__ = "audit_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    ticket_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    trace_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    actor: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    meta: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        index=True
    )


class TriageConfigModel(Base):
    """
    Helpdesk configuration.

    A single row keyed ``config``.
    """
    __tablename__ = "helpdesk_config"

    id: Mapped[str] = mapped_column(String(20), primary_key=True, default="config")

    auto_close_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confidence_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=0.8)
    sla_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    engine: Mapped[str] = mapped_column(String(20), nullable=False, default=TriageEngine.HEURISTIC)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_updated_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
