"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-triage", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== External Engine (OpenAI) ==========
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key for the external triage engine"
    )
    mock_llm: bool = Field(
        default=False,
        description="Use mock LLM responses for testing (no API calls)"
    )
    llm_model: str = Field(
        default="gpt-4o-mini",
        description="Model used for classification and reply drafting"
    )
    llm_temperature: float = Field(
        default=0.3,
        description="Default temperature for LLM",
        ge=0.0,
        le=1.0
    )
    llm_max_tokens: int = Field(
        default=800,
        description="Default max tokens for LLM generation",
        ge=1,
        le=8000
    )
    llm_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound for a single external engine call",
        ge=0.1,
        le=60
    )

    # ========== Triage ==========
    triage_engine: str = Field(
        default="heuristic",
        description="Engine used when no persisted configuration exists (heuristic|llm)"
    )
    auto_close_enabled: bool = Field(
        default=False,
        description="Default for the persisted auto-close flag"
    )
    confidence_threshold: float = Field(
        default=0.8,
        description="Default auto-close confidence threshold",
        ge=0.0,
        le=1.0
    )
    sla_hours: int = Field(default=24, description="Default SLA hours", ge=1, le=168)
    max_draft_reply_length: int = Field(
        default=5000,
        description="Hard maximum for persisted draft replies",
        ge=100
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("triage_engine")
    @classmethod
    def validate_triage_engine(cls, v: str) -> str:
        """Ensure the engine selector names a known engine."""
        if v not in VALID_ENGINES:
            raise ValueError(f"triage_engine must be one of {VALID_ENGINES}")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class TicketCategory(str):
    """Closed set of ticket categories."""
    BILLING = "billing"
    TECH = "tech"
    SHIPPING = "shipping"
    OTHER = "other"


class ArticleStatus(str):
    """Knowledge base article publication states."""
    DRAFT = "draft"
    PUBLISHED = "published"


class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    TRIAGED = "triaged"
    WAITING_HUMAN = "waiting_human"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class AuditActor(str):
    """Who performed an audited action."""
    SYSTEM = "system"
    USER = "user"
    AGENT = "agent"
    ADMIN = "admin"


class AuditAction(str):
    """Audit trail action tags."""
    TICKET_CREATED = "ticket_created"
    TICKET_UPDATED = "ticket_updated"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"
    UNASSIGNED = "unassigned"
    REPLY_ADDED = "reply_added"
    CATEGORY_PREDICTED = "category_predicted"
    ARTICLES_RETRIEVED = "articles_retrieved"
    REPLY_DRAFTED = "reply_drafted"
    AUTO_CLOSED = "auto_closed"
    TRIAGE_FAILED = "triage_failed"
    AGENT_REVIEWED = "agent_reviewed"
    ESCALATED = "escalated"


class TriageEngine(str):
    """Selectable triage engines."""
    HEURISTIC = "heuristic"
    LLM = "llm"


# ========== Lists for validation ==========

VALID_CATEGORIES = [
    TicketCategory.BILLING, TicketCategory.TECH,
    TicketCategory.SHIPPING, TicketCategory.OTHER
]
# Keyword categories in tie-break order; "other" is the zero-score default
CATEGORY_KEYWORD_ORDER = [
    TicketCategory.BILLING, TicketCategory.TECH, TicketCategory.SHIPPING
]
VALID_ARTICLE_STATUSES = [ArticleStatus.DRAFT, ArticleStatus.PUBLISHED]
VALID_STATUSES = [
    TicketStatus.OPEN, TicketStatus.TRIAGED, TicketStatus.WAITING_HUMAN,
    TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED, TicketStatus.CLOSED
]
VALID_ACTORS = [
    AuditActor.SYSTEM, AuditActor.USER, AuditActor.AGENT, AuditActor.ADMIN
]
VALID_AUDIT_ACTIONS = [
    AuditAction.TICKET_CREATED, AuditAction.TICKET_UPDATED,
    AuditAction.STATUS_CHANGED, AuditAction.ASSIGNED, AuditAction.UNASSIGNED,
    AuditAction.REPLY_ADDED, AuditAction.CATEGORY_PREDICTED,
    AuditAction.ARTICLES_RETRIEVED, AuditAction.REPLY_DRAFTED,
    AuditAction.AUTO_CLOSED, AuditAction.TRIAGE_FAILED,
    AuditAction.AGENT_REVIEWED, AuditAction.ESCALATED
]
VALID_ENGINES = [TriageEngine.HEURISTIC, TriageEngine.LLM]


# Global settings instance
settings = get_settings()
