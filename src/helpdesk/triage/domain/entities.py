"""
Triage Domain Entities
======================

Domain entities for the ticket triage module.

Contains pure Python business objects for category prediction,
knowledge base retrieval, reply drafting and the suggestion record
handed to human agents.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

from helpdesk.config import (
    TicketCategory, TicketStatus, ArticleStatus, AuditActor, TriageEngine,
    VALID_CATEGORIES, VALID_STATUSES, VALID_ARTICLE_STATUSES,
    VALID_ACTORS, VALID_AUDIT_ACTIONS,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Ticket:
    """
    Ticket as seen by the triage pipeline.

    Owned by the ticket collaborator; triage reads it and never mutates it.
    """
    id: str
    title: str
    description: str
    category: Optional[str] = None
    status: str = TicketStatus.OPEN
    priority: str = "medium"
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.status not in VALID_STATUSES:
            raise ValueError(f"Unknown ticket status: {self.status}")

    @property
    def full_text(self) -> str:
        """Title and description, the only text triage looks at."""
        return f"{self.title} {self.description}"


@dataclass
class Article:
    """Knowledge base article (read-only for triage)."""
    id: str
    title: str
    body: str
    tags: List[str] = field(default_factory=list)
    category: str = TicketCategory.OTHER
    status: str = ArticleStatus.DRAFT
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if self.status not in VALID_ARTICLE_STATUSES:
            raise ValueError(f"Unknown article status: {self.status}")

    @property
    def is_published(self) -> bool:
        return self.status == ArticleStatus.PUBLISHED


@dataclass
class CategoryResult:
    """
    Result of category prediction.

    Contains the predicted category with a confidence score in [0, 1].
    """
    category: str
    confidence: float
    reasoning: str = ""

    def __post_init__(self):
        """Validate classification result."""
        if self.category not in VALID_CATEGORIES:
            raise ValueError(f"Unknown category: {self.category}")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")


@dataclass
class DraftResult:
    """Drafted reply, the engine that wrote it and the metered tokens spent."""
    reply: str
    tokens_used: int = 0
    engine: str = "stub"


@dataclass
class ModelInfo:
    """Which engine produced a suggestion and what it cost."""
    model: str = "stub"
    version: str = "1.0"
    processing_time_ms: int = 0
    tokens_used: int = 0


@dataclass
class AgentFeedback:
    """Reviewer feedback attached to a suggestion after triage."""
    accepted: bool
    edited_reply: Optional[str] = None
    rating: Optional[int] = None
    notes: Optional[str] = None
    submitted_by: Optional[str] = None
    submitted_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if self.rating is not None and not 1 <= self.rating <= 5:
            raise ValueError("Rating must be between 1 and 5")


@dataclass
class Suggestion:
    """
    Automated triage suggestion for one ticket.

    Created once per ticket; feedback and usage are recorded in place later.
    """
    ticket_id: str
    trace_id: str
    predicted_category: str
    category_confidence: float
    article_ids: List[str]
    draft_reply: str
    confidence: float
    auto_closed: bool = False
    model_info: ModelInfo = field(default_factory=ModelInfo)
    agent_feedback: Optional[AgentFeedback] = None
    used: bool = False
    used_at: Optional[datetime] = None
    id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0 and 1")
        if not 0.0 <= self.category_confidence <= 1.0:
            raise ValueError("Category confidence must be between 0 and 1")

    @property
    def quality_score(self) -> float:
        """Confidence, averaged with the reviewer rating once one exists."""
        score = self.confidence
        if self.agent_feedback and self.agent_feedback.rating:
            score = (score + self.agent_feedback.rating / 5) / 2
        return score

    def submit_feedback(self, feedback: AgentFeedback) -> None:
        self.agent_feedback = feedback
        self.updated_at = _utcnow()

    def mark_as_used(self) -> None:
        self.used = True
        self.used_at = _utcnow()
        self.updated_at = self.used_at


@dataclass
class AuditEvent:
    """Append-only audit trail entry."""
    ticket_id: str
    trace_id: str
    action: str
    description: str
    actor: str = AuditActor.SYSTEM
    meta: Dict[str, Any] = field(default_factory=dict)
    actor_id: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        if self.actor not in VALID_ACTORS:
            raise ValueError(f"Unknown audit actor: {self.actor}")
        if self.action not in VALID_AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {self.action}")


@dataclass
class TriageConfig:
    """
    Snapshot of the active helpdesk configuration.

    The threshold is clamped here so every consumer can trust it.
    """
    auto_close_enabled: bool = False
    confidence_threshold: float = 0.8
    sla_hours: int = 24
    engine: str = TriageEngine.HEURISTIC
    version: int = 1

    def __post_init__(self):
        self.confidence_threshold = min(max(float(self.confidence_threshold), 0.0), 1.0)

    def allows_auto_close(self, confidence: float) -> bool:
        return self.auto_close_enabled and confidence >= self.confidence_threshold


@dataclass
class TriageOutcome:
    """What one pipeline run decided; the caller applies it to the ticket."""
    suggestion: Suggestion
    should_auto_close: bool
    trace_id: str
    failed: bool = False

    @property
    def next_ticket_status(self) -> str:
        return TicketStatus.RESOLVED if self.should_auto_close else TicketStatus.TRIAGED


@dataclass
class PerformanceMetrics:
    """Aggregate view of suggestion quality over a date range."""
    total_suggestions: int = 0
    auto_closed_count: int = 0
    used_count: int = 0
    avg_confidence: float = 0.0
    avg_category_confidence: float = 0.0
    avg_processing_time_ms: float = 0.0

    @property
    def auto_close_rate(self) -> float:
        if not self.total_suggestions:
            return 0.0
        return self.auto_closed_count / self.total_suggestions

    @property
    def usage_rate(self) -> float:
        if not self.total_suggestions:
            return 0.0
        return self.used_count / self.total_suggestions


class ClassificationPromptBuilder:
    """
    Builds prompts for ticket category prediction.

    All classification prompt text lives here.
    """

    SYSTEM_PROMPT = """You are a ticket classification system for a customer helpdesk.

Classify each support ticket into exactly one category:
- billing: invoices, payments, charges, refunds, subscriptions, pricing
- tech: bugs, errors, crashes, features not working
- shipping: deliveries, packages, tracking, orders not received
- other: anything else

Respond ONLY in JSON format:
{
    "category": "billing|tech|shipping|other",
    "confidence": 0.0-1.0,
    "reasoning": "brief explanation"
}"""

    @classmethod
    def build_prompt(cls, title: str, description: str) -> str:
        """Build classification prompt from ticket content."""
        return f"""Ticket Title: {title}

Ticket Description:
{description}

Classify this ticket (respond with JSON only):"""

    @classmethod
    def get_system_prompt(cls) -> str:
        """Get the system prompt for classification."""
        return cls.SYSTEM_PROMPT


class ReplyPromptBuilder:
    """Builds prompts for drafting a customer reply from KB articles."""

    ARTICLE_EXCERPT_CHARS = 300

    SYSTEM_PROMPT = """You are a helpdesk support agent drafting replies to customers.

Write a professional, helpful response that:
1. Addresses the customer's concern
2. References the relevant knowledge base articles by title
3. Is concise but informative
4. Maintains a friendly tone

If the articles don't fully address the issue, acknowledge this and suggest next steps."""

    @classmethod
    def build_prompt(
        cls,
        ticket: Ticket,
        articles: List[Article],
        category_result: CategoryResult
    ) -> str:
        """Build the drafting prompt with a short excerpt of each article."""
        if articles:
            articles_text = "\n\n".join(
                f"Title: {a.title}\nContent: {a.body[:cls.ARTICLE_EXCERPT_CHARS]}..."
                for a in articles
            )
        else:
            articles_text = "(no matching articles)"

        return f"""Ticket: {ticket.title}
Description: {ticket.description}
Predicted Category: {category_result.category}

Relevant Knowledge Base Articles:
{articles_text}

Write the reply:"""

    @classmethod
    def get_system_prompt(cls) -> str:
        return cls.SYSTEM_PROMPT
