"""
Shared pytest fixtures.

Sets an offline test environment before the settings module loads and
provides in-memory stores for pipeline tests plus an aiosqlite session
for repository tests.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from uuid import uuid4

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MOCK_LLM", "false")
os.environ.pop("OPENAI_API_KEY", None)

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from helpdesk.config import ArticleStatus, TicketCategory
from helpdesk.core import DuplicateSuggestionException
from helpdesk.infrastructure.database import Base
from helpdesk.triage.application import (
    IArticleStore, IAuditSink, IConfigStore, ISuggestionStore,
)
from helpdesk.triage.domain import (
    Article, AuditEvent, PerformanceMetrics, Suggestion, Ticket, TriageConfig,
)


# ========== In-memory stores ==========

class InMemoryArticleStore(IArticleStore):
    """Filters by status and category only; records every search."""

    def __init__(self, articles: Optional[List[Article]] = None):
        self.articles = list(articles or [])
        self.searches: List[dict] = []

    async def search_by_keywords(self, text, category=None, status=ArticleStatus.PUBLISHED, limit=10):
        self.searches.append({"text": text, "category": category, "status": status, "limit": limit})
        matches = [
            a for a in self.articles
            if a.status == status and (category is None or a.category == category)
        ]
        return matches[:limit]

    async def get_by_ids(self, article_ids):
        return [a for a in self.articles if a.id in article_ids and a.is_published]


class InMemoryConfigStore(IConfigStore):
    def __init__(self, config: Optional[TriageConfig] = None):
        self.config = config or TriageConfig()

    async def get_config(self) -> TriageConfig:
        return TriageConfig(
            auto_close_enabled=self.config.auto_close_enabled,
            confidence_threshold=self.config.confidence_threshold,
            sla_hours=self.config.sla_hours,
            engine=self.config.engine,
            version=self.config.version,
        )

    async def update_config(self, updates: dict, updated_by: Optional[str] = None) -> TriageConfig:
        for key, value in updates.items():
            setattr(self.config, key, value)
        self.config.version += 1
        return await self.get_config()


class InMemorySuggestionStore(ISuggestionStore):
    """Keyed by ticket ID, enforcing one suggestion per ticket."""

    def __init__(self):
        self.by_ticket: Dict[str, Suggestion] = {}
        self.update_calls = 0

    async def create(self, suggestion: Suggestion) -> Suggestion:
        if suggestion.ticket_id in self.by_ticket:
            raise DuplicateSuggestionException(suggestion.ticket_id)
        suggestion.id = str(uuid4())
        self.by_ticket[suggestion.ticket_id] = suggestion
        return suggestion

    async def get_by_id(self, suggestion_id: str) -> Optional[Suggestion]:
        for suggestion in self.by_ticket.values():
            if suggestion.id == suggestion_id:
                return suggestion
        return None

    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Suggestion]:
        return self.by_ticket.get(ticket_id)

    async def update(self, suggestion: Suggestion) -> Suggestion:
        self.update_calls += 1
        self.by_ticket[suggestion.ticket_id] = suggestion
        return suggestion

    async def get_performance_metrics(self, start_date=None, end_date=None) -> PerformanceMetrics:
        items = list(self.by_ticket.values())
        if not items:
            return PerformanceMetrics()
        return PerformanceMetrics(
            total_suggestions=len(items),
            auto_closed_count=sum(1 for s in items if s.auto_closed),
            used_count=sum(1 for s in items if s.used),
            avg_confidence=sum(s.confidence for s in items) / len(items),
            avg_category_confidence=sum(s.category_confidence for s in items) / len(items),
        )


class InMemoryAuditSink(IAuditSink):
    def __init__(self):
        self.events: List[AuditEvent] = []

    async def log_action(self, event: AuditEvent) -> None:
        self.events.append(event)

    async def get_ticket_timeline(self, ticket_id, limit=50, offset=0):
        events = [e for e in self.events if e.ticket_id == ticket_id]
        return events[offset:offset + limit]

    async def get_trace_timeline(self, trace_id):
        return [e for e in self.events if e.trace_id == trace_id]

    @property
    def actions(self) -> List[str]:
        return [e.action for e in self.events]


# ========== Domain fixtures ==========

def make_article(title, body="", category=TicketCategory.TECH,
                 status=ArticleStatus.PUBLISHED, tags=None, age_days=0) -> Article:
    return Article(
        id=str(uuid4()),
        title=title,
        body=body or f"How to handle: {title.lower()}",
        tags=list(tags or []),
        category=category,
        status=status,
        created_at=datetime.now(timezone.utc) - timedelta(days=age_days),
    )


@pytest.fixture
def billing_ticket() -> Ticket:
    return Ticket(
        id="T-1001",
        title="Invoice question",
        description="question about my monthly subscription bill and payment",
    )


@pytest.fixture
def other_ticket() -> Ticket:
    return Ticket(
        id="T-1002",
        title="General inquiry",
        description="I have a question about your company policies",
    )


@pytest.fixture
def billing_articles() -> List[Article]:
    return [
        make_article("Understanding your invoice", category=TicketCategory.BILLING),
        make_article("Updating payment methods", category=TicketCategory.BILLING),
        make_article("Managing your subscription", category=TicketCategory.BILLING),
        make_article("Refund policy", category=TicketCategory.BILLING, status=ArticleStatus.DRAFT),
    ]


@pytest.fixture
def article_store(billing_articles) -> InMemoryArticleStore:
    return InMemoryArticleStore(billing_articles)


@pytest.fixture
def config_store() -> InMemoryConfigStore:
    return InMemoryConfigStore()


@pytest.fixture
def suggestion_store() -> InMemorySuggestionStore:
    return InMemorySuggestionStore()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


# ========== Database fixtures ==========

@pytest.fixture
async def db_session() -> AsyncSession:
    """Fresh in-memory SQLite schema per test."""
    import helpdesk.triage.infrastructure.models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session

    await engine.dispose()
