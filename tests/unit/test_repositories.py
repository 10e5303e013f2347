"""
Tests for the SQLAlchemy stores against in-memory SQLite.
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from helpdesk.config import Settings, TriageEngine
from helpdesk.core import DuplicateSuggestionException, ValidationException
from helpdesk.triage.application import (
    HeuristicCategoryClassifier, HeuristicReplyDrafter, TriageEngines, TriageOrchestrator,
)
from helpdesk.triage.domain import AgentFeedback, AuditEvent, ModelInfo, Suggestion, Ticket
from helpdesk.triage.infrastructure import (
    ArticleModel,
    SQLAlchemyArticleStore,
    SQLAlchemyAuditSink,
    SQLAlchemyConfigStore,
    SQLAlchemySuggestionStore,
)
from helpdesk.triage.infrastructure.repositories import extract_terms


def _suggestion(ticket_id: str, confidence: float = 0.7, **overrides) -> Suggestion:
    fields = dict(
        ticket_id=ticket_id,
        trace_id=f"trace-{ticket_id}",
        predicted_category="tech",
        category_confidence=0.8,
        article_ids=[],
        draft_reply="Draft",
        confidence=confidence,
        model_info=ModelInfo(model="stub", processing_time_ms=20),
    )
    fields.update(overrides)
    return Suggestion(**fields)


@pytest.fixture
async def seeded_articles(db_session):
    now = datetime.now(timezone.utc)
    rows = [
        ArticleModel(
            id=uuid4(), title="Password Reset Guide",
            body="Use the forgot password link to receive a reset email.",
            tags=["password", "login"], category="tech", status="published",
            created_at=now - timedelta(days=3),
        ),
        ArticleModel(
            id=uuid4(), title="Two-factor setup",
            body="Enable two-factor authentication after you reset your password.",
            tags=["security"], category="tech", status="published",
            created_at=now - timedelta(days=1),
        ),
        ArticleModel(
            id=uuid4(), title="Refund timelines",
            body="Refunds reach your card within five business days.",
            tags=["refund", "billing"], category="billing", status="published",
            created_at=now - timedelta(days=2),
        ),
        ArticleModel(
            id=uuid4(), title="Password policy draft",
            body="Unreleased password rules.",
            tags=["password"], category="tech", status="draft",
            created_at=now,
        ),
    ]
    db_session.add_all(rows)
    await db_session.flush()
    return rows


class TestExtractTerms:
    """Query tokenisation."""

    def test_drops_stopwords_and_short_tokens(self):
        assert extract_terms("Please help me reset my password!") == ["reset", "password"]

    def test_deduplicates(self):
        assert extract_terms("reset reset RESET") == ["reset"]

    def test_empty(self):
        assert extract_terms("") == []


class TestSQLAlchemyArticleStore:
    """Keyword search over articles."""

    async def test_title_match_ranks_first(self, db_session, seeded_articles):
        """A title hit outranks a body-only hit."""
        store = SQLAlchemyArticleStore(db_session)
        results = await store.search_by_keywords("Cannot reset my password", category="tech")

        assert [a.title for a in results] == ["Password Reset Guide", "Two-factor setup"]

    async def test_drafts_excluded(self, db_session, seeded_articles):
        """Only published articles are searched by default."""
        store = SQLAlchemyArticleStore(db_session)
        results = await store.search_by_keywords("password policy")

        assert "Password policy draft" not in [a.title for a in results]
        assert all(a.status == "published" for a in results)

    async def test_category_filter(self, db_session, seeded_articles):
        """A category restricts the search."""
        store = SQLAlchemyArticleStore(db_session)
        assert await store.search_by_keywords("reset password", category="billing") == []

    async def test_tags_are_searched(self, db_session, seeded_articles):
        """Tag text matches even when title and body do not."""
        store = SQLAlchemyArticleStore(db_session)
        results = await store.search_by_keywords("security question")

        assert [a.title for a in results] == ["Two-factor setup"]

    async def test_limit(self, db_session, seeded_articles):
        store = SQLAlchemyArticleStore(db_session)
        results = await store.search_by_keywords("password reset", limit=1)
        assert len(results) == 1

    async def test_empty_query_returns_newest(self, db_session, seeded_articles):
        """Nothing searchable lists the most recent published articles."""
        store = SQLAlchemyArticleStore(db_session)
        results = await store.search_by_keywords("the and", limit=2)

        assert [a.title for a in results] == ["Two-factor setup", "Refund timelines"]

    async def test_get_by_ids(self, db_session, seeded_articles):
        """Malformed IDs and drafts are ignored."""
        store = SQLAlchemyArticleStore(db_session)
        ids = [str(m.id) for m in seeded_articles] + ["not-a-uuid"]

        results = await store.get_by_ids(ids)

        assert len(results) == 3
        assert all(isinstance(a.id, str) for a in results)


class TestSQLAlchemySuggestionStore:
    """Suggestion persistence."""

    async def test_create_and_fetch(self, db_session):
        store = SQLAlchemySuggestionStore(db_session)
        created = await store.create(_suggestion("T-1", article_ids=["a", "b"]))

        assert created.id is not None
        fetched = await store.get_by_ticket_id("T-1")
        assert fetched.article_ids == ["a", "b"]
        assert fetched.model_info.processing_time_ms == 20
        assert (await store.get_by_id(created.id)).ticket_id == "T-1"

    async def test_one_suggestion_per_ticket(self, db_session):
        """A second insert for the same ticket is rejected."""
        store = SQLAlchemySuggestionStore(db_session)
        await store.create(_suggestion("T-1"))

        with pytest.raises(DuplicateSuggestionException):
            await store.create(_suggestion("T-1"))

    async def test_get_missing(self, db_session):
        store = SQLAlchemySuggestionStore(db_session)
        assert await store.get_by_id("not-a-uuid") is None
        assert await store.get_by_id(str(uuid4())) is None
        assert await store.get_by_ticket_id("T-none") is None

    async def test_update_feedback_and_usage(self, db_session):
        """Feedback and usage survive a round trip through the store."""
        store = SQLAlchemySuggestionStore(db_session)
        suggestion = await store.create(_suggestion("T-1"))

        suggestion.submit_feedback(AgentFeedback(accepted=False, rating=2, notes="Off topic"))
        suggestion.mark_as_used()
        await store.update(suggestion)

        fetched = await store.get_by_ticket_id("T-1")
        assert fetched.agent_feedback.accepted is False
        assert fetched.agent_feedback.rating == 2
        assert fetched.used is True
        assert fetched.updated_at is not None

    async def test_performance_metrics(self, db_session):
        store = SQLAlchemySuggestionStore(db_session)
        await store.create(_suggestion("T-1", confidence=0.9, auto_closed=True))
        await store.create(_suggestion("T-2", confidence=0.5, used=True))
        await store.create(_suggestion("T-3", confidence=0.4))

        metrics = await store.get_performance_metrics()

        assert metrics.total_suggestions == 3
        assert metrics.auto_closed_count == 1
        assert metrics.used_count == 1
        assert metrics.avg_confidence == pytest.approx(0.6)
        assert metrics.avg_processing_time_ms == 20

    async def test_performance_metrics_empty_window(self, db_session):
        store = SQLAlchemySuggestionStore(db_session)
        await store.create(_suggestion("T-1"))

        future = datetime.now(timezone.utc) + timedelta(days=1)
        metrics = await store.get_performance_metrics(start_date=future)

        assert metrics.total_suggestions == 0
        assert metrics.avg_confidence == 0.0


class TestSQLAlchemyConfigStore:
    """Single-row configuration."""

    async def test_default_from_settings(self, db_session):
        """The first read creates the row from settings."""
        store = SQLAlchemyConfigStore(db_session, Settings(environment="test", confidence_threshold=0.75))
        config = await store.get_config()

        assert config.auto_close_enabled is False
        assert config.confidence_threshold == 0.75
        assert config.engine == "heuristic"
        assert config.version == 1

    async def test_update(self, db_session):
        """Updates clamp the threshold and bump the version."""
        store = SQLAlchemyConfigStore(db_session)
        config = await store.update_config(
            {"auto_close_enabled": True, "confidence_threshold": 2.0}, updated_by="admin"
        )

        assert config.auto_close_enabled is True
        assert config.confidence_threshold == 1.0
        assert config.version == 2
        assert (await store.get_config()).auto_close_enabled is True

    async def test_unknown_field_rejected(self, db_session):
        store = SQLAlchemyConfigStore(db_session)
        with pytest.raises(ValidationException):
            await store.update_config({"max_tickets": 3})

    async def test_unknown_engine_rejected(self, db_session):
        store = SQLAlchemyConfigStore(db_session)
        with pytest.raises(ValidationException):
            await store.update_config({"engine": "quantum"})


class TestSQLAlchemyAuditSink:
    """Audit trail persistence."""

    async def test_timelines(self, db_session):
        sink = SQLAlchemyAuditSink(db_session)
        await sink.log_action(AuditEvent(
            ticket_id="T-1", trace_id="trace-a", action="category_predicted",
            description="Predicted category 'tech'", meta={"confidence": 0.8},
        ))
        await sink.log_action(AuditEvent(
            ticket_id="T-1", trace_id="trace-a", action="articles_retrieved",
            description="Retrieved 2 relevant articles",
        ))
        await sink.log_action(AuditEvent(
            ticket_id="T-2", trace_id="trace-b", action="category_predicted",
            description="Predicted category 'other'",
        ))

        ticket_events = await sink.get_ticket_timeline("T-1")
        trace_events = await sink.get_trace_timeline("trace-b")

        assert {e.action for e in ticket_events} == {"category_predicted", "articles_retrieved"}
        assert [e.ticket_id for e in trace_events] == ["T-2"]
        assert any(e.meta == {"confidence": 0.8} for e in ticket_events)

    async def test_long_description_truncated(self, db_session):
        sink = SQLAlchemyAuditSink(db_session)
        await sink.log_action(AuditEvent(
            ticket_id="T-1", trace_id="trace-a", action="triage_failed",
            description="x" * 800,
        ))

        events = await sink.get_ticket_timeline("T-1")
        assert len(events[0].description) == 500


class TestAuditFailureOnSqlStores:
    """A broken audit table must not poison the run's shared session."""

    @pytest.fixture
    async def broken_audit_table(self, db_session):
        await db_session.execute(text("DROP TABLE audit_logs"))

    async def test_failed_write_leaves_session_usable(self, db_session, broken_audit_table):
        """Only the audit row is rolled back; later writes still succeed."""
        sink = SQLAlchemyAuditSink(db_session)
        store = SQLAlchemySuggestionStore(db_session)

        with pytest.raises(OperationalError):
            await sink.log_action(AuditEvent(
                ticket_id="T-1", trace_id="trace-a", action="category_predicted",
                description="Predicted category 'tech'",
            ))

        created = await store.create(_suggestion("T-1"))
        assert (await store.get_by_ticket_id("T-1")).id == created.id

    async def test_triage_completes_without_audit_table(self, db_session, seeded_articles, broken_audit_table):
        """The full pipeline on SQL stores still persists its suggestion."""
        orchestrator = TriageOrchestrator(
            {TriageEngine.HEURISTIC: TriageEngines(HeuristicCategoryClassifier(), HeuristicReplyDrafter())},
            article_store=SQLAlchemyArticleStore(db_session),
            config_store=SQLAlchemyConfigStore(db_session),
            suggestion_store=SQLAlchemySuggestionStore(db_session),
            audit_sink=SQLAlchemyAuditSink(db_session),
        )

        outcome = await orchestrator.process_ticket(
            Ticket(id="T-9", title="Invoice question", description="bill and payment")
        )

        assert outcome.failed is False
        assert outcome.suggestion.predicted_category == "billing"
        stored = await SQLAlchemySuggestionStore(db_session).get_by_ticket_id("T-9")
        assert stored.id == outcome.suggestion.id
