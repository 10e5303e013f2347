"""
Triage Application Services
============================

Application services for the automated ticket triage pipeline.

Orchestrates business logic between domain entities, engine strategies
and the stores owned by the surrounding helpdesk.
"""

import time
import logging
from typing import Optional, List, Mapping
from abc import ABC, abstractmethod
from datetime import datetime
from uuid import uuid4

from helpdesk.config import (
    settings, ArticleStatus, AuditAction, AuditActor, TriageEngine,
)
from helpdesk.core import DuplicateSuggestionException, ResourceNotFoundException
from helpdesk.shared.infrastructure.logging import get_logger, get_context_logger, log_latency
from helpdesk.triage.domain import (
    Article, AuditEvent, AgentFeedback, CategoryResult, DraftResult, ModelInfo,
    PerformanceMetrics, Suggestion, Ticket, TriageConfig, TriageOutcome,
)
from helpdesk.triage.application.dto import FeedbackRequest, ConfigUpdateRequest
from helpdesk.triage.application.engines import (
    HeuristicCategoryClassifier, HeuristicReplyDrafter, TriageEngines,
    HEURISTIC_ENGINE_NAME,
)

logger = get_logger(__name__)


# ========== Store Interfaces ==========

class IArticleStore(ABC):
    """Interface for knowledge base article search."""

    @abstractmethod
    async def search_by_keywords(
        self,
        text: str,
        category: Optional[str] = None,
        status: str = ArticleStatus.PUBLISHED,
        limit: int = 10
    ) -> List[Article]:
        """Text search, most relevant first, optionally within a category."""

    @abstractmethod
    async def get_by_ids(self, article_ids: List[str]) -> List[Article]:
        """Fetch published articles by identifier."""


class IConfigStore(ABC):
    """Interface for the single active helpdesk configuration."""

    @abstractmethod
    async def get_config(self) -> TriageConfig:
        """Read-only snapshot of the active configuration."""

    @abstractmethod
    async def update_config(self, updates: dict, updated_by: Optional[str] = None) -> TriageConfig:
        """Apply a validated partial update."""


class ISuggestionStore(ABC):
    """Interface for suggestion persistence; one suggestion per ticket."""

    @abstractmethod
    async def create(self, suggestion: Suggestion) -> Suggestion:
        """Insert a suggestion; raises DuplicateSuggestionException on conflict."""

    @abstractmethod
    async def get_by_id(self, suggestion_id: str) -> Optional[Suggestion]:
        """Get suggestion by its own ID."""

    @abstractmethod
    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Suggestion]:
        """Get the suggestion for a ticket."""

    @abstractmethod
    async def update(self, suggestion: Suggestion) -> Suggestion:
        """Persist in-place changes (auto-close flag, feedback, usage)."""

    @abstractmethod
    async def get_performance_metrics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> PerformanceMetrics:
        """Aggregate suggestion quality figures."""


class IAuditSink(ABC):
    """Interface for the append-only audit trail."""

    @abstractmethod
    async def log_action(self, event: AuditEvent) -> None:
        """Append an audit event."""

    @abstractmethod
    async def get_ticket_timeline(self, ticket_id: str, limit: int = 50, offset: int = 0) -> List[AuditEvent]:
        """Every event for a ticket, oldest first."""

    @abstractmethod
    async def get_trace_timeline(self, trace_id: str) -> List[AuditEvent]:
        """Every event of one triage run, oldest first."""


async def record_audit(
    sink: IAuditSink,
    event: AuditEvent,
    log: Optional[logging.Logger] = None
) -> None:
    """Write an audit event; a failing sink is logged and never aborts triage."""
    try:
        await sink.log_action(event)
    except Exception as e:
        (log or logger).warning(
            "Audit write failed",
            extra={"action": event.action, "ticket_id": event.ticket_id, "error": str(e)}
        )


# ========== Pipeline Steps ==========

class ArticleRetriever:
    """
    Two-tier knowledge base lookup.

    Searches published articles in the predicted category first; when that
    finds nothing, repeats the search across all categories with a smaller cap.
    """

    PRIMARY_LIMIT = 5
    FALLBACK_LIMIT = 3
    QUERY_PREVIEW_CHARS = 100

    def __init__(self, article_store: IArticleStore, audit_sink: IAuditSink):
        self._articles = article_store
        self._audit_sink = audit_sink

    async def retrieve(self, ticket: Ticket, category: str, trace_id: str) -> List[Article]:
        log = get_context_logger(__name__, trace_id)
        query = ticket.full_text

        with log_latency(log, "article_search", ticket_id=ticket.id, category=category):
            articles = await self._search(query, category, self.PRIMARY_LIMIT)
            fallback_used = False
            if not articles:
                fallback_used = True
                articles = await self._search(query, None, self.FALLBACK_LIMIT)

        log.info(
            "Articles retrieved",
            extra={
                "ticket_id": ticket.id,
                "category": category,
                "article_count": len(articles),
                "fallback_used": fallback_used,
            }
        )

        await record_audit(self._audit_sink, AuditEvent(
            ticket_id=ticket.id,
            trace_id=trace_id,
            action=AuditAction.ARTICLES_RETRIEVED,
            description=f"Retrieved {len(articles)} relevant articles",
            meta={
                "query": query[:self.QUERY_PREVIEW_CHARS],
                "category": category,
                "article_ids": [a.id for a in articles],
                "fallback_used": fallback_used,
            }
        ), log)

        return articles

    async def _search(self, query: str, category: Optional[str], limit: int) -> List[Article]:
        results = await self._articles.search_by_keywords(
            query,
            category=category,
            status=ArticleStatus.PUBLISHED,
            limit=limit
        )
        return [a for a in results if a.is_published][:limit]


class ConfidenceAggregator:
    """
    Weighted trust score for an automated answer.

    40% classifier confidence, 30% article yield (saturating at 3 articles)
    and 30% reply length (saturating at 500 characters), clamped to [0, 1].
    """

    CATEGORY_WEIGHT = 0.4
    ARTICLE_WEIGHT = 0.3
    REPLY_WEIGHT = 0.3
    ARTICLE_SATURATION = 3
    REPLY_SATURATION = 500

    def aggregate(
        self,
        category_result: CategoryResult,
        draft_result: DraftResult,
        articles: List[Article]
    ) -> float:
        article_score = min(len(articles) / self.ARTICLE_SATURATION, 1.0)
        reply_score = min(len(draft_result.reply) / self.REPLY_SATURATION, 1.0)

        confidence = (
            self.CATEGORY_WEIGHT * category_result.confidence
            + self.ARTICLE_WEIGHT * article_score
            + self.REPLY_WEIGHT * reply_score
        )
        return min(max(confidence, 0.0), 1.0)


# ========== Orchestration ==========

class TriageOrchestrator:
    """
    Runs the triage pipeline for one ticket.

    classify -> retrieve -> draft -> score -> persist suggestion -> auto-close
    decision. Every step is audited under one trace ID. The orchestrator
    decides; the caller applies the decision to the ticket.
    """

    MODEL_VERSION = "1.0"

    def __init__(
        self,
        engines: Mapping[str, TriageEngines],
        article_store: IArticleStore,
        config_store: IConfigStore,
        suggestion_store: ISuggestionStore,
        audit_sink: IAuditSink,
        aggregator: Optional[ConfidenceAggregator] = None,
        max_reply_length: Optional[int] = None
    ):
        self._engines = dict(engines)
        self._config_store = config_store
        self._suggestions = suggestion_store
        self._audit_sink = audit_sink
        self._retriever = ArticleRetriever(article_store, audit_sink)
        self._aggregator = aggregator or ConfidenceAggregator()
        self._max_reply_length = max_reply_length or settings.max_draft_reply_length
        self._stub_classifier = HeuristicCategoryClassifier()
        self._stub_drafter = HeuristicReplyDrafter()

    async def process_ticket(self, ticket: Ticket) -> TriageOutcome:
        """
        Triage a newly created ticket.

        Args:
            ticket: The ticket to triage (read-only)

        Returns:
            TriageOutcome with the persisted suggestion, the auto-close
            decision and the run's trace ID

        Raises:
            DuplicateSuggestionException: If the ticket already has a suggestion
        """
        trace_id = str(uuid4())
        start_time = time.perf_counter()
        log = get_context_logger(__name__, trace_id)
        suggestion: Optional[Suggestion] = None

        log.info("Starting triage", extra={"ticket_id": ticket.id})

        try:
            config = await self._config_store.get_config()
            engines = self._select_engines(config.engine)

            category_result = await engines.classifier.classify(ticket.title, ticket.description)
            await self._audit(ticket, trace_id, AuditAction.CATEGORY_PREDICTED,
                              f"Predicted category '{category_result.category}'",
                              {
                                  "category": category_result.category,
                                  "confidence": category_result.confidence,
                                  "reasoning": category_result.reasoning,
                                  "engine": engines.classifier.engine_name,
                              }, log)

            articles = await self._retriever.retrieve(ticket, category_result.category, trace_id)

            draft_result = self._bounded(
                await engines.drafter.draft(ticket, articles, category_result)
            )

            confidence = self._aggregator.aggregate(category_result, draft_result, articles)

            suggestion = await self._suggestions.create(self._build_suggestion(
                ticket, trace_id, category_result, articles, draft_result, confidence,
                ModelInfo(
                    model=draft_result.engine,
                    version=self.MODEL_VERSION,
                    processing_time_ms=self._elapsed_ms(start_time),
                    tokens_used=draft_result.tokens_used,
                )
            ))

            should_auto_close = config.allows_auto_close(confidence)
            if should_auto_close:
                suggestion.auto_closed = True
                suggestion = await self._suggestions.update(suggestion)
                await self._audit(ticket, trace_id, AuditAction.AUTO_CLOSED,
                                  f"Auto-closed with confidence {confidence:.3f}",
                                  {
                                      "confidence": confidence,
                                      "threshold": config.confidence_threshold,
                                      "draft_reply": draft_result.reply,
                                  }, log)

            await self._audit(ticket, trace_id, AuditAction.REPLY_DRAFTED,
                              "Automated triage completed",
                              {
                                  "confidence": confidence,
                                  "category": category_result.category,
                                  "articles_found": len(articles),
                                  "auto_closed": should_auto_close,
                              }, log)

            log.info(
                "Triage completed",
                extra={
                    "ticket_id": ticket.id,
                    "category": category_result.category,
                    "confidence": round(confidence, 3),
                    "auto_closed": should_auto_close,
                    "latency_ms": self._elapsed_ms(start_time),
                }
            )
            return TriageOutcome(suggestion=suggestion, should_auto_close=should_auto_close, trace_id=trace_id)

        except DuplicateSuggestionException:
            log.info("Ticket already triaged; rejecting duplicate run", extra={"ticket_id": ticket.id})
            raise
        except Exception as e:
            log.exception("Triage failed; using fallback path", extra={"ticket_id": ticket.id})
            await self._audit(ticket, trace_id, AuditAction.TRIAGE_FAILED,
                              f"Automated triage failed: {e}",
                              {"error": str(e), "error_type": type(e).__name__}, log)
            return await self._fallback(ticket, trace_id, start_time, suggestion, log)

    async def _fallback(
        self,
        ticket: Ticket,
        trace_id: str,
        start_time: float,
        persisted: Optional[Suggestion],
        log: logging.Logger
    ) -> TriageOutcome:
        """Deterministic stub path; never auto-closes."""
        if persisted is not None:
            # A suggestion already exists for this run; never insert a second one
            persisted.auto_closed = False
            return TriageOutcome(suggestion=persisted, should_auto_close=False, trace_id=trace_id, failed=True)

        category_result = await self._stub_classifier.classify(ticket.title, ticket.description)
        try:
            articles = await self._retriever.retrieve(ticket, category_result.category, trace_id)
        except Exception as e:
            log.warning("Fallback retrieval failed; drafting without articles", extra={"error": str(e)})
            articles = []

        draft_result = self._bounded(
            await self._stub_drafter.draft(ticket, articles, category_result)
        )
        confidence = self._aggregator.aggregate(category_result, draft_result, articles)

        suggestion = self._build_suggestion(
            ticket, trace_id, category_result, articles, draft_result, confidence,
            ModelInfo(
                model=HEURISTIC_ENGINE_NAME,
                version=self.MODEL_VERSION,
                processing_time_ms=self._elapsed_ms(start_time),
                tokens_used=0,
            )
        )
        try:
            suggestion = await self._suggestions.create(suggestion)
        except DuplicateSuggestionException:
            raise
        except Exception:
            # Still hand the caller a usable, unpersisted suggestion
            log.exception("Fallback suggestion could not be persisted", extra={"ticket_id": ticket.id})

        return TriageOutcome(suggestion=suggestion, should_auto_close=False, trace_id=trace_id, failed=True)

    def _select_engines(self, engine: str) -> TriageEngines:
        selected = self._engines.get(engine)
        if selected is None:
            if engine != TriageEngine.HEURISTIC:
                logger.warning("Engine not available; using heuristic", extra={"engine": engine})
            selected = self._engines.get(TriageEngine.HEURISTIC) or TriageEngines(
                self._stub_classifier, self._stub_drafter
            )
        return selected

    def _bounded(self, draft_result: DraftResult) -> DraftResult:
        if len(draft_result.reply) <= self._max_reply_length:
            return draft_result
        return DraftResult(
            reply=draft_result.reply[:self._max_reply_length],
            tokens_used=draft_result.tokens_used,
            engine=draft_result.engine,
        )

    @staticmethod
    def _build_suggestion(
        ticket: Ticket,
        trace_id: str,
        category_result: CategoryResult,
        articles: List[Article],
        draft_result: DraftResult,
        confidence: float,
        model_info: ModelInfo
    ) -> Suggestion:
        return Suggestion(
            ticket_id=ticket.id,
            trace_id=trace_id,
            predicted_category=category_result.category,
            category_confidence=category_result.confidence,
            article_ids=[a.id for a in articles],
            draft_reply=draft_result.reply,
            confidence=confidence,
            model_info=model_info,
        )

    async def _audit(
        self,
        ticket: Ticket,
        trace_id: str,
        action: str,
        description: str,
        meta: dict,
        log: logging.Logger
    ) -> None:
        await record_audit(self._audit_sink, AuditEvent(
            ticket_id=ticket.id,
            trace_id=trace_id,
            actor=AuditActor.SYSTEM,
            action=action,
            description=description,
            meta=meta,
        ), log)

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.perf_counter() - start_time) * 1000)


# ========== Review & Administration ==========

class SuggestionReviewService:
    """
    Agent-facing operations on suggestions after triage.

    Records feedback and usage in place and audits both. Also serves the
    articles a suggestion references and the audit timelines behind it.
    """

    def __init__(
        self,
        suggestion_store: ISuggestionStore,
        audit_sink: IAuditSink,
        article_store: Optional[IArticleStore] = None
    ):
        self._suggestions = suggestion_store
        self._audit_sink = audit_sink
        self._articles = article_store

    async def get_for_ticket(self, ticket_id: str) -> Suggestion:
        suggestion = await self._suggestions.get_by_ticket_id(ticket_id)
        if suggestion is None:
            raise ResourceNotFoundException("Suggestion", details={"ticket_id": ticket_id})
        return suggestion

    async def recommended_articles(self, suggestion: Suggestion) -> List[Article]:
        """
        Published articles the suggestion references, in suggestion order.

        Articles unpublished since triage are left out.
        """
        if self._articles is None or not suggestion.article_ids:
            return []

        found = {a.id: a for a in await self._articles.get_by_ids(suggestion.article_ids)}
        return [found[article_id] for article_id in suggestion.article_ids if article_id in found]

    async def ticket_timeline(self, ticket_id: str, limit: int = 50, offset: int = 0) -> List[AuditEvent]:
        return await self._audit_sink.get_ticket_timeline(ticket_id, limit=limit, offset=offset)

    async def trace_timeline(self, trace_id: str) -> List[AuditEvent]:
        return await self._audit_sink.get_trace_timeline(trace_id)

    async def submit_feedback(
        self,
        suggestion_id: str,
        feedback: FeedbackRequest,
        reviewer_id: Optional[str] = None
    ) -> Suggestion:
        suggestion = await self._get(suggestion_id)
        suggestion.submit_feedback(AgentFeedback(
            accepted=feedback.accepted,
            edited_reply=feedback.edited_reply,
            rating=feedback.rating,
            notes=feedback.notes,
            submitted_by=reviewer_id,
        ))
        suggestion = await self._suggestions.update(suggestion)

        await record_audit(self._audit_sink, AuditEvent(
            ticket_id=suggestion.ticket_id,
            trace_id=suggestion.trace_id,
            actor=AuditActor.AGENT,
            actor_id=reviewer_id,
            action=AuditAction.AGENT_REVIEWED,
            description=f"Agent {'accepted' if feedback.accepted else 'rejected'} AI suggestion",
            meta={
                "accepted": feedback.accepted,
                "rating": feedback.rating,
                "has_edited_reply": bool(feedback.edited_reply),
            }
        ))
        return suggestion

    async def mark_as_used(self, suggestion_id: str, agent_id: Optional[str] = None) -> Suggestion:
        suggestion = await self._get(suggestion_id)
        suggestion.mark_as_used()
        suggestion = await self._suggestions.update(suggestion)

        await record_audit(self._audit_sink, AuditEvent(
            ticket_id=suggestion.ticket_id,
            trace_id=suggestion.trace_id,
            actor=AuditActor.AGENT,
            actor_id=agent_id,
            # Same tag as the pipeline's closing event; the agent actor tells them apart
            action=AuditAction.REPLY_DRAFTED,
            description="Agent used AI suggestion",
            meta={"suggestion_id": suggestion.id}
        ))
        return suggestion

    async def performance_metrics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> PerformanceMetrics:
        return await self._suggestions.get_performance_metrics(start_date, end_date)

    async def _get(self, suggestion_id: str) -> Suggestion:
        suggestion = await self._suggestions.get_by_id(suggestion_id)
        if suggestion is None:
            raise ResourceNotFoundException("Suggestion", suggestion_id)
        return suggestion


class TriageConfigService:
    """Administrator access to the active triage configuration."""

    def __init__(self, config_store: IConfigStore):
        self._config_store = config_store

    async def get_config(self) -> TriageConfig:
        return await self._config_store.get_config()

    async def update_config(
        self,
        request: ConfigUpdateRequest,
        updated_by: Optional[str] = None
    ) -> TriageConfig:
        updates = request.to_updates()
        config = await self._config_store.update_config(updates, updated_by)
        logger.info(
            "Triage configuration updated",
            extra={"fields": sorted(updates), "version": config.version, "updated_by": updated_by}
        )
        return config
