"""
Triage Infrastructure Repositories
====================================

SQLAlchemy implementations of the triage stores.
"""

import re
from typing import List, Optional
from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import String, case, cast, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from helpdesk.config import (
    Settings, settings as default_settings, ArticleStatus, VALID_ENGINES,
)
from helpdesk.core import (
    DuplicateSuggestionException, ResourceNotFoundException, ValidationException,
)
from helpdesk.triage.application import (
    IArticleStore, IConfigStore, ISuggestionStore, IAuditSink,
)
from helpdesk.triage.domain import (
    AgentFeedback, Article, AuditEvent, ModelInfo, PerformanceMetrics,
    Suggestion, TriageConfig,
)
from helpdesk.triage.infrastructure.models import (
    ArticleModel, AuditLogModel, SuggestionModel, TriageConfigModel,
)


def _parse_uuid(value: str) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None


# ========== Articles ==========

_TOKEN_RE = re.compile(r"[a-z0-9]+")

STOPWORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "your", "with", "have",
    "has", "had", "this", "that", "from", "they", "them", "was", "were", "will",
    "would", "can", "could", "should", "please", "help", "about", "into", "any",
    "all", "our", "out", "get", "got", "been", "there", "their", "what", "when",
    "which", "who", "how", "why", "its", "also", "just", "than", "then", "some",
})

MAX_QUERY_TERMS = 20


def extract_terms(text: str) -> List[str]:
    """Lower-cased search terms, stop-words and short tokens removed, in order."""
    terms: List[str] = []
    for token in _TOKEN_RE.findall((text or "").lower()):
        if len(token) < 3 or token in STOPWORDS or token in terms:
            continue
        terms.append(token)
        if len(terms) == MAX_QUERY_TERMS:
            break
    return terms


class SQLAlchemyArticleStore(IArticleStore):
    """
    Keyword search over knowledge base articles.

    A match in the title scores 3 per term, in a tag 2 and in the body 1.
    Ties go to the newest article. An empty query lists the newest articles.
    """

    TITLE_WEIGHT = 3
    TAG_WEIGHT = 2
    BODY_WEIGHT = 1

    def __init__(self, session: AsyncSession):
        self._session = session

    async def search_by_keywords(
        self,
        text: str,
        category: Optional[str] = None,
        status: str = ArticleStatus.PUBLISHED,
        limit: int = 10
    ) -> List[Article]:
        """Search articles by free text, most relevant first."""
        stmt = select(ArticleModel).where(ArticleModel.status == status)
        if category:
            stmt = stmt.where(ArticleModel.category == category)

        terms = extract_terms(text)
        if not terms:
            stmt = stmt.order_by(ArticleModel.created_at.desc()).limit(limit)
            result = await self._session.execute(stmt)
            return [self._to_domain(m) for m in result.scalars().all()]

        conditions = []
        for term in terms:
            pattern = f"%{term}%"
            conditions.extend([
                ArticleModel.title.ilike(pattern),
                ArticleModel.body.ilike(pattern),
                cast(ArticleModel.tags, String).ilike(pattern),
            ])
        stmt = stmt.where(or_(*conditions))

        result = await self._session.execute(stmt)
        scored = [(self._score(m, terms), m) for m in result.scalars().all()]
        scored = [pair for pair in scored if pair[0] > 0]
        scored.sort(key=lambda pair: (pair[0], pair[1].created_at), reverse=True)

        return [self._to_domain(m) for _, m in scored[:limit]]

    async def get_by_ids(self, article_ids: List[str]) -> List[Article]:
        """Fetch published articles by ID, ignoring malformed IDs."""
        uuids = [u for u in (_parse_uuid(a) for a in article_ids) if u is not None]
        if not uuids:
            return []

        stmt = select(ArticleModel).where(
            ArticleModel.id.in_(uuids),
            ArticleModel.status == ArticleStatus.PUBLISHED
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    def _score(self, model: ArticleModel, terms: List[str]) -> int:
        title = model.title.lower()
        body = model.body.lower()
        tags = [t.lower() for t in (model.tags or [])]

        score = 0
        for term in terms:
            if term in title:
                score += self.TITLE_WEIGHT
            if any(term in tag for tag in tags):
                score += self.TAG_WEIGHT
            if term in body:
                score += self.BODY_WEIGHT
        return score

    @staticmethod
    def _to_domain(model: ArticleModel) -> Article:
        return Article(
            id=str(model.id),
            title=model.title,
            body=model.body,
            tags=list(model.tags or []),
            category=model.category,
            status=model.status,
            created_at=model.created_at,
        )


# ========== Configuration ==========

CONFIG_ID = "config"
ALLOWED_CONFIG_UPDATES = frozenset({
    "auto_close_enabled", "confidence_threshold", "sla_hours", "engine",
})


class SQLAlchemyConfigStore(IConfigStore):
    """Single-row configuration store, created from settings on first read."""

    def __init__(self, session: AsyncSession, defaults: Optional[Settings] = None):
        self._session = session
        self._defaults = defaults or default_settings

    async def get_config(self) -> TriageConfig:
        """Get the active configuration."""
        model = await self._get_or_create()
        return self._to_domain(model)

    async def update_config(self, updates: dict, updated_by: Optional[str] = None) -> TriageConfig:
        """
        Apply a partial update.

        Raises:
            ValidationException: On unknown fields or out-of-range values
        """
        unknown = set(updates) - ALLOWED_CONFIG_UPDATES
        if unknown:
            raise ValidationException(
                "Invalid configuration update",
                {"fields": sorted(unknown)}
            )
        if "engine" in updates and updates["engine"] not in VALID_ENGINES:
            raise ValidationException(f"Unknown engine '{updates['engine']}'")
        if "sla_hours" in updates and not 1 <= int(updates["sla_hours"]) <= 168:
            raise ValidationException("sla_hours must be between 1 and 168")

        model = await self._get_or_create()
        for key, value in updates.items():
            if key == "confidence_threshold":
                value = min(max(float(value), 0.0), 1.0)
            setattr(model, key, value)

        model.version += 1
        model.last_updated_by = updated_by
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()

        return self._to_domain(model)

    async def _get_or_create(self) -> TriageConfigModel:
        model = await self._session.get(TriageConfigModel, CONFIG_ID)
        if model is None:
            model = TriageConfigModel(
                id=CONFIG_ID,
                auto_close_enabled=self._defaults.auto_close_enabled,
                confidence_threshold=self._defaults.confidence_threshold,
                sla_hours=self._defaults.sla_hours,
                engine=self._defaults.triage_engine,
                version=1,
            )
            self._session.add(model)
            await self._session.flush()
        return model

    @staticmethod
    def _to_domain(model: TriageConfigModel) -> TriageConfig:
        return TriageConfig(
            auto_close_enabled=model.auto_close_enabled,
            confidence_threshold=model.confidence_threshold,
            sla_hours=model.sla_hours,
            engine=model.engine,
            version=model.version,
        )


# ========== Suggestions ==========

class SQLAlchemySuggestionStore(ISuggestionStore):
    """SQLAlchemy implementation for suggestions."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, suggestion: Suggestion) -> Suggestion:
        """
        Insert a suggestion.

        Raises:
            DuplicateSuggestionException: If the ticket already has one
        """
        if await self._exists_for_ticket(suggestion.ticket_id):
            raise DuplicateSuggestionException(suggestion.ticket_id)

        model = SuggestionModel(id=uuid4(), created_at=suggestion.created_at)
        self._apply(model, suggestion)
        self._session.add(model)

        try:
            await self._session.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent insert for the same ticket
            await self._session.rollback()
            raise DuplicateSuggestionException(suggestion.ticket_id) from e

        return self._to_domain(model)

    async def get_by_id(self, suggestion_id: str) -> Optional[Suggestion]:
        """Get suggestion by ID."""
        suggestion_uuid = _parse_uuid(suggestion_id)
        if suggestion_uuid is None:
            return None

        model = await self._session.get(SuggestionModel, suggestion_uuid)
        return self._to_domain(model) if model else None

    async def get_by_ticket_id(self, ticket_id: str) -> Optional[Suggestion]:
        """Get the suggestion for a ticket."""
        model = await self._get_model_by_ticket(ticket_id)
        return self._to_domain(model) if model else None

    async def update(self, suggestion: Suggestion) -> Suggestion:
        """Persist in-place changes to an existing suggestion."""
        model = await self._get_model_by_ticket(suggestion.ticket_id)
        if model is None:
            raise ResourceNotFoundException("Suggestion", suggestion.id)

        self._apply(model, suggestion)
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()

        return self._to_domain(model)

    async def get_performance_metrics(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None
    ) -> PerformanceMetrics:
        """Totals, rates and averages over an optional creation window."""
        stmt = select(
            func.count(SuggestionModel.id),
            func.sum(case((SuggestionModel.auto_closed.is_(True), 1), else_=0)),
            func.sum(case((SuggestionModel.used.is_(True), 1), else_=0)),
            func.avg(SuggestionModel.confidence),
            func.avg(SuggestionModel.category_confidence),
            func.avg(SuggestionModel.processing_time_ms),
        )
        if start_date is not None:
            stmt = stmt.where(SuggestionModel.created_at >= start_date)
        if end_date is not None:
            stmt = stmt.where(SuggestionModel.created_at <= end_date)

        total, auto_closed, used, avg_conf, avg_cat_conf, avg_time = (
            await self._session.execute(stmt)
        ).one()

        return PerformanceMetrics(
            total_suggestions=total or 0,
            auto_closed_count=int(auto_closed or 0),
            used_count=int(used or 0),
            avg_confidence=round(float(avg_conf or 0.0), 3),
            avg_category_confidence=round(float(avg_cat_conf or 0.0), 3),
            avg_processing_time_ms=round(float(avg_time or 0.0), 2),
        )

    async def _exists_for_ticket(self, ticket_id: str) -> bool:
        stmt = select(SuggestionModel.id).where(SuggestionModel.ticket_id == ticket_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _get_model_by_ticket(self, ticket_id: str) -> Optional[SuggestionModel]:
        stmt = select(SuggestionModel).where(SuggestionModel.ticket_id == ticket_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(model: SuggestionModel, suggestion: Suggestion) -> None:
        model.ticket_id = suggestion.ticket_id
        model.trace_id = suggestion.trace_id
        model.predicted_category = suggestion.predicted_category
        model.category_confidence = suggestion.category_confidence
        model.article_ids = list(suggestion.article_ids)
        model.draft_reply = suggestion.draft_reply
        model.confidence = suggestion.confidence
        model.auto_closed = suggestion.auto_closed
        model.model_name = suggestion.model_info.model
        model.model_version = suggestion.model_info.version
        model.processing_time_ms = suggestion.model_info.processing_time_ms
        model.tokens_used = suggestion.model_info.tokens_used
        model.used = suggestion.used
        model.used_at = suggestion.used_at

        feedback = suggestion.agent_feedback
        if feedback is not None:
            model.feedback_accepted = feedback.accepted
            model.feedback_edited_reply = feedback.edited_reply
            model.feedback_rating = feedback.rating
            model.feedback_notes = feedback.notes
            model.feedback_submitted_by = feedback.submitted_by
            model.feedback_submitted_at = feedback.submitted_at

    @staticmethod
    def _to_domain(model: SuggestionModel) -> Suggestion:
        feedback = None
        if model.feedback_accepted is not None:
            feedback = AgentFeedback(
                accepted=model.feedback_accepted,
                edited_reply=model.feedback_edited_reply,
                rating=model.feedback_rating,
                notes=model.feedback_notes,
                submitted_by=model.feedback_submitted_by,
                submitted_at=model.feedback_submitted_at,
            )

        return Suggestion(
            id=str(model.id),
            ticket_id=model.ticket_id,
            trace_id=model.trace_id,
            predicted_category=model.predicted_category,
            category_confidence=model.category_confidence,
            article_ids=list(model.article_ids or []),
            draft_reply=model.draft_reply,
            confidence=model.confidence,
            auto_closed=model.auto_closed,
            model_info=ModelInfo(
                model=model.model_name,
                version=model.model_version,
                processing_time_ms=model.processing_time_ms,
                tokens_used=model.tokens_used,
            ),
            agent_feedback=feedback,
            used=model.used,
            used_at=model.used_at,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


# ========== Audit ==========

class SQLAlchemyAuditSink(IAuditSink):
    """Append-only audit log with ticket and trace timelines."""

    DESCRIPTION_MAX_CHARS = 500

    def __init__(self, session: AsyncSession):
        self._session = session

    async def log_action(self, event: AuditEvent) -> None:
        """
        Append an audit event.

        The row is written in a SAVEPOINT: a failed insert rolls back only
        itself and leaves the triage run's session usable.
        """
        async with self._session.begin_nested():
            self._session.add(AuditLogModel(
                id=uuid4(),
                ticket_id=event.ticket_id,
                trace_id=event.trace_id,
                actor=event.actor,
                actor_id=event.actor_id,
                action=event.action,
                description=event.description[:self.DESCRIPTION_MAX_CHARS],
                meta=event.meta,
                timestamp=event.timestamp,
            ))

    async def get_ticket_timeline(
        self,
        ticket_id: str,
        limit: int = 50,
        offset: int = 0
    ) -> List[AuditEvent]:
        """Every event for a ticket, oldest first."""
        stmt = (
            select(AuditLogModel)
            .where(AuditLogModel.ticket_id == ticket_id)
            .order_by(AuditLogModel.timestamp.asc())
            .limit(limit)
            .offset(offset)
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    async def get_trace_timeline(self, trace_id: str) -> List[AuditEvent]:
        """Every event of one triage run, oldest first."""
        stmt = (
            select(AuditLogModel)
            .where(AuditLogModel.trace_id == trace_id)
            .order_by(AuditLogModel.timestamp.asc())
        )
        result = await self._session.execute(stmt)
        return [self._to_domain(m) for m in result.scalars().all()]

    @staticmethod
    def _to_domain(model: AuditLogModel) -> AuditEvent:
        return AuditEvent(
            ticket_id=model.ticket_id,
            trace_id=model.trace_id,
            actor=model.actor,
            actor_id=model.actor_id,
            action=model.action,
            description=model.description,
            meta=dict(model.meta or {}),
            timestamp=model.timestamp,
        )
