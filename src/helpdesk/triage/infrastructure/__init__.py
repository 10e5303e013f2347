"""
Triage Infrastructure Layer
============================

Infrastructure implementations for ticket triage module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Store implementations
- External: LLM client adapter
"""

from helpdesk.triage.infrastructure.models import (
    ArticleModel,
    SuggestionModel,
    AuditLogModel,
    TriageConfigModel,
)
from helpdesk.triage.infrastructure.repositories import (
    SQLAlchemyArticleStore,
    SQLAlchemyConfigStore,
    SQLAlchemySuggestionStore,
    SQLAlchemyAuditSink,
)
from helpdesk.triage.infrastructure.external import (
    LLMClientAdapter,
    create_llm_client,
)

__all__ = [
    "ArticleModel",
    "SuggestionModel",
    "AuditLogModel",
    "TriageConfigModel",
    "SQLAlchemyArticleStore",
    "SQLAlchemyConfigStore",
    "SQLAlchemySuggestionStore",
    "SQLAlchemyAuditSink",
    "LLMClientAdapter",
    "create_llm_client",
]
