"""
Triage Application Layer
=========================

Application layer for ticket triage module.

Contains:
- Engines: Heuristic and LLM classifier / drafter strategies
- Services: Retrieval, confidence scoring, orchestration, review
- Dispatcher: Background handoff from ticket creation
- DTOs: Validated reviewer and administrator input
"""

from helpdesk.triage.application.dto import (
    FeedbackRequest,
    ConfigUpdateRequest,
    SuggestionDTO,
)
from helpdesk.triage.application.engines import (
    ICategoryClassifier,
    IReplyDrafter,
    HeuristicCategoryClassifier,
    HeuristicReplyDrafter,
    LLMCategoryClassifier,
    LLMReplyDrafter,
    TriageEngines,
    build_engines,
)
from helpdesk.triage.application.services import (
    IArticleStore,
    IConfigStore,
    ISuggestionStore,
    IAuditSink,
    ArticleRetriever,
    ConfidenceAggregator,
    TriageOrchestrator,
    SuggestionReviewService,
    TriageConfigService,
)
from helpdesk.triage.application.dispatcher import TriageDispatcher

__all__ = [
    # DTOs
    "FeedbackRequest",
    "ConfigUpdateRequest",
    "SuggestionDTO",
    # Engines
    "ICategoryClassifier",
    "IReplyDrafter",
    "HeuristicCategoryClassifier",
    "HeuristicReplyDrafter",
    "LLMCategoryClassifier",
    "LLMReplyDrafter",
    "TriageEngines",
    "build_engines",
    # Services
    "ArticleRetriever",
    "ConfidenceAggregator",
    "TriageOrchestrator",
    "SuggestionReviewService",
    "TriageConfigService",
    "TriageDispatcher",
    # Store Interfaces
    "IArticleStore",
    "IConfigStore",
    "ISuggestionStore",
    "IAuditSink",
]
