"""
Triage Domain Layer
===================

Domain layer for ticket triage module.

Contains:
- Entities: Core business objects (Ticket, Article, Suggestion, AuditEvent, ...)
- Prompt builders for the external engine

This layer is framework-agnostic and contains pure business logic.
"""

from helpdesk.triage.domain.entities import (
    Ticket,
    Article,
    CategoryResult,
    DraftResult,
    ModelInfo,
    AgentFeedback,
    Suggestion,
    AuditEvent,
    TriageConfig,
    TriageOutcome,
    PerformanceMetrics,
    ClassificationPromptBuilder,
    ReplyPromptBuilder,
)

__all__ = [
    "Ticket",
    "Article",
    "CategoryResult",
    "DraftResult",
    "ModelInfo",
    "AgentFeedback",
    "Suggestion",
    "AuditEvent",
    "TriageConfig",
    "TriageOutcome",
    "PerformanceMetrics",
    "ClassificationPromptBuilder",
    "ReplyPromptBuilder",
]
