"""
Helpdesk Triage - Main Application
===================================

Wires the triage pipeline to its stores and runs it in the background for
newly created tickets.

Clean Architecture Layers:
- Application: Orchestrator, engines, review services
- Domain: Entities and prompt builders
- Infrastructure: Database, LLM client
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from helpdesk.config import Settings, settings as default_settings

from helpdesk.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context,
)

from helpdesk.triage.domain import Ticket, TriageOutcome
from helpdesk.triage.application import (
    TriageOrchestrator,
    TriageDispatcher,
    SuggestionReviewService,
    TriageConfigService,
    build_engines,
)
from helpdesk.triage.application.dispatcher import ResultFunc, TicketExistsFunc
from helpdesk.triage.infrastructure import (
    SQLAlchemyArticleStore,
    SQLAlchemyConfigStore,
    SQLAlchemySuggestionStore,
    SQLAlchemyAuditSink,
    create_llm_client,
)

from helpdesk.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


class TriageApplication:
    """
    Application lifecycle for the triage pipeline.

    STARTUP:
    1. Setup structured logging
    2. Initialize database
    3. Create database tables
    4. Initialize LLM client (when configured or mocked)
    5. Build engine sets

    SHUTDOWN:
    1. Drain in-flight triage tasks
    2. Close database connections

    The ticket collaborator passes ``on_result`` to apply each outcome
    (``outcome.next_ticket_status``) and ``ticket_exists`` so results for
    deleted tickets are dropped.
    """

    SHUTDOWN_TIMEOUT_SECONDS = 30.0

    def __init__(
        self,
        app_settings: Optional[Settings] = None,
        ticket_exists: Optional[TicketExistsFunc] = None,
        on_result: Optional[ResultFunc] = None
    ):
        self.settings = app_settings or default_settings
        self.llm_client = None
        self.engines = {}
        self.dispatcher = TriageDispatcher(
            self.run_triage,
            ticket_exists=ticket_exists,
            on_result=on_result,
        )
        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started

    async def startup(self) -> None:
        # === STARTUP ===
        setup_logging(self.settings.log_level, self.settings.environment)
        logger.info("Starting triage service", extra={
            "service": self.settings.app_name,
            "version": self.settings.app_version,
            "environment": self.settings.environment
        })

        logger.info("Initializing database")
        init_database(self.settings.database_url)

        # Create tables (for development - use Alembic in production)
        logger.info("Creating database tables")
        await create_tables()

        logger.info("Initializing LLM client")
        self.llm_client = create_llm_client(self.settings)

        self.engines = build_engines(self.settings, self.llm_client)
        logger.info("Triage engines ready", extra={"engines": sorted(self.engines)})

        self._started = True
        logger.info("Triage service started successfully")

    async def run_triage(self, ticket: Ticket) -> TriageOutcome:
        """
        Run the pipeline for one ticket in its own session.

        The session commits when the run returns and rolls back when it raises.
        """
        self._ensure_started()
        async with get_session_context() as session:
            orchestrator = TriageOrchestrator(
                self.engines,
                article_store=SQLAlchemyArticleStore(session),
                config_store=SQLAlchemyConfigStore(session, self.settings),
                suggestion_store=SQLAlchemySuggestionStore(session),
                audit_sink=SQLAlchemyAuditSink(session),
                max_reply_length=self.settings.max_draft_reply_length,
            )
            return await orchestrator.process_ticket(ticket)

    def submit(self, ticket: Ticket) -> Optional[asyncio.Task]:
        """Hand a newly created ticket to background triage and return at once."""
        self._ensure_started()
        return self.dispatcher.dispatch(ticket)

    @asynccontextmanager
    async def review_service(self) -> AsyncGenerator[SuggestionReviewService, None]:
        """Agent-facing suggestion operations inside one session."""
        self._ensure_started()
        async with get_session_context() as session:
            yield SuggestionReviewService(
                SQLAlchemySuggestionStore(session),
                SQLAlchemyAuditSink(session),
                article_store=SQLAlchemyArticleStore(session),
            )

    @asynccontextmanager
    async def config_service(self) -> AsyncGenerator[TriageConfigService, None]:
        """Administrator configuration access inside one session."""
        self._ensure_started()
        async with get_session_context() as session:
            yield TriageConfigService(SQLAlchemyConfigStore(session, self.settings))

    async def shutdown(self) -> None:
        # === SHUTDOWN ===
        logger.info("Shutting down triage service", extra={"pending": self.dispatcher.pending_count})

        await self.dispatcher.shutdown(timeout=self.SHUTDOWN_TIMEOUT_SECONDS)
        await close_database()

        self._started = False
        logger.info("Triage service shutdown complete")

    def _ensure_started(self) -> None:
        if not self._started:
            raise RuntimeError("Triage service not started. Call startup() first.")
