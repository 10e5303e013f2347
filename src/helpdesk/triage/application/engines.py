"""
Triage Engines
==============

Strategies for the two steps that may use the external language model:
category prediction and reply drafting.

Each step has a heuristic implementation (deterministic, no I/O) and an
LLM implementation. The LLM implementations always return a valid
result: any failure, malformed output or timeout is logged and answered
by the heuristic implementation they wrap.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional

from helpdesk.config import (
    Settings, TicketCategory, TriageEngine,
    CATEGORY_KEYWORD_ORDER, VALID_CATEGORIES,
)
from helpdesk.core import LLMException
from helpdesk.infrastructure.llm import ILLMClient
from helpdesk.shared.infrastructure.logging import get_logger
from helpdesk.triage.domain import (
    Article, CategoryResult, DraftResult, Ticket,
    ClassificationPromptBuilder, ReplyPromptBuilder,
)

logger = get_logger(__name__)

HEURISTIC_ENGINE_NAME = "stub"

CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    TicketCategory.BILLING: [
        "bill", "invoice", "payment", "charge", "refund", "subscription", "price", "cost",
    ],
    TicketCategory.TECH: [
        "bug", "error", "crash", "not working", "broken", "issue", "problem", "technical",
    ],
    TicketCategory.SHIPPING: [
        "delivery", "shipping", "package", "tracking", "shipment", "order", "received",
    ],
}

KEYWORD_MATCH_CONFIDENCE = 0.8
NO_MATCH_CONFIDENCE = 0.5

SIGN_OFF = "Best regards,\nHelpdesk Support Team"


# ========== Interfaces ==========

class ICategoryClassifier(ABC):
    """Maps ticket text to one category of the closed set."""

    engine_name: str = HEURISTIC_ENGINE_NAME

    @abstractmethod
    async def classify(self, title: str, description: str) -> CategoryResult:
        """Predict a category with a confidence score."""


class IReplyDrafter(ABC):
    """Writes a draft customer reply from retrieved articles."""

    engine_name: str = HEURISTIC_ENGINE_NAME

    @abstractmethod
    async def draft(
        self,
        ticket: Ticket,
        articles: List[Article],
        category_result: CategoryResult
    ) -> DraftResult:
        """Draft a reply."""


# ========== Heuristic engine ==========

class HeuristicCategoryClassifier(ICategoryClassifier):
    """
    Keyword scorer.

    Each category scores one point per keyword contained in the case-folded
    text. The strictly highest score wins, earlier categories win ties and a
    zero score means "other". Confidence is 0.8 on any match, 0.5 otherwise.
    """

    def classify_text(self, title: str, description: str) -> CategoryResult:
        text = f"{title} {description}".lower()

        best_category = TicketCategory.OTHER
        best_score = 0
        for category in CATEGORY_KEYWORD_ORDER:
            score = sum(1 for word in CATEGORY_KEYWORDS[category] if word in text)
            if score > best_score:
                best_category, best_score = category, score

        if best_score > 0:
            return CategoryResult(
                category=best_category,
                confidence=KEYWORD_MATCH_CONFIDENCE,
                reasoning=f"Keywords found: {best_score}"
            )
        return CategoryResult(
            category=TicketCategory.OTHER,
            confidence=NO_MATCH_CONFIDENCE,
            reasoning="No specific keywords found"
        )

    async def classify(self, title: str, description: str) -> CategoryResult:
        return self.classify_text(title, description)


class HeuristicReplyDrafter(IReplyDrafter):
    """Template reply that lists article titles, or a generic hand-off."""

    def draft_text(
        self,
        ticket: Ticket,
        articles: List[Article],
        category_result: CategoryResult
    ) -> DraftResult:
        parts = [f'Thank you for contacting us regarding "{ticket.title}".']

        if articles:
            references = "\n".join(
                f"{index}. {article.title}" for index, article in enumerate(articles, 1)
            )
            parts.append(
                "Based on your query, I found some relevant information that might help:"
            )
            parts.append(references)
            parts.append(
                "Please review these resources. If they don't fully address your "
                "concern, our team will be happy to assist you further."
            )
        else:
            parts.append(
                f"I understand you need help with this {category_result.category} issue, "
                "and our team will review your request and get back to you shortly."
            )

        parts.append(SIGN_OFF)
        return DraftResult(reply="\n\n".join(parts), tokens_used=0, engine=self.engine_name)

    async def draft(
        self,
        ticket: Ticket,
        articles: List[Article],
        category_result: CategoryResult
    ) -> DraftResult:
        return self.draft_text(ticket, articles, category_result)


# ========== External engine ==========

def _extract_json(text: str) -> dict:
    """Pull a JSON object out of a model reply, fenced or bare."""
    if "```json" in text:
        text = text.split("```json")[1].split("```")[0]
    elif "```" in text:
        text = text.split("```")[1].split("```")[0]
    data = json.loads(text.strip())
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object")
    return data


class LLMCategoryClassifier(ICategoryClassifier):
    """
    Category prediction through the hosted model.

    Falls back to the wrapped heuristic classifier on any failure.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        fallback: Optional[HeuristicCategoryClassifier] = None,
        timeout_seconds: float = 5.0,
        temperature: float = 0.2,
        max_tokens: int = 300
    ):
        self._llm = llm_client
        self._fallback = fallback or HeuristicCategoryClassifier()
        self._timeout = timeout_seconds
        self._temperature = temperature
        self._max_tokens = max_tokens
        self.engine_name = llm_client.model_name

    async def classify(self, title: str, description: str) -> CategoryResult:
        messages = [
            {"role": "system", "content": ClassificationPromptBuilder.get_system_prompt()},
            {"role": "user", "content": ClassificationPromptBuilder.build_prompt(title, description)},
        ]

        try:
            response = await asyncio.wait_for(
                self._llm.chat_completion(
                    messages=messages,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                    operation="classification"
                ),
                timeout=self._timeout
            )
            return self._parse(response.content)
        except Exception as e:
            logger.warning(
                "Model classification failed; falling back to heuristic",
                extra={"error": str(e) or type(e).__name__}
            )
            return await self._fallback.classify(title, description)

    def _parse(self, content: str) -> CategoryResult:
        try:
            data = _extract_json(content)
            category = str(data.get("category", "")).strip().lower()
            confidence = float(data.get("confidence", NO_MATCH_CONFIDENCE))
        except (ValueError, TypeError) as e:
            raise LLMException(f"Failed to parse classification response: {e}")

        if category not in VALID_CATEGORIES:
            raise LLMException(f"Model returned unknown category '{category}'")

        return CategoryResult(
            category=category,
            confidence=min(max(confidence, 0.0), 1.0),
            reasoning=str(data.get("reasoning", ""))
        )


class LLMReplyDrafter(IReplyDrafter):
    """
    Reply drafting through the hosted model.

    Falls back to the wrapped heuristic drafter on any failure.
    """

    def __init__(
        self,
        llm_client: ILLMClient,
        fallback: Optional[HeuristicReplyDrafter] = None,
        timeout_seconds: float = 5.0,
        temperature: float = 0.3,
        max_tokens: int = 800
    ):
        self._llm = llm_client
        self._fallback = fallback or HeuristicReplyDrafter()
        self._timeout = timeout_seconds
        self._temperature = temperature
        self._max_tokens = max_tokens
        self.engine_name = llm_client.model_name

    async def draft(
        self,
        ticket: Ticket,
        articles: List[Article],
        category_result: CategoryResult
    ) -> DraftResult:
        messages = [
            {"role": "system", "content": ReplyPromptBuilder.get_system_prompt()},
            {"role": "user", "content": ReplyPromptBuilder.build_prompt(ticket, articles, category_result)},
        ]

        try:
            response = await asyncio.wait_for(
                self._llm.chat_completion(
                    messages=messages,
                    temperature=self._temperature,
                    max_tokens=self._max_tokens,
                    operation="draft_reply"
                ),
                timeout=self._timeout
            )
            reply = (response.content or "").strip()
            if not reply:
                raise LLMException("Model returned an empty reply")
            return DraftResult(
                reply=reply,
                tokens_used=response.total_tokens,
                engine=self.engine_name
            )
        except Exception as e:
            logger.warning(
                "Model reply drafting failed; falling back to heuristic",
                extra={"error": str(e) or type(e).__name__}
            )
            return await self._fallback.draft(ticket, articles, category_result)


# ========== Engine selection ==========

@dataclass
class TriageEngines:
    """Classifier and drafter used together for one engine selection."""
    classifier: ICategoryClassifier
    drafter: IReplyDrafter


def build_engines(
    settings: Settings,
    llm_client: Optional[ILLMClient] = None
) -> Dict[str, TriageEngines]:
    """
    Build every available engine set keyed by engine name.

    The LLM engine is only offered when a client is available; the
    orchestrator uses the heuristic set for any selector it cannot serve.
    """
    heuristic_classifier = HeuristicCategoryClassifier()
    heuristic_drafter = HeuristicReplyDrafter()

    engines = {
        TriageEngine.HEURISTIC: TriageEngines(heuristic_classifier, heuristic_drafter),
    }

    if llm_client is not None:
        engines[TriageEngine.LLM] = TriageEngines(
            classifier=LLMCategoryClassifier(
                llm_client,
                fallback=heuristic_classifier,
                timeout_seconds=settings.llm_timeout_seconds,
                temperature=settings.llm_temperature,
            ),
            drafter=LLMReplyDrafter(
                llm_client,
                fallback=heuristic_drafter,
                timeout_seconds=settings.llm_timeout_seconds,
                temperature=settings.llm_temperature,
                max_tokens=settings.llm_max_tokens,
            ),
        )

    return engines
