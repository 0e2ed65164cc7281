"""Automated responders for the opportunity Q&A chat.

A responder looks at one client question plus the opportunity it is about
and either answers confidently or asks for a human. Responders never touch
the database; ``ChatEscalationEngine`` persists whatever they decide.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol, Union

from prism.agents.chat_answer_agent import ChatAnswer, ChatAnswerAgent
from prism.app.config import Settings, get_settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Inputs / outcomes
# ---------------------------------------------------------------------------

@dataclass
class ResponderContext:
    """Everything a responder may use to answer a question."""

    opportunity_id: str
    title: str
    question: str
    summary: Optional[str] = None
    media_type: str = "other"
    outlet_name: Optional[str] = None
    deadline_at: Optional[datetime] = None
    history: list[dict] = field(default_factory=list)


@dataclass
class ConfidentAnswer:
    text: str
    confidence: float = 1.0
    metadata: dict = field(default_factory=dict)


@dataclass
class Escalate:
    reason: str


ResponderOutcome = Union[ConfidentAnswer, Escalate]


class Responder(Protocol):
    async def answer(self, context: ResponderContext) -> ResponderOutcome: ...


# ---------------------------------------------------------------------------
# Keyword responder
# ---------------------------------------------------------------------------

_GREETING_RE = re.compile(r"^(hi|hello|hey|greetings)")


def _contains(text: str, *needles: str) -> bool:
    return any(n in text for n in needles)


def format_deadline(deadline_at: datetime) -> str:
    return deadline_at.strftime("%A, %B %d, %Y at %I:%M %p UTC")


class KeywordResponder:
    """Deterministic keyword routing over the opportunity's own fields.

    Rules are checked in order; the first match answers. Anything that
    matches no rule, or a rule whose data is missing, escalates.
    """

    async def answer(self, context: ResponderContext) -> ResponderOutcome:
        q = context.question.lower().strip()
        title = context.title

        if _contains(q, "deadline", "when", "due date", "due by"):
            if context.deadline_at:
                text = (
                    f'The deadline for "{title}" is {format_deadline(context.deadline_at)}. '
                    "Please make sure to submit your response before this date."
                )
            else:
                text = (
                    f'There is no specific deadline set for "{title}". However, I recommend '
                    "responding as soon as possible to secure your spot."
                )
            return self._matched("deadline", text)

        if _contains(q, "requirement", "need", "what do i", "what should i", "prepare"):
            if not context.summary:
                return Escalate("no_summary_available")
            text = (
                f'Here are the key details for "{title}":\n\n{context.summary}\n\n'
                f"Media Type: {context.media_type}\n"
                f"Outlet: {context.outlet_name or 'Not specified'}\n\n"
                "If you need more specific requirements, I can connect you with our AOPR team."
            )
            return self._matched("requirements", text)

        if _contains(q, "format", "how to submit", "submission", "send"):
            text = (
                f'For "{title}", you can respond directly through this portal by choosing '
                '"Accept" or "Decline" on the opportunity card. If you have specific materials '
                "to submit or questions about format, our AOPR team can provide detailed "
                "guidance. Would you like me to connect you with them?"
            )
            return self._matched("format", text)

        if _contains(q, "media type", "what type", "kind of opportunity"):
            text = (
                f"This is a {context.media_type.replace('_', ' ')} opportunity with "
                f"{context.outlet_name or 'the outlet'}."
            )
            if context.summary:
                text += f"\n\n{context.summary}"
            return self._matched("media_type", text)

        if _contains(q, "outlet", "publication", "who is") and context.outlet_name:
            text = f"This opportunity is with {context.outlet_name}."
            text += (
                f"\n\n{context.summary}" if context.summary
                else " Our AOPR team can provide more details about the outlet if needed."
            )
            return self._matched("outlet", text)

        if _GREETING_RE.match(q) or _contains(q, "good morning", "good afternoon"):
            text = (
                f'Hello! I\'m here to help answer questions about "{title}". You can ask me '
                "about the deadline, requirements, format, or any other details. "
                "How can I assist you?"
            )
            return self._matched("greeting", text)

        if _contains(q, "thank", "appreciate"):
            text = (
                f'You\'re welcome! If you have any other questions about "{title}", '
                "feel free to ask. I'm here to help!"
            )
            return self._matched("gratitude", text)

        return Escalate("complex_question")

    @staticmethod
    def _matched(keyword: str, text: str) -> ConfidentAnswer:
        return ConfidentAnswer(
            text=text,
            confidence=1.0,
            metadata={"responder": "keyword", "keywords_matched": [keyword]},
        )


# ---------------------------------------------------------------------------
# Gemini responder
# ---------------------------------------------------------------------------

class AgentResponder:
    """Wraps ``ChatAnswerAgent`` and applies the confidence threshold."""

    def __init__(
        self,
        agent: Optional[ChatAnswerAgent] = None,
        confidence_threshold: Optional[float] = None,
    ):
        settings = get_settings()
        self.agent = agent or ChatAnswerAgent()
        self.confidence_threshold = (
            settings.ai_confidence_threshold
            if confidence_threshold is None
            else confidence_threshold
        )

    async def answer(self, context: ResponderContext) -> ResponderOutcome:
        result = await self.agent.answer(
            question=context.question,
            opportunity={
                "title": context.title,
                "media_type": context.media_type,
                "outlet_name": context.outlet_name,
                "deadline": format_deadline(context.deadline_at) if context.deadline_at else None,
                "summary": context.summary,
            },
            history=context.history,
        )
        if not result.ok:
            logger.warning("Chat agent failed for %s: %s", context.opportunity_id, result.error)
            return Escalate("ai_error")

        parsed: ChatAnswer = result.data
        if parsed.should_escalate or not parsed.answer.strip():
            return Escalate(parsed.reason or "ai_declined")
        if parsed.confidence < self.confidence_threshold:
            logger.info(
                "Chat agent confidence %.2f below %.2f for %s",
                parsed.confidence, self.confidence_threshold, context.opportunity_id,
            )
            return Escalate("low_confidence")

        return ConfidentAnswer(
            text=parsed.answer.strip(),
            confidence=parsed.confidence,
            metadata={
                "responder": "gemini",
                "model": self.agent.model_name,
                "tokens_used": result.tokens_used,
                "latency_ms": result.latency_ms,
            },
        )


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------

class FallbackResponder:
    """Try responders in order; the first confident answer wins."""

    def __init__(self, *responders: Responder):
        if not responders:
            raise ValueError("FallbackResponder needs at least one responder")
        self.responders = responders

    async def answer(self, context: ResponderContext) -> ResponderOutcome:
        outcome: ResponderOutcome = Escalate("no_responder")
        for responder in self.responders:
            try:
                outcome = await responder.answer(context)
            except Exception as exc:
                logger.error("%s failed: %s", type(responder).__name__, exc)
                outcome = Escalate("responder_error")
                continue
            if isinstance(outcome, ConfidentAnswer):
                return outcome
        return outcome


def build_responder(settings: Optional[Settings] = None) -> Responder:
    """Build the responder selected by ``settings.chat_responder``."""
    settings = settings or get_settings()
    mode = settings.chat_responder.lower()
    if mode == "keyword":
        return KeywordResponder()
    if mode == "gemini":
        return AgentResponder()
    if mode == "hybrid":
        return FallbackResponder(KeywordResponder(), AgentResponder())
    raise ValueError(f"Unknown chat_responder: {settings.chat_responder!r}")
