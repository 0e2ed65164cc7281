"""Chat Answer Agent: answers client questions about one opportunity.

Returns a structured ``ChatAnswer``; the caller decides whether the
confidence is high enough to show it to the client.
"""

import logging
from typing import Optional

from pydantic import BaseModel, Field

from prism.agents.base import AgentResult, BaseAgent
from prism.agents.prompts.chat import CHAT_ANSWER_PROMPT, CHAT_ANSWER_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class ChatAnswer(BaseModel):
    answer: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    should_escalate: bool = False
    reason: str = ""


class ChatAnswerAgent(BaseAgent):
    """Gemini-backed answerer for the opportunity Q&A chat."""

    def __init__(self, timeout_seconds: Optional[float] = None):
        super().__init__(
            agent_name="chat_answer",
            temperature=0.2,
            timeout_seconds=timeout_seconds,
        )

    async def answer(
        self,
        question: str,
        opportunity: dict,
        history: Optional[list[dict]] = None,
    ) -> AgentResult:
        """Answer ``question`` using only the given opportunity fields.

        Args:
            question: The client's message.
            opportunity: Dict with title, media_type, outlet_name,
                deadline and summary.
            history: Earlier messages as ``{"sender_type", "body"}`` dicts.

        Returns:
            AgentResult whose ``data`` is a validated ``ChatAnswer``.
        """
        history_text = "\n".join(
            f"- {m['sender_type']}: {m['body']}" for m in (history or [])
        ) or "(none)"

        prompt = CHAT_ANSWER_PROMPT.format(
            title=opportunity.get("title") or "",
            media_type=opportunity.get("media_type") or "other",
            outlet_name=opportunity.get("outlet_name") or "Not specified",
            deadline=opportunity.get("deadline") or "No deadline set",
            summary=opportunity.get("summary") or "No summary provided",
            history=history_text,
            question=question,
        )

        result = await self.generate_json(
            prompt=prompt,
            system_instruction=CHAT_ANSWER_SYSTEM_PROMPT,
            response_schema=ChatAnswer.model_json_schema(),
        )
        if not result.ok:
            return result

        try:
            parsed = ChatAnswer.model_validate(result.data)
        except Exception as exc:
            logger.error("Chat answer validation failed: %s", exc)
            return AgentResult.failure(f"Validation error: {exc}", latency_ms=result.latency_ms)

        return AgentResult.success(
            data=parsed,
            tokens_used=result.tokens_used,
            latency_ms=result.latency_ms,
        )
