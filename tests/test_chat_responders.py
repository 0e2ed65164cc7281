"""Tests for the automated chat responders."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from prism.agents.base import AgentResult
from prism.agents.chat_answer_agent import ChatAnswer
from prism.app.config import Settings
from prism.services.chat_responders import (
    AgentResponder,
    ConfidentAnswer,
    Escalate,
    FallbackResponder,
    KeywordResponder,
    ResponderContext,
    build_responder,
)


def _context(question: str, **overrides) -> ResponderContext:
    fields = {
        "opportunity_id": "opp-1",
        "title": "Sleep health segment",
        "question": question,
        "summary": "Five minute live segment with the host.",
        "media_type": "tv_appearance",
        "outlet_name": "KTLA 5",
        "deadline_at": datetime(2026, 3, 6, 17, 0),
    }
    fields.update(overrides)
    return ResponderContext(**fields)


# ---------------------------------------------------------------------------
# KeywordResponder
# ---------------------------------------------------------------------------


class TestKeywordResponder:
    @pytest.mark.asyncio
    async def test_deadline(self):
        outcome = await KeywordResponder().answer(_context("When is the deadline?"))
        assert isinstance(outcome, ConfidentAnswer)
        assert "Friday, March 06, 2026 at 05:00 PM UTC" in outcome.text
        assert outcome.metadata["keywords_matched"] == ["deadline"]

    @pytest.mark.asyncio
    async def test_no_deadline(self):
        outcome = await KeywordResponder().answer(_context("what's the due date", deadline_at=None))
        assert isinstance(outcome, ConfidentAnswer)
        assert "no specific deadline" in outcome.text

    @pytest.mark.asyncio
    async def test_requirements_use_summary(self):
        outcome = await KeywordResponder().answer(_context("What should I prepare?"))
        assert isinstance(outcome, ConfidentAnswer)
        assert "Five minute live segment" in outcome.text
        assert "Outlet: KTLA 5" in outcome.text

    @pytest.mark.asyncio
    async def test_requirements_without_summary_escalate(self):
        outcome = await KeywordResponder().answer(_context("What do I need?", summary=None))
        assert outcome == Escalate("no_summary_available")

    @pytest.mark.asyncio
    async def test_format(self):
        outcome = await KeywordResponder().answer(_context("How to submit my bio?"))
        assert isinstance(outcome, ConfidentAnswer)
        assert outcome.metadata["keywords_matched"] == ["format"]

    @pytest.mark.asyncio
    async def test_media_type(self):
        outcome = await KeywordResponder().answer(_context("What kind of opportunity is this?"))
        assert isinstance(outcome, ConfidentAnswer)
        assert outcome.text.startswith("This is a tv appearance opportunity with KTLA 5.")

    @pytest.mark.asyncio
    async def test_outlet(self):
        outcome = await KeywordResponder().answer(_context("Which publication is it?"))
        assert isinstance(outcome, ConfidentAnswer)
        assert outcome.text.startswith("This opportunity is with KTLA 5.")

    @pytest.mark.asyncio
    async def test_outlet_unknown_falls_through_to_escalation(self):
        outcome = await KeywordResponder().answer(_context("Which publication?", outlet_name=None))
        assert outcome == Escalate("complex_question")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("greeting", ["Hi there", "hello!", "Good morning team"])
    async def test_greeting(self, greeting):
        outcome = await KeywordResponder().answer(_context(greeting))
        assert isinstance(outcome, ConfidentAnswer)
        assert outcome.metadata["keywords_matched"] == ["greeting"]

    @pytest.mark.asyncio
    async def test_thanks(self):
        outcome = await KeywordResponder().answer(_context("Thanks so much"))
        assert isinstance(outcome, ConfidentAnswer)
        assert outcome.text.startswith("You're welcome!")

    @pytest.mark.asyncio
    async def test_unmatched_escalates(self):
        outcome = await KeywordResponder().answer(_context("Can they cover my travel costs?"))
        assert outcome == Escalate("complex_question")


# ---------------------------------------------------------------------------
# AgentResponder
# ---------------------------------------------------------------------------


def _agent(result: AgentResult):
    agent = MagicMock()
    agent.model_name = "gemini-test"
    agent.answer = AsyncMock(return_value=result)
    return agent


class TestAgentResponder:
    @pytest.mark.asyncio
    async def test_confident_answer(self):
        agent = _agent(AgentResult.success(ChatAnswer(answer="It is live.", confidence=0.9), tokens_used=42))
        outcome = await AgentResponder(agent, confidence_threshold=0.7).answer(_context("Is it live?"))

        assert isinstance(outcome, ConfidentAnswer)
        assert outcome.text == "It is live."
        assert outcome.confidence == 0.9
        assert outcome.metadata["model"] == "gemini-test"
        assert outcome.metadata["tokens_used"] == 42

        kwargs = agent.answer.await_args.kwargs
        assert kwargs["question"] == "Is it live?"
        assert kwargs["opportunity"]["outlet_name"] == "KTLA 5"

    @pytest.mark.asyncio
    async def test_low_confidence_escalates(self):
        agent = _agent(AgentResult.success(ChatAnswer(answer="Maybe?", confidence=0.4)))
        outcome = await AgentResponder(agent, confidence_threshold=0.7).answer(_context("?"))
        assert outcome == Escalate("low_confidence")

    @pytest.mark.asyncio
    async def test_model_asks_to_escalate(self):
        agent = _agent(AgentResult.success(
            ChatAnswer(answer="", confidence=0.95, should_escalate=True, reason="pricing"),
        ))
        outcome = await AgentResponder(agent, confidence_threshold=0.7).answer(_context("Fee?"))
        assert outcome == Escalate("pricing")

    @pytest.mark.asyncio
    async def test_agent_failure_escalates(self):
        agent = _agent(AgentResult.failure("quota exceeded"))
        outcome = await AgentResponder(agent, confidence_threshold=0.7).answer(_context("?"))
        assert outcome == Escalate("ai_error")


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


class TestFallbackResponder:
    @pytest.mark.asyncio
    async def test_first_confident_answer_wins(self):
        second = MagicMock()
        second.answer = AsyncMock(return_value=ConfidentAnswer("from second"))
        responder = FallbackResponder(KeywordResponder(), second)

        outcome = await responder.answer(_context("hello"))
        assert outcome.metadata["responder"] == "keyword"
        second.answer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_when_first_escalates(self):
        second = MagicMock()
        second.answer = AsyncMock(return_value=ConfidentAnswer("from second"))
        responder = FallbackResponder(KeywordResponder(), second)

        outcome = await responder.answer(_context("Can they cover my travel costs?"))
        assert outcome.text == "from second"

    @pytest.mark.asyncio
    async def test_failing_responder_skipped(self):
        broken = MagicMock()
        broken.answer = AsyncMock(side_effect=RuntimeError("boom"))
        responder = FallbackResponder(broken, KeywordResponder())

        outcome = await responder.answer(_context("thanks"))
        assert isinstance(outcome, ConfidentAnswer)

    @pytest.mark.asyncio
    async def test_last_escalation_returned(self):
        broken = MagicMock()
        broken.answer = AsyncMock(side_effect=RuntimeError("boom"))
        outcome = await FallbackResponder(KeywordResponder(), broken).answer(_context("??"))
        assert outcome == Escalate("responder_error")

    def test_requires_a_responder(self):
        with pytest.raises(ValueError):
            FallbackResponder()


class TestBuildResponder:
    def test_keyword(self):
        assert isinstance(build_responder(Settings(chat_responder="keyword")), KeywordResponder)

    def test_gemini(self):
        assert isinstance(build_responder(Settings(chat_responder="gemini")), AgentResponder)

    def test_hybrid(self):
        responder = build_responder(Settings(chat_responder="hybrid"))
        assert isinstance(responder, FallbackResponder)
        assert isinstance(responder.responders[0], KeywordResponder)
        assert isinstance(responder.responders[1], AgentResponder)

    def test_unknown(self):
        with pytest.raises(ValueError):
            build_responder(Settings(chat_responder="oracle"))
