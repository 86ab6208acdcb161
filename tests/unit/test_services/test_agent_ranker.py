"""Tests for LLM agent ranking."""

import pytest
from unittest.mock import MagicMock

from src.services.agent_ranker import AgentRanking, LlmAgentRanker, apply_ranking, build_ranking_prompt
from src.utils.errors import ExternalServiceError
from tests.utils.factories import make_agent, make_property


def _model(ranking=None, error=None):
    structured = MagicMock()
    if error:
        structured.invoke.side_effect = error
    else:
        structured.invoke.return_value = ranking
    model = MagicMock()
    model.with_structured_output.return_value = structured
    return model


@pytest.mark.unit
def test_apply_ranking_orders_and_keeps_unranked():
    """Test ranked ids come first, unknown ids are dropped, the rest keep their order."""
    a, b, c = make_agent(), make_agent(), make_agent()

    assert apply_ranking([a, b, c], [c.id, "ghost", a.id]) == [c, a, b]


@pytest.mark.unit
def test_build_ranking_prompt_lists_candidates():
    """Test every candidate id and the property address appear in the prompt."""
    prop = make_property("buyer_1", address="12 Elm St")
    agents = [make_agent(expertise="condos"), make_agent(expertise=None)]

    prompt = build_ranking_prompt(prop, agents)

    assert "12 Elm St" in prompt
    assert all(agent.id in prompt for agent in agents)
    assert "expertise=condos" in prompt
    assert "none stated" in prompt


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rank_uses_structured_output():
    """Test the model's ranking reorders the candidates."""
    a, b = make_agent(), make_agent()
    model = _model(AgentRanking(agent_ids=[b.id, a.id], reasoning="b knows the area"))

    ranked = await LlmAgentRanker(model=model).rank(make_property("buyer_1"), [a, b])

    assert ranked == [b, a]
    model.with_structured_output.assert_called_once_with(AgentRanking)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rank_single_candidate_skips_model():
    """Test one candidate needs no ranking."""
    model = _model()
    agent = make_agent()

    assert await LlmAgentRanker(model=model).rank(make_property("buyer_1"), [agent]) == [agent]
    model.with_structured_output.assert_not_called()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rank_failure_raises_external_service_error():
    """Test model errors are reported as collaborator failures."""
    model = _model(error=RuntimeError("rate limited"))

    with pytest.raises(ExternalServiceError):
        await LlmAgentRanker(model=model).rank(make_property("buyer_1"), [make_agent(), make_agent()])
