"""LLM re-ranking of candidate agents by expertise."""

import time
from typing import Optional

from pydantic import BaseModel, Field

from src.models.property import Property
from src.models.user import User
from src.services.llm import get_llm_model
from src.utils.errors import ExternalServiceError
from src.utils.logging import get_structured_logger, get_correlation_id

logger = get_structured_logger(__name__)


class AgentRanking(BaseModel):
    """Structured LLM answer."""
    agent_ids: list[str] = Field(..., description="Candidate agent ids, best fit first")
    reasoning: Optional[str] = Field(None, description="One sentence on the top choice")


def build_ranking_prompt(prop: Property, agents: list[User]) -> str:
    """Prompt listing the property and each candidate's profile."""
    lines = [
        "You match real estate buyers' properties to the best agent.",
        "Order the candidate agents from best to worst fit for this property,",
        "judging by location and stated expertise. Use only the ids given.",
        "",
        "Property:",
        f"- address: {prop.address}",
        f"- city: {prop.city or 'unknown'}",
        f"- state: {prop.state or 'unknown'}",
        f"- type: {prop.property_type or 'unknown'}",
        f"- price: {prop.price if prop.price is not None else 'unknown'}",
        "",
        "Candidates:",
    ]
    for agent in agents:
        lines.append(
            f"- id={agent.id} city={agent.city or 'unknown'} "
            f"expertise={agent.expertise or 'none stated'}"
        )
    return "\n".join(lines)


def apply_ranking(agents: list[User], ranked_ids: list[str]) -> list[User]:
    """Order agents by ranked ids; unknown ids are dropped, unranked agents keep their order at the end."""
    by_id = {agent.id: agent for agent in agents}
    ordered: list[User] = []
    for agent_id in ranked_ids:
        agent = by_id.pop(agent_id, None)
        if agent is not None:
            ordered.append(agent)
    ordered.extend(agent for agent in agents if agent.id in by_id)
    return ordered


class LlmAgentRanker:
    """AgentRanker backed by a LangChain chat model with structured output."""

    def __init__(self, model=None):
        self._model = model

    async def rank(self, prop: Property, agents: list[User]) -> list[User]:
        if len(agents) < 2:
            return list(agents)

        model = self._model or get_llm_model()
        started = time.time()
        try:
            ranking = model.with_structured_output(AgentRanking).invoke(build_ranking_prompt(prop, agents))
        except Exception as e:
            raise ExternalServiceError(f"Agent ranking failed: {e}")

        logger.info(
            "Agent ranking received",
            correlation_id=get_correlation_id(),
            property_id=prop.id,
            candidates=len(agents),
            ranked=len(ranking.agent_ids),
            llm_latency_ms=round((time.time() - started) * 1000, 2),
        )
        return apply_ranking(agents, ranking.agent_ids)
