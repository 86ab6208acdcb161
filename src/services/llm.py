"""LLM model selection shared by the ranker and the extractor."""

import os

from langchain_anthropic import ChatAnthropic
from langchain_openai import ChatOpenAI

from src.utils.config import AppConfig
from src.utils.errors import ExternalServiceError
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


def get_llm_model():
    """Get configured LLM model."""
    provider = AppConfig.LLM_PROVIDER
    model_name = AppConfig.LLM_MODEL

    logger.debug(
        "Getting LLM model",
        llm_provider=provider,
        llm_model=model_name
    )

    if provider == "anthropic":
        api_key = os.environ.get("ANTHROPIC_API_KEY")
        if not api_key:
            raise ExternalServiceError("ANTHROPIC_API_KEY not set")
        return ChatAnthropic(model=model_name, api_key=api_key)
    elif provider == "openai":
        api_key = os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ExternalServiceError("OPENAI_API_KEY not set")
        return ChatOpenAI(model=model_name, api_key=api_key)
    else:
        raise ExternalServiceError(f"Unsupported LLM provider: {provider}")
