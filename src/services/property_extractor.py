"""LLM extraction of property details from an address, a listing URL or photos."""

import time
from typing import Optional, Union

from langchain_core.messages import HumanMessage
from pydantic import BaseModel, Field

from src.models.property import PropertyDraft
from src.services.collaborators import ExtractionInput
from src.services.llm import get_llm_model
from src.utils.errors import ExternalServiceError
from src.utils.logging import get_structured_logger, get_correlation_id, sanitize_text

logger = get_structured_logger(__name__)

EXTRACTION_INSTRUCTIONS = (
    "Extract the property listing details from the material below. "
    "Fill only fields you can read or infer with confidence and leave the rest empty. "
    "State must be the two-letter US abbreviation. Price is in whole dollars."
)


class ExtractedProperty(BaseModel):
    """Structured LLM answer. Every field is optional."""
    address: Optional[str] = Field(None, description="Street address")
    city: Optional[str] = None
    state: Optional[str] = Field(None, description="Two-letter state")
    zip: Optional[str] = None
    price: Optional[int] = Field(None, description="List price in dollars")
    property_type: Optional[str] = Field(None, description="e.g. single family, condo")
    listing_agent_name: Optional[str] = None
    listing_agent_email: Optional[str] = None


def build_extraction_message(source: ExtractionInput) -> HumanMessage:
    """Text parts for address/URL, one image part per photo."""
    text = [EXTRACTION_INSTRUCTIONS]
    if source.address:
        text.append(f"Address: {source.address}")
    if source.url:
        text.append(f"Listing URL: {source.url}")
    content: list[dict] = [{"type": "text", "text": "\n".join(text)}]
    for image in source.images:
        content.append({"type": "image_url", "image_url": {"url": image}})
    return HumanMessage(content=content)


class LlmPropertyExtractor:
    """StructuredExtraction backed by a LangChain chat model."""

    def __init__(self, model=None):
        self._model = model

    async def extract(self, source: Union[ExtractionInput, str]) -> PropertyDraft:
        if isinstance(source, str):
            source = ExtractionInput(url=source) if source.startswith("http") else ExtractionInput(address=source)
        if not (source.address or source.url or source.images):
            return PropertyDraft()

        model = self._model or get_llm_model()
        started = time.time()
        try:
            result = model.with_structured_output(ExtractedProperty).invoke([build_extraction_message(source)])
        except Exception as e:
            raise ExternalServiceError(f"Property extraction failed: {e}")

        draft = PropertyDraft(**result.model_dump()) if result else PropertyDraft()
        logger.info(
            "Property extraction completed",
            correlation_id=get_correlation_id(),
            source_preview=sanitize_text(source.address or source.url, max_length=80),
            images=len(source.images),
            found_address=bool(draft.address),
            empty=draft.is_empty(),
            llm_latency_ms=round((time.time() - started) * 1000, 2),
        )
        return draft
