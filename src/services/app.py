"""Wiring of storage, collaborators and workflow services."""

from dataclasses import dataclass
from typing import Awaitable, Optional

from src.services.activity_ledger import ActivityLedger
from src.services.agreements import AgreementMachine
from src.services.blob_store import InMemoryBlobStore, SupabaseBlobStore
from src.services.collaborators import (
    AgentRanker,
    BlobStore,
    DocumentRenderer,
    IdentityVerification,
    StructuredExtraction,
)
from src.services.identity_verification import IdentityVerificationService, VeriffVerification
from src.services.lead_allocator import LeadAllocator
from src.services.memory_storage import InMemoryStorage
from src.services.messages import MessageService
from src.services.notifications import NotificationBroadcaster
from src.services.outcome import Outcome
from src.services.property_service import PropertyService
from src.services.storage import Storage
from src.services.viewing_requests import ViewingRequestMachine
from src.services.viewing_tokens import ViewingTokenService
from src.utils.config import AppConfig
from src.utils.logging import get_structured_logger, setup_logging

logger = get_structured_logger(__name__)


@dataclass
class HomeBridge:
    """All workflow services sharing one storage and one broadcaster."""
    storage: Storage
    ledger: ActivityLedger
    broadcaster: NotificationBroadcaster
    allocator: LeadAllocator
    properties: PropertyService
    viewings: ViewingRequestMachine
    agreements: AgreementMachine
    messages: MessageService
    verification: Optional[IdentityVerificationService] = None

    @classmethod
    def create(
        cls,
        storage: Optional[Storage] = None,
        renderer: Optional[DocumentRenderer] = None,
        blob_store: Optional[BlobStore] = None,
        ranker: Optional[AgentRanker] = None,
        extractor: Optional[StructuredExtraction] = None,
        verifier: Optional[IdentityVerification] = None,
        broadcaster: Optional[NotificationBroadcaster] = None,
    ) -> "HomeBridge":
        storage = storage or InMemoryStorage()
        ledger = ActivityLedger(storage)
        allocator = LeadAllocator(storage, ledger, ranker=ranker)
        return cls(
            storage=storage,
            ledger=ledger,
            broadcaster=broadcaster or NotificationBroadcaster(),
            allocator=allocator,
            properties=PropertyService(storage, ledger, allocator, extractor=extractor),
            viewings=ViewingRequestMachine(storage, ledger, ViewingTokenService(storage)),
            agreements=AgreementMachine(storage, ledger, renderer=renderer, blob_store=blob_store or InMemoryBlobStore()),
            messages=MessageService(storage),
            verification=IdentityVerificationService(storage, verifier, allocator) if verifier else None,
        )

    @classmethod
    def from_env(cls) -> "HomeBridge":
        """Production wiring: Supabase, PyMuPDF rendering, LLM collaborators, Veriff."""
        # Imported here so tests and local runs do not need the PDF and LLM stacks configured
        from src.services.agent_ranker import LlmAgentRanker
        from src.services.pdf_renderer import PdfDocumentRenderer
        from src.services.property_extractor import LlmPropertyExtractor
        from src.services.supabase_client import SupabaseStorage

        logger.info(
            "Building HomeBridge from environment",
            llm_ranker=AppConfig.USE_LLM_RANKER,
            llm_provider=AppConfig.LLM_PROVIDER,
        )
        return cls.create(
            storage=SupabaseStorage(),
            renderer=PdfDocumentRenderer(),
            blob_store=SupabaseBlobStore(),
            ranker=LlmAgentRanker() if AppConfig.USE_LLM_RANKER else None,
            extractor=LlmPropertyExtractor(),
            verifier=VeriffVerification(),
        )

    async def run(self, operation: Awaitable[Outcome]) -> Outcome:
        """Await an operation and dispatch its events."""
        return await self.broadcaster.publish(await operation)


_app: Optional[HomeBridge] = None


def get_app() -> HomeBridge:
    """Process-wide instance built from the environment."""
    global _app
    if _app is None:
        setup_logging()
        _app = HomeBridge.from_env()
    return _app
