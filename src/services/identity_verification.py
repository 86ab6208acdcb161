"""Identity verification: hosted sessions and applying their decisions."""

from typing import Optional

import httpx

from src.models.user import Actor, User, UserRole, VerificationStatus
from src.services.collaborators import IdentityVerification, VerificationCheck, VerificationSession
from src.services.lead_allocator import LeadAllocator
from src.services.outcome import Outcome, outcome
from src.services.storage import Storage
from src.services.authorization import require
from src.utils.config import AppConfig
from src.utils.errors import ExternalServiceError, NotFoundError, StateConflictError
from src.utils.ids import utcnow
from src.utils.logging import get_structured_logger, get_correlation_id, mask_user_id

logger = get_structured_logger(__name__)


class VeriffVerification:
    """IdentityVerification over the Veriff sessions API."""

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, transport=None):
        self.api_key = api_key or AppConfig.VERIFF_API_KEY
        self.base_url = (base_url or AppConfig.VERIFF_BASE_URL).rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.api_key:
            raise ExternalServiceError("VERIFF_API_KEY not set")
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=AppConfig.VERIFF_TIMEOUT_SECONDS,
            transport=self._transport,
        )

    async def start_session(self, user: User) -> VerificationSession:
        body = {
            "verification": {
                "callback": AppConfig.VERIFF_CALLBACK_URL,
                "person": {"firstName": user.first_name or "", "lastName": user.last_name or ""},
                "vendorData": user.id,
                "timestamp": utcnow().isoformat(),
            }
        }
        async with self._client() as client:
            try:
                response = await client.post("/sessions", json=body)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise ExternalServiceError(f"Failed to create verification session: {e}")
        verification = response.json()["verification"]
        return VerificationSession(url=verification["url"], session_id=verification["id"])

    async def check_status(self, session_id: str) -> VerificationCheck:
        async with self._client() as client:
            try:
                response = await client.get(f"/sessions/{session_id}/decision")
            except httpx.HTTPError as e:
                logger.warning("Verification status check failed", session_id=session_id, error=str(e))
                return VerificationCheck.ERROR
        if response.status_code == 404:
            # No decision yet
            return VerificationCheck.PENDING
        if response.is_error:
            logger.warning("Verification status check failed", session_id=session_id, status_code=response.status_code)
            return VerificationCheck.ERROR

        verification = (response.json() or {}).get("verification") or {}
        try:
            return VerificationCheck(verification.get("status") or "pending")
        except ValueError:
            # declined, resubmission_requested, expired, abandoned
            return VerificationCheck.REJECTED


class IdentityVerificationService:
    """Starts verification for a user and applies the provider's decision."""

    def __init__(self, storage: Storage, provider: IdentityVerification, allocator: LeadAllocator):
        self.storage = storage
        self.provider = provider
        self.allocator = allocator

    @outcome
    async def start(self, actor: Actor) -> VerificationSession:
        require(actor, "verification.start")
        user = await self._user(actor.id)
        if user.verification_status == VerificationStatus.VERIFIED:
            raise StateConflictError("User is already verified")

        try:
            session = await self.provider.start_session(user)
        except ExternalServiceError:
            raise
        except Exception as e:
            raise ExternalServiceError(f"Verification provider failed: {e}")

        await self.storage.save_user(user.model_copy(update={"verification_session_id": session.session_id}))
        logger.info(
            "Verification session started",
            correlation_id=get_correlation_id(),
            user_id=mask_user_id(user.id),
            session_id=session.session_id,
        )
        return session

    @outcome
    async def refresh(self, user_id: str) -> Outcome:
        """Poll the provider. Approval verifies the user and seeds leads for agents."""
        user = await self._user(user_id)
        if user.verification_status == VerificationStatus.VERIFIED:
            return Outcome.success(user)
        if not user.verification_session_id:
            raise StateConflictError("No verification session has been started")

        try:
            check = await self.provider.check_status(user.verification_session_id)
        except Exception as e:
            raise ExternalServiceError(f"Verification provider failed: {e}")

        logger.info(
            "Verification status checked",
            correlation_id=get_correlation_id(),
            user_id=mask_user_id(user.id),
            status=check.value,
        )
        if check == VerificationCheck.ERROR:
            raise ExternalServiceError("Verification provider returned an error")
        if check != VerificationCheck.APPROVED:
            return Outcome.success(user)

        user = await self.storage.save_user(
            user.model_copy(update={"verification_status": VerificationStatus.VERIFIED})
        )
        events = []
        if user.role == UserRole.AGENT:
            seeded = await self.allocator.seed_leads_for_agent(user)
            if seeded.ok:
                events.extend(seeded.events)
            else:
                logger.warning("Lead seeding after verification failed", user_id=mask_user_id(user.id), error=seeded.error.message)
        return Outcome.success(user, events=events)

    async def _user(self, user_id: str) -> User:
        user = await self.storage.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")
        return user
