"""BlobStore implementations for rendered documents."""

from typing import Optional

from src.services.supabase_client import SupabaseClient
from src.utils.config import AppConfig
from src.utils.errors import ExternalServiceError, NotFoundError
from src.utils.ids import generate_id
from src.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class InMemoryBlobStore:
    """Blob store kept in a dict."""

    def __init__(self):
        self.blobs: dict[str, bytes] = {}

    async def save(self, data: bytes) -> str:
        reference = f"mem://{generate_id()}"
        self.blobs[reference] = data
        return reference

    async def load(self, reference: str) -> bytes:
        if reference not in self.blobs:
            raise NotFoundError(f"Blob not found: {reference}")
        return self.blobs[reference]


class SupabaseBlobStore:
    """Supabase Storage bucket. References are object paths inside the bucket."""

    def __init__(self, bucket: Optional[str] = None, client=None):
        self.bucket = bucket or AppConfig.SUPABASE_DOCUMENTS_BUCKET
        self._client = client

    async def save(self, data: bytes) -> str:
        path = f"agreements/{generate_id()}.pdf"
        async with SupabaseClient(self._client) as client:
            try:
                client.storage.from_(self.bucket).upload(
                    path, data, {"content-type": "application/pdf"}
                )
            except Exception as e:
                raise ExternalServiceError(f"Failed to upload document: {e}")
        logger.debug("Document uploaded", bucket=self.bucket, path=path, size=len(data))
        return path

    async def load(self, reference: str) -> bytes:
        async with SupabaseClient(self._client) as client:
            try:
                return client.storage.from_(self.bucket).download(reference)
            except Exception as e:
                raise ExternalServiceError(f"Failed to download document: {e}")
