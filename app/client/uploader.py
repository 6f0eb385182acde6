import asyncio
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from loguru import logger

from app.client.api import ApiError, AsyncApiClient, Location
from app.db.schema import PhotoType

DEFAULT_CONCURRENCY = 4


@dataclass(frozen=True)
class UploadOutcome:
    index: int
    ok: bool
    photo_id: Optional[UUID] = None
    code: Optional[str] = None
    error: Optional[str] = None


class PhotoUploader:
    """
    Uploads a batch of evidence photos with at most `concurrency` requests
    in flight. Each photo succeeds or fails on its own; outcomes come back
    in input order.
    """

    def __init__(self, client: AsyncApiClient, concurrency: int = DEFAULT_CONCURRENCY):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.client = client
        self.concurrency = concurrency

    async def upload(
        self,
        token: str,
        photo_type: PhotoType,
        images: List[str],
        location: Location = None
    ) -> List[UploadOutcome]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def upload_one(index: int, image: str) -> UploadOutcome:
            async with semaphore:
                try:
                    photo = await self.client.upload_photo(token, photo_type, image, location=location)
                except ApiError as e:
                    return UploadOutcome(index=index, ok=False, code=e.code, error=e.message)
            return UploadOutcome(index=index, ok=True, photo_id=photo.id)

        outcomes = await asyncio.gather(*(upload_one(i, image) for i, image in enumerate(images)))

        failed = sum(1 for outcome in outcomes if not outcome.ok)
        if failed:
            logger.warning(f"{failed} of {len(images)} {photo_type.value} photos failed to upload")
        return list(outcomes)
