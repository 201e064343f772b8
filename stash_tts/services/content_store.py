"""
Item content access for the TTS job queue.

The queue only needs two things from the rest of the application: the text
to synthesize for an item, and a place to record the latest audio generated
for it. DatabaseContentStore implements both against the items/notes tables.
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from stash_tts.errors import ErrorCode, StashError
from stash_tts.models import Item, ItemAudio, Note, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemContent:
    """Text to synthesize plus the item title (used for file naming)."""
    item_id: int
    title: Optional[str]
    text: str


@dataclass(frozen=True)
class AudioMetadata:
    """Details recorded alongside the latest audio file of an item."""
    provider: str
    voice: str
    format: str
    bytes: int


class ContentStore(Protocol):
    async def item_exists(self, item_id: int) -> bool:
        ...

    async def get_content_for_item(self, item_id: int) -> ItemContent:
        ...

    async def update_item_audio(self, item_id: int, file_name: str, metadata: AudioMetadata) -> None:
        ...


def item_not_found(item_id: int) -> StashError:
    return StashError(f'Item {item_id} not found.', ErrorCode.NOT_FOUND)


def no_content(item_id: int) -> StashError:
    return StashError(
        f'No extracted content found for item {item_id}. Re-save the URL to extract it.',
        ErrorCode.NO_CONTENT,
    )


class DatabaseContentStore:
    """
    ContentStore backed by the items, notes and item_audio tables.

    Each call opens its own short session so the store can be shared between
    the API and the worker.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def item_exists(self, item_id: int) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(select(Item.id).where(Item.id == item_id))
            return result.scalar_one_or_none() is not None

    async def get_content_for_item(self, item_id: int) -> ItemContent:
        """
        Fetch the extracted text for an item.

        Raises:
            StashError: NOT_FOUND if the item is missing,
                NO_CONTENT if it has no non-blank extracted text
        """
        async with self._session_factory() as session:
            result = await session.execute(
                select(Item.id, Item.title, Note.content)
                .outerjoin(Note, Note.item_id == Item.id)
                .where(Item.id == item_id)
            )
            row = result.one_or_none()

        if row is None:
            raise item_not_found(item_id)

        content = (row.content or '').strip()
        if not content:
            raise no_content(item_id)

        return ItemContent(item_id=row.id, title=row.title, text=content)

    async def update_item_audio(self, item_id: int, file_name: str, metadata: AudioMetadata) -> None:
        """Upsert the item's latest-audio row."""
        async with self._session_factory() as session:
            audio = await session.get(ItemAudio, item_id)
            if audio is None:
                audio = ItemAudio(item_id=item_id)
                session.add(audio)

            audio.file_name = file_name
            audio.provider = metadata.provider
            audio.voice = metadata.voice
            audio.format = metadata.format
            audio.bytes = metadata.bytes
            audio.generated_at = utcnow()
            await session.commit()

        logger.debug('Item %s audio now points at %s', item_id, file_name)
