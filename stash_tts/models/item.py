"""
Saved items, their extracted text and the latest generated audio.
"""
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text

from stash_tts.models.base import Base, utcnow


class Item(Base):
    """A saved link."""
    __tablename__ = 'items'

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(Text, nullable=False, unique=True)
    title = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f'<Item {self.id} {self.url}>'


class Note(Base):
    """Extracted text for an item; the input to synthesis."""
    __tablename__ = 'notes'

    item_id = Column(Integer, ForeignKey('items.id', ondelete='CASCADE'), primary_key=True)
    content = Column(Text, nullable=False, default='')
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class ItemAudio(Base):
    """
    Most recent audio generated for an item.

    Written by the job executor after a job succeeds; one row per item.
    """
    __tablename__ = 'item_audio'
    __table_args__ = (
        CheckConstraint("format IN ('mp3', 'wav')", name='item_audio_format_check'),
    )

    item_id = Column(Integer, ForeignKey('items.id', ondelete='CASCADE'), primary_key=True)
    file_name = Column(Text, nullable=False)
    provider = Column(String(32), nullable=False)
    voice = Column(Text, nullable=False)
    format = Column(String(8), nullable=False)
    bytes = Column(Integer, nullable=False)
    generated_at = Column(DateTime, nullable=False, default=utcnow)
