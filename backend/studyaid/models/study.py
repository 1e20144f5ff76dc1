"""
StudyAid Backend — Study Material SQLAlchemy Models
=====================================================

What:  ORM models for the three tables the Context Assembler reads:
       `study_sessions`, `evidence` and `chat_history`.
Why:   RAG chat grounds answers in what the student already studied: earlier
       sessions (title + concepts), OCR evidence for an image, recent chat.
How:   Inherits from the shared DeclarativeBase; Alembic reads these for
       migrations. This service only ever SELECTs from them; rows are written
       by the upload/session services that own them.

Table Design Rationale:
    - UUID primary keys, plus public string ids (session_id, image_id) that
      clients already hold
    - Portable column types (Uuid, JSON, DateTime(timezone=True)) so the same
      models run on PostgreSQL and on SQLite in tests
    - (owner, created_at DESC) indexes back the "most recent N" queries
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, DateTime, Float, Index, String, Text, Uuid
from sqlalchemy import text as sql_text
from sqlalchemy.orm import Mapped, mapped_column

from studyaid.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StudySession(Base):
    """A study session: a titled set of concepts extracted from one upload."""

    __tablename__ = "study_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # Ordered list of concept labels (mindmap node contents)
    concepts: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_study_sessions_user_created", "user_id", sql_text("created_at DESC")),
    )

    def __repr__(self) -> str:
        return f"<StudySession(session_id='{self.session_id}', title='{self.title}')>"


class Evidence(Base):
    """One chunk of text extracted from a source image."""

    __tablename__ = "evidence"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    image_id: Mapped[str] = mapped_column(String(255), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    content_type: Mapped[str] = mapped_column(String(20), nullable=False, default="text")
    method: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    chunk_index: Mapped[int] = mapped_column(nullable=False, default=0)
    image_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (Index("idx_evidence_image_id", "image_id"),)

    def __repr__(self) -> str:
        return f"<Evidence(image_id='{self.image_id}', chunk={self.chunk_index})>"


class ChatHistoryEntry(Base):
    """One message of a user's chat with the study assistant."""

    __tablename__ = "chat_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # user | assistant
    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_chat_history_user_created", "user_id", sql_text("created_at DESC")),
    )

    def __repr__(self) -> str:
        return f"<ChatHistoryEntry(user_id='{self.user_id}', role='{self.role}')>"
