"""
StudyAid Backend — SQL Context Store
======================================

What:  ContextStore implementation over the study tables with async SQLAlchemy.
Why:   The Context Assembler only knows the ContextStore interface; this is
       the production source of sessions, evidence and chat history.
How:   Each method opens a short-lived session from the factory, runs one
       bounded, sorted SELECT, and maps rows to plain read records.

Error Handling:
    SQLAlchemyError is logged and re-raised as DatabaseError with the detail
    kept in `context` (server-side only). The assembler absorbs it and
    omits that source from the bundle.

Query Patterns:
    - get_session:        WHERE session_id = :id [AND user_id = :user]
    - recent_sessions:    WHERE user_id = :user ORDER BY created_at DESC LIMIT :n
    - evidence_for_image: WHERE image_id = :id ORDER BY chunk_index
    - recent_chat:        WHERE user_id = :user ORDER BY created_at DESC LIMIT :n
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studyaid.exceptions import DatabaseError
from studyaid.models.study import ChatHistoryEntry, Evidence, StudySession
from studyaid.pipeline.context import ChatRecord, ContextStore, EvidenceSnippet, SessionRecord

logger = logging.getLogger(__name__)

# Upper bound on evidence rows read for one image
MAX_EVIDENCE_ROWS = 200


def _session_record(row: StudySession) -> SessionRecord:
    return SessionRecord(
        session_id=row.session_id,
        title=row.title,
        concepts=tuple(str(c) for c in (row.concepts or [])),
    )


class SqlContextStore(ContextStore):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _scalars(self, statement, operation: str) -> list:
        try:
            async with self.session_factory() as session:
                result = await session.execute(statement)
                return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error("Context query %s failed: %s", operation, str(e))
            raise DatabaseError(
                message="Failed to read study context",
                context={"operation": operation, "error": str(e)},
            )

    async def get_session(
        self, session_id: str, user_id: Optional[str] = None
    ) -> Optional[SessionRecord]:
        stmt = select(StudySession).where(StudySession.session_id == session_id)
        if user_id:
            stmt = stmt.where(StudySession.user_id == user_id)
        rows = await self._scalars(stmt.limit(1), "get_session")
        return _session_record(rows[0]) if rows else None

    async def recent_sessions(self, user_id: str, limit: int) -> List[SessionRecord]:
        stmt = (
            select(StudySession)
            .where(StudySession.user_id == user_id)
            .order_by(StudySession.created_at.desc())
            .limit(limit)
        )
        return [_session_record(row) for row in await self._scalars(stmt, "recent_sessions")]

    async def evidence_for_image(self, image_id: str) -> List[EvidenceSnippet]:
        stmt = (
            select(Evidence)
            .where(Evidence.image_id == image_id)
            .order_by(Evidence.chunk_index, Evidence.created_at)
            .limit(MAX_EVIDENCE_ROWS)
        )
        rows = await self._scalars(stmt, "evidence_for_image")
        return [
            EvidenceSnippet(text=row.text, confidence=row.confidence, image_url=row.image_url)
            for row in rows
        ]

    async def recent_chat(self, user_id: str, limit: int) -> List[ChatRecord]:
        stmt = (
            select(ChatHistoryEntry)
            .where(ChatHistoryEntry.user_id == user_id)
            .order_by(ChatHistoryEntry.created_at.desc())
            .limit(limit)
        )
        rows = await self._scalars(stmt, "recent_chat")
        return [ChatRecord(role=row.role, text=row.text) for row in rows]
