"""
StudyAid Backend — Context Assembler
======================================

What:  Gathers bounded context (study sessions, evidence, chat history) for one
       request into an immutable ContextBundle.
Why:   RAG chat answers, and quizzes/mindmaps generated from an image id,
       need prior material. Unbounded context would blow the prompt budget.
How:   Reads through a ContextStore (read-only collaborator). Each source is
       queried independently; a failing or empty source contributes nothing
       and records a zero count. Every item is cut to a per-item budget and
       the bundle stops accepting text once the aggregate cap is reached.
Who:   Called by the FallbackOrchestrator before building provider prompts.

Source policy:
    sessions  → the explicitly referenced session, else up to 3 recent ones
    evidence  → all evidence for the referenced image
    chat      → up to 10 recent entries
    `limit` on the refs lowers the session and chat caps. Recent sessions and
    chat history are per user, so they are only read when a user_id is given.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from studyaid.pipeline.types import ContextBundle, ContextItem, ContextRefs, SourceKind

logger = logging.getLogger(__name__)


# ── Store Records ─────────────────────────────────────────────────────────
# Plain read models; the SQL store maps ORM rows into these.


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    title: str
    concepts: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class EvidenceSnippet:
    text: str
    confidence: float = 0.0
    image_url: Optional[str] = None


@dataclass(frozen=True)
class ChatRecord:
    role: str
    text: str


class ContextStore(ABC):
    """
    Read-only access to persisted study material.

    Implementations return most-recent-first and must respect `limit`.
    They may raise; the assembler absorbs failures per source.
    """

    @abstractmethod
    async def get_session(
        self, session_id: str, user_id: Optional[str] = None
    ) -> Optional[SessionRecord]:
        ...

    @abstractmethod
    async def recent_sessions(self, user_id: str, limit: int) -> List[SessionRecord]:
        ...

    @abstractmethod
    async def evidence_for_image(self, image_id: str) -> List[EvidenceSnippet]:
        ...

    @abstractmethod
    async def recent_chat(self, user_id: str, limit: int) -> List[ChatRecord]:
        ...


class EmptyContextStore(ContextStore):
    """Store with no records; used when no database is wired in."""

    async def get_session(self, session_id, user_id=None):
        return None

    async def recent_sessions(self, user_id, limit):
        return []

    async def evidence_for_image(self, image_id):
        return []

    async def recent_chat(self, user_id, limit):
        return []


# ── Formatting ────────────────────────────────────────────────────────────


def format_session(session: SessionRecord) -> str:
    return f"Session: {session.title}\nConcepts: {', '.join(session.concepts)}"


def format_evidence(evidence: EvidenceSnippet) -> str:
    return f"{evidence.text} (confidence: {evidence.confidence:.2f})"


def format_chat(entry: ChatRecord) -> str:
    return f"{entry.role.capitalize()}: {entry.text}"


# ── Assembler ─────────────────────────────────────────────────────────────


class ContextAssembler:
    def __init__(
        self,
        store: ContextStore,
        item_chars: int = 500,
        total_chars: int = 4000,
        max_sessions: int = 3,
        max_chat_entries: int = 10,
    ):
        self.store = store
        self.item_chars = item_chars
        self.total_chars = total_chars
        self.max_sessions = max_sessions
        self.max_chat_entries = max_chat_entries

    def _cap(self, default: int, refs: ContextRefs) -> int:
        if refs.limit is None:
            return default
        return max(0, min(default, refs.limit))

    async def _sessions(self, refs: ContextRefs) -> List[str]:
        if refs.session_id:
            session = await self.store.get_session(refs.session_id, refs.user_id)
            return [format_session(session)] if session else []
        if not refs.user_id:
            return []
        cap = self._cap(self.max_sessions, refs)
        if cap == 0:
            return []
        sessions = await self.store.recent_sessions(refs.user_id, cap)
        return [format_session(s) for s in sessions[:cap]]

    async def _chat(self, refs: ContextRefs) -> List[str]:
        cap = self._cap(self.max_chat_entries, refs)
        if not refs.user_id or cap == 0:
            return []
        entries = await self.store.recent_chat(refs.user_id, cap)
        return [format_chat(e) for e in entries[:cap] if e.text]

    async def assemble(self, refs: Optional[ContextRefs]) -> ContextBundle:
        """Build the bundle. Never raises; failed sources are logged and skipped."""
        refs = refs or ContextRefs()
        gathered: Dict[SourceKind, List[str]] = {kind: [] for kind in SourceKind}
        image_url: Optional[str] = None

        try:
            gathered[SourceKind.SESSION] = await self._sessions(refs)
        except Exception as e:
            logger.warning("Session context unavailable: %s", str(e))

        if refs.image_id:
            try:
                evidence = await self.store.evidence_for_image(refs.image_id)
                gathered[SourceKind.EVIDENCE] = [format_evidence(ev) for ev in evidence if ev.text]
                image_url = next((ev.image_url for ev in evidence if ev.image_url), None)
            except Exception as e:
                logger.warning("Evidence context unavailable for image %s: %s", refs.image_id, str(e))

        try:
            gathered[SourceKind.CHAT] = await self._chat(refs)
        except Exception as e:
            logger.warning("Chat history unavailable: %s", str(e))

        items: List[ContextItem] = []
        counts: Dict[SourceKind, int] = {kind: 0 for kind in SourceKind}
        remaining = self.total_chars
        # Evidence first: it is the most specific grounding for the request
        for kind in (SourceKind.EVIDENCE, SourceKind.SESSION, SourceKind.CHAT):
            for text in gathered[kind]:
                if remaining <= 0:
                    break
                cut = text[: min(self.item_chars, remaining)]
                items.append(
                    ContextItem(
                        source_kind=kind,
                        text=cut,
                        truncated_length=len(cut),
                        original_length=len(text),
                    )
                )
                counts[kind] += 1
                remaining -= len(cut)

        bundle = ContextBundle(
            items=tuple(items),
            size_cap=self.total_chars,
            counts=counts,
            image_url=image_url,
        )
        logger.info(
            "Assembled context: %d sessions, %d evidence, %d chat entries (%d chars)",
            counts[SourceKind.SESSION],
            counts[SourceKind.EVIDENCE],
            counts[SourceKind.CHAT],
            bundle.total_chars,
        )
        return bundle
