"""
StudyAid Backend — Concept/Structure Extractor
================================================

What:  Deterministic, offline heuristics that turn raw text into key concepts,
       evidence records, mindmaps, quizzes, short summaries and chat replies.
Why:   Two jobs. It enriches provider output (evidence chunks and key concepts
       for OCR, quizzes and mindmaps), and it is the terminal fallback when
       every provider has failed. The fallback must never fail itself.
How:   Whitespace tokenization, punctuation stripping, a minimum token length,
       a stopword filter and case-insensitive dedupe. Concepts are ranked by
       first appearance, not frequency: early words in study notes are usually
       headings. Degenerate input yields static placeholder content.

No network access, no randomness, no exceptions: the same text always
produces the same artifact.
"""

import re
from typing import List, Optional, Sequence, Tuple

from studyaid.pipeline.chunker import SENTENCE_SPLIT, chunk
from studyaid.pipeline.types import (
    ContentType,
    ContextBundle,
    EvidenceRecord,
    MindmapArtifact,
    MindmapNode,
    OcrArtifact,
    QuizArtifact,
    QuizQuestion,
    SourceKind,
    SourceLocator,
)

STOPWORDS = frozenset({
    "this", "that", "with", "from", "they", "have", "been", "were",
    "will", "would", "could", "should",
})

PLACEHOLDER_CONCEPTS = ("content", "analysis", "information")

PUNCTUATION_EDGES = re.compile(r"^[\W_]+|[\W_]+$")
MATH_CHARS = re.compile(r"[+\-*/=()\[\]{}^]")
DIGITS = re.compile(r"\d")
LETTERS = re.compile(r"[a-zA-Z]")

# Layout of the approximate bounding box assigned to each evidence chunk
EVIDENCE_ROW_HEIGHT = 100
EVIDENCE_ROW_WIDTH = 800

QUIZ_CORRECT_INDEX = 2
NO_TEXT_OCR = "No text could be extracted from the image."
NO_TEXT_SUMMARY = "No content available to summarize."


# ── Text Heuristics ───────────────────────────────────────────────────────


def detect_content_type(text: str) -> ContentType:
    """Equation if it has math symbols and digits; diagram if digits but no letters."""
    has_math = bool(MATH_CHARS.search(text))
    has_numbers = bool(DIGITS.search(text))
    has_text = bool(LETTERS.search(text))

    if has_math and has_numbers:
        return ContentType.EQUATION
    if has_numbers and not has_text:
        return ContentType.DIAGRAM
    if has_text and not has_math:
        return ContentType.TEXT
    return ContentType.MIXED


def text_confidence(text: Optional[str]) -> float:
    """
    Text-quality heuristic for extracted text, in [0.3, 1.0] (0.0 for empty).

    Longer text, digits and normal spacing all raise confidence; very short
    fragments are penalised since they are usually misreads.
    """
    if not text or not text.strip():
        return 0.0
    confidence = 0.7
    if len(text) > 50:
        confidence += 0.1
    if len(text) > 100:
        confidence += 0.1
    if DIGITS.search(text):
        confidence += 0.1
    if re.search(r"\s", text):
        confidence += 0.05
    if len(text) < 10:
        confidence -= 0.2
    return round(max(0.3, min(1.0, confidence)), 4)


def sentences(text: str) -> List[str]:
    return [s.strip() for s in SENTENCE_SPLIT.split(" ".join(text.split())) if s.strip()]


# ── Extractor ─────────────────────────────────────────────────────────────


class ConceptExtractor:
    """
    Offline artifact builder.

    Configuration:
        min_token_length: Shortest token counted as a concept (default: 4)
        max_topics: Topic buckets in a mindmap (default: 4)
        subconcepts_per_topic: Sub-nodes per topic (default: 3)
        max_questions: Quiz questions generated (default: 5)
        chunk_size: Target evidence chunk size (default: 500)
        summary_chars: Upper bound on a heuristic summary (default: 150)
    """

    def __init__(
        self,
        min_token_length: int = 4,
        max_topics: int = 4,
        subconcepts_per_topic: int = 3,
        max_questions: int = 5,
        chunk_size: int = 500,
        summary_chars: int = 150,
    ):
        self.min_token_length = min_token_length
        self.max_topics = max_topics
        self.subconcepts_per_topic = subconcepts_per_topic
        self.max_questions = max_questions
        self.chunk_size = chunk_size
        self.summary_chars = summary_chars

    def key_concepts(self, text: Optional[str], limit: Optional[int] = None) -> List[str]:
        """Distinct concept tokens in first-appearance order. May be empty."""
        seen = set()
        concepts: List[str] = []
        for raw in (text or "").split():
            token = PUNCTUATION_EDGES.sub("", raw)
            if len(token) < self.min_token_length:
                continue
            lowered = token.lower()
            if lowered in STOPWORDS or lowered in seen:
                continue
            seen.add(lowered)
            concepts.append(token)
            if limit is not None and len(concepts) >= limit:
                break
        return concepts

    def concepts_or_placeholder(self, text: Optional[str], limit: int) -> Tuple[List[str], bool]:
        """(concepts, is_placeholder)."""
        concepts = self.key_concepts(text, limit)
        if not concepts:
            return list(PLACEHOLDER_CONCEPTS[:limit]), True
        return concepts, False

    # ── Evidence / OCR ────────────────────────────────────────────────────

    def evidence_records(
        self,
        text: Optional[str],
        method: str,
        confidence: Optional[float] = None,
    ) -> List[EvidenceRecord]:
        """
        One EvidenceRecord per chunk of `text`.

        Args:
            confidence: Fixed confidence for every record; when None each chunk
                        is scored with text_confidence().
        """
        records = []
        for index, piece in enumerate(chunk(text or "", self.chunk_size)):
            records.append(
                EvidenceRecord(
                    text=piece,
                    confidence=text_confidence(piece) if confidence is None else confidence,
                    content_type=detect_content_type(piece),
                    source_locator=SourceLocator(
                        chunk_index=index,
                        x=0,
                        y=index * EVIDENCE_ROW_HEIGHT,
                        width=EVIDENCE_ROW_WIDTH,
                        height=EVIDENCE_ROW_HEIGHT,
                    ),
                    method=method,
                )
            )
        return records

    def ocr_artifact(self, text: Optional[str], method: str) -> OcrArtifact:
        cleaned = (text or "").strip()
        if not cleaned:
            return OcrArtifact(text=NO_TEXT_OCR, evidence=())
        return OcrArtifact(text=cleaned, evidence=tuple(self.evidence_records(cleaned, method)))

    # ── Mindmap ───────────────────────────────────────────────────────────

    def mindmap(self, text: Optional[str], title: str = "Generated Mindmap") -> MindmapArtifact:
        """
        Topic buckets from the leading concepts; sub-nodes from the concepts
        after them, three per topic in order.
        """
        budget = self.max_topics * (1 + self.subconcepts_per_topic)
        concepts, _ = self.concepts_or_placeholder(text, budget)
        topics = concepts[: self.max_topics]
        rest = concepts[self.max_topics:]

        nodes = []
        for i, topic in enumerate(topics):
            start = i * self.subconcepts_per_topic
            children = tuple(
                MindmapNode(
                    id=f"sub-{i + 1}-{j + 1}",
                    label=word.capitalize(),
                    description=f"Sub-concept related to {word}",
                )
                for j, word in enumerate(rest[start:start + self.subconcepts_per_topic])
            )
            nodes.append(
                MindmapNode(
                    id=f"main-{i + 1}",
                    label=topic.capitalize(),
                    description=f"Main concept related to {topic}",
                    children=children,
                )
            )
        return MindmapArtifact(title=title, nodes=tuple(nodes), key_concepts=tuple(topics))

    # ── Quiz ──────────────────────────────────────────────────────────────

    @staticmethod
    def quiz_question(index: int, concept: str) -> QuizQuestion:
        return QuizQuestion(
            id=f"q{index + 1}",
            question=f'Which of the following best describes the concept of "{concept}"?',
            options=(
                f"A fundamental principle related to {concept}",
                f"An advanced application of {concept}",
                f"The basic definition of {concept}",
                f"A common misconception about {concept}",
            ),
            correct_index=QUIZ_CORRECT_INDEX,
            explanation=f"The material introduces {concept} through its basic definition.",
            concept=concept,
        )

    def quiz(self, text: Optional[str]) -> QuizArtifact:
        concepts, _ = self.concepts_or_placeholder(text, self.max_questions)
        return QuizArtifact(
            questions=tuple(self.quiz_question(i, c) for i, c in enumerate(concepts)),
            key_concepts=tuple(concepts),
        )

    # ── Summary ───────────────────────────────────────────────────────────

    def summary(self, text: Optional[str]) -> str:
        """
        Leading sentence when it carries substance (> 20 chars); otherwise
        leading sentences are combined. Always bounded by `summary_chars`.
        """
        parts = sentences(text or "")
        if not parts:
            return NO_TEXT_SUMMARY
        if len(parts[0]) > 20:
            result = parts[0]
        else:
            result = ""
            for part in parts:
                result = f"{result} {part}".strip()
                if len(result) > 20:
                    break
        if len(result) > self.summary_chars:
            result = result[: self.summary_chars - 3].rstrip() + "..."
        return result

    # ── Chat ──────────────────────────────────────────────────────────────

    @staticmethod
    def chat_reply(question: Optional[str], bundle: Optional[ContextBundle]) -> Tuple[str, str]:
        """(reply, variant) where variant says whether study context was available."""
        question = (question or "").strip() or "your question"
        has_context = bundle is not None and any(
            bundle.counts.get(kind, 0) for kind in (SourceKind.SESSION, SourceKind.EVIDENCE)
        )
        if has_context:
            return (
                "I can see you have some study content available. Based on the context, "
                f'I\'d be happy to help you with "{question}". Could you please provide '
                "more specific details about what you'd like to know?",
                "fallback-with-context",
            )
        return (
            f'I\'d be happy to help you with "{question}"! To provide the best assistance, '
            "please upload an image of your study materials so I can analyze the content "
            "and give you more specific, contextual help.",
            "fallback-no-context",
        )


def merge_concepts(*groups: Sequence[str]) -> Tuple[str, ...]:
    """Case-insensitive union preserving first-seen order."""
    seen = set()
    merged = []
    for group in groups:
        for concept in group:
            key = concept.lower()
            if key not in seen:
                seen.add(key)
                merged.append(concept)
    return tuple(merged)
