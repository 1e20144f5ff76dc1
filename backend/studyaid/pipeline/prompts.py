"""
StudyAid Backend — Prompt Builders
====================================

What:  One prompt builder per operation kind.
Why:   Every provider receives the same prompt for the same request, so the
       cascade differs only in who answers, never in what was asked.
How:   build_prompt(kind, text, question, bundle, has_image) returns a
       PromptSpec. Structured operations spell out the exact JSON shape the
       parser validates against.
"""

from dataclasses import dataclass
from typing import List, Optional

from studyaid.pipeline.types import ContextBundle, OperationKind, SourceKind

SYSTEM_PROMPT = (
    "You are an AI study assistant. You help students understand their notes "
    "by extracting, summarizing and organizing educational content accurately."
)

OCR_PROMPT = """You are an expert text recognition system. Analyze this image of study material
and extract ALL text with high accuracy.

Instructions:
1. Preserve the original text structure (paragraphs, line breaks, bullet points)
2. If text is unclear, provide your best interpretation with [unclear] markers
3. Maintain any numbering, bullets, or list formatting
4. Preserve mathematical notation and formulas exactly
5. Return ONLY the extracted text, with no commentary or description of the image
{hint}
Extract the text from this image:"""

SUMMARY_PROMPT = """Summarize the following study material in 3-5 clear sentences.
Focus on the key concepts and how they relate. Return only the summary.

**CONTENT:**
{text}
{context}
**SUMMARY:**"""

QUIZ_PROMPT = """Create {count} multiple-choice questions that test understanding of the study material below.

Return ONLY a JSON object with this exact shape and no other text:
{{"questions": [{{"question": "...", "options": ["...", "...", "...", "..."], "correct_index": 0, "explanation": "..."}}]}}

Rules:
- Exactly 4 options per question
- correct_index is the 0-based index of the single correct option
- Questions must be answerable from the material

**CONTENT:**
{text}
{context}"""

MINDMAP_PROMPT = """Organize the study material below into a mindmap of at most {topics} main topics,
each with up to {subtopics} sub-topics.

Return ONLY a JSON object with this exact shape and no other text:
{{"title": "...", "nodes": [{{"label": "...", "description": "...", "children": [{{"label": "...", "description": "..."}}]}}]}}

**CONTENT:**
{text}
{context}"""

CHAT_PROMPT = """You are an AI study assistant with access to educational content{image_note} and previous conversations.

**EXTRACTED CONTENT:**
{evidence}

**PREVIOUS STUDY SESSIONS:**
{sessions}

**RECENT CONVERSATION HISTORY:**
{chat}

**CURRENT USER QUESTION:**
{question}

**INSTRUCTIONS:**
- Use the {source} and context to provide accurate, helpful responses
- Reference specific concepts from the study sessions when relevant
- Be educational and supportive
- Keep responses concise but informative
{image_instruction}
**RESPONSE:**"""


@dataclass(frozen=True)
class PromptSpec:
    prompt: str
    system_prompt: Optional[str] = SYSTEM_PROMPT


def _section(bundle: Optional[ContextBundle], kind: SourceKind, separator: str = "\n") -> str:
    if bundle is None:
        return "(none)"
    items: List[str] = [item.text for item in bundle.by_kind(kind)]
    return separator.join(items) if items else "(none)"


def _context_block(bundle: Optional[ContextBundle]) -> str:
    if bundle is None or bundle.is_empty:
        return ""
    lines = ["", "**RELATED STUDY CONTEXT:**"]
    lines.extend(item.text for item in bundle.items if item.source_kind != SourceKind.CHAT)
    return "\n".join(lines) + "\n" if len(lines) > 2 else ""


def build_prompt(
    kind: OperationKind,
    text: str = "",
    question: str = "",
    bundle: Optional[ContextBundle] = None,
    has_image: bool = False,
    quiz_count: int = 5,
    mindmap_topics: int = 4,
    mindmap_subtopics: int = 3,
) -> PromptSpec:
    """
    Args:
        text: Chunk-bounded source material.
        question: The user's message (rag_chat only).
        bundle: Assembled context, if any.
        has_image: Whether the provider will receive the image with the prompt.
    """
    if kind == OperationKind.OCR:
        hint = ""
        if text:
            hint = f"6. The following partial transcription may help:\n{text}\n"
        return PromptSpec(OCR_PROMPT.format(hint=hint), system_prompt=None)

    if kind == OperationKind.SUMMARIZE:
        return PromptSpec(SUMMARY_PROMPT.format(text=text, context=_context_block(bundle)))

    if kind == OperationKind.QUIZ_GEN:
        return PromptSpec(
            QUIZ_PROMPT.format(count=quiz_count, text=text, context=_context_block(bundle))
        )

    if kind == OperationKind.MINDMAP_GEN:
        return PromptSpec(
            MINDMAP_PROMPT.format(
                topics=mindmap_topics,
                subtopics=mindmap_subtopics,
                text=text,
                context=_context_block(bundle),
            )
        )

    # Chat material already lives in the bundle sections; `text` would repeat it
    return PromptSpec(
        CHAT_PROMPT.format(
            image_note=" from images" if has_image else "",
            evidence=_section(bundle, SourceKind.EVIDENCE),
            sessions=_section(bundle, SourceKind.SESSION, "\n\n"),
            chat=_section(bundle, SourceKind.CHAT),
            question=question or "(no question provided)",
            source="image content" if has_image else "extracted content",
            image_instruction=(
                "- If the question is about the image content, analyze what you see carefully\n"
                if has_image
                else ""
            ),
        )
    )
