"""
StudyAid Backend — Provider Response Parsing
==============================================

What:  Strict validation of raw provider text into typed payloads.
Why:   Providers wrap JSON in code fences, truncate it, or answer in prose.
       A response that does not validate is a soft failure that moves the
       cascade on, instead of a half-scraped artifact reaching the user.
How:   Text operations (ocr, summarize, rag_chat) need non-empty text.
       Structured operations (quiz_gen, mindmap_gen) must be a single JSON
       object, optionally inside one ```json fence, that validates against a
       pydantic schema. The outcome is a tagged union: Parsed | ParseFailure.

Enrichment:
    Valid provider output is completed locally: OCR text is chunked into
    evidence records, quizzes and mindmaps get key concepts from the source
    text. Enrichment never turns a Parsed into a ParseFailure.
"""

import json
import re
from dataclasses import dataclass
from typing import List, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, ValidationError, field_validator

from studyaid.pipeline.extractor import ConceptExtractor, merge_concepts
from studyaid.pipeline.types import (
    MindmapArtifact,
    MindmapNode,
    OperationKind,
    Payload,
    QuizArtifact,
    QuizQuestion,
)

CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)

TEXT_OPERATIONS = {OperationKind.OCR, OperationKind.SUMMARIZE, OperationKind.RAG_CHAT}


@dataclass(frozen=True)
class Parsed:
    value: Payload


@dataclass(frozen=True)
class ParseFailure:
    reason: str


ParseOutcome = Union[Parsed, ParseFailure]


# ══════════════════════════════════════════════════════════════════════════
# Wire Schemas (what providers are asked to return)
# ══════════════════════════════════════════════════════════════════════════


class QuizItemSchema(BaseModel):
    question: str = Field(min_length=1)
    options: List[str] = Field(min_length=4, max_length=4)
    correct_index: int = Field(
        ge=0, le=3, validation_alias=AliasChoices("correct_index", "correctAnswer", "answer_index")
    )
    explanation: str = ""

    @field_validator("options")
    @classmethod
    def options_not_blank(cls, v: List[str]) -> List[str]:
        if any(not option.strip() for option in v):
            raise ValueError("options must be non-empty strings")
        return [option.strip() for option in v]


class QuizSchema(BaseModel):
    questions: List[QuizItemSchema] = Field(min_length=1)


class MindmapSubNodeSchema(BaseModel):
    label: str = Field(min_length=1)
    description: str = ""


class MindmapNodeSchema(BaseModel):
    label: str = Field(min_length=1)
    description: str = ""
    children: List[MindmapSubNodeSchema] = Field(
        default_factory=list, validation_alias=AliasChoices("children", "subNodes", "sub_nodes")
    )


class MindmapSchema(BaseModel):
    title: str = "Generated Mindmap"
    nodes: List[MindmapNodeSchema] = Field(min_length=1)


def strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = CODE_FENCE.match(stripped)
    return match.group(1) if match else stripped


def load_json_object(text: str) -> Union[dict, ParseFailure]:
    try:
        data = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        return ParseFailure(f"invalid JSON: {e.msg} at position {e.pos}")
    if not isinstance(data, dict):
        return ParseFailure(f"expected a JSON object, got {type(data).__name__}")
    return data


# ══════════════════════════════════════════════════════════════════════════
# Parser
# ══════════════════════════════════════════════════════════════════════════


class ResponseParser:
    def __init__(self, extractor: ConceptExtractor):
        self.extractor = extractor

    def parse(
        self,
        kind: OperationKind,
        raw: Optional[str],
        method: str,
        source_text: str = "",
    ) -> ParseOutcome:
        """
        Validate `raw` provider output for `kind`.

        Args:
            method: Tag of the provider that produced `raw` (stamped on evidence).
            source_text: Input the request was built from, used for key concepts.
        """
        if raw is None or not raw.strip():
            return ParseFailure("empty response")

        if kind in TEXT_OPERATIONS:
            text = raw.strip()
            if kind == OperationKind.OCR:
                return Parsed(self.extractor.ocr_artifact(text, method))
            return Parsed(text)

        data = load_json_object(raw)
        if isinstance(data, ParseFailure):
            return data

        try:
            if kind == OperationKind.QUIZ_GEN:
                return Parsed(self._quiz(QuizSchema.model_validate(data), source_text))
            if kind == OperationKind.MINDMAP_GEN:
                return Parsed(self._mindmap(MindmapSchema.model_validate(data), source_text))
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            return ParseFailure(f"schema mismatch at '{location}': {first['msg']}")

        return ParseFailure(f"unsupported operation: {kind}")

    def _quiz(self, schema: QuizSchema, source_text: str) -> QuizArtifact:
        questions = tuple(
            QuizQuestion(
                id=f"q{i + 1}",
                question=item.question.strip(),
                options=tuple(item.options),
                correct_index=item.correct_index,
                explanation=item.explanation.strip(),
            )
            for i, item in enumerate(schema.questions)
        )
        return QuizArtifact(
            questions=questions,
            key_concepts=tuple(self.extractor.key_concepts(source_text, self.extractor.max_questions)),
        )

    def _mindmap(self, schema: MindmapSchema, source_text: str) -> MindmapArtifact:
        nodes = tuple(
            MindmapNode(
                id=f"main-{i + 1}",
                label=node.label.strip(),
                description=node.description.strip(),
                children=tuple(
                    MindmapNode(
                        id=f"sub-{i + 1}-{j + 1}",
                        label=child.label.strip(),
                        description=child.description.strip(),
                    )
                    for j, child in enumerate(node.children)
                ),
            )
            for i, node in enumerate(schema.nodes)
        )
        return MindmapArtifact(
            title=schema.title.strip() or "Generated Mindmap",
            nodes=nodes,
            key_concepts=merge_concepts(
                [node.label for node in nodes],
                self.extractor.key_concepts(source_text, self.extractor.max_topics),
            ),
        )
