"""
StudyAid Backend — Local Heuristic Strategy
=============================================

What:  The terminal strategy of the fallback cascade.
Why:   When every remote provider has failed the user still gets a
       structurally valid (if shallow) artifact instead of an error.
How:   Delegates to the ConceptExtractor. No network, no exceptions.
       Results are tagged "local-heuristic" with a deliberately low confidence
       so clients can tell a degraded answer from a real one.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from studyaid.pipeline.extractor import ConceptExtractor
from studyaid.pipeline.types import ContextBundle, OperationKind, Payload

LOCAL_HEURISTIC = "local-heuristic"

# Confidence reported for heuristic output built from real input text vs.
# static placeholders
HEURISTIC_CONFIDENCE = 0.4
PLACEHOLDER_CONFIDENCE = 0.1


@dataclass(frozen=True)
class LocalOutcome:
    payload: Payload
    confidence: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class LocalHeuristicStrategy:
    name = LOCAL_HEURISTIC

    def __init__(self, extractor: ConceptExtractor):
        self.extractor = extractor

    def produce(
        self,
        kind: OperationKind,
        source_text: str,
        question: str = "",
        bundle: Optional[ContextBundle] = None,
    ) -> LocalOutcome:
        """
        Build a payload for `kind` from whatever text is available.

        Args:
            source_text: Input text, or context text when the request had none.
            question: The chat message (rag_chat only).
        """
        has_concepts = bool(self.extractor.key_concepts(source_text, 1))
        confidence = HEURISTIC_CONFIDENCE if has_concepts else PLACEHOLDER_CONFIDENCE

        if kind == OperationKind.OCR:
            artifact = self.extractor.ocr_artifact(source_text, self.name)
            return LocalOutcome(
                payload=artifact,
                confidence=confidence if artifact.evidence else PLACEHOLDER_CONFIDENCE,
                metadata={"evidence_count": len(artifact.evidence)},
            )

        if kind == OperationKind.SUMMARIZE:
            return LocalOutcome(self.extractor.summary(source_text), confidence)

        if kind == OperationKind.QUIZ_GEN:
            return LocalOutcome(self.extractor.quiz(source_text), confidence)

        if kind == OperationKind.MINDMAP_GEN:
            return LocalOutcome(self.extractor.mindmap(source_text), confidence)

        reply, variant = self.extractor.chat_reply(question, bundle)
        return LocalOutcome(
            payload=reply,
            confidence=HEURISTIC_CONFIDENCE if variant == "fallback-with-context" else PLACEHOLDER_CONFIDENCE,
            metadata={"reply_variant": variant},
        )
