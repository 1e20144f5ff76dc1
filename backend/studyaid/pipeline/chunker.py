"""
StudyAid Backend — Text Chunker
=================================

What:  Splits long text into size-bounded chunks on natural boundaries.
Why:   Prompts have a character budget and evidence records are per chunk;
       cutting mid-sentence hurts both.
How:   Split on line breaks; if the text is a single line, split on sentence
       terminators instead (terminators stay with their sentence). Units are
       then packed greedily into newline-joined chunks of at most
       `target_size` characters. A unit longer than the target becomes a chunk
       of its own rather than being cut.

Invariant:
    " ".join(chunks) has the same words, in order, as the input:
    collapse_whitespace(" ".join(chunk(t))) == collapse_whitespace(t)
"""

import re
from typing import List

LINE_SPLIT = re.compile(r"\n+")
SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")


def split_units(text: str) -> List[str]:
    """Lines, or sentences when there is at most one line. Empty units dropped."""
    lines = [line.strip() for line in LINE_SPLIT.split(text or "")]
    lines = [line for line in lines if line]
    if len(lines) <= 1:
        joined = lines[0] if lines else ""
        return [part.strip() for part in SENTENCE_SPLIT.split(joined) if part.strip()]
    return lines


def chunk(text: str, target_size: int = 500) -> List[str]:
    if target_size < 1:
        raise ValueError("target_size must be positive")

    chunks: List[str] = []
    buffer = ""
    for unit in split_units(text):
        if buffer and len(buffer) + 1 + len(unit) > target_size:
            chunks.append(buffer)
            buffer = ""
        buffer = f"{buffer}\n{unit}" if buffer else unit
    if buffer:
        chunks.append(buffer)
    return chunks


def bounded_text(text: str, max_chars: int, target_size: int = 500) -> str:
    """
    Leading chunks of `text` whose combined length fits in `max_chars`.

    Used to bound prompt size on chunk boundaries. When even the first chunk
    is too long it is hard-cut so the prompt still carries some input.
    """
    pieces = chunk(text, target_size)
    if not pieces:
        return ""
    kept: List[str] = []
    used = 0
    for piece in pieces:
        extra = len(piece) + (1 if kept else 0)
        if used + extra > max_chars:
            break
        kept.append(piece)
        used += extra
    if not kept:
        return pieces[0][:max_chars]
    return "\n".join(kept)
