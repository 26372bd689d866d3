"""
Structure-aware segmentation of knowledge base documents.

Documents are split in three passes, each applied only to pieces that are
still over the size budget:

1. Markdown headings (`#` to `######`) start a new unit.
2. Over-budget units are split on blank-line paragraphs.
3. Over-budget paragraphs are split into sentences and greedily packed; each
   new unit opens with a tail of the previous one so that a sentence is never
   retrieved without the sentence that introduces it.

Sizes are approximate tokens: character count // 4.
"""

import re
from abc import ABC, abstractmethod

from ..observability.logging import get_logger

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4

HEADING_PATTERN = re.compile(r"^#{1,6}[ \t]+\S")
FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")
SENTENCE_END = re.compile(r"[.!?]+\s+")


def estimate_tokens(text: str) -> int:
    """Approximate token count used for every size budget."""
    return len(text) // CHARS_PER_TOKEN


class ChunkingStrategy(ABC):
    """Abstract base class for segmentation strategies."""

    def __init__(self, chunk_size: int = 512, overlap: int = 50):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if overlap < 0 or overlap >= chunk_size:
            raise ValueError("overlap must be in [0, chunk_size)")
        self.chunk_size = chunk_size
        self.overlap = overlap

    @abstractmethod
    def segment(self, text: str) -> list[str]:
        """Split text into ordered, non-empty chunk texts."""
        ...

    def fits(self, text: str) -> bool:
        return estimate_tokens(text) <= self.chunk_size


class MarkdownSegmenter(ChunkingStrategy):
    """Heading → paragraph → sentence segmentation with sentence overlap."""

    def segment(self, text: str) -> list[str]:
        if not text or not text.strip():
            return []

        chunks: list[str] = []
        for section in self._split_by_headings(text):
            if self.fits(section):
                chunks.append(section)
                continue

            for paragraph in self._split_by_paragraphs(section):
                if self.fits(paragraph):
                    chunks.append(paragraph)
                else:
                    chunks.extend(self._pack_sentences(paragraph))

        result = [chunk for chunk in chunks if chunk.strip()]
        logger.debug("Segmented document", chars=len(text), chunks=len(result))
        return result

    def _split_by_headings(self, text: str) -> list[str]:
        """Split at heading lines outside fenced code blocks."""
        starts: list[int] = []
        offset = 0
        in_fence = False

        for line in text.splitlines(keepends=True):
            if FENCE_PATTERN.match(line):
                in_fence = not in_fence
            elif not in_fence and HEADING_PATTERN.match(line):
                starts.append(offset)
            offset += len(line)

        if not starts:
            return [text.strip()]

        boundaries = [0, *starts, len(text)]
        sections = []
        for begin, end in zip(boundaries, boundaries[1:]):
            section = text[begin:end].strip()
            if section:
                sections.append(section)
        return sections

    def _split_by_paragraphs(self, text: str) -> list[str]:
        return [p.strip() for p in PARAGRAPH_BREAK.split(text) if p.strip()]

    def _split_sentences(self, text: str) -> list[str]:
        """Split after each terminator run, keeping the terminator."""
        sentences = []
        last = 0
        for match in SENTENCE_END.finditer(text):
            sentence = text[last : match.end()].strip()
            if sentence:
                sentences.append(sentence)
            last = match.end()
        tail = text[last:].strip()
        if tail:
            sentences.append(tail)
        return sentences

    def _pack_sentences(self, text: str) -> list[str]:
        """Greedily pack sentences into units, carrying overlap between them."""
        sentences = self._split_sentences(text)
        units: list[str] = []
        current = ""

        for sentence in sentences:
            candidate = f"{current} {sentence}" if current else sentence

            if current and not self.fits(candidate):
                units.append(current)
                overlap_text = self._extract_overlap(current)
                current = f"{overlap_text} {sentence}" if overlap_text else sentence
            else:
                current = candidate

        if current.strip():
            units.append(current)

        return units

    def _extract_overlap(self, text: str) -> str:
        """
        Trailing slice of `text` sized to the overlap budget.

        The slice is moved forward to the first sentence start inside it when
        there is one; otherwise the raw trailing text is used.
        """
        if self.overlap <= 0 or not text:
            return ""

        char_count = self.overlap * CHARS_PER_TOKEN
        if len(text) <= char_count:
            return text.strip()

        extracted = text[-char_count:]
        match = SENTENCE_END.search(extracted)
        if match and match.end() < len(extracted):
            extracted = extracted[match.end() :]

        return extracted.strip()
