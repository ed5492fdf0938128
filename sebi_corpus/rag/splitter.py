"""
Hierarchy-aware chunking of SEBI documents into token-bounded passages
Packs sentences up to a token budget with sentence-level overlap between passages
"""

import re
from typing import List, Optional

from pydantic import BaseModel, Field
import structlog

from sebi_corpus.models.documents import Chunk, Document, make_chunk_id
from .sections import extract_sections, flatten_sections

logger = structlog.get_logger()

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+")


class ChunkOptions(BaseModel):
    """Token budget for passages"""

    max_tokens: int = Field(default=512, ge=1)
    min_tokens: int = Field(default=128, ge=0)
    overlap_tokens: int = Field(default=50, ge=0)


def split_into_sentences(text: str) -> List[str]:
    """Split text on whitespace that follows '.', '!' or '?'"""
    return [sentence.strip() for sentence in SENTENCE_BOUNDARY.split(text) if sentence.strip()]


class HierarchicalChunker:
    """
    Convert a document into an ordered list of passages.

    Structured documents are chunked per section block and keep the block's
    ancestor path; unstructured documents are packed sentence by sentence.
    Token counts always come from the injected tokenizer, never estimates.
    """

    def __init__(self, tokenizer, options: Optional[ChunkOptions] = None):
        """
        Initialize chunker.

        Args:
            tokenizer: Object exposing count(text) -> int
            options: Token budget (defaults 512/128/50)
        """
        self.tokenizer = tokenizer
        self.options = options or ChunkOptions()

    @property
    def max_tokens(self) -> int:
        return self.options.max_tokens

    @property
    def min_tokens(self) -> int:
        return self.options.min_tokens

    @property
    def overlap_tokens(self) -> int:
        return self.options.overlap_tokens

    def chunk_document(self, document: Document) -> List[Chunk]:
        """
        Chunk a document into passages.

        Args:
            document: Validated document

        Returns:
            Passages with contiguous ordinals in reading order
        """
        sections = extract_sections(document.content)
        chunks: List[Chunk] = []

        if not sections:
            pieces = self.split_text(document.content)
            for text in pieces:
                tokens = self.tokenizer.count(text)
                if tokens < self.min_tokens and len(pieces) > 1:
                    continue
                chunks.append(self._make_chunk(document, len(chunks), text, tokens, []))
        else:
            blocks = flatten_sections(sections)
            for content, hierarchy in blocks:
                block_tokens = self.tokenizer.count(content)

                if block_tokens <= self.max_tokens:
                    if block_tokens >= self.min_tokens or len(blocks) == 1:
                        chunks.append(self._make_chunk(document, len(chunks), content, block_tokens, hierarchy))
                    continue

                pieces = self.split_text(content)
                for text in pieces:
                    tokens = self.tokenizer.count(text)
                    if tokens >= self.min_tokens or len(pieces) == 1:
                        chunks.append(self._make_chunk(document, len(chunks), text, tokens, hierarchy))

        logger.info(
            "splitter.document_chunked",
            document_id=document.id,
            structured=bool(sections),
            num_chunks=len(chunks),
        )

        return chunks

    def split_text(self, text: str) -> List[str]:
        """
        Pack sentences into passages within max_tokens.

        When a passage closes, the next one starts with the trailing sentences
        of the closed passage that fit in overlap_tokens.

        Args:
            text: Text to split

        Returns:
            List of passage texts
        """
        units: List[str] = []
        for sentence in split_into_sentences(text):
            if self.tokenizer.count(sentence) > self.max_tokens:
                units.extend(self._split_long_sentence(sentence))
            else:
                units.append(sentence)

        passages: List[str] = []
        current: List[str] = []

        for unit in units:
            if current and self._count_joined([*current, unit]) > self.max_tokens:
                passages.append(" ".join(current))
                current = self._seed_for(current, unit)
            current.append(unit)

        if current:
            passages.append(" ".join(current))

        logger.debug(
            "splitter.split_complete",
            input_length=len(text),
            num_passages=len(passages),
        )

        return passages

    def _seed_for(self, closed: List[str], unit: str) -> List[str]:
        """
        Overlap seed for the passage that opens with unit.

        The seed is limited to the room unit leaves under max_tokens, so it is
        shortened rather than dropped when the full overlap would not fit.
        """
        budget = min(self.overlap_tokens, self.max_tokens - self.tokenizer.count(unit))
        seed = self._overlap_seed(closed, budget)

        # Joined counts can exceed the sum of parts under subword tokenizers
        while seed and self._count_joined([*seed, unit]) > self.max_tokens:
            budget -= 1
            seed = self._overlap_seed(closed, budget)

        return seed

    def _overlap_seed(self, sentences: List[str], budget: int) -> List[str]:
        """
        Trailing text of a closed passage within budget tokens.

        Whole sentences are taken greedily from the end while the joined count
        stays within budget; if not even the last sentence fits, its trailing
        words are used instead.
        """
        if budget <= 0 or not sentences:
            return []

        seed: List[str] = []
        for sentence in reversed(sentences):
            candidate = [sentence, *seed]
            if self._count_joined(candidate) > budget:
                break
            seed = candidate

        if seed:
            return seed

        tail: List[str] = []
        for word in reversed(sentences[-1].split()):
            candidate = [word, *tail]
            if self._count_joined(candidate) > budget:
                break
            tail = candidate

        return [" ".join(tail)] if tail else []

    def _split_long_sentence(self, sentence: str) -> List[str]:
        """Break a sentence longer than max_tokens into word runs within budget"""
        pieces: List[str] = []
        current: List[str] = []

        for word in sentence.split():
            if current and self._count_joined([*current, word]) > self.max_tokens:
                pieces.append(" ".join(current))
                current = []
            current.append(word)

        if current:
            pieces.append(" ".join(current))

        return pieces

    def _count_joined(self, parts: List[str]) -> int:
        return self.tokenizer.count(" ".join(parts))

    @staticmethod
    def _make_chunk(
        document: Document,
        index: int,
        text: str,
        tokens: int,
        hierarchy: List[str],
    ) -> Chunk:
        return Chunk(
            chunk_id=make_chunk_id(document.id, index),
            document_id=document.id,
            chunk_index=index,
            content=text,
            tokens=tokens,
            section_hierarchy=list(hierarchy),
        )


def chunk_document(document: Document, tokenizer, options: Optional[ChunkOptions] = None) -> List[Chunk]:
    """Chunk a document with a one-off chunker"""
    return HierarchicalChunker(tokenizer, options).chunk_document(document)
