"""Paragraph-first, token-bounded chunking of knowledge source text."""

import re
from typing import Protocol

from pydantic import BaseModel, Field

from semantic_memory.core.base import ValidationErrorDetails
from semantic_memory.core.constants import DEFAULT_CHUNK_OVERLAP_TOKENS, DEFAULT_CHUNK_SIZE_TOKENS
from semantic_memory.core.errors import ValidationError

PARAGRAPH_BREAK = re.compile(r"\n\s*\n")


class Tokenizer(Protocol):
    def tokenize(self, text: str) -> list[str]: ...

    def detokenize(self, tokens: list[str]) -> str: ...


class WhitespaceTokenizer:
    """One token per whitespace-separated word."""

    def tokenize(self, text: str) -> list[str]:
        return text.split()

    def detokenize(self, tokens: list[str]) -> str:
        return " ".join(tokens)


class TextChunk(BaseModel):
    """A token-bounded slice of a document."""

    sequence: int = Field(ge=0)
    text: str
    token_count: int = Field(ge=0)
    # Sequence of the chunk where a hard-split paragraph began
    parent_sequence: int | None = None


class TextChunker:
    """Splits text into chunks of at most ``chunk_size_tokens`` new tokens.

    Paragraphs (separated by blank lines) are packed into a running chunk
    until the next one would not fit. Every chunk after the first is seeded
    with the last ``overlap_tokens`` tokens of the previous one; the seed
    is carried whole and does not count against the budget, so a chunk
    holds at most ``chunk_size_tokens + overlap_tokens`` tokens. Only a
    paragraph larger than the budget is split, at token boundaries,
    streaming across as many chunks as it needs.

    Example:
        >>> chunker = TextChunker(chunk_size_tokens=4, overlap_tokens=1)
        >>> [c.text for c in chunker.chunk("a b c\\n\\nd e")]
        ['a b c', 'c\\n\\nd e']
    """

    def __init__(
        self,
        chunk_size_tokens: int = DEFAULT_CHUNK_SIZE_TOKENS,
        overlap_tokens: int = DEFAULT_CHUNK_OVERLAP_TOKENS,
        tokenizer: Tokenizer | None = None,
    ) -> None:
        if chunk_size_tokens <= 0:
            raise self._invalid("chunk_size_tokens", chunk_size_tokens, "must be positive")
        if overlap_tokens < 0 or overlap_tokens >= chunk_size_tokens:
            raise self._invalid("overlap_tokens", overlap_tokens, "must be >= 0 and smaller than chunk_size_tokens")
        self.chunk_size_tokens = chunk_size_tokens
        self.overlap_tokens = overlap_tokens
        self.tokenizer = tokenizer or WhitespaceTokenizer()

    @staticmethod
    def _invalid(field: str, value: int, constraint: str) -> ValidationError:
        return ValidationError(
            message=f"{field} {constraint}",
            details=ValidationErrorDetails(
                source="text_chunker",
                operation="configure",
                field=field,
                actual_value=value,
                constraint=constraint,
            ),
        )

    def paragraphs(self, text: str) -> list[list[str]]:
        tokenized = (self.tokenizer.tokenize(part) for part in PARAGRAPH_BREAK.split(text))
        return [tokens for tokens in tokenized if tokens]

    def chunk(self, text: str) -> list[TextChunk]:
        budget = self.chunk_size_tokens
        chunks: list[TextChunk] = []
        # segments[0] is the seed carried from the previous chunk, if any
        segments: list[list[str]] = []
        fresh = 0
        parent: int | None = None

        def flush() -> None:
            nonlocal segments, fresh, parent
            if not fresh:
                return
            tokens = [token for segment in segments for token in segment]
            chunks.append(
                TextChunk(
                    sequence=len(chunks),
                    text="\n\n".join(self.tokenizer.detokenize(segment) for segment in segments),
                    token_count=len(tokens),
                    parent_sequence=parent,
                )
            )
            seed = tokens[len(tokens) - self.overlap_tokens :] if self.overlap_tokens else []
            segments = [seed] if seed else []
            fresh = 0
            parent = None

        for paragraph in self.paragraphs(text):
            if len(paragraph) <= budget:
                if fresh + len(paragraph) > budget:
                    flush()
                segments.append(paragraph)
                fresh += len(paragraph)
                continue

            # Oversized paragraph: hard-split at token boundaries
            if fresh >= budget:
                flush()
            began = len(chunks)
            position = 0
            while position < len(paragraph):
                if fresh >= budget:
                    flush()
                    parent = began
                piece = paragraph[position : position + budget - fresh]
                segments.append(piece)
                fresh += len(piece)
                position += len(piece)

        flush()
        return chunks
