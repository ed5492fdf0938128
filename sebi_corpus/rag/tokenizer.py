"""
Token counting with a fixed tiktoken encoding
Constructed once by the caller and passed to the chunker and ingestion pipeline
"""

import tiktoken
import structlog

logger = structlog.get_logger()

DEFAULT_ENCODING = "cl100k_base"


class Tokenizer:
    """
    Count subword tokens for a text under one tiktoken encoding.
    Stateless after construction; safe to share for the process lifetime.
    """

    def __init__(self, encoding_name: str = DEFAULT_ENCODING):
        """
        Load the encoding.

        Args:
            encoding_name: tiktoken encoding (cl100k_base matches text-embedding-3-*)
        """
        self.encoding_name = encoding_name
        self._encoding = tiktoken.get_encoding(encoding_name)

        logger.debug("tokenizer.loaded", encoding=encoding_name)

    def count(self, text: str) -> int:
        """
        Count tokens in text.

        Special-token strings in regulatory text are encoded as plain text.
        """
        if not text:
            return 0
        return len(self._encoding.encode(text, disallowed_special=()))
