"""Multi-model token estimation with caching and graceful fallback."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from chronicle.models.config import ModelInfo
    from chronicle.models.parts import MessagePart
    from chronicle.models.records import MessageRecord

from chronicle.models.parts import TextPart, ToolPart, part_text

# Per-message role/framing overhead.
_MESSAGE_OVERHEAD = 4


class TokenEstimator:
    """
    Multi-model token counting with caching and graceful fallback.

    Priority order:
    1. tiktoken for OpenAI model families (gpt-4, gpt-4o, o-series)
    2. Character-based heuristic (``len // 3``) for Claude models
    3. Character-based heuristic (``len // 4``) for all other models

    Caching:
    - Encoder objects are cached by encoding name (one load per process).
    - Token counts are cached by SHA-256 of content for immutable content
      such as synthetic compaction summaries. Use ``estimate_cached()``.
    """

    def __init__(self) -> None:
        self._encoder_cache: dict[str, Any] = {}
        self._count_cache: dict[str, int] = {}
        self._force_heuristic: bool = False
        """Set to True in tests to skip tiktoken import."""

    def estimate(self, text: str, model: ModelInfo | None = None) -> int:
        """
        Estimate the token count for a string.

        Args:
            text: The text to estimate.
            model: Optional model info for accurate tokenisation. Uses heuristic
                when None or model encoding is unknown.

        Returns:
            Estimated token count, always >= 1 for non-empty text.
        """
        if not text:
            return 0
        if self._force_heuristic or model is None:
            return self._heuristic(text)

        encoding = model.encoding
        if encoding == "claude_heuristic":
            return max(1, len(text) // 3)
        if encoding in ("cl100k_base", "o200k_base"):
            try:
                return self._tiktoken_estimate(text, encoding)
            except Exception:
                # tiktoken missing or its encoding files unavailable offline
                return self._heuristic(text)
        return self._heuristic(text)

    def estimate_cached(
        self,
        text: str,
        cache_key: str,
        model: ModelInfo | None = None,
    ) -> int:
        """
        Estimate with caching, keyed by ``cache_key``.

        Args:
            text: The text to estimate.
            cache_key: A stable identifier for this content (e.g. SHA-256 hash).
            model: Optional model info for accurate tokenisation.

        Returns:
            Estimated token count from cache or fresh computation.
        """
        if cache_key in self._count_cache:
            return self._count_cache[cache_key]
        count = self.estimate(text, model)
        self._count_cache[cache_key] = count
        return count

    def estimate_part(self, part: MessagePart, model: ModelInfo | None = None) -> int:
        """
        Estimate one part. Pruned parts count only their placeholder text.
        """
        if part.pruned_at is not None:
            if isinstance(part, ToolPart):
                return self.estimate(str(part.state.output or ""), model)
            if isinstance(part, TextPart):
                return self.estimate(str(part.text), model)
        text = part_text(part)
        if isinstance(part, TextPart) and part.synthetic:
            # Compaction summaries never change after insertion
            encoding = model.encoding if model is not None else "heuristic"
            return self.estimate_cached(text, f"{encoding}:{self.content_hash(text)}", model)
        return self.estimate(text, model)

    def estimate_message(self, record: MessageRecord, model: ModelInfo | None = None) -> int:
        """
        Estimate total tokens for a message including all of its parts.

        Args:
            record: The normalized message record.
            model: Optional model info for accurate tokenisation.

        Returns:
            Total estimated token count for the message.
        """
        total = _MESSAGE_OVERHEAD
        for part_record in record.ordered_parts():
            total += self.estimate_part(part_record.data, model)
        return total

    def estimate_messages(
        self, records: Iterable[MessageRecord], model: ModelInfo | None = None
    ) -> int:
        return sum(self.estimate_message(record, model) for record in records)

    def _heuristic(self, text: str) -> int:
        """Conservative heuristic: 4 characters per token, minimum 1."""
        return max(1, len(text) // 4)

    def _tiktoken_estimate(self, text: str, encoding_name: str) -> int:
        """Encode with tiktoken, caching the encoder object."""
        if encoding_name not in self._encoder_cache:
            import tiktoken

            self._encoder_cache[encoding_name] = tiktoken.get_encoding(encoding_name)
        encoder = self._encoder_cache[encoding_name]
        return len(encoder.encode(text))

    @staticmethod
    def content_hash(text: str) -> str:
        """Return a stable SHA-256 hex digest for use as a cache key."""
        return hashlib.sha256(text.encode()).hexdigest()
