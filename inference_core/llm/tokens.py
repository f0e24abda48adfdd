"""
Character-based token estimation.

Local backends do not expose a tokenizer endpoint we can rely on, so prompt
budgeting uses a fixed ratio of roughly four characters per token.
"""

import math
from typing import Sequence

from inference_core.llm.interfaces.llm_provider_interface import Message

CHARS_PER_TOKEN = 4

# Per-message overhead for role markers and separators.
MESSAGE_OVERHEAD_TOKENS = 4

# Tokens the backend spends priming the assistant reply.
REPLY_PRIMING_TOKENS = 3


class TokenEstimator:
    """Deterministic token estimates for text and chat messages."""

    def estimate(self, text: str) -> int:
        """
        Estimate the token count of a piece of text.

        Args:
            text: Input text

        Returns:
            0 for empty text, otherwise ceil(len / 4) and at least 1
        """
        if not text:
            return 0
        return max(1, math.ceil(len(text) / CHARS_PER_TOKEN))

    def message_cost(self, message: Message) -> int:
        """Estimated cost of one message including its framing overhead."""
        return (
            MESSAGE_OVERHEAD_TOKENS
            + self.estimate(message.role.value)
            + self.estimate(message.content)
        )

    def estimate_messages(self, messages: Sequence[Message]) -> int:
        """Estimated cost of a whole conversation, including reply priming."""
        if not messages:
            return 0
        return sum(self.message_cost(m) for m in messages) + REPLY_PRIMING_TOKENS
