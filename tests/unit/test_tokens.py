"""
Unit tests for token estimation.
"""

from inference_core.llm.interfaces.llm_provider_interface import Message
from inference_core.llm.tokens import (
    TokenEstimator,
    MESSAGE_OVERHEAD_TOKENS,
    REPLY_PRIMING_TOKENS
)


class TestTokenEstimator:
    """Tests for TokenEstimator."""

    def setup_method(self):
        self.estimator = TokenEstimator()

    def test_empty_text_is_zero(self):
        assert self.estimator.estimate("") == 0

    def test_short_text_is_at_least_one(self):
        assert self.estimator.estimate("a") == 1
        assert self.estimator.estimate("abcd") == 1

    def test_rounds_up(self):
        assert self.estimator.estimate("abcde") == 2
        assert self.estimator.estimate("x" * 400) == 100
        assert self.estimator.estimate("x" * 401) == 101

    def test_non_decreasing_with_length(self):
        previous = 0
        for length in range(1, 200):
            current = self.estimator.estimate("y" * length)
            assert current >= 1
            assert current >= previous
            previous = current

    def test_message_cost_includes_role_and_overhead(self):
        message = Message.user("x" * 40)
        assert self.estimator.message_cost(message) == MESSAGE_OVERHEAD_TOKENS + 1 + 10

    def test_conversation_adds_reply_priming_once(self):
        messages = [Message.system("x" * 40), Message.user("y" * 40)]
        expected = sum(self.estimator.message_cost(m) for m in messages) + REPLY_PRIMING_TOKENS
        assert self.estimator.estimate_messages(messages) == expected

    def test_empty_conversation_is_zero(self):
        assert self.estimator.estimate_messages([]) == 0
