"""
Context window management for local inference.

Trims a conversation to the token budget of the target model. The budget is
the model's context window minus the tokens reserved for the reply and a fixed
safety margin; the leading system prompt and the most recent turns are kept
in preference to older history.
"""

import logging
from typing import List, Optional, Sequence

from inference_core.llm.interfaces.llm_provider_interface import (
    Message,
    MessageRole,
    LLMRequest,
    ModelInfo,
    LLMCapacityError
)
from inference_core.llm.tokens import TokenEstimator, REPLY_PRIMING_TOKENS


SAFETY_MARGIN_TOKENS = 256


class ContextWindowManager:
    """Fits message sequences into a model's context budget."""

    def __init__(self, estimator: Optional[TokenEstimator] = None):
        self.estimator = estimator or TokenEstimator()
        self.logger = logging.getLogger(__name__)

    def estimate_tokens(self, text: str) -> int:
        """Estimate the token count of a piece of text."""
        return self.estimator.estimate(text)

    def get_budget(self, context_window: int, reserved_output_tokens: int) -> int:
        """Prompt token budget for a window once output and safety margin are reserved."""
        return context_window - reserved_output_tokens - SAFETY_MARGIN_TOKENS

    def get_available_output_tokens(self, request: LLMRequest, model_info: ModelInfo) -> int:
        """
        Tokens left for generation after the prompt and safety margin.

        Args:
            request: Request whose messages make up the prompt
            model_info: Metadata of the target model

        Returns:
            Remaining output tokens, never negative
        """
        prompt_tokens = self.estimator.estimate_messages(request.messages)
        available = model_info.context_window - prompt_tokens - SAFETY_MARGIN_TOKENS
        self.logger.debug(
            f"Context budget: {model_info.context_window} total, "
            f"{prompt_tokens} prompt, {available} available"
        )
        return max(0, available)

    def fit_messages(
        self,
        messages: Sequence[Message],
        context_window: int,
        reserved_output_tokens: int
    ) -> List[Message]:
        """
        Truncate messages to fit the context budget.

        A leading system message is kept when it fits on its own. The remaining
        messages are accepted newest to oldest until the first one that would
        overflow the budget; everything older than that is dropped. Accepted
        messages are returned in their original order.

        Args:
            messages: Conversation in chronological order
            context_window: Model context size in tokens
            reserved_output_tokens: Tokens to keep free for the reply

        Returns:
            Fitted messages; empty when the budget is not positive

        Raises:
            LLMCapacityError: If the most recent message cannot be kept
        """
        budget = self.get_budget(context_window, reserved_output_tokens)
        if budget <= 0:
            self.logger.warning(
                f"Context budget exhausted: {context_window} - {reserved_output_tokens} "
                f"- {SAFETY_MARGIN_TOKENS} <= 0"
            )
            return []
        if not messages:
            return []

        used = REPLY_PRIMING_TOKENS
        system_message: Optional[Message] = None
        rest = list(messages)

        if rest[0].role == MessageRole.SYSTEM:
            candidate = rest.pop(0)
            system_cost = self.estimator.message_cost(candidate)
            if used + system_cost <= budget:
                system_message = candidate
                used += system_cost
            else:
                self.logger.warning(
                    f"System prompt ({system_cost} tokens) does not fit budget {budget}, dropping it"
                )

        kept: List[Message] = []
        for index in range(len(rest) - 1, -1, -1):
            cost = self.estimator.message_cost(rest[index])
            if used + cost > budget:
                if not kept:
                    raise LLMCapacityError(required_tokens=used + cost, available_tokens=budget)
                self.logger.info(f"Dropped {index + 1} older messages to fit context window")
                break
            kept.append(rest[index])
            used += cost
        kept.reverse()

        result = ([system_message] if system_message else []) + kept
        self.logger.debug(f"Fitted {len(result)} messages using {used}/{budget} tokens")
        return result

    def fit_request(self, request: LLMRequest, model_info: ModelInfo) -> LLMRequest:
        """
        Return a copy of the request whose messages fit the model's window.

        The reply reservation is the request's ``max_tokens`` capped at half
        the window; the returned request carries the capped value.

        Raises:
            LLMCapacityError: If nothing can be kept
        """
        reserved = self.get_output_reservation(request, model_info)
        fitted = self.fit_messages(request.messages, model_info.context_window, reserved)
        if not fitted:
            budget = self.get_budget(model_info.context_window, reserved)
            raise LLMCapacityError(
                required_tokens=self.estimator.estimate_messages(request.messages[-1:]),
                available_tokens=max(0, budget)
            )
        if reserved != request.max_tokens:
            self.logger.debug(
                f"Capped max_tokens from {request.max_tokens} to {reserved} "
                f"for a {model_info.context_window}-token window"
            )
            request = request.with_max_tokens(reserved)
        if len(fitted) == len(request.messages):
            return request
        return request.with_messages(fitted)

    def get_output_reservation(self, request: LLMRequest, model_info: ModelInfo) -> int:
        """Tokens reserved for the reply: ``max_tokens``, at most half the context window."""
        return max(1, min(request.max_tokens, model_info.context_window // 2))
