"""
Rule-based request routing.

Routing rules map a prompt kind or a complexity level to a preferred
provider. The router only picks where a request starts; failover across the
remaining candidates is still handled by the client manager.
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Union, Any, Dict, Sequence

from inference_core.llm.interfaces.llm_provider_interface import (
    LLMRequest,
    LLMResponse,
    LLMConfigurationError,
    PromptKind
)


COMPLEXITY_LEVELS = ("trivial", "low", "medium", "high", "critical")

PROMPT_KIND_FIELDS = ("prompt_type", "prompt_kind")
COMPLEXITY_FIELDS = ("task_complexity", "complexity")

_CONDITION_PATTERN = re.compile(
    r"^\s*(prompt_type|prompt_kind|task_complexity|complexity)\s*"
    r"(==|!=|>=|<=|>|<)\s*"
    r"(?:'([^']*)'|\"([^\"]*)\")\s*$",
    re.IGNORECASE
)


def normalize_prompt_kind(value: Union[PromptKind, str, None]) -> str:
    """Lowercase a prompt kind and drop separators, so ``GenerateEndpoint`` equals ``generate_endpoint``."""
    if value is None:
        return ""
    if isinstance(value, PromptKind):
        value = value.value
    return value.lower().replace("_", "").replace("-", "")


@dataclass(frozen=True)
class RoutingRule:
    """Send requests matching ``condition`` to ``provider_id`` first."""
    condition: str
    provider_id: str
    reason: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoutingRule":
        provider_id = data.get('provider_id') or data.get('provider')
        if not data.get('condition') or not provider_id:
            raise LLMConfigurationError("Routing rule requires 'condition' and 'provider'")
        return cls(
            condition=str(data['condition']),
            provider_id=str(provider_id),
            reason=str(data.get('reason', ''))
        )


class RequestRouter:
    """
    Picks the preferred provider for a request from an ordered rule list.

    Rules are evaluated in order; the first match whose target is registered
    wins. With no match the current primary is returned.
    """

    def __init__(self, manager, rules: Optional[Sequence[RoutingRule]] = None):
        """
        Initialize the router.

        Args:
            manager: LLMClientManager consulted for registered ids and the primary
            rules: Routing rules in priority order
        """
        self.manager = manager
        self.rules: List[RoutingRule] = list(rules or [])
        self.logger = logging.getLogger(__name__)

    def complexity_rank(self, label: Optional[str]) -> int:
        """Ordinal of a complexity label. Unknown labels rank lowest."""
        if not label:
            return 0
        normalized = label.strip().lower()
        if normalized in COMPLEXITY_LEVELS:
            return COMPLEXITY_LEVELS.index(normalized)
        self.logger.warning(f"Unknown complexity level '{label}', treating it as '{COMPLEXITY_LEVELS[0]}'")
        return 0

    def evaluate(
        self,
        condition: str,
        prompt_kind: Union[PromptKind, str, None] = None,
        complexity: Optional[str] = None
    ) -> bool:
        """
        Evaluate a rule condition against a request's routing hints.

        Malformed conditions never match. A prompt-kind condition without a
        prompt kind never matches; a missing complexity ranks lowest.
        """
        match = _CONDITION_PATTERN.match(condition)
        if not match:
            self.logger.warning(f"Ignoring malformed routing condition: {condition!r}")
            return False

        field_name = match.group(1).lower()
        operator = match.group(2)
        value = match.group(3) if match.group(3) is not None else match.group(4)

        if field_name in PROMPT_KIND_FIELDS:
            if prompt_kind is None:
                return False
            actual = normalize_prompt_kind(prompt_kind)
            expected = normalize_prompt_kind(value)
            if operator == "==":
                return actual == expected
            if operator == "!=":
                return actual != expected
            self.logger.warning(f"Operator '{operator}' is not supported for prompt kinds: {condition!r}")
            return False

        actual_rank = self.complexity_rank(complexity)
        expected_rank = self.complexity_rank(value)
        return {
            "==": actual_rank == expected_rank,
            "!=": actual_rank != expected_rank,
            ">=": actual_rank >= expected_rank,
            "<=": actual_rank <= expected_rank,
            ">": actual_rank > expected_rank,
            "<": actual_rank < expected_rank,
        }[operator]

    def resolve_provider(
        self,
        prompt_kind: Union[PromptKind, str, None] = None,
        complexity: Optional[str] = None
    ) -> str:
        """
        Resolve the provider id a request should start with.

        Args:
            prompt_kind: Kind of prompt being issued
            complexity: Complexity label of the task

        Returns:
            Target of the first matching rule, or the primary id

        Raises:
            LLMConfigurationError: If no rule matches and no primary is set
        """
        for rule in self.rules:
            if not self.evaluate(rule.condition, prompt_kind, complexity):
                continue
            if not self.manager.is_registered(rule.provider_id):
                self.logger.warning(
                    f"Routing rule {rule.condition!r} targets unregistered provider "
                    f"'{rule.provider_id}'; trying next rule"
                )
                continue
            self.logger.debug(
                f"Routed to '{rule.provider_id}' by {rule.condition!r}"
                f"{f' ({rule.reason})' if rule.reason else ''}"
            )
            return rule.provider_id

        primary_id = self.manager.primary_id
        if not primary_id:
            raise LLMConfigurationError("No routing rule matched and no primary provider is configured")
        return primary_id

    def resolve_for_request(self, request: LLMRequest) -> str:
        return self.resolve_provider(request.prompt_kind, request.complexity)

    def get_routed_provider(
        self,
        prompt_kind: Union[PromptKind, str, None] = None,
        complexity: Optional[str] = None
    ):
        """Return the provider instance selected for the given hints."""
        return self.manager.get_provider(self.resolve_provider(prompt_kind, complexity))

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Route a request, then complete it with failover starting at the routed provider."""
        provider_id = self.resolve_for_request(request)
        return await self.manager.complete_with_fallback(request, preferred_provider_id=provider_id)
