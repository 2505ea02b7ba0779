"""Inbound model id -> upstream model id resolution."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Mapping

from nimrelay.util.logger import logger

ProbeFunc = Callable[[str], Awaitable[bool]]

# 顺序即优先级：large 命中先于 medium
_LARGE_HINTS = ("gpt-4", "claude-opus", "405b")
_MEDIUM_HINTS = ("claude", "gemini", "70b")


@dataclass(frozen=True, slots=True)
class FallbackModels:
    large: str = "meta/llama-3.1-405b-instruct"
    medium: str = "meta/llama-3.1-70b-instruct"
    small: str = "meta/llama-3.1-8b-instruct"


def heuristic_fallback(model: str, fallbacks: FallbackModels) -> str:
    lowered = model.lower()
    if any(hint in lowered for hint in _LARGE_HINTS):
        return fallbacks.large
    if any(hint in lowered for hint in _MEDIUM_HINTS):
        return fallbacks.medium
    return fallbacks.small


class ModelResolver:
    """
    Resolve in three steps: exact mapping lookup, a one-shot upstream probe
    with the inbound id, then a substring heuristic. Never raises.
    """

    def __init__(
        self,
        mapping: Mapping[str, str],
        probe: ProbeFunc,
        fallbacks: FallbackModels | None = None,
    ) -> None:
        self._mapping = mapping
        self._probe = probe
        self._fallbacks = fallbacks or FallbackModels()

    @property
    def mapping(self) -> Mapping[str, str]:
        return self._mapping

    async def resolve(self, model: str) -> str:
        mapped = self._mapping.get(model)
        if mapped is not None:
            logger.debug("model resolved by mapping inbound=%s upstream=%s", model, mapped)
            return mapped

        try:
            accepted = await self._probe(model)
        except Exception as exc:
            logger.debug("model probe error ignored model=%s error=%s", model, exc)
            accepted = False
        if accepted:
            logger.info("model accepted by upstream probe model=%s", model)
            return model

        fallback = heuristic_fallback(model, self._fallbacks)
        logger.info("model resolved by heuristic inbound=%s upstream=%s", model, fallback)
        return fallback
