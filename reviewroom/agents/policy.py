"""
Resilience policy for outbound model calls.

One ordered model chain, one timeout budget shared by every attempt, a fixed number of
attempts per model. Every agent goes through ResiliencePolicy.call(); nothing calls a
model client directly.
"""

import time
from typing import Callable, List

from .agent import BaseModelClient, ModelMessage, ModelReply
from .mock_agent import MockModelClient
from .ollama_agent import OllamaModelClient
from ..core.config import ai_mock_enabled, get_model_chain, get_model_timeout_sec
from ..core.errors import ModelChainExhausted
from ..util.logging import logger

# Attempts shorter than this are not worth starting
MIN_ATTEMPT_SEC = 0.5


class ResiliencePolicy:
    """Bounded retry over a fallback model list within a single timeout budget."""

    def __init__(self, client: BaseModelClient, models: List[str], timeout_sec: float,
                 attempts_per_model: int = 1, clock: Callable[[], float] = time.monotonic):
        if not models:
            raise ValueError("ResiliencePolicy needs at least one model")
        if timeout_sec <= 0:
            raise ValueError(f"Timeout budget must be > 0: {timeout_sec}")
        if attempts_per_model < 1:
            raise ValueError(f"attempts_per_model must be >= 1: {attempts_per_model}")

        self.client = client
        self.models = list(models)
        self.timeout_sec = timeout_sec
        self.attempts_per_model = attempts_per_model
        self.clock = clock

    def call(self, messages: List[ModelMessage], purpose: str = "chat") -> ModelReply:
        """
        Try each model in order until one answers.

        Raises:
            ModelChainExhausted: every attempt failed or the budget ran out
        """
        start = self.clock()
        deadline = start + self.timeout_sec
        errors: List[str] = []
        attempts = 0

        for model in self.models:
            for _ in range(self.attempts_per_model):
                remaining = deadline - self.clock()
                if remaining < MIN_ATTEMPT_SEC:
                    errors.append(f"{model}: timeout budget of {self.timeout_sec}s exhausted")
                    raise ModelChainExhausted(f"Model chain exhausted for {purpose}", errors)

                attempts += 1
                attempt_start = self.clock()
                try:
                    content = self.client.chat(model, messages, timeout=remaining)
                except Exception as e:
                    errors.append(f"{model}: {e}")
                    logger.log_model_call(purpose, model, attempt_start, self.clock(), status="failed",
                                          details={"error": str(e)[:100]})
                    continue

                end = self.clock()
                logger.log_model_call(purpose, model, attempt_start, end)
                return ModelReply(
                    content=content,
                    model_used=model,
                    attempts=attempts,
                    processing_time_ms=int((end - start) * 1000),
                    errors=errors,
                )

        raise ModelChainExhausted(f"Model chain exhausted for {purpose}", errors)


def build_model_client() -> BaseModelClient:
    """Configured model backend."""
    if ai_mock_enabled():
        return MockModelClient()
    return OllamaModelClient()


def get_model_policy() -> ResiliencePolicy:
    """Policy built from configuration. Also used as a FastAPI dependency."""
    return ResiliencePolicy(
        client=build_model_client(),
        models=get_model_chain(),
        timeout_sec=get_model_timeout_sec(),
    )
