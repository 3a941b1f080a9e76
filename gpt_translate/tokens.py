from __future__ import annotations

import math
from typing import Callable, List, Sequence

import tiktoken

DEFAULT_CONTEXT_SIZE = 4096
FALLBACK_ENCODING = "cl100k_base"

TokenEstimator = Callable[[str], int]


def context_size(model: str) -> int:
    """Nominal context window of ``model``, judged from its name."""

    if "32k" in model:
        return 32768
    if "16k" in model:
        return 16384
    return DEFAULT_CONTEXT_SIZE


def token_budget(model: str) -> int:
    """Maximum estimated tokens per chunk: half of the context window.

    The other half is left for the translated completion.
    """

    return context_size(model) // 2


def approximate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


class TiktokenEstimator:
    """Count tokens with the byte-pair encoding used by ``model``."""

    def __init__(self, model: str) -> None:
        self.model = model
        try:
            self._encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            # OpenAI-compatible gateways use model names tiktoken does not know.
            self._encoding = tiktoken.get_encoding(FALLBACK_ENCODING)

    @property
    def encoding_name(self) -> str:
        return self._encoding.name

    def __call__(self, text: str) -> int:
        return len(self._encoding.encode(text, disallowed_special=()))


class ChunkPlanner:
    """Decides where a running buffer of segments has to be flushed."""

    def __init__(self, budget: int, estimator: TokenEstimator) -> None:
        if budget <= 0:
            raise ValueError(f"Token budget must be positive, got {budget}")
        self.budget = budget
        self.estimator = estimator

    @classmethod
    def for_model(cls, model: str, estimator: TokenEstimator | None = None) -> "ChunkPlanner":
        return cls(token_budget(model), estimator or TiktokenEstimator(model))

    def estimate(self, text: str) -> int:
        return self.estimator(text)

    def should_flush(self, buffer: str, segment: str) -> bool:
        if not buffer:
            return False
        return self.estimate(buffer + segment) > self.budget

    def plan(self, segments: Sequence[str], splitter: str) -> List[str]:
        """Return the chunk texts a translation run would send, in order."""

        chunks: List[str] = []
        buffer = ""
        last = len(segments) - 1
        for idx, segment in enumerate(segments):
            if self.should_flush(buffer, segment):
                chunks.append(buffer)
                buffer = ""
            buffer += segment + (splitter if idx < last else "")
        chunks.append(buffer)
        return chunks
