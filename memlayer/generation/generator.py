"""Generation backend contract and an offline mock implementation."""
from __future__ import annotations

import hashlib
import math
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:
    from memlayer.memory.schemas import Message


class BaseGenerator(ABC):
    """Abstract base class for text generation / embedding backends."""

    @abstractmethod
    def generate(
        self,
        model: str,
        messages: Sequence[Message],
        system: Optional[str] = None,
    ) -> str:
        """Generate a reply for an ordered list of messages."""
        pass

    @abstractmethod
    def embed(self, model: str, text: str) -> List[float]:
        """Embed text into a vector of floats."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the backend is available and ready to use."""
        pass


class MockGenerator(BaseGenerator):
    """Mock generator for testing and when no backend is reachable."""

    def __init__(self, dim: int = 64):
        self.dim = dim
        self.mock_responses = {
            "summarize": "- Conversation covered earlier requests and decisions.",
            "remember": "I'll keep that in mind.",
            "default": "Based on what I remember, here is my answer.",
        }

    def generate(
        self,
        model: str,
        messages: Sequence[Message],
        system: Optional[str] = None,
    ) -> str:
        """Generate a mock response based on keywords in the last message."""
        last = messages[-1].content.lower() if messages else ""

        for keyword, response in self.mock_responses.items():
            if keyword != "default" and keyword in last:
                return response
        return self.mock_responses["default"]

    def embed(self, model: str, text: str) -> List[float]:
        """Deterministic unit vector derived from the text hash."""
        values: List[float] = []
        counter = 0
        while len(values) < self.dim:
            digest = hashlib.sha256(f"{counter}:{text}".encode("utf-8")).digest()
            values.extend(b / 255.0 - 0.5 for b in digest)
            counter += 1
        values = values[: self.dim]

        norm = math.sqrt(sum(x * x for x in values))
        return [x / norm for x in values] if norm > 0 else values

    def is_available(self) -> bool:
        """Mock generator is always available."""
        return True

    def __repr__(self) -> str:
        return f"MockGenerator(dim={self.dim})"
