"""
Generation backends.

Provides:
- BaseGenerator contract (chat generation + embeddings)
- OllamaClient for a local/remote Ollama server
- MockGenerator for offline use and tests
- retry_call for bounded fixed-delay retries
"""

from .generator import BaseGenerator, MockGenerator
from .ollama_client import OllamaClient, chat_url
from .retry import retry_call

__all__ = [
    "BaseGenerator",
    "MockGenerator",
    "OllamaClient",
    "chat_url",
    "retry_call",
]
