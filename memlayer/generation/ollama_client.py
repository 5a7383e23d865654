"""
Ollama client for chat generation and embeddings.

Implements BaseGenerator against the Ollama REST API (/api/chat and
/api/embeddings) with bounded, fixed-delay retries for cold model loads.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Sequence

import requests

from memlayer.config.settings import Settings
from memlayer.errors import (
    BackendHTTPError,
    BackendUnreachable,
    InvalidRequest,
    MalformedResponse,
    ModelLoading,
)
from memlayer.generation.generator import BaseGenerator
from memlayer.generation.retry import retry_call

if TYPE_CHECKING:
    from memlayer.memory.schemas import Message

logger = logging.getLogger(__name__)


def chat_url(url: str) -> str:
    """
    Canonicalize a configured Ollama URL to the /api/chat endpoint.

    Examples:
        >>> chat_url("http://localhost:11434")
        'http://localhost:11434/api/chat'
        >>> chat_url("http://localhost:11434/api/generate")
        'http://localhost:11434/api/chat'
    """
    url = (url or "").strip()
    if not url or url.endswith("/api/chat"):
        return url
    if url.endswith("/api/generate"):
        return url[: -len("/api/generate")] + "/api/chat"
    if url.endswith("/api"):
        return url + "/chat"
    if url.endswith("/"):
        return url + "api/chat"
    return url + "/api/chat"


def api_base(url: str) -> str:
    """Base '/api' URL derived from the chat endpoint."""
    return chat_url(url)[: -len("/chat")]


class OllamaClient(BaseGenerator):
    """
    Client for a local or remote Ollama server.

    Ollama must be running (default: http://localhost:11434).
    Generation is non-streaming; the answer text is returned.
    """

    def __init__(
        self,
        url: str = "http://localhost:11434/api/chat",
        keep_alive: str = "10m",
        num_ctx: int = 2000,
        retries: int = 900,
        retry_sleep_ms: int = 2000,
        timeout: float = 300.0,
        log_request_bodies: bool = False,
        session: Optional[requests.Session] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize Ollama client.

        Args:
            url: Ollama URL (any of host, /api, /api/chat, /api/generate)
            keep_alive: How long Ollama keeps the model loaded
            num_ctx: Context size hint sent with every chat request
            retries: Maximum attempts per chat call
            retry_sleep_ms: Fixed delay between attempts
            timeout: Per-request timeout in seconds
            log_request_bodies: Log outbound chat payloads at INFO
            session: Optional requests session (for connection reuse)
            sleep: Sleep function used between retries (default: time.sleep)
        """
        self.url = chat_url(url)
        self.embeddings_url = api_base(url) + "/embeddings"
        self.tags_url = api_base(url) + "/tags"
        self.keep_alive = keep_alive
        self.num_ctx = num_ctx
        self.retries = retries
        self.retry_sleep_ms = retry_sleep_ms
        self.timeout = timeout
        self.log_request_bodies = log_request_bodies
        self.http = session or requests.Session()
        self.sleep = sleep or time.sleep

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "OllamaClient":
        """Build a client from the ollama/prompt/log sections of settings."""
        return cls(
            url=settings.ollama.url,
            keep_alive=settings.ollama.keep_alive,
            num_ctx=settings.prompt.max_tokens,
            retries=settings.ollama.retries,
            retry_sleep_ms=settings.ollama.retry_sleep_ms,
            timeout=settings.ollama.timeout,
            log_request_bodies=settings.log.request_bodies,
            **kwargs,
        )

    def is_available(self) -> bool:
        """Check if Ollama server is running."""
        try:
            response = self.http.get(self.tags_url, timeout=5)
            return response.status_code == 200
        except requests.exceptions.RequestException:
            return False

    def build_chat_body(
        self,
        model: str,
        messages: Sequence[Message],
        system: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Request payload for /api/chat."""
        if not messages:
            raise InvalidRequest("generate requires at least one message")

        payload = [m.to_payload() for m in messages]
        if system:
            payload.insert(0, {"role": "system", "content": system})

        return {
            "model": model,
            "messages": payload,
            "stream": False,
            "keep_alive": self.keep_alive,
            "options": {"num_ctx": self.num_ctx},
        }

    def generate(
        self,
        model: str,
        messages: Sequence[Message],
        system: Optional[str] = None,
    ) -> str:
        """
        Generate a chat reply (non-streaming), retrying transient failures.

        Args:
            model: Ollama model name
            messages: Ordered conversation messages
            system: Optional system prompt prepended to the messages

        Returns:
            Answer text

        Raises:
            InvalidRequest: If messages is empty
            ModelLoading, BackendUnreachable, BackendHTTPError: Last error
                after all attempts failed
            MalformedResponse: If the response has no usable content
        """
        body = self.build_chat_body(model, messages, system)
        if self.log_request_bodies:
            logger.info(f"Ollama request: {json.dumps(body)}")

        return retry_call(
            lambda: self._chat_once(body),
            attempts=self.retries,
            sleep_s=self.retry_sleep_ms / 1000.0,
            sleep=self.sleep,
        )

    def _post(self, url: str, body: Dict[str, Any]) -> requests.Response:
        try:
            return self.http.post(url, json=body, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise BackendUnreachable(
                f"Ollama request failed: {e}. Check if Ollama is running at {url}.",
                url=url,
            ) from e

    @staticmethod
    def _decode(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedResponse(
                "Ollama response is not valid JSON",
                status=response.status_code,
                body=response.text,
            ) from e
        if not isinstance(data, dict):
            raise MalformedResponse("Ollama response is not a JSON object", body=response.text)
        return data

    def _chat_once(self, body: Dict[str, Any]) -> str:
        response = self._post(self.url, body)

        if not 200 <= response.status_code <= 299:
            raise BackendHTTPError(
                f"Ollama API returned status {response.status_code}",
                status=response.status_code,
                body=response.text,
            )

        data = self._decode(response)
        # Normal chat reply, with a fallback for /api/generate-style payloads
        message = data.get("message")
        answer = message.get("content") if isinstance(message, dict) else None
        if answer is None:
            answer = data.get("response")

        if isinstance(answer, str) and answer.strip():
            return answer

        if data.get("error"):
            raise BackendHTTPError(
                f"Ollama error: {data['error']}",
                status=response.status_code,
                body=response.text,
            )

        if str(data.get("done_reason") or "").lower() == "load":
            raise ModelLoading("Ollama model still loading", status=response.status_code)

        raise MalformedResponse(
            "Ollama chat response missing content",
            status=response.status_code,
            body=response.text,
        )

    def embed(self, model: str, text: str) -> List[float]:
        """
        Embed text with an Ollama embedding model (single attempt).

        Args:
            model: Embedding model name (e.g., "nomic-embed-text")
            text: Text to embed

        Returns:
            Embedding vector
        """
        if not model:
            raise InvalidRequest("Embedding model not configured")

        response = self._post(self.embeddings_url, {"model": model, "prompt": text})
        if not 200 <= response.status_code <= 299:
            raise BackendHTTPError(
                "Embedding request failed",
                status=response.status_code,
                body=response.text,
            )

        embedding = self._decode(response).get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise MalformedResponse("Embedding response missing embedding", body=response.text)
        try:
            return [float(x) for x in embedding]
        except (TypeError, ValueError):
            raise MalformedResponse("Embedding response has non-numeric values", body=response.text)

    def get_available_models(self) -> List[str]:
        """
        Get list of available Ollama models.

        Returns:
            List of model names (empty when the server is unreachable)
        """
        try:
            response = self.http.get(self.tags_url, timeout=5)
            if response.status_code == 200:
                data = response.json()
                return [model["name"] for model in data.get("models", [])]
            return []
        except (requests.exceptions.RequestException, ValueError, KeyError):
            return []

    def __repr__(self) -> str:
        return f"OllamaClient(url='{self.url}')"
