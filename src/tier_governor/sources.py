"""
Token Sources for the Tier Governor

A token source turns a prompt into a lazy, finite, non-restartable stream
of text chunks. The Run Controller pulls one chunk at a time and splits it
into units; the source itself knows nothing about tiers.

Supported sources:
- MockTokenSource: deterministic chunks for testing and demos
- OllamaTokenSource: local Ollama server, streaming /api/generate
- OpenAITokenSource: OpenAI chat completions with stream=True
- AnthropicTokenSource: Anthropic messages streaming

Contract:
- Transport and provider failures are raised as SourceError.
- Right after opening a stream, the source registers its close() on the
  cancellation token, so a cancel unblocks a read that is waiting on the
  provider. Errors caused by that close end the stream quietly;
  cancellation is never surfaced as an error.

Usage:
    from tier_governor.sources import create_source

    source = create_source("ollama", "llama3")
    for chunk in source.stream("Explain relativity.", token):
        ...
"""

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional

from tier_governor.cancellation import CancellationToken
from tier_governor.errors import SourceError

logger = logging.getLogger(__name__)


DEFAULT_UNIT_SIZE = 4
MAX_UNIT_SIZE = 4


def validate_unit_size(size: int) -> int:
    if not 1 <= size <= MAX_UNIT_SIZE:
        raise ValueError(f"unit size must be between 1 and {MAX_UNIT_SIZE}, got {size}")
    return size


def split_units(chunk: str, size: int = DEFAULT_UNIT_SIZE) -> List[str]:
    """
    Split a chunk into fixed-size sub-units (the last one may be shorter).

    An empty chunk yields no units.
    """
    validate_unit_size(size)
    return re.findall(r"[\s\S]{1,%d}" % size, chunk)


# =============================================================================
# Source Base Class
# =============================================================================

class BaseTokenSource(ABC):
    """Base class for token sources."""

    @abstractmethod
    def stream(self, prompt: str, token: CancellationToken) -> Iterator[str]:
        """Yield text chunks for prompt until exhausted or cancelled."""
        pass

    @abstractmethod
    def get_source_id(self) -> str:
        """Return source identifier for logging."""
        pass

    def get_info(self) -> Dict[str, Any]:
        return {
            "source_id": self.get_source_id(),
            "source_type": self.__class__.__name__,
        }


# =============================================================================
# Mock Source (for testing)
# =============================================================================

MOCK_RESPONSE = (
    "Relativity says the laws of physics look the same for everyone moving "
    "at a steady speed, and that light always travels at the same speed. "
    "Because of that, moving clocks tick slower and moving rulers shrink. "
    "Gravity is not a force pulling on you but the shape of spacetime "
    "itself, bent by mass and energy. Planets follow the straightest paths "
    "they can through that curved geometry, which is why orbits look curved "
    "to us. GPS satellites have to correct for both effects every day."
)


class MockTokenSource(BaseTokenSource):
    """
    Deterministic source.

    Emits explicit chunks when given, otherwise n_chunks pieces of a canned
    response (words_per_chunk words each, cycling the text). fail_after
    raises SourceError once that many chunks have been emitted.
    """

    def __init__(
        self,
        chunks: Optional[List[str]] = None,
        n_chunks: int = 60,
        words_per_chunk: int = 2,
        fail_after: Optional[int] = None,
        error_message: str = "mock transport failure",
        chunk_delay: float = 0.0,
    ):
        self.chunks = chunks
        self.n_chunks = n_chunks
        self.words_per_chunk = words_per_chunk
        self.fail_after = fail_after
        self.error_message = error_message
        self.chunk_delay = chunk_delay
        self.prompts: List[str] = []

    def _script(self) -> List[str]:
        if self.chunks is not None:
            return list(self.chunks)
        words = MOCK_RESPONSE.split()
        script = []
        for i in range(self.n_chunks):
            start = (i * self.words_per_chunk) % len(words)
            piece = [words[(start + k) % len(words)] for k in range(self.words_per_chunk)]
            script.append(" ".join(piece) + " ")
        return script

    def stream(self, prompt: str, token: CancellationToken) -> Iterator[str]:
        self.prompts.append(prompt)
        for emitted, chunk in enumerate(self._script()):
            if self.fail_after is not None and emitted >= self.fail_after:
                raise SourceError(self.error_message, self.get_source_id())
            if token.cancelled:
                return
            yield chunk
            if self.chunk_delay and token.sleep(self.chunk_delay):
                return

    def get_source_id(self) -> str:
        return "mock-source"

    def get_info(self) -> Dict[str, Any]:
        return {
            "source_id": self.get_source_id(),
            "source_type": "MockTokenSource",
            "chunks": len(self._script()),
            "fail_after": self.fail_after,
        }


# =============================================================================
# Ollama Source
# =============================================================================

class OllamaTokenSource(BaseTokenSource):
    """
    Streams from a local Ollama server.

    Requires Ollama to be running: https://ollama.ai
    """

    def __init__(
        self,
        model_name: str = "llama3",
        base_url: str = "http://localhost:11434",
        timeout: int = 120,
        temperature: Optional[float] = None,
    ):
        self.model_name = model_name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature

    def stream(self, prompt: str, token: CancellationToken) -> Iterator[str]:
        try:
            import requests
        except ImportError:
            raise ImportError(
                "Ollama source requires requests. "
                "Install with: pip install requests"
            )

        data: Dict[str, Any] = {
            "model": self.model_name,
            "prompt": prompt,
            "stream": True,
        }
        if self.temperature is not None:
            data["options"] = {"temperature": self.temperature}

        try:
            with requests.post(
                f"{self.base_url}/api/generate",
                json=data,
                stream=True,
                timeout=self.timeout,
            ) as response:
                token.add_callback(response.close)
                response.raise_for_status()
                for line in response.iter_lines():
                    if token.cancelled:
                        logger.info("ollama stream aborted by cancellation")
                        return
                    if not line:
                        continue
                    payload = json.loads(line)
                    if payload.get("error"):
                        raise SourceError(payload["error"], self.get_source_id())
                    text = payload.get("response", "")
                    if text:
                        yield text
                    if payload.get("done"):
                        return
        except requests.RequestException as e:
            if token.cancelled:
                logger.info("ollama stream closed by cancellation")
                return
            raise SourceError(str(e), self.get_source_id()) from e
        except ValueError as e:
            if token.cancelled:
                return
            raise SourceError(f"malformed stream line: {e}", self.get_source_id()) from e

    def get_source_id(self) -> str:
        return f"ollama/{self.model_name}"

    def get_info(self) -> Dict[str, Any]:
        return {
            "source_id": self.get_source_id(),
            "source_type": "OllamaTokenSource",
            "base_url": self.base_url,
        }


# =============================================================================
# OpenAI Source
# =============================================================================

class OpenAITokenSource(BaseTokenSource):
    """
    Streams chat completions from the OpenAI API.

    Requires OPENAI_API_KEY environment variable or explicit api_key.
    """

    def __init__(
        self,
        model_name: str = "gpt-4o-mini",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 120,
        max_retries: int = 3,
        temperature: Optional[float] = None,
    ):
        self.model_name = model_name
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY")
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.temperature = temperature

        if not self.api_key:
            raise ValueError(
                "OpenAI API key required. Set OPENAI_API_KEY environment variable "
                "or pass api_key parameter."
            )

        self._client = None

    def _ensure_client(self):
        """Lazy-load the OpenAI client."""
        if self._client is not None:
            return

        try:
            from openai import OpenAI
        except ImportError:
            raise ImportError(
                "OpenAI source requires the openai package. "
                "Install with: pip install openai"
            )

        kwargs = {
            "api_key": self.api_key,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
        }
        if self.base_url:
            kwargs["base_url"] = self.base_url

        self._client = OpenAI(**kwargs)

    def stream(self, prompt: str, token: CancellationToken) -> Iterator[str]:
        self._ensure_client()
        import openai

        kwargs: Dict[str, Any] = {
            "model": self.model_name,
            "messages": [{"role": "user", "content": prompt}],
            "stream": True,
        }
        if self.temperature is not None:
            kwargs["temperature"] = self.temperature

        try:
            stream = self._client.chat.completions.create(**kwargs)
            token.add_callback(stream.close)
            try:
                for chunk in stream:
                    if token.cancelled:
                        logger.info("openai stream aborted by cancellation")
                        return
                    if not chunk.choices:
                        continue
                    text = chunk.choices[0].delta.content
                    if text:
                        yield text
            finally:
                stream.close()
        except openai.OpenAIError as e:
            if token.cancelled:
                logger.info("openai stream closed by cancellation")
                return
            raise SourceError(str(e), self.get_source_id()) from e

    def get_source_id(self) -> str:
        return f"openai/{self.model_name}"

    def get_info(self) -> Dict[str, Any]:
        return {
            "source_id": self.get_source_id(),
            "source_type": "OpenAITokenSource",
            "base_url": self.base_url or "https://api.openai.com",
        }


# =============================================================================
# Anthropic Source
# =============================================================================

class AnthropicTokenSource(BaseTokenSource):
    """
    Streams messages from the Anthropic API.

    Requires ANTHROPIC_API_KEY environment variable or explicit api_key.
    """

    def __init__(
        self,
        model_name: str = "claude-sonnet-4-20250514",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 120,
        max_retries: int = 3,
        max_tokens: int = 1024,
    ):
        self.model_name = model_name
        self.api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.base_url = base_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.max_tokens = max_tokens

        if not self.api_key:
            raise ValueError(
                "Anthropic API key required. Set ANTHROPIC_API_KEY environment variable "
                "or pass api_key parameter."
            )

        self._client = None

    def _ensure_client(self):
        """Lazy-load the Anthropic client."""
        if self._client is not None:
            return

        try:
            from anthropic import Anthropic
        except ImportError:
            raise ImportError(
                "Anthropic source requires the anthropic package. "
                "Install with: pip install anthropic"
            )

        kwargs = {
            "api_key": self.api_key,
            "timeout": self.timeout,
            "max_retries": self.max_retries,
        }
        if self.base_url:
            kwargs["base_url"] = self.base_url

        self._client = Anthropic(**kwargs)

    def stream(self, prompt: str, token: CancellationToken) -> Iterator[str]:
        self._ensure_client()
        import anthropic

        try:
            with self._client.messages.stream(
                model=self.model_name,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            ) as stream:
                token.add_callback(stream.close)
                for text in stream.text_stream:
                    if token.cancelled:
                        logger.info("anthropic stream aborted by cancellation")
                        return
                    if text:
                        yield text
        except anthropic.APIError as e:
            if token.cancelled:
                logger.info("anthropic stream closed by cancellation")
                return
            raise SourceError(str(e), self.get_source_id()) from e

    def get_source_id(self) -> str:
        return f"anthropic/{self.model_name}"

    def get_info(self) -> Dict[str, Any]:
        return {
            "source_id": self.get_source_id(),
            "source_type": "AnthropicTokenSource",
            "base_url": self.base_url or "https://api.anthropic.com",
        }


# =============================================================================
# Source Factory
# =============================================================================

def create_source(
    source_type: str,
    model_name: Optional[str] = None,
    **kwargs
) -> BaseTokenSource:
    """
    Factory function to create token sources.

    Args:
        source_type: "ollama", "openai", "anthropic", or "mock"
        model_name: Model identifier (ignored for mock)
        **kwargs: Source-specific arguments

    Examples:
        source = create_source("ollama", "llama3")
        source = create_source("openai", "gpt-4o-mini")
        source = create_source("mock", n_chunks=20)
    """
    source_type = source_type.lower()

    if source_type == "ollama":
        return OllamaTokenSource(model_name or "llama3", **kwargs)

    elif source_type == "openai" or source_type == "gpt":
        return OpenAITokenSource(model_name or "gpt-4o-mini", **kwargs)

    elif source_type == "anthropic" or source_type == "claude":
        return AnthropicTokenSource(model_name or "claude-sonnet-4-20250514", **kwargs)

    elif source_type == "mock":
        return MockTokenSource(**kwargs)

    else:
        raise ValueError(
            f"Unknown source type: {source_type}. "
            f"Valid options: ollama, openai, anthropic, mock"
        )
