from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, TYPE_CHECKING
import logging

from doc_rewriter.config import ProviderSettings
from doc_rewriter.errors import ProviderError, ProviderRateLimitError

if TYPE_CHECKING:
    import anthropic
    import openai

logger = logging.getLogger(__name__)

# Anthropic answers 529 when overloaded; treat like 429
_RETRYABLE_STATUS = (429, 529)


def _retry_after(exc: Exception) -> Optional[float]:
    response = getattr(exc, "response", None)
    if response is None:
        return None
    value = response.headers.get("retry-after")
    try:
        return float(value) if value else None
    except ValueError:
        return None


def translate_error(provider: str, exc: Exception) -> ProviderError:
    """Map an SDK exception onto ProviderRateLimitError / ProviderError."""
    if isinstance(exc, ProviderError):
        return exc

    status = getattr(exc, "status_code", None)
    if status in _RETRYABLE_STATUS or type(exc).__name__ == "RateLimitError":
        return ProviderRateLimitError(provider, str(exc), retry_after=_retry_after(exc))
    return ProviderError(provider, f"{type(exc).__name__}: {exc}", status_code=status)


class TextProvider(ABC):
    """One text-generation backend. Subclasses implement complete()."""

    def __init__(self, settings: ProviderSettings):
        self.settings = settings

    @property
    def name(self) -> str:
        return self.settings.name

    @abstractmethod
    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        """Send one prompt and return the reply text."""

    def _require_text(self, text: str) -> str:
        text = (text or "").strip()
        if not text:
            raise ProviderError(self.name, "empty response")
        return text


class ClaudeProvider(TextProvider):
    """Thin wrapper around Anthropic's Messages API."""

    def __init__(self, settings: ProviderSettings, client: Optional["anthropic.Anthropic"] = None):
        super().__init__(settings)
        self._client = client

    @property
    def client(self) -> "anthropic.Anthropic":
        """Lazy initialization of Anthropic client."""
        if self._client is None:
            try:
                import anthropic
            except ImportError:
                raise ImportError("anthropic library required: pip install anthropic")
            self._client = anthropic.Anthropic(
                api_key=self.settings.resolve_api_key(),
                timeout=self.settings.timeout,
                max_retries=0,  # retries belong to the rate limiter
            )
        return self._client

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        params: Dict[str, Any] = {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            params["system"] = system

        client = self.client
        import anthropic

        try:
            message = client.messages.create(**params)
        except anthropic.APIError as e:
            raise translate_error(self.name, e) from e

        result = ""
        for block in message.content:
            if hasattr(block, "text"):
                result += block.text
        return self._require_text(result)


class OpenAICompatibleProvider(TextProvider):
    """Chat Completions backends: OpenAI itself, DeepSeek, Perplexity."""

    def __init__(self, settings: ProviderSettings, client: Optional["openai.OpenAI"] = None):
        super().__init__(settings)
        self._client = client

    @property
    def client(self) -> "openai.OpenAI":
        """Lazy initialization of OpenAI client."""
        if self._client is None:
            try:
                import openai
            except ImportError:
                raise ImportError("openai library required: pip install openai")
            self._client = openai.OpenAI(
                api_key=self.settings.resolve_api_key(),
                base_url=self.settings.base_url,
                timeout=self.settings.timeout,
                max_retries=0,
            )
        return self._client

    def complete(self, prompt: str, system: Optional[str] = None) -> str:
        messages: List[Dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        client = self.client
        import openai

        try:
            response = client.chat.completions.create(
                model=self.settings.model,
                messages=messages,
                max_tokens=self.settings.max_tokens,
                temperature=self.settings.temperature,
            )
        except openai.APIError as e:
            raise translate_error(self.name, e) from e

        content = ""
        if response.choices and response.choices[0].message.content:
            content = response.choices[0].message.content
        return self._require_text(content)


def build_provider(settings: ProviderSettings) -> TextProvider:
    if settings.kind == "anthropic":
        return ClaudeProvider(settings)
    if settings.kind == "openai":
        return OpenAICompatibleProvider(settings)
    raise ValueError(f"Unknown provider kind: {settings.kind}")
