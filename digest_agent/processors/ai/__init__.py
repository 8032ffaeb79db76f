"""LLM backend selection and clients (Gemini, Ollama)."""

from .base import AIClient, LLMError
from .factory import create_ai_client
from .retry import is_retryable, with_retries

__all__ = ["AIClient", "LLMError", "create_ai_client", "is_retryable", "with_retries"]
