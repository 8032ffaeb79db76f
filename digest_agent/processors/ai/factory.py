from __future__ import annotations

from typing import Optional

from .base import AIClient


def create_ai_client(
    backend: str = "gemini",
    *,
    gemini_api_key: Optional[str] = None,
    gemini_model: str = "gemini-1.5-flash",
    ollama_host: str = "http://localhost:11434",
    ollama_model: str = "llama3.1:8b-instruct",
) -> AIClient:
    """Create the completion client for ``PROCESSING_BACKEND``.

    Supported values: "gemini" (default) or "ollama". No local fallbacks.
    """
    selected = (backend or "gemini").lower()

    if selected == "gemini":
        from .gemini import GeminiClient  # lazy import

        return GeminiClient(gemini_api_key or "", model=gemini_model)
    if selected == "ollama":
        from .ollama import OllamaClient  # lazy import

        return OllamaClient(host=ollama_host, model=ollama_model)

    raise ValueError(f"Unsupported PROCESSING_BACKEND '{selected}'. Use 'gemini' or 'ollama'.")
